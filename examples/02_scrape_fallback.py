# RUN: python examples/02_scrape_fallback.py
"""Scrape fallback: the API is down, the rendered usage page answers.

Demonstrates: attaching a ContentRenderer, the passive scrape strategy,
the scrape deadline, and deferred outcomes when nothing answers.
"""

import asyncio

import httpx

from quotaring import DeferredOutcome, MonitorConfig, UsageMonitor

USAGE_PAGE = """
<main>
  <section><h3>Current session</h3><p>58% used</p><p>Resets in 2h 10min</p></section>
  <section><h3>Weekly limits</h3><p>All models</p><p>23% used</p></section>
</main>
"""


class PageRenderer:
    """Stands in for a browser tab showing the usage page."""

    def __init__(self, monitor: UsageMonitor) -> None:
        self._monitor = monitor

    async def request_refresh(self) -> None:
        # A real renderer reloads the page and posts its HTML back later
        asyncio.get_running_loop().call_later(
            0.05, lambda: asyncio.ensure_future(self._monitor.on_usage_scraped(USAGE_PAGE))
        )


async def main() -> None:
    config = MonitorConfig(session_key="sk-demo", org_id="org-demo", scrape_deadline_seconds=2)
    outage = httpx.MockTransport(lambda request: httpx.Response(503))

    async with UsageMonitor.from_config(config, transport=outage) as monitor:
        # 1. Without a renderer every strategy fails and the attempt is deferred
        result = await monitor.request_refresh()
        if isinstance(result, DeferredOutcome):
            print(f"Deferred: {result.reason}")
            for failure in result.failures:
                print(f"  {failure.strategy:<20} {failure.status}  {failure.detail or ''}")

        # 2. Attach the renderer; the next attempt (after the throttle) scrapes
        monitor.attach_renderer(PageRenderer(monitor))
        await monitor.update_settings({"min_fetch_interval_ms": 0})
        result = await monitor.request_refresh()
        view = await monitor.get_usage_data()
        print(f"\nSource  : {view.snapshot.source}")
        print(f"Session : {view.snapshot.session_percentage:.0f}%  ({view.session_resets})")
        print(f"Weekly  : {view.snapshot.weekly_all_models_percentage:.0f}%")


if __name__ == "__main__":
    asyncio.run(main())
