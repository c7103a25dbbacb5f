# RUN: python examples/01_quickstart.py
"""Quickstart: build a monitor, refresh once, read the usage view.

Demonstrates: UsageMonitor.from_config(), request_refresh(),
get_usage_data(), and the memory icon sink.  The HTTP layer is an
httpx.MockTransport so no account is needed.
"""

import asyncio

import httpx

from quotaring import MonitorConfig, UsageMonitor, configure_logging

ORG_ID = "org-demo"


def fake_api(request: httpx.Request) -> httpx.Response:
    if request.url.path == f"/api/organizations/{ORG_ID}/usage":
        return httpx.Response(
            200,
            json={
                "five_hour": {"utilization": 37, "resets_at": "2030-01-01T04:00:00Z"},
                "seven_day": {"utilization": 64, "resets_at": "2030-01-05T10:00:00Z"},
                "seven_day_opus": {"utilization": 12, "resets_at": "2030-01-05T10:00:00Z"},
            },
        )
    return httpx.Response(404)


async def main() -> None:
    configure_logging("INFO", json=False)

    # 1. Configuration normally comes from QUOTARING_* variables
    config = MonitorConfig(session_key="sk-demo", org_id=ORG_ID)

    # 2. Start without the periodic timer; we refresh by hand
    monitor = UsageMonitor.from_config(config, transport=httpx.MockTransport(fake_api))
    await monitor.start(schedule=False)

    try:
        # 3. One acquisition through the strategy chain
        result = await monitor.request_refresh()
        print(f"Result  : {type(result).__name__}")

        # 4. The view the popup would show
        view = await monitor.get_usage_data()
        snapshot = view.snapshot
        print(f"Session : {snapshot.session_percentage:.0f}%  ({view.session_resets})")
        print(f"Weekly  : {snapshot.weekly_all_models_percentage:.0f}%  ({view.weekly_resets})")
        if snapshot.weekly_model_specific is not None:
            model = snapshot.weekly_model_specific
            print(f"{model.model_name:<8}: {model.percentage:.0f}%")
        print(f"Updated : {view.last_updated} via {snapshot.source}")
        print(f"Icon    : {monitor.animation.state}, rings at {monitor.animation.percentages}")
    finally:
        await monitor.close()


if __name__ == "__main__":
    asyncio.run(main())
