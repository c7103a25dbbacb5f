# RUN: python examples/03_alerts_and_icons.py
"""Alerts and icons: threshold notifications and PNG icons on disk.

Demonstrates: CallbackAlertSink, the warning animation, PngDirectorySink
via MonitorConfig.icon_dir, and run_sync() for synchronous callers.
"""

import asyncio
import tempfile
from pathlib import Path

import httpx

from quotaring import CallbackAlertSink, LogAlertSink, MonitorConfig, UsageAlert, UsageMonitor
from quotaring.utils.async_helpers import run_sync

readings = iter([55, 78, 93, 100])


def fake_api(request: httpx.Request) -> httpx.Response:
    session = next(readings, 100)
    return httpx.Response(
        200,
        json={
            "five_hour": {"utilization": session, "resets_at": None},
            "seven_day": {"utilization": 40, "resets_at": None},
        },
    )


def notify(alert: UsageAlert) -> None:
    print(f"[{alert.severity.upper():<8}] {alert.title}: {alert.message}")


async def watch(icon_dir: Path) -> None:
    config = MonitorConfig(session_key="sk-demo", org_id="org-demo", icon_dir=icon_dir)
    monitor = UsageMonitor.from_config(
        config,
        transport=httpx.MockTransport(fake_api),
        alert_sinks=[LogAlertSink(), CallbackAlertSink(notify)],
    )
    await monitor.start(schedule=False)
    await monitor.update_settings({"min_fetch_interval_ms": 0})
    try:
        for _ in range(4):
            await monitor.request_refresh()
            print(f"  animation: {monitor.animation.state}")
            await asyncio.sleep(0.2)
    finally:
        await monitor.close()

    print("\nIcons written:")
    for path in sorted(icon_dir.glob("icon-*.png")):
        print(f"  {path.name}  ({path.stat().st_size} bytes)")


def main() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        run_sync(watch(Path(tmp)))


if __name__ == "__main__":
    main()
