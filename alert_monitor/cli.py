"""Operator commands: verify credentials, inspect recent alerts, run searches."""

import asyncio
import sys

from alert_monitor.errors import AlertApiError
from alert_monitor.models import Alert, ServiceOptions
from alert_monitor.service import AlertService

_TYPE_COLORS = {
    "flash": "\033[1;31m",   # bold red
    "urgent": "\033[31m",    # red
    "alert": "\033[33m",     # yellow
}
_RESET = "\033[0m"


def _print_alert(alert: Alert) -> None:
    color = _TYPE_COLORS.get(alert.type, "")
    ts = alert.alert_timestamp.strftime("%Y-%m-%d %H:%M:%S")
    print(f"  {color}[{alert.type or '?'}]{_RESET} {ts}  {alert.alert_id}")
    if alert.headline:
        print(f"    {alert.headline}")


async def check_token(service: AlertService):
    token = await service.tokens.get_token()
    print(f"Token issued, expires at epoch {token.expires_at:.0f}")


async def recent(service: AlertService, count: int = 10):
    result = await service.get_alerts_since(count=count)
    print(f"\n{'='*60}")
    print(f"  {result.count} most recent alerts")
    print(f"{'='*60}\n")
    for alert in result.alerts:
        _print_alert(alert)
    print()


async def show_alert(service: AlertService, alert_id: str):
    alert = await service.get_alert_by_id(alert_id)
    if alert is None:
        print(f"Alert {alert_id} not found")
        return
    _print_alert(alert)


async def search(service: AlertService, entities: list[str]):
    outcomes = await service.search_by_entity(entities)
    for outcome in outcomes:
        print(f"\n  {outcome.result_id}: {len(outcome.result)} alert(s)")
        for alert in outcome.result:
            _print_alert(alert)
    print()


async def quota(service: AlertService):
    await service.fetcher.fetch_page(count=1)
    state = service.limiter.state
    print(f"Quota: {state.remaining}/{state.limit} remaining")


async def _run(cmd: str, args: list[str]) -> int:
    service = AlertService(ServiceOptions.from_config())
    if not service.options.has_credentials:
        print("ALERT_CLIENT_ID and ALERT_CLIENT_SECRET must be set")
        return 1
    try:
        if cmd == "token":
            await check_token(service)
        elif cmd == "recent":
            await recent(service, int(args[0]) if args else 10)
        elif cmd == "alert":
            await show_alert(service, args[0])
        elif cmd == "search":
            await search(service, args)
        elif cmd == "quota":
            await quota(service)
        else:
            print(f"Unknown command: {cmd}")
            return 1
    except AlertApiError as e:
        print(f"Request failed: {e}")
        return 1
    finally:
        await service.aclose()
    return 0


if __name__ == "__main__":
    if len(sys.argv) < 2 or (sys.argv[1] in ("alert", "search") and len(sys.argv) < 3):
        print("Usage:")
        print("  python -m alert_monitor.cli token")
        print("  python -m alert_monitor.cli recent [count]")
        print("  python -m alert_monitor.cli alert <alert_id>")
        print("  python -m alert_monitor.cli search <entity> [entity ...]")
        print("  python -m alert_monitor.cli quota")
        sys.exit(1)

    sys.exit(asyncio.run(_run(sys.argv[1], sys.argv[2:])))
