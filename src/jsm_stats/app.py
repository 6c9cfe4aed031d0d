"""Service wiring and command implementations for the command line."""

from __future__ import annotations

import asyncio
import dataclasses
import getpass
import json
import logging
import sys
from dataclasses import dataclass
from datetime import datetime

from jsm_stats.core.data_models import ConnectionConfig, ServiceDesk
from jsm_stats.core.discovery import DiscoveryManager
from jsm_stats.core.errors import (
    ConnectionNotConfiguredError,
    JiraAPIError,
    NetworkError,
    friendly_message,
)
from jsm_stats.core.jira_client import JiraClient
from jsm_stats.core.metrics_engine import MetricsEngine
from jsm_stats.core.snapshot import MenuBarStats, MetricSnapshot
from jsm_stats.core.time_period import TimePeriod
from jsm_stats.services.auth_manager import AuthManager
from jsm_stats.services.change_poller import ChangeEvent, ChangePoller
from jsm_stats.services.config_manager import ConfigManager
from jsm_stats.services.dashboard import DashboardRefresher

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


@dataclass
class Services:
    """Process-wide singletons shared by every command."""

    config: ConfigManager
    auth: AuthManager
    client: JiraClient
    discovery: DiscoveryManager
    engine: MetricsEngine


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
    )


def build_services(config: ConfigManager | None = None) -> Services:
    config = config or ConfigManager()
    client = JiraClient(max_retries=config.get_int("max_retries"))
    return Services(
        config=config,
        auth=AuthManager(config),
        client=client,
        discovery=DiscoveryManager(client),
        engine=MetricsEngine(client),
    )


def run_app(args, services: Services | None = None) -> int:
    """Run the parsed command, returning the process exit code."""
    setup_logging(getattr(args, "verbose", False))
    services = services or build_services()
    command = _COMMANDS[args.command]
    logger.debug("Running command %s", args.command)
    try:
        return asyncio.run(command(services, args))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    except JiraAPIError as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {friendly_message(exc)}", file=sys.stderr)
        return 1
    finally:
        services.discovery.close()
        services.client.close()


# -- helpers ------------------------------------------------------------------


def _connect(services: Services) -> ConnectionConfig:
    connection = services.auth.load()
    if connection is None:
        raise ConnectionNotConfiguredError()
    services.client.configure(connection)
    return connection


async def _find_desk(services: Services, project_key: str | None) -> ServiceDesk | None:
    key = (project_key or services.config.get("project_key") or "").upper()
    desks = await services.client.get_service_desks()
    if not key and len(desks) == 1:
        return desks[0]
    for desk in desks:
        if desk.project_key.upper() == key:
            return desk
    known = ", ".join(d.project_key for d in desks) or "none"
    print(f"Error: no service desk for project {key or '(none given)'} (available: {known})",
          file=sys.stderr)
    return None


def _period(services: Services, period_id: str | None) -> TimePeriod | None:
    value = period_id or services.config.get("time_period") or "7d"
    try:
        return TimePeriod.from_id(value)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return None


def _hours(value: float) -> str:
    if value >= 48:
        return f"{value / 24:.1f}d"
    return f"{value:.1f}h"


def _trend(value: float | None) -> str:
    return "" if value is None else f" ({value:+.0f}%)"


def format_menu_bar(stats: MenuBarStats) -> str:
    refreshed = stats.last_refreshed.strftime("%H:%M:%S") if stats.last_refreshed else "never"
    return (
        f"open {stats.open_count} | new {stats.new_count} | "
        f"SLA breaches {stats.sla_breach_count} | refreshed {refreshed}"
    )


def format_snapshot(snapshot: MetricSnapshot, desk: ServiceDesk, period: TimePeriod) -> str:
    """Plain-text rendering of the headline numbers and breakdowns."""
    o = snapshot.overview
    lines = [
        f"{desk.project_name} ({desk.project_key}) - {period.label}",
        f"  Open:              {o.total_open}",
        f"  Closed in period:  {o.total_closed_in_period}{_trend(o.trends.closed_trend)}",
        f"  New in period:     {o.new_in_period}{_trend(o.trends.new_trend)}",
        f"  Avg resolution:    {_hours(o.avg_resolution_hours)}"
        f"{_trend(o.trends.avg_resolution_trend)}",
        f"  Median resolution: {_hours(o.median_resolution_hours)}",
        f"  SLA breaches:      {o.sla_breach_count}",
    ]
    if snapshot.by_priority:
        lines.append("By priority:")
        lines += [
            f"  {p.priority_name:<16} {p.count:>5}  {p.percent_of_total:5.1f}%"
            for p in snapshot.by_priority
        ]
    if snapshot.by_category:
        lines.append("By issue type:")
        lines += [
            f"  {c.name:<16} {c.count:>5}  {c.percent_of_total:5.1f}%"
            for c in snapshot.by_category
        ]
    if snapshot.by_person:
        lines.append("By assignee:")
        lines += [
            f"  {p.user.name:<24} {p.assigned_count:>5} assigned {p.resolved_count:>5} resolved"
            for p in snapshot.by_person
        ]
    if snapshot.sla:
        lines.append("SLA:")
        lines += [
            f"  {s.metric_name:<24} {s.breached_count:>4}/{s.total_cycles:<5}"
            f" {s.compliance_percent:5.1f}% compliant"
            for s in snapshot.sla
        ]
    lines.append("Backlog age:")
    lines += [f"  {b.label:<10} {b.count:>5}" for b in snapshot.backlog_aging]
    return "\n".join(lines)


def _print_event(event: ChangeEvent) -> None:
    print(f"[{event.kind.value}] {event.issue_key}: {event.summary} ({event.detail})")


# -- commands -----------------------------------------------------------------


async def cmd_login(services: Services, args) -> int:
    token = args.token or getpass.getpass("API token: ")
    connection = ConnectionConfig(args.url, args.email, token)
    if not connection.is_valid:
        print("Error: site URL, email and API token are all required.", file=sys.stderr)
        return 2

    services.client.configure(connection)
    desks = await services.client.get_service_desks()
    services.auth.save(connection)
    print(f"Logged in to {connection.site_name}: {len(desks)} service desk(s) found.")
    return 0


async def cmd_logout(services: Services, args) -> int:
    services.auth.clear()
    print("Credentials removed.")
    return 0


async def cmd_desks(services: Services, args) -> int:
    _connect(services)
    desks = await services.discovery.discover_all()
    await services.discovery.wait_pending()
    cache = services.discovery.cache

    for desk in desks:
        print(
            f"{desk.project_key:<12} {desk.project_name} (desk {desk.id}): "
            f"{len(cache.request_types(desk.id))} request types, "
            f"{len(cache.users(desk.project_key))} assignable users"
        )
    print(
        f"{len(cache.issue_types)} issue types, {len(cache.statuses)} statuses, "
        f"{len(cache.status_categories)} status categories, "
        f"{len(cache.priorities)} priorities, {len(cache.fields)} fields"
    )
    return 0


async def cmd_stats(services: Services, args) -> int:
    _connect(services)
    period = _period(services, args.period)
    desk = await _find_desk(services, args.project)
    if period is None or desk is None:
        return 2

    timeout = services.config.get_int("fetch_timeout_seconds", minimum=1)
    try:
        snapshot = await asyncio.wait_for(
            services.engine.fetch_metrics(desk, period), timeout=timeout
        )
    except TimeoutError as exc:
        raise NetworkError(exc) from exc
    services.config.update({"project_key": desk.project_key, "time_period": period.id})

    if args.json:
        print(json.dumps(dataclasses.asdict(snapshot), indent=2, default=str))
    else:
        print(format_snapshot(snapshot, desk, period))
    return 0


async def cmd_watch(services: Services, args) -> int:
    _connect(services)
    period = _period(services, args.period)
    desk = await _find_desk(services, args.project)
    if period is None or desk is None:
        return 2

    config = services.config
    last_shown: datetime | None = None

    def on_update(refresher: DashboardRefresher) -> None:
        nonlocal last_shown
        if refresher.error_message and refresher.retry_countdown == refresher.retry_delay:
            print(f"! {refresher.error_message} Retrying in {refresher.retry_countdown}s.")
        elif refresher.last_refreshed is not None and refresher.last_refreshed != last_shown:
            last_shown = refresher.last_refreshed
            print(format_menu_bar(refresher.menu_bar_stats))

    refresher = DashboardRefresher(
        services.engine,
        timeout=config.get_int("fetch_timeout_seconds", minimum=1),
        retry_countdown=config.get_int("retry_countdown_seconds", minimum=1),
        refresh_interval=config.get_int("refresh_interval_minutes", minimum=1) * 60,
        on_update=on_update,
    )
    refresher.select(desk, period)
    poller = ChangePoller(
        services.client,
        desk.project_key,
        poll_interval=config.get_int("poll_interval_minutes", minimum=1) * 60,
    )

    print(f"Watching {desk.project_key} ({period.label}); press Ctrl+C to stop.")
    await refresher.refresh()
    refresher.start_auto_refresh()
    await poller.poll()  # prime the known statuses
    poller.start(_print_event)
    try:
        await asyncio.Event().wait()
    finally:
        poller.stop()
        refresher.close()
    return 0


_COMMANDS = {
    "login": cmd_login,
    "logout": cmd_logout,
    "desks": cmd_desks,
    "stats": cmd_stats,
    "watch": cmd_watch,
}
