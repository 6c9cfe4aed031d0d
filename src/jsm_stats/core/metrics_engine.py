"""Concurrent fetch-and-aggregate pipeline behind one dashboard refresh."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Sequence
from datetime import datetime
from typing import Any

from jsm_stats.core import endpoints, metrics
from jsm_stats.core.data_models import (
    INVALID_PROJECT_KEY,
    Issue,
    ServiceDesk,
    SLAMetric,
)
from jsm_stats.core.errors import JiraAPIError
from jsm_stats.core.jira_client import JiraClient
from jsm_stats.core.snapshot import MetricSnapshot
from jsm_stats.core.time_period import TimePeriod, local_zone

logger = logging.getLogger(__name__)

SLA_SAMPLE_SIZE = 50


async def join_all(aws: Sequence[Awaitable[Any]]) -> list[Any]:
    """Run *aws* concurrently and return their results in order.

    The first failure cancels every sibling still in flight and is re-raised
    as-is; cancelling the caller cancels all of them.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class MetricsEngine:
    """Turns one service desk and period into a :class:`MetricSnapshot`."""

    def __init__(self, client: JiraClient, sla_sample_size: int = SLA_SAMPLE_SIZE) -> None:
        self.client = client
        self.sla_sample_size = sla_sample_size

    async def fetch_metrics(
        self,
        service_desk: ServiceDesk,
        period: TimePeriod,
        now: datetime | None = None,
    ) -> MetricSnapshot:
        """Run the five period searches plus SLA sampling and aggregate them.

        All five searches must succeed; SLA data is best-effort.
        """
        now = now if now is not None else datetime.now(local_zone())
        project_key = service_desk.sanitized_project_key
        if project_key == INVALID_PROJECT_KEY:
            logger.warning(
                "Project key %r of desk %s is not query-safe; using %s",
                service_desk.project_key, service_desk.id, INVALID_PROJECT_KEY,
            )

        since = period.start_date(now)
        previous = period.previous_period(now)
        prev_start, prev_end = previous.start_date(now), previous.end_date(now)

        queries = [
            endpoints.open_issues_jql(project_key),
            endpoints.closed_issues_jql(project_key, since),
            endpoints.created_issues_jql(project_key, since),
            endpoints.closed_issues_jql(project_key, prev_start, prev_end),
            endpoints.created_issues_jql(project_key, prev_start, prev_end),
        ]
        logger.info(
            "Fetching metrics for %s (%s, since %s)",
            project_key, period.label, endpoints.jql_date(since),
        )
        open_issues, closed, created, prev_closed, prev_created = await join_all(
            [self.client.search_all_issues(jql) for jql in queries]
        )

        created_ids = {i.id for i in created}
        all_period_issues = created + [i for i in closed if i.id not in created_ids]

        sla_metrics = await self._sample_sla(open_issues[: self.sla_sample_size])
        sla_breaches = sum(m.breached_count for m in sla_metrics)

        snapshot = MetricSnapshot(
            overview=metrics.compute_overview(
                open_issues,
                closed,
                created,
                sla_breaches,
                previous_closed=prev_closed,
                previous_created=prev_created,
            ),
            trends=tuple(metrics.build_trends(created, closed, period)),
            by_person=tuple(metrics.group_by_assignee(open_issues + closed)),
            by_category=tuple(metrics.group_by_issue_type(all_period_issues, closed)),
            by_end_user=tuple(metrics.group_by_reporter(created)),
            by_priority=tuple(metrics.group_by_priority(open_issues, closed)),
            sla=tuple(
                metrics.build_sla_snapshots(len(open_issues), sla_breaches, sla_metrics)
            ),
            backlog_aging=tuple(metrics.compute_backlog_aging(open_issues, now)),
            issues=metrics.compute_issues_snapshot(open_issues, now),
        )
        logger.info(
            "Metrics for %s: %d open, %d closed, %d created, %d SLA breaches",
            project_key, len(open_issues), len(closed), len(created), sla_breaches,
        )
        return snapshot

    async def _sample_sla(self, issues: list[Issue]) -> list[SLAMetric]:
        results = await join_all([self._issue_sla(issue) for issue in issues])
        return [metric for per_issue in results for metric in per_issue]

    async def _issue_sla(self, issue: Issue) -> list[SLAMetric]:
        try:
            return await self.client.get_sla(issue.key)
        except JiraAPIError as exc:
            logger.debug("No SLA data for %s: %s", issue.key, exc)
            return []
