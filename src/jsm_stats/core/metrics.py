"""Grouping, trend, aging and overview calculations over issue lists.

Everything here is pure: no network access and no shared state.  Functions
that depend on the current time take an optional ``now``.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, timedelta, tzinfo

from jsm_stats.core.data_models import Issue, JiraUser, SLAMetric
from jsm_stats.core.snapshot import (
    AgingBucket,
    CategoryMetric,
    EndUserMetric,
    IssuesSnapshot,
    IssueSummary,
    OverviewSnapshot,
    OverviewTrends,
    PersonMetric,
    PriorityMetric,
    SLASnapshot,
    TrendDataPoint,
)
from jsm_stats.core.time_period import Granularity, TimePeriod, local_zone

logger = logging.getLogger(__name__)

OVERALL_SLA = "Overall SLA"
ISSUES_SAMPLE_SIZE = 10

# (label, colour, upper bound in days); an issue lands in the first bucket
# whose bound its age is strictly below.
AGING_BUCKETS: tuple[tuple[str, str, float], ...] = (
    ("< 1 day", "green", 1),
    ("1-3 days", "mint", 3),
    ("3-7 days", "yellow", 7),
    ("1-2 weeks", "orange", 14),
    ("2-4 weeks", "red", 28),
    ("> 4 weeks", "purple", math.inf),
)


def median(values: Iterable[float]) -> float:
    """Median of *values*; ``0.0`` for an empty input."""
    ordered = sorted(values)
    n = len(ordered)
    if n == 0:
        return 0.0
    mid = n // 2
    if n % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2.0
    return float(ordered[mid])


def mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def percent_change(current: float, previous: float) -> float | None:
    """Signed percent delta from *previous* to *current*.

    ``None`` when both are zero (no meaningful change), ``100.0`` when only
    the previous value is zero.
    """
    if previous > 0:
        return (current - previous) / previous * 100.0
    return 100.0 if current > 0 else None


def _resolution_hours(issues: Iterable[Issue]) -> list[float]:
    hours = (i.fields.resolution_time_hours for i in issues)
    return [h for h in hours if h is not None]


def _now(now: datetime | None) -> datetime:
    return now if now is not None else datetime.now(local_zone())


# -- trends -------------------------------------------------------------------


def _truncate(value: datetime, granularity: Granularity) -> datetime:
    """Start of the bucket holding *value*, in wall-clock time of its zone."""
    if granularity is Granularity.HOUR:
        return value.replace(minute=0, second=0, microsecond=0)
    day = value.replace(hour=0, minute=0, second=0, microsecond=0)
    if granularity is Granularity.WEEK:
        return day - timedelta(days=day.weekday())  # ISO weeks start on Monday
    return day


def group_by_date(
    issues: Iterable[Issue],
    period: TimePeriod,
    attribute: str = "created_date",
    tz: tzinfo | None = None,
) -> dict[datetime, int]:
    """Count issues per bucket of ``issue.fields.<attribute>``.

    Timestamps are converted to *tz* (the system zone when ``None``) before
    being truncated to the period's granularity.  Truncation works on wall
    time, so buckets on either side of a daylight-saving change still start
    at local midnight.  Issues without the timestamp are skipped.
    """
    zone = tz if tz is not None else local_zone()
    granularity = period.granularity
    counts: Counter[datetime] = Counter()
    for issue in issues:
        value = getattr(issue.fields, attribute)
        if value is None:
            continue
        counts[_truncate(value.astimezone(zone), granularity)] += 1
    return dict(counts)


def build_trends(
    created: Iterable[Issue],
    resolved: Iterable[Issue],
    period: TimePeriod,
    tz: tzinfo | None = None,
) -> list[TrendDataPoint]:
    """Created/resolved counts per bucket, ascending by date."""
    tz = tz if tz is not None else local_zone()
    created_by_date = group_by_date(created, period, "created_date", tz)
    resolved_by_date = group_by_date(resolved, period, "resolved_date", tz)
    dates = sorted(created_by_date.keys() | resolved_by_date.keys())
    return [
        TrendDataPoint(
            date=d,
            created_count=created_by_date.get(d, 0),
            resolved_count=resolved_by_date.get(d, 0),
        )
        for d in dates
    ]


# -- breakdowns ---------------------------------------------------------------


def group_by_assignee(all_issues: Iterable[Issue]) -> list[PersonMetric]:
    """Cumulative workload per assignee over every known issue."""
    users: dict[str, JiraUser] = {}
    assigned: Counter[str] = Counter()
    resolved: Counter[str] = Counter()
    hours: dict[str, list[float]] = {}

    for issue in all_issues:
        assignee = issue.fields.assignee
        if assignee is None:
            continue
        key = assignee.account_id
        users.setdefault(key, assignee)
        assigned[key] += 1
        status = issue.fields.status
        if status is not None and status.category_key == "done":
            resolved[key] += 1
            h = issue.fields.resolution_time_hours
            if h is not None:
                hours.setdefault(key, []).append(h)

    metrics = [
        PersonMetric(
            user=user,
            assigned_count=assigned[key],
            resolved_count=resolved[key],
            avg_resolution_hours=mean(hours.get(key, [])),
        )
        for key, user in users.items()
    ]
    return sorted(metrics, key=lambda m: m.assigned_count, reverse=True)


def _count_with_resolution(
    issues: Sequence[Issue],
    closed_issues: Iterable[Issue],
    name_of: Callable[[Issue], str],
) -> list[tuple[str, int, float, float, float]]:
    """Shared core of the per-type and per-priority breakdowns.

    Returns ``(name, count, percent, avg_hours, median_hours)`` rows sorted by
    count, largest first.
    """
    counts = Counter(name_of(i) for i in issues)
    times: dict[str, list[float]] = {}
    for issue in closed_issues:
        h = issue.fields.resolution_time_hours
        if h is not None:
            times.setdefault(name_of(issue), []).append(h)

    total = max(len(issues), 1)
    rows = [
        (
            name,
            count,
            count / total * 100.0,
            mean(times.get(name, [])),
            median(times.get(name, [])),
        )
        for name, count in counts.items()
    ]
    return sorted(rows, key=lambda r: r[1], reverse=True)


def _issue_type_name(issue: Issue) -> str:
    t = issue.fields.issue_type
    return t.name if t is not None else "Unknown"


def _priority_name(issue: Issue) -> str:
    p = issue.fields.priority
    return p.name if p is not None else "None"


def group_by_issue_type(
    issues: Sequence[Issue], closed_issues: Iterable[Issue] = ()
) -> list[CategoryMetric]:
    """Share of *issues* per issue type; resolution times come from *closed_issues*."""
    return [
        CategoryMetric(name, count, pct, avg, med)
        for name, count, pct, avg, med in _count_with_resolution(
            issues, closed_issues, _issue_type_name
        )
    ]


def group_by_priority(
    issues: Sequence[Issue], closed_issues: Iterable[Issue] = ()
) -> list[PriorityMetric]:
    """Share of *issues* per priority; resolution times come from *closed_issues*."""
    return [
        PriorityMetric(name, count, pct, avg, med)
        for name, count, pct, avg, med in _count_with_resolution(
            issues, closed_issues, _priority_name
        )
    ]


def group_by_reporter(issues: Iterable[Issue]) -> list[EndUserMetric]:
    """Ticket count and the three most frequent issue types per reporter."""
    users: dict[str, JiraUser] = {}
    categories: dict[str, Counter[str]] = {}
    for issue in issues:
        reporter = issue.fields.reporter
        if reporter is None:
            continue
        key = reporter.account_id
        users.setdefault(key, reporter)
        categories.setdefault(key, Counter())[_issue_type_name(issue)] += 1

    metrics = [
        EndUserMetric(
            reporter=user,
            ticket_count=sum(categories[key].values()),
            top_categories=tuple(name for name, _ in categories[key].most_common(3)),
        )
        for key, user in users.items()
    ]
    return sorted(metrics, key=lambda m: m.ticket_count, reverse=True)


# -- backlog ------------------------------------------------------------------


def compute_backlog_aging(
    open_issues: Iterable[Issue], now: datetime | None = None
) -> list[AgingBucket]:
    now = _now(now)
    counts = [0] * len(AGING_BUCKETS)
    for issue in open_issues:
        created = issue.fields.created_date
        if created is None:
            continue
        age_days = (now - created).total_seconds() / 86400.0
        for index, (_, _, upper) in enumerate(AGING_BUCKETS):
            if age_days < upper:
                counts[index] += 1
                break
    return [
        AgingBucket(label=label, count=count, color=color)
        for (label, color, _), count in zip(AGING_BUCKETS, counts)
    ]


def _summarize(issue: Issue, created: datetime, now: datetime) -> IssueSummary:
    f = issue.fields
    return IssueSummary(
        key=issue.key,
        summary=f.summary or "(No summary)",
        priority_name=_priority_name(issue),
        status_name=f.status.name if f.status is not None else "Unknown",
        assignee_name=f.assignee.name if f.assignee is not None else None,
        age_hours=(now - created).total_seconds() / 3600.0,
        created_date=created,
    )


def compute_issues_snapshot(
    open_issues: Iterable[Issue], now: datetime | None = None
) -> IssuesSnapshot:
    """Oldest and newest ten open issues plus age statistics of the whole set."""
    now = _now(now)
    summaries = []
    for issue in open_issues:
        created = issue.fields.created_date
        if created is not None:
            summaries.append(_summarize(issue, created, now))

    summaries.sort(key=lambda s: s.created_date)
    oldest = summaries[:ISSUES_SAMPLE_SIZE]
    newest = summaries[-ISSUES_SAMPLE_SIZE:][::-1]
    ages = [s.age_hours for s in summaries]

    return IssuesSnapshot(
        newest_open=tuple(newest),
        oldest_open=tuple(oldest),
        average_age_hours=mean(ages),
        median_age_hours=median(ages),
        oldest_unassigned_count=sum(1 for s in oldest if s.assignee_name is None),
        newest_unassigned_count=sum(1 for s in newest if s.assignee_name is None),
        priority_breakdown_oldest=dict(Counter(s.priority_name for s in oldest)),
    )


# -- overview -----------------------------------------------------------------


def compute_overview(
    open_issues: Sequence[Issue],
    closed_in_period: Sequence[Issue],
    created_in_period: Sequence[Issue],
    sla_breaches: int,
    previous_closed: Sequence[Issue] | None = None,
    previous_created: Sequence[Issue] | None = None,
) -> OverviewSnapshot:
    """Headline KPIs; trends are only filled when previous-period data is given."""
    times = _resolution_hours(closed_in_period)
    avg_resolution = mean(times)

    trends = OverviewTrends()
    if previous_closed is not None and previous_created is not None:
        trends = OverviewTrends(
            closed_trend=percent_change(len(closed_in_period), len(previous_closed)),
            new_trend=percent_change(len(created_in_period), len(previous_created)),
            avg_resolution_trend=percent_change(
                avg_resolution, mean(_resolution_hours(previous_closed))
            ),
        )

    logger.debug(
        "Overview: %d open, %d closed, %d created, avg resolution %.1fh",
        len(open_issues), len(closed_in_period), len(created_in_period), avg_resolution,
    )
    return OverviewSnapshot(
        total_open=len(open_issues),
        total_closed_in_period=len(closed_in_period),
        new_in_period=len(created_in_period),
        avg_resolution_hours=avg_resolution,
        median_resolution_hours=median(times),
        sla_breach_count=sla_breaches,
        trends=trends,
    )


def build_sla_snapshots(
    total_open: int, breach_count: int, sla_metrics: Iterable[SLAMetric] = ()
) -> list[SLASnapshot]:
    """The overall compliance row followed by one row per SLA name.

    The overall row treats every open issue as one cycle; it is omitted when
    nothing is open.
    """
    rows: list[SLASnapshot] = []
    if total_open > 0:
        compliance = (total_open - breach_count) / total_open * 100.0
        rows.append(
            SLASnapshot(
                metric_name=OVERALL_SLA,
                total_cycles=total_open,
                breached_count=breach_count,
                compliance_percent=min(max(compliance, 0.0), 100.0),
            )
        )

    cycles: Counter[str] = Counter()
    breaches: Counter[str] = Counter()
    for metric in sla_metrics:
        cycles[metric.name] += metric.total_cycles
        breaches[metric.name] += metric.breached_count
    for name, total in cycles.items():
        compliance = (total - breaches[name]) / total * 100.0 if total else 100.0
        rows.append(SLASnapshot(name, total, breaches[name], compliance))
    return rows
