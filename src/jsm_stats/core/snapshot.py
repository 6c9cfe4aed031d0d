"""Derived, immutable dashboard results produced by one metrics refresh."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from jsm_stats.core.data_models import JiraUser


@dataclass(frozen=True)
class TrendDataPoint:
    date: datetime
    created_count: int
    resolved_count: int


@dataclass(frozen=True)
class PersonMetric:
    user: JiraUser
    assigned_count: int
    resolved_count: int
    avg_resolution_hours: float


@dataclass(frozen=True)
class CategoryMetric:
    name: str
    count: int
    percent_of_total: float
    avg_resolution_hours: float
    median_resolution_hours: float


@dataclass(frozen=True)
class EndUserMetric:
    reporter: JiraUser
    ticket_count: int
    top_categories: tuple[str, ...]


@dataclass(frozen=True)
class PriorityMetric:
    priority_name: str
    count: int
    percent_of_total: float
    avg_resolution_hours: float
    median_resolution_hours: float


@dataclass(frozen=True)
class SLASnapshot:
    metric_name: str
    total_cycles: int
    breached_count: int
    compliance_percent: float


@dataclass(frozen=True)
class AgingBucket:
    label: str
    count: int
    color: str  # colour name for chart rendering


@dataclass(frozen=True)
class IssueSummary:
    key: str
    summary: str
    priority_name: str
    status_name: str
    assignee_name: str | None
    age_hours: float
    created_date: datetime


@dataclass(frozen=True)
class IssuesSnapshot:
    """Oldest / newest open issues and age statistics of the whole backlog."""

    newest_open: tuple[IssueSummary, ...] = ()
    oldest_open: tuple[IssueSummary, ...] = ()
    average_age_hours: float = 0.0
    median_age_hours: float = 0.0
    oldest_unassigned_count: int = 0
    newest_unassigned_count: int = 0
    priority_breakdown_oldest: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class OverviewTrends:
    """Percent change versus the previous period; ``None`` when undefined."""

    closed_trend: float | None = None
    new_trend: float | None = None
    avg_resolution_trend: float | None = None


@dataclass(frozen=True)
class OverviewSnapshot:
    total_open: int = 0
    total_closed_in_period: int = 0
    new_in_period: int = 0
    avg_resolution_hours: float = 0.0
    median_resolution_hours: float = 0.0
    sla_breach_count: int = 0
    trends: OverviewTrends = field(default_factory=OverviewTrends)


@dataclass(frozen=True)
class MetricSnapshot:
    """Everything a dashboard shows, built once per successful refresh."""

    overview: OverviewSnapshot
    trends: tuple[TrendDataPoint, ...]
    by_person: tuple[PersonMetric, ...]
    by_category: tuple[CategoryMetric, ...]
    by_end_user: tuple[EndUserMetric, ...]
    by_priority: tuple[PriorityMetric, ...]
    sla: tuple[SLASnapshot, ...]
    backlog_aging: tuple[AgingBucket, ...]
    issues: IssuesSnapshot

    @classmethod
    def empty(cls) -> MetricSnapshot:
        return cls(
            overview=OverviewSnapshot(),
            trends=(),
            by_person=(),
            by_category=(),
            by_end_user=(),
            by_priority=(),
            sla=(),
            backlog_aging=(),
            issues=IssuesSnapshot(),
        )


@dataclass(frozen=True)
class MenuBarStats:
    """Compact summary for status bars and tray icons."""

    open_count: int = 0
    new_count: int = 0
    sla_breach_count: int = 0
    last_refreshed: datetime | None = None

    @classmethod
    def from_snapshot(
        cls, snapshot: MetricSnapshot, refreshed_at: datetime | None
    ) -> MenuBarStats:
        overview = snapshot.overview
        return cls(
            open_count=overview.total_open,
            new_count=overview.new_in_period,
            sla_breach_count=overview.sla_breach_count,
            last_refreshed=refreshed_at,
        )
