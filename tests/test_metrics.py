"""Tests for jsm_stats.core.metrics."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from dateutil.tz import gettz

from jsm_stats.core.data_models import (
    Issue,
    IssueFields,
    IssueType,
    JiraUser,
    Priority,
    SLACycle,
    SLAMetric,
    Status,
    StatusCategory,
)
from jsm_stats.core.metrics import (
    OVERALL_SLA,
    build_sla_snapshots,
    build_trends,
    compute_backlog_aging,
    compute_issues_snapshot,
    compute_overview,
    group_by_assignee,
    group_by_issue_type,
    group_by_priority,
    group_by_reporter,
    median,
    percent_change,
)
from jsm_stats.core.time_period import TimePeriod

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)
DONE = Status("3", "Done", StatusCategory(3, "done", "Done"))
OPEN = Status("1", "Open", StatusCategory(2, "new", "To Do"))

_counter = iter(range(1, 1_000_000))


def _iso(value: datetime) -> str:
    return value.isoformat()


def _make_issue(
    created: datetime | None = None,
    resolved: datetime | None = None,
    *,
    status: Status | None = None,
    priority: str | None = None,
    issue_type: str | None = None,
    assignee: str | None = None,
    reporter: str | None = None,
    summary: str | None = "Something broke",
) -> Issue:
    n = next(_counter)
    fields = IssueFields(
        summary=summary,
        status=status or (DONE if resolved else OPEN),
        priority=Priority(str(n), priority) if priority else None,
        assignee=JiraUser(assignee, display_name=assignee.title()) if assignee else None,
        reporter=JiraUser(reporter, display_name=reporter.title()) if reporter else None,
        issue_type=IssueType(str(n), issue_type) if issue_type else None,
        created=_iso(created) if created else None,
        resolution_date=_iso(resolved) if resolved else None,
    )
    return Issue(str(n), f"SD-{n}", fields)


def _resolved_after(hours: float, **kwargs: object) -> Issue:
    created = NOW - timedelta(days=3)
    return _make_issue(created, created + timedelta(hours=hours), **kwargs)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# statistics helpers
# ---------------------------------------------------------------------------


class TestMedian:
    def test_empty(self) -> None:
        assert median([]) == 0

    def test_odd(self) -> None:
        assert median([3, 1, 2]) == 2

    def test_even(self) -> None:
        assert median([1, 2, 3, 4]) == 2.5

    def test_single(self) -> None:
        assert median([7.5]) == 7.5


class TestPercentChange:
    def test_both_zero_is_undefined(self) -> None:
        assert percent_change(0, 0) is None

    def test_from_zero_is_hundred(self) -> None:
        assert percent_change(5, 0) == 100

    def test_decrease(self) -> None:
        assert percent_change(3, 6) == -50

    def test_increase(self) -> None:
        assert percent_change(15, 10) == pytest.approx(50.0)

    def test_floats(self) -> None:
        assert percent_change(1.5, 3.0) == pytest.approx(-50.0)


# ---------------------------------------------------------------------------
# overview
# ---------------------------------------------------------------------------


class TestComputeOverview:
    def test_headline_numbers(self) -> None:
        open_issues = [_make_issue(NOW - timedelta(days=i)) for i in range(1, 4)]
        closed = [_resolved_after(36), _resolved_after(48)]
        created = [_make_issue(NOW), _make_issue(NOW)]

        overview = compute_overview(open_issues, closed, created, 1)

        assert overview.total_open == 3
        assert overview.total_closed_in_period == 2
        assert overview.new_in_period == 2
        assert overview.sla_breach_count == 1
        assert overview.avg_resolution_hours == pytest.approx(42.0)
        assert overview.median_resolution_hours == pytest.approx(42.0)

    def test_no_trends_without_previous_period(self) -> None:
        overview = compute_overview([], [_resolved_after(10)], [], 0)
        assert overview.trends.closed_trend is None
        assert overview.trends.new_trend is None
        assert overview.trends.avg_resolution_trend is None

    def test_trends_against_previous_period(self) -> None:
        closed = [_resolved_after(10), _resolved_after(20), _resolved_after(30)]
        created = [_make_issue(NOW)]
        prev_closed = [_resolved_after(40), _resolved_after(40)]

        overview = compute_overview(
            [], closed, created, 0, previous_closed=prev_closed, previous_created=[]
        )

        assert overview.trends.closed_trend == pytest.approx(50.0)
        assert overview.trends.new_trend == 100
        assert overview.trends.avg_resolution_trend == pytest.approx(-50.0)

    def test_issues_without_resolution_ignored_in_average(self) -> None:
        closed = [_resolved_after(12), _make_issue(None, None, status=DONE)]
        overview = compute_overview([], closed, [], 0)
        assert overview.total_closed_in_period == 2
        assert overview.avg_resolution_hours == pytest.approx(12.0)


# ---------------------------------------------------------------------------
# breakdowns
# ---------------------------------------------------------------------------


class TestGroupByPriority:
    def test_counts_and_share(self) -> None:
        issues = [_make_issue(NOW, priority=p) for p in ("High", "Medium", "High", "Low", "Medium")]
        rows = {r.priority_name: r for r in group_by_priority(issues)}

        assert rows["High"].count == 2
        assert rows["High"].percent_of_total == pytest.approx(40.0, abs=0.1)
        assert rows["Medium"].count == 2
        assert rows["Low"].count == 1

    def test_sorted_by_count(self) -> None:
        issues = [_make_issue(NOW, priority=p) for p in ("Low", "High", "High", "High")]
        assert [r.priority_name for r in group_by_priority(issues)] == ["High", "Low"]

    def test_resolution_times_from_closed_subset(self) -> None:
        issues = [_make_issue(NOW, priority="High")]
        closed = [
            _resolved_after(10, priority="High"),
            _resolved_after(20, priority="High"),
            _resolved_after(60, priority="High"),
        ]
        row = group_by_priority(issues, closed)[0]
        assert row.avg_resolution_hours == pytest.approx(30.0)
        assert row.median_resolution_hours == pytest.approx(20.0)

    def test_missing_priority_is_none(self) -> None:
        assert group_by_priority([_make_issue(NOW)])[0].priority_name == "None"

    def test_empty_input(self) -> None:
        assert group_by_priority([]) == []


class TestGroupByIssueType:
    def test_counts_and_unknown(self) -> None:
        issues = [
            _make_issue(NOW, issue_type="Incident"),
            _make_issue(NOW, issue_type="Incident"),
            _make_issue(NOW),
        ]
        rows = group_by_issue_type(issues)
        assert [(r.name, r.count) for r in rows] == [("Incident", 2), ("Unknown", 1)]
        assert rows[0].percent_of_total == pytest.approx(66.67, abs=0.01)
        assert rows[0].avg_resolution_hours == 0.0


class TestGroupByAssignee:
    def test_cumulative_counts(self) -> None:
        issues = [
            _make_issue(NOW, assignee="alice"),
            _resolved_after(10, assignee="alice"),
            _resolved_after(30, assignee="alice"),
            _make_issue(NOW, assignee="bob"),
            _make_issue(NOW),
        ]
        rows = group_by_assignee(issues)

        assert [r.user.account_id for r in rows] == ["alice", "bob"]
        alice = rows[0]
        assert alice.assigned_count == 3
        assert alice.resolved_count == 2
        assert alice.avg_resolution_hours == pytest.approx(20.0)
        assert rows[1].resolved_count == 0
        assert rows[1].avg_resolution_hours == 0.0


class TestGroupByReporter:
    def test_top_three_categories(self) -> None:
        types = ["Incident", "Incident", "Incident", "Access", "Access", "Bug", "Question"]
        issues = [_make_issue(NOW, reporter="carol", issue_type=t) for t in types]
        issues.append(_make_issue(NOW, reporter="dave", issue_type="Bug"))

        rows = group_by_reporter(issues)

        assert rows[0].reporter.account_id == "carol"
        assert rows[0].ticket_count == 7
        assert rows[0].top_categories == ("Incident", "Access", "Bug")
        assert rows[1].ticket_count == 1

    def test_issues_without_reporter_skipped(self) -> None:
        assert group_by_reporter([_make_issue(NOW)]) == []


# ---------------------------------------------------------------------------
# trends
# ---------------------------------------------------------------------------


class TestBuildTrends:
    def test_daily_buckets_union(self) -> None:
        day1 = datetime(2024, 6, 10, 9, tzinfo=timezone.utc)
        day2 = datetime(2024, 6, 11, 15, tzinfo=timezone.utc)
        day3 = datetime(2024, 6, 12, 8, tzinfo=timezone.utc)
        created = [_make_issue(day1), _make_issue(day1 + timedelta(hours=2)), _make_issue(day3)]
        resolved = [_make_issue(day1 - timedelta(days=5), day2)]

        points = build_trends(created, resolved, TimePeriod.last_7_days(), tz=timezone.utc)

        assert [p.date.day for p in points] == [10, 11, 12]
        assert [(p.created_count, p.resolved_count) for p in points] == [(2, 0), (0, 1), (1, 0)]

    def test_hourly_buckets(self) -> None:
        t = datetime(2024, 6, 15, 9, 5, tzinfo=timezone.utc)
        created = [_make_issue(t), _make_issue(t + timedelta(minutes=50)), _make_issue(t + timedelta(hours=2))]

        points = build_trends(created, [], TimePeriod.today(), tz=timezone.utc)

        assert [(p.date.hour, p.created_count) for p in points] == [(9, 2), (11, 1)]

    def test_weekly_buckets_start_on_monday(self) -> None:
        wednesday = datetime(2024, 6, 12, 10, tzinfo=timezone.utc)
        sunday = datetime(2024, 6, 16, 10, tzinfo=timezone.utc)
        next_monday = datetime(2024, 6, 17, 10, tzinfo=timezone.utc)
        created = [_make_issue(wednesday), _make_issue(sunday), _make_issue(next_monday)]

        points = build_trends(created, [], TimePeriod.last_90_days(), tz=timezone.utc)

        assert [(p.date.day, p.created_count) for p in points] == [(10, 2), (17, 1)]
        assert all(p.date.weekday() == 0 for p in points)

    def test_issues_without_dates_skipped(self) -> None:
        assert build_trends([_make_issue(None)], [], TimePeriod.last_7_days()) == []

    def test_buckets_stay_whole_across_daylight_saving(
        self, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        berlin = gettz("Europe/Berlin")
        monkeypatch.setattr("jsm_stats.core.metrics.local_zone", lambda: berlin)
        # Berlin switches from +01:00 to +02:00 at 2024-03-31 02:00 local
        monday = datetime(2024, 3, 25, 10, tzinfo=timezone.utc)
        sunday = datetime(2024, 3, 31, 10, tzinfo=timezone.utc)

        points = build_trends([_make_issue(monday), _make_issue(sunday)], [], TimePeriod.last_90_days())

        assert [p.created_count for p in points] == [2]
        assert points[0].date == datetime(2024, 3, 25, tzinfo=berlin)
        assert points[0].date.utcoffset() == timedelta(hours=1)

    def test_daily_bucket_on_daylight_saving_day(self, monkeypatch: pytest.MonkeyPatch) -> None:
        berlin = gettz("Europe/Berlin")
        monkeypatch.setattr("jsm_stats.core.metrics.local_zone", lambda: berlin)
        just_after_midnight = datetime(2024, 3, 30, 23, 30, tzinfo=timezone.utc)
        midday = datetime(2024, 3, 31, 10, tzinfo=timezone.utc)
        created = [_make_issue(just_after_midnight), _make_issue(midday)]

        points = build_trends(created, [], TimePeriod.last_7_days())

        assert [(p.date.day, p.created_count) for p in points] == [(31, 2)]

    def test_explicit_zone_with_daylight_saving(self) -> None:
        berlin = gettz("Europe/Berlin")
        created = [
            _make_issue(datetime(2024, 3, 30, 23, 30, tzinfo=timezone.utc)),
            _make_issue(datetime(2024, 3, 31, 10, tzinfo=timezone.utc)),
        ]
        resolved = [_make_issue(datetime(2024, 3, 20, tzinfo=timezone.utc),
                                datetime(2024, 3, 31, 20, tzinfo=timezone.utc))]

        points = build_trends(created, resolved, TimePeriod.last_7_days(), tz=berlin)

        assert [(p.created_count, p.resolved_count) for p in points] == [(2, 1)]


# ---------------------------------------------------------------------------
# backlog
# ---------------------------------------------------------------------------


class TestBacklogAging:
    def test_buckets(self) -> None:
        ages_days = [0.5, 1.0, 2.9, 5, 10, 20, 27.99, 28, 100]
        issues = [_make_issue(NOW - timedelta(days=d)) for d in ages_days]

        buckets = compute_backlog_aging(issues, NOW)

        assert [b.label for b in buckets] == [
            "< 1 day", "1-3 days", "3-7 days", "1-2 weeks", "2-4 weeks", "> 4 weeks",
        ]
        assert [b.count for b in buckets] == [1, 2, 1, 1, 2, 2]
        assert sum(b.count for b in buckets) == len(issues)

    def test_colors(self) -> None:
        colors = [b.color for b in compute_backlog_aging([], NOW)]
        assert colors == ["green", "mint", "yellow", "orange", "red", "purple"]


class TestIssuesSnapshot:
    def test_oldest_and_newest_samples(self) -> None:
        issues = [
            _make_issue(NOW - timedelta(hours=h), assignee=None if h % 2 else "alice",
                        priority="High" if h > 20 else "Low")
            for h in range(1, 26)
        ]

        snap = compute_issues_snapshot(issues, NOW)

        assert len(snap.oldest_open) == 10
        assert len(snap.newest_open) == 10
        assert snap.oldest_open[0].age_hours == pytest.approx(25.0)
        assert snap.newest_open[0].age_hours == pytest.approx(1.0)
        assert snap.average_age_hours == pytest.approx(13.0)
        assert snap.median_age_hours == pytest.approx(13.0)
        # oldest ten are ages 25..16: odd ages are unassigned
        assert snap.oldest_unassigned_count == 5
        assert snap.newest_unassigned_count == 5
        assert snap.priority_breakdown_oldest == {"High": 5, "Low": 5}

    def test_defaults_for_missing_fields(self) -> None:
        issue = _make_issue(NOW - timedelta(hours=3), summary=None, status=None)
        issue = Issue(issue.id, issue.key, IssueFields(created=issue.fields.created))

        summary = compute_issues_snapshot([issue], NOW).oldest_open[0]

        assert summary.summary == "(No summary)"
        assert summary.priority_name == "None"
        assert summary.status_name == "Unknown"
        assert summary.assignee_name is None

    def test_empty(self) -> None:
        snap = compute_issues_snapshot([], NOW)
        assert snap.oldest_open == ()
        assert snap.average_age_hours == 0.0


# ---------------------------------------------------------------------------
# SLA
# ---------------------------------------------------------------------------


class TestSLASnapshots:
    def test_overall_row(self) -> None:
        rows = build_sla_snapshots(total_open=10, breach_count=2)
        assert rows[0].metric_name == OVERALL_SLA
        assert rows[0].total_cycles == 10
        assert rows[0].breached_count == 2
        assert rows[0].compliance_percent == pytest.approx(80.0)

    def test_overall_compliance_clamped(self) -> None:
        rows = build_sla_snapshots(total_open=2, breach_count=5)
        assert rows[0].compliance_percent == 0.0

    def test_no_open_issues_no_overall_row(self) -> None:
        assert build_sla_snapshots(0, 0) == []

    def test_rows_per_sla_name(self) -> None:
        breached, ok = SLACycle(breached=True), SLACycle(breached=False)
        metrics = [
            SLAMetric("Time to first response", completed_cycles=(breached, ok)),
            SLAMetric("Time to first response", completed_cycles=(ok,), ongoing_cycle=ok),
            SLAMetric("Time to resolution"),
        ]

        rows = build_sla_snapshots(3, 1, metrics)

        by_name = {r.metric_name: r for r in rows}
        first = by_name["Time to first response"]
        assert (first.total_cycles, first.breached_count) == (4, 1)
        assert first.compliance_percent == pytest.approx(75.0)
        assert by_name["Time to resolution"].compliance_percent == 100.0
