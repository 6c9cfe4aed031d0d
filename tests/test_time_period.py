"""Tests for jsm_stats.core.time_period."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo

import pytest
from dateutil.tz import gettz

from jsm_stats.core.time_period import Granularity, PeriodKind, TimePeriod

NOW = datetime(2024, 6, 15, 14, 30).astimezone()


def _custom(days: float) -> TimePeriod:
    return TimePeriod.custom(NOW - timedelta(days=days), NOW)


class TestPresets:
    def test_presets_order(self) -> None:
        assert [p.id for p in TimePeriod.presets()] == ["today", "7d", "30d", "90d"]

    def test_labels(self) -> None:
        assert TimePeriod.today().label == "Today"
        assert TimePeriod.last_30_days().label == "Last 30 Days"
        assert _custom(3).label == "Custom"

    @pytest.mark.parametrize(
        ("period", "days"),
        [(TimePeriod.last_7_days(), 7), (TimePeriod.last_30_days(), 30), (TimePeriod.last_90_days(), 90)],
    )
    def test_rolling_start(self, period: TimePeriod, days: int) -> None:
        assert period.start_date(NOW) == NOW - timedelta(days=days)
        assert period.end_date(NOW) == NOW

    def test_today_starts_at_midnight(self) -> None:
        start = TimePeriod.today().start_date(NOW)
        assert (start.hour, start.minute, start.second) == (0, 0, 0)
        assert start.date() == NOW.date()

    def test_jql_date_string(self) -> None:
        assert TimePeriod.last_7_days().jql_date_string(NOW) == "2024-06-08"


class TestGranularity:
    def test_presets(self) -> None:
        assert TimePeriod.today().granularity is Granularity.HOUR
        assert TimePeriod.last_7_days().granularity is Granularity.DAY
        assert TimePeriod.last_30_days().granularity is Granularity.DAY
        assert TimePeriod.last_90_days().granularity is Granularity.WEEK

    @pytest.mark.parametrize(
        ("days", "expected"),
        [(0.5, Granularity.HOUR), (1, Granularity.HOUR), (2, Granularity.DAY),
         (60, Granularity.DAY), (61, Granularity.WEEK)],
    )
    def test_custom_by_span(self, days: float, expected: Granularity) -> None:
        assert _custom(days).granularity is expected


class TestPreviousPeriod:
    @pytest.mark.parametrize(
        "period", [TimePeriod.last_7_days(), TimePeriod.last_30_days(), TimePeriod.last_90_days()]
    )
    def test_rolling_previous_ends_where_current_starts(self, period: TimePeriod) -> None:
        previous = period.previous_period(NOW)
        assert previous.end_date(NOW) == period.start_date(NOW)
        span = period.end_date(NOW) - period.start_date(NOW)
        assert previous.end_date(NOW) - previous.start_date(NOW) == span

    def test_today_compares_with_yesterday(self) -> None:
        previous = TimePeriod.today().previous_period(NOW)
        midnight = TimePeriod.today().start_date(NOW)
        assert previous.end_date() == midnight
        assert previous.start_date().date() == (NOW - timedelta(days=1)).date()
        assert previous.start_date().hour == 0

    def test_custom_previous_has_same_duration(self) -> None:
        period = _custom(10)
        previous = period.previous_period()
        assert previous.end_date() == period.start_date()
        assert previous.start_date() == period.start_date() - timedelta(days=10)
        assert previous.kind is PeriodKind.CUSTOM


class TestIds:
    @pytest.mark.parametrize("period_id", ["today", "7d", "30d", "90d"])
    def test_preset_round_trip(self, period_id: str) -> None:
        assert TimePeriod.from_id(period_id).id == period_id

    def test_custom_round_trip(self) -> None:
        period = _custom(3)
        assert period.id.startswith("custom-")
        restored = TimePeriod.from_id(period.id)
        assert restored.start_date() == period.start_date()
        assert restored.end_date() == period.end_date()

    def test_unknown_id(self) -> None:
        with pytest.raises(ValueError):
            TimePeriod.from_id("fortnight")

    def test_custom_requires_bounds(self) -> None:
        with pytest.raises(ValueError):
            TimePeriod(PeriodKind.CUSTOM, NOW, None)
        with pytest.raises(ValueError):
            TimePeriod.custom(NOW, NOW - timedelta(days=1))

    def test_missing_bound_rejected_by_date_methods(self) -> None:
        period = _custom(3)
        object.__setattr__(period, "end", None)
        with pytest.raises(ValueError):
            period.end_date()
        with pytest.raises(ValueError):
            period.granularity
        with pytest.raises(ValueError):
            period.id


class TestDaylightSaving:
    """Europe/Berlin moves from +01:00 to +02:00 at 2024-03-31 02:00 local."""

    @pytest.fixture
    def berlin(self, monkeypatch: pytest.MonkeyPatch) -> tzinfo:
        zone = gettz("Europe/Berlin")
        monkeypatch.setattr("jsm_stats.core.time_period.local_zone", lambda: zone)
        return zone

    def test_today_starts_at_local_midnight(self, berlin: tzinfo) -> None:
        now = datetime(2024, 3, 31, 14, tzinfo=berlin)
        start = TimePeriod.today().start_date(now)
        assert start == datetime(2024, 3, 31, tzinfo=berlin)
        assert start.utcoffset() == timedelta(hours=1)

    def test_yesterday_keeps_its_own_offset(self, berlin: tzinfo) -> None:
        now = datetime(2024, 3, 31, 14, tzinfo=berlin)
        previous = TimePeriod.today().previous_period(now)
        assert previous.start_date() == datetime(2024, 3, 30, tzinfo=berlin)
        assert previous.end_date() == datetime(2024, 3, 31, tzinfo=berlin)
        assert previous.start_date().utcoffset() == timedelta(hours=1)

    def test_rolling_window_measures_elapsed_time(self, berlin: tzinfo) -> None:
        now = datetime(2024, 3, 31, 14, tzinfo=berlin)
        start = TimePeriod.last_7_days().start_date(now)
        assert start.astimezone(timezone.utc) == now.astimezone(timezone.utc) - timedelta(days=7)
        assert (start.day, start.hour) == (24, 13)
