"""Selectable reporting windows and their comparison periods."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from enum import Enum

from dateutil.tz import tzlocal

from jsm_stats.core.endpoints import jql_date


class PeriodKind(Enum):
    TODAY = "today"
    LAST_7_DAYS = "7d"
    LAST_30_DAYS = "30d"
    LAST_90_DAYS = "90d"
    CUSTOM = "custom"


class Granularity(Enum):
    """Bucket size for trend series."""

    HOUR = "hour"
    DAY = "day"
    WEEK = "week"


_PRESET_DAYS = {
    PeriodKind.LAST_7_DAYS: 7,
    PeriodKind.LAST_30_DAYS: 30,
    PeriodKind.LAST_90_DAYS: 90,
}

_LABELS = {
    PeriodKind.TODAY: "Today",
    PeriodKind.LAST_7_DAYS: "Last 7 Days",
    PeriodKind.LAST_30_DAYS: "Last 30 Days",
    PeriodKind.LAST_90_DAYS: "Last 90 Days",
    PeriodKind.CUSTOM: "Custom",
}

_CUSTOM_ID_RE = re.compile(r"custom-(-?\d+(?:\.\d+)?)-(-?\d+(?:\.\d+)?)")


def local_zone() -> tzinfo:
    """The system time zone, with its daylight-saving rules.

    Wall-clock arithmetic (midnight, stepping back whole days) on datetimes
    carrying this zone picks the UTC offset valid at the result.
    """
    return tzlocal()


def _local(value: datetime | None) -> datetime:
    """Aware local-time datetime; naive input is taken as local time."""
    if value is None:
        return datetime.now(local_zone())
    return value.astimezone(local_zone())


def _start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def _elapsed_before(value: datetime, delta: timedelta) -> datetime:
    """The local instant exactly *delta* of elapsed time before *value*."""
    return (value.astimezone(timezone.utc) - delta).astimezone(local_zone())


@dataclass(frozen=True)
class TimePeriod:
    """A reporting window: one of the presets or a custom ``[start, end)`` range.

    Preset windows are relative to *now*; every date method accepts an
    explicit ``now`` so callers can evaluate one refresh against a single
    instant.
    """

    kind: PeriodKind
    start: datetime | None = None
    end: datetime | None = None

    def __post_init__(self) -> None:
        if self.kind is PeriodKind.CUSTOM:
            if self.start is None or self.end is None:
                raise ValueError("custom period needs both start and end")
            if self.end < self.start:
                raise ValueError("custom period ends before it starts")

    # -- constructors ---------------------------------------------------------

    @classmethod
    def today(cls) -> TimePeriod:
        return cls(PeriodKind.TODAY)

    @classmethod
    def last_7_days(cls) -> TimePeriod:
        return cls(PeriodKind.LAST_7_DAYS)

    @classmethod
    def last_30_days(cls) -> TimePeriod:
        return cls(PeriodKind.LAST_30_DAYS)

    @classmethod
    def last_90_days(cls) -> TimePeriod:
        return cls(PeriodKind.LAST_90_DAYS)

    @classmethod
    def custom(cls, start: datetime, end: datetime) -> TimePeriod:
        return cls(PeriodKind.CUSTOM, _local(start), _local(end))

    @classmethod
    def presets(cls) -> list[TimePeriod]:
        return [cls.today(), cls.last_7_days(), cls.last_30_days(), cls.last_90_days()]

    @classmethod
    def from_id(cls, period_id: str) -> TimePeriod:
        """Inverse of :attr:`id`; raises ``ValueError`` for unknown ids."""
        for kind in PeriodKind:
            if kind is not PeriodKind.CUSTOM and kind.value == period_id:
                return cls(kind)
        match = _CUSTOM_ID_RE.fullmatch(period_id)
        if match is None:
            raise ValueError(f"Unknown time period: {period_id!r}")
        start = datetime.fromtimestamp(float(match.group(1)), tz=timezone.utc)
        end = datetime.fromtimestamp(float(match.group(2)), tz=timezone.utc)
        return cls.custom(start, end)

    # -- identity -------------------------------------------------------------

    @property
    def id(self) -> str:
        if self.kind is PeriodKind.CUSTOM:
            start, end = self._custom_bounds()
            return f"custom-{start.timestamp()}-{end.timestamp()}"
        return self.kind.value

    @property
    def label(self) -> str:
        return _LABELS[self.kind]

    # -- date range -----------------------------------------------------------

    def start_date(self, now: datetime | None = None) -> datetime:
        if self.kind is PeriodKind.CUSTOM:
            return self._custom_bounds()[0]
        now = _local(now)
        if self.kind is PeriodKind.TODAY:
            return _start_of_day(now)
        return _elapsed_before(now, timedelta(days=_PRESET_DAYS[self.kind]))

    def end_date(self, now: datetime | None = None) -> datetime:
        if self.kind is PeriodKind.CUSTOM:
            return self._custom_bounds()[1]
        return _local(now)

    def jql_date_string(self, now: datetime | None = None) -> str:
        return jql_date(self.start_date(now))

    @property
    def granularity(self) -> Granularity:
        if self.kind is PeriodKind.TODAY:
            return Granularity.HOUR
        if self.kind in (PeriodKind.LAST_7_DAYS, PeriodKind.LAST_30_DAYS):
            return Granularity.DAY
        if self.kind is PeriodKind.LAST_90_DAYS:
            return Granularity.WEEK
        start, end = self._custom_bounds()
        days = (end - start).days
        if days <= 1:
            return Granularity.HOUR
        if days <= 60:
            return Granularity.DAY
        return Granularity.WEEK

    def previous_period(self, now: datetime | None = None) -> TimePeriod:
        """The equally long window immediately before this one.

        ``today`` compares against all of yesterday.
        """
        if self.kind is PeriodKind.CUSTOM:
            start, end = self._custom_bounds()
            return TimePeriod.custom(_elapsed_before(start, end - start), start)
        now = _local(now)
        if self.kind is PeriodKind.TODAY:
            midnight = _start_of_day(now)
            return TimePeriod.custom(_start_of_day(midnight - timedelta(days=1)), midnight)
        days = _PRESET_DAYS[self.kind]
        return TimePeriod.custom(
            _elapsed_before(now, timedelta(days=2 * days)),
            _elapsed_before(now, timedelta(days=days)),
        )

    def _custom_bounds(self) -> tuple[datetime, datetime]:
        if self.start is None or self.end is None:
            raise ValueError("custom period needs both start and end")
        return self.start, self.end
