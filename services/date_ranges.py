"""Resolve symbolic dashboard range selectors into concrete calendar bounds."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Optional

import pytz
from dateutil.parser import isoparse
from dateutil.relativedelta import relativedelta

LOGGER = logging.getLogger(__name__)

THIS_WEEK = "this_week"
THIS_MONTH = "this_month"
THIS_YEAR = "this_year"
CUSTOM = "custom"

RANGE_TYPES = (THIS_WEEK, THIS_MONTH, THIS_YEAR, CUSTOM)

CUSTOM_LOOKBACK_DAYS = 30


@dataclass(frozen=True)
class DateRange:
    """A resolved reporting window, inclusive on both ends."""

    range_type: str
    start_date: str
    end_date: str

    @property
    def start(self) -> date:
        return date.fromisoformat(self.start_date)

    @property
    def end(self) -> date:
        return date.fromisoformat(self.end_date)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rangeType": self.range_type,
            "startDate": self.start_date,
            "endDate": self.end_date,
        }


def safe_timezone(tz_name: Optional[str]) -> pytz.BaseTzInfo:
    """Return the pytz zone for ``tz_name``, or UTC when it is unknown."""

    try:
        return pytz.timezone(tz_name or "UTC")
    except pytz.UnknownTimeZoneError:
        LOGGER.warning("Unknown timezone %r; falling back to UTC", tz_name)
        return pytz.utc


def current_time(tz_name: Optional[str] = None) -> datetime:
    return datetime.now(safe_timezone(tz_name))


def _today(now: Optional[datetime]) -> date:
    if now is None:
        now = datetime.now(timezone.utc)
    return now.date()


def _parse_bound(value: Any, label: str) -> Optional[date]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return isoparse(str(value)).date()
    except (TypeError, ValueError):
        raise ValueError(f"Could not parse {label} '{value}'; expected yyyy-MM-dd")


def _week_bounds(today: date) -> tuple:
    # Python weeks start on Monday (weekday 0); dashboard weeks start on Sunday.
    start = today - timedelta(days=(today.weekday() + 1) % 7)
    return start, start + timedelta(days=6)


def _month_bounds(today: date) -> tuple:
    start = today.replace(day=1)
    return start, start + relativedelta(months=1, days=-1)


def _year_bounds(today: date) -> tuple:
    return date(today.year, 1, 1), date(today.year, 12, 31)


def resolve_date_range(
    range_type: Optional[str],
    custom_start: Any = None,
    custom_end: Any = None,
    *,
    now: Optional[datetime] = None,
) -> DateRange:
    """Turn a range selector into concrete ``yyyy-MM-dd`` bounds.

    ``now`` anchors the relative selectors; its own timezone decides which
    calendar day "today" is. Unknown selectors behave like ``this_month``.
    Custom bounds are only consulted for the ``custom`` selector, and each
    missing bound falls back to the trailing 30-day window ending today.
    """

    today = _today(now)
    selector = (range_type or "").strip().lower()

    if selector == THIS_WEEK:
        start, end = _week_bounds(today)
    elif selector == THIS_MONTH:
        start, end = _month_bounds(today)
    elif selector == THIS_YEAR:
        start, end = _year_bounds(today)
    elif selector == CUSTOM:
        start = _parse_bound(custom_start, "start date") or today - timedelta(
            days=CUSTOM_LOOKBACK_DAYS
        )
        end = _parse_bound(custom_end, "end date") or today
        if start > end:
            raise ValueError("Start date must be before or equal to end date.")
    else:
        LOGGER.debug("Unrecognised range type %r; using this_month", range_type)
        selector = THIS_MONTH
        start, end = _month_bounds(today)

    return DateRange(selector, start.isoformat(), end.isoformat())


def previous_period(date_range: DateRange) -> DateRange:
    """Return the window of equal length that ends just before ``date_range``."""

    start = datetime.combine(date_range.start, datetime.min.time())
    end = datetime.combine(date_range.end, datetime.min.time())
    duration = end - start
    prev_end = start - timedelta(milliseconds=1)
    prev_start = prev_end - duration
    return DateRange(
        date_range.range_type,
        prev_start.date().isoformat(),
        prev_end.date().isoformat(),
    )


__all__ = [
    "CUSTOM",
    "DateRange",
    "RANGE_TYPES",
    "THIS_MONTH",
    "THIS_WEEK",
    "THIS_YEAR",
    "current_time",
    "previous_period",
    "resolve_date_range",
    "safe_timezone",
]
