"""Fixed, gap-free time buckets for dashboard rollups."""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from dateutil.relativedelta import relativedelta

from .date_ranges import THIS_MONTH, THIS_WEEK
from .formatting import DAY, MONTH, WEEK, bucket_label

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Bucket:
    key: str
    start: date
    label: str


def bucket_granularity(range_type: str) -> str:
    if range_type == THIS_WEEK:
        return DAY
    if range_type == THIS_MONTH:
        return WEEK
    return MONTH


def _week_start(moment: date) -> date:
    return moment - timedelta(days=(moment.weekday() + 1) % 7)


def bucket_key(range_type: str, moment: date) -> str:
    """Derive the bucket key a single record falls into.

    Weekly keys are aligned to the Sunday that starts the record's own week,
    while :func:`build_buckets` steps weekly from the range start; the two only
    agree when the range starts on a Sunday.
    """

    granularity = bucket_granularity(range_type)
    if granularity == DAY:
        return moment.isoformat()
    if granularity == WEEK:
        return _week_start(moment).isoformat()
    return moment.strftime("%Y-%m")


def build_buckets(range_type: str, start: date, end: date) -> List[Bucket]:
    """Lay out every bucket covering ``[start, end]`` in ascending order."""

    granularity = bucket_granularity(range_type)
    buckets: List[Bucket] = []
    if granularity == MONTH:
        cursor = start.replace(day=1)
        multi_year = start.year != end.year
        while cursor <= end:
            buckets.append(
                Bucket(
                    key=cursor.strftime("%Y-%m"),
                    start=cursor,
                    label=bucket_label(granularity, cursor, multi_year=multi_year),
                )
            )
            cursor += relativedelta(months=1)
        return buckets

    step = timedelta(days=1 if granularity == DAY else 7)
    cursor = start
    while cursor <= end:
        buckets.append(
            Bucket(key=cursor.isoformat(), start=cursor, label=bucket_label(granularity, cursor))
        )
        cursor += step
    return buckets


def rollup(
    buckets: Iterable[Bucket],
    range_type: str,
    contributions: Iterable[Tuple[Optional[date], float]],
) -> "OrderedDict[str, float]":
    """Sum ``(date, value)`` contributions into the pre-initialised buckets.

    Contributions without a date, or whose derived key is not one of the
    buckets, are dropped.
    """

    totals: "OrderedDict[str, float]" = OrderedDict((bucket.key, 0) for bucket in buckets)
    dropped = 0
    for moment, value in contributions:
        if moment is None:
            continue
        key = bucket_key(range_type, moment)
        if key in totals:
            totals[key] += value
        else:
            dropped += 1
    if dropped:
        LOGGER.debug(
            "Dropped %d contribution(s) outside the %s bucket set", dropped, range_type
        )
    return totals


def revenue_over_time(
    range_type: str,
    start: date,
    end: date,
    payments: Iterable[Tuple[Optional[date], float]],
) -> List[Dict[str, object]]:
    buckets = build_buckets(range_type, start, end)
    totals = rollup(buckets, range_type, payments)
    return [
        {"date": bucket.key, "label": bucket.label, "amount": totals[bucket.key]}
        for bucket in buckets
    ]


def clients_over_time(
    range_type: str,
    start: date,
    end: date,
    created_dates: Iterable[Optional[date]],
) -> List[Dict[str, object]]:
    """New clients per bucket alongside a running total.

    The running total is seeded with every client created before ``start``
    plus clients with no creation date at all.
    """

    created_dates = list(created_dates)
    buckets = build_buckets(range_type, start, end)
    new_counts = rollup(buckets, range_type, ((moment, 1) for moment in created_dates))
    running_total = sum(1 for moment in created_dates if moment is None or moment < start)

    series: List[Dict[str, object]] = []
    for bucket in buckets:
        new_clients = int(new_counts[bucket.key])
        running_total += new_clients
        series.append(
            {
                "date": bucket.key,
                "label": bucket.label,
                "newClients": new_clients,
                "totalClients": running_total,
            }
        )
    return series


__all__ = [
    "Bucket",
    "DAY",
    "MONTH",
    "WEEK",
    "bucket_granularity",
    "bucket_key",
    "build_buckets",
    "clients_over_time",
    "revenue_over_time",
    "rollup",
]
