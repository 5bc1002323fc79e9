"""Choose between server-computed analytics and local aggregation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Protocol, Union

from .analytics import compute_dashboard_analytics
from .date_ranges import DateRange
from .sources import RecordSnapshot, RecordSource

LOGGER = logging.getLogger(__name__)

SERVER = "server"
AGGREGATED = "aggregated"

MODEL_SECTIONS = ("dateRange", "revenue", "clients", "billing", "activity")


class AnalyticsProvider(Protocol):
    def fetch_dashboard_analytics(self, date_range: DateRange) -> Optional[Dict[str, Any]]:
        ...


@dataclass(frozen=True)
class Computed:
    analytics: Dict[str, Any]
    source: str


@dataclass(frozen=True)
class Unavailable:
    reason: str


AnalyticsResult = Union[Computed, Unavailable]


def _is_complete_model(analytics: Any) -> bool:
    if not isinstance(analytics, dict):
        return False
    return all(isinstance(analytics.get(section), dict) for section in MODEL_SECTIONS)


def fetch_fast_path(provider: Optional[AnalyticsProvider], date_range: DateRange) -> AnalyticsResult:
    if provider is None:
        return Unavailable("no analytics endpoint configured")
    try:
        analytics = provider.fetch_dashboard_analytics(date_range)
    except Exception as exc:
        return Unavailable(f"analytics endpoint failed: {exc}")
    if not analytics:
        return Unavailable("analytics endpoint returned no data")
    if not _is_complete_model(analytics):
        return Unavailable("analytics endpoint returned an incomplete model")
    return Computed(analytics, SERVER)


def select_analytics(result: AnalyticsResult, fallback: Callable[[], Dict[str, Any]]) -> Computed:
    """Return ``result`` when it is computed, otherwise run ``fallback``."""

    if isinstance(result, Computed):
        return result
    LOGGER.info("Server analytics unavailable (%s); aggregating locally", result.reason)
    return Computed(fallback(), AGGREGATED)


def load_dashboard_analytics(
    source: RecordSource,
    date_range: DateRange,
    *,
    provider: Optional[AnalyticsProvider] = None,
    now: Optional[datetime] = None,
) -> Computed:
    """Produce the dashboard model, preferring the server's own analytics.

    Raises :class:`~services.analytics.AggregationError` when local
    aggregation fails; record fetch failures never propagate.
    """

    def aggregate() -> Dict[str, Any]:
        snapshot = RecordSnapshot.gather(source, date_range)
        return compute_dashboard_analytics(
            snapshot.clients,
            snapshot.receipts,
            snapshot.invoices,
            snapshot.events,
            date_range,
            now=now,
        )

    return select_analytics(fetch_fast_path(provider, date_range), aggregate)


__all__ = [
    "AGGREGATED",
    "AnalyticsResult",
    "Computed",
    "SERVER",
    "Unavailable",
    "fetch_fast_path",
    "select_analytics",
    "load_dashboard_analytics",
]
