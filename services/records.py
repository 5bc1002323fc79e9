"""Normalisation of loosely-typed CRM payloads into strict record types.

Upstream collections arrive as plain dictionaries whose keys may be camelCase
(mobile API) or snake_case (SQLite rows), whose statuses may be upper or lower
case, and whose numeric fields may be missing or stringly typed. Every raw
mapping is converted exactly once into one of the frozen dataclasses below so
that the aggregation code never has to branch on spelling.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, tzinfo
from typing import Any, Callable, Iterable, List, Mapping, Optional, TypeVar

import pytz
from dateutil.parser import parse as dateutil_parse

UNKNOWN_CLIENT_NAME = "Unknown"
DEFAULT_SERVICE_LINE = "Other"

T = TypeVar("T")


class RecordNormalisationError(ValueError):
    """Raised when a present field holds a value that cannot be interpreted."""


def _first(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


def _text(value: Any) -> Optional[str]:
    if value in (None, ""):
        return None
    text = str(value).strip()
    return text or None


def _status(value: Any) -> str:
    return (_text(value) or "").lower()


def _float(value: Any) -> float:
    """Coerce an amount; missing, non-finite or negative values read as ``0.0``."""

    if value in (None, ""):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


def localise(moment: datetime, tz: tzinfo) -> datetime:
    """Attach ``tz`` to a naive datetime, honouring pytz's ``localize``."""

    if moment.tzinfo is not None:
        return moment
    localize = getattr(tz, "localize", None)
    if localize is not None:
        return localize(moment)
    return moment.replace(tzinfo=tz)


def parse_timestamp(value: Any, tz: tzinfo = pytz.utc, *, field: str = "timestamp") -> Optional[datetime]:
    """Parse an ISO-8601 value into an aware datetime.

    Missing values return ``None``; unparseable ones raise
    :class:`RecordNormalisationError`. Naive values are read in ``tz``.
    """

    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, datetime.min.time())
    else:
        try:
            parsed = dateutil_parse(str(value))
        except (TypeError, ValueError, OverflowError):
            raise RecordNormalisationError(f"Could not parse {field} value '{value}'")
    return localise(parsed, tz)


@dataclass(frozen=True)
class ClientRecord:
    id: Optional[str]
    name: str
    status: str
    created_at: Optional[datetime]

    @classmethod
    def from_raw(cls, payload: Mapping[str, Any], tz: tzinfo = pytz.utc) -> "ClientRecord":
        return cls(
            id=_text(_first(payload, "id", "clientId", "client_id")),
            name=_text(_first(payload, "name", "clientName", "client_name")) or UNKNOWN_CLIENT_NAME,
            status=_status(payload.get("status")),
            created_at=parse_timestamp(
                _first(payload, "createdAt", "created_at"), tz, field="client createdAt"
            ),
        )


@dataclass(frozen=True)
class ReceiptRecord:
    id: Optional[str]
    client_id: Optional[str]
    amount: float
    status: str
    paid_at: Optional[datetime]
    service_line: str

    @classmethod
    def from_raw(cls, payload: Mapping[str, Any], tz: tzinfo = pytz.utc) -> "ReceiptRecord":
        return cls(
            id=_text(payload.get("id")),
            client_id=_text(_first(payload, "clientId", "client_id")),
            amount=_float(payload.get("amount")),
            status=_status(payload.get("status")),
            paid_at=parse_timestamp(
                _first(payload, "paidDate", "paid_date", "paidAt", "paid_at", "createdAt", "created_at"),
                tz,
                field="receipt paidDate",
            ),
            service_line=_text(
                _first(payload, "serviceLine", "service_line", "service")
            )
            or DEFAULT_SERVICE_LINE,
        )


@dataclass(frozen=True)
class InvoiceRecord:
    id: Optional[str]
    amount: float
    status: str
    due_date: Optional[datetime]
    created_at: Optional[datetime]

    @classmethod
    def from_raw(cls, payload: Mapping[str, Any], tz: tzinfo = pytz.utc) -> "InvoiceRecord":
        return cls(
            id=_text(payload.get("id")),
            amount=_float(payload.get("amount")),
            status=_status(payload.get("status")),
            due_date=parse_timestamp(
                _first(payload, "dueDate", "due_date"), tz, field="invoice dueDate"
            ),
            created_at=parse_timestamp(
                _first(payload, "createdAt", "created_at"), tz, field="invoice createdAt"
            ),
        )


@dataclass(frozen=True)
class EventRecord:
    id: Optional[str]
    start_time: Optional[datetime]
    status: str

    @classmethod
    def from_raw(cls, payload: Mapping[str, Any], tz: tzinfo = pytz.utc) -> "EventRecord":
        return cls(
            id=_text(payload.get("id")),
            start_time=parse_timestamp(
                _first(payload, "startTime", "start_time", "startAt", "start_at"),
                tz,
                field="event startTime",
            ),
            status=_status(payload.get("status")),
        )


def normalise_records(
    payloads: Optional[Iterable[Any]],
    factory: Callable[[Mapping[str, Any], tzinfo], T],
    tz: tzinfo = pytz.utc,
) -> List[T]:
    """Apply ``factory`` to every mapping in ``payloads``; other entries are skipped."""

    return [factory(payload, tz) for payload in payloads or [] if isinstance(payload, Mapping)]


__all__ = [
    "ClientRecord",
    "DEFAULT_SERVICE_LINE",
    "EventRecord",
    "InvoiceRecord",
    "ReceiptRecord",
    "RecordNormalisationError",
    "UNKNOWN_CLIENT_NAME",
    "localise",
    "normalise_records",
    "parse_timestamp",
]
