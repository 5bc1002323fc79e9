"""Primary-record sources feeding the dashboard aggregation.

A source supplies four independent collections (clients, receipts, invoices,
calendar events). :class:`RecordSnapshot` fetches them concurrently and
substitutes an empty list for any collection whose fetch fails, so that a
single unavailable endpoint degrades the dashboard instead of breaking it.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol

import requests

from .date_ranges import DateRange

LOGGER = logging.getLogger(__name__)

SOURCE_NAMES = ("clients", "receipts", "invoices", "events")


class SourceFetchError(RuntimeError):
    """Raised when one primary collection cannot be retrieved."""


class RecordSource(Protocol):
    def fetch_clients(self) -> List[Dict[str, Any]]:
        ...

    def fetch_receipts(self) -> List[Dict[str, Any]]:
        ...

    def fetch_invoices(self) -> List[Dict[str, Any]]:
        ...

    def fetch_events(self, start_date: str, end_date: str) -> List[Dict[str, Any]]:
        ...


# ---------------------------------------------------------------------------
# SQLite
# ---------------------------------------------------------------------------


def _table_exists(conn: sqlite3.Connection, table_name: str) -> bool:
    """Return ``True`` if the table exists in the connected database."""

    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
        (table_name,),
    )
    return cursor.fetchone() is not None


def _rows_to_dicts(rows: Iterable[sqlite3.Row]) -> List[Dict[str, Any]]:
    normalised: List[Dict[str, Any]] = []
    for row in rows:
        if isinstance(row, sqlite3.Row):
            normalised.append({key: row[key] for key in row.keys()})
        else:
            normalised.append(dict(row))
    return normalised


# SQLite's CURRENT_TIMESTAMP writes naive UTC text ("YYYY-MM-DD HH:MM:SS").
_SQLITE_UTC_STAMP = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}$")
_STAMP_COLUMNS = ("created_at", "updated_at")


def _mark_utc_stamps(record: Dict[str, Any]) -> Dict[str, Any]:
    """Tag row-stamp columns written by SQLite as UTC.

    Naive timestamps are otherwise read in the reporting timezone, which would
    shift database-stamped rows by its UTC offset.
    """

    for column in _STAMP_COLUMNS:
        value = record.get(column)
        if isinstance(value, str) and _SQLITE_UTC_STAMP.match(value):
            record[column] = value.replace(" ", "T") + "Z"
    return record


class SqliteRecordSource:
    """Read primary records from the local SQLite store.

    Every fetch opens its own connection through ``connection_factory``
    because the snapshot runs fetches on worker threads and sqlite3
    connections may not cross threads. Missing tables read as empty.
    """

    def __init__(self, connection_factory: Callable[[], sqlite3.Connection]) -> None:
        self._connection_factory = connection_factory

    def _query(self, table_name: str, sql: str, params: Iterable[Any] = ()) -> List[Dict[str, Any]]:
        conn = self._connection_factory()
        try:
            if not _table_exists(conn, table_name):
                return []
            cursor = conn.execute(sql, tuple(params))
            return [_mark_utc_stamps(record) for record in _rows_to_dicts(cursor.fetchall())]
        except sqlite3.Error as exc:
            raise SourceFetchError(f"Failed to read {table_name}: {exc}") from exc
        finally:
            conn.close()

    def fetch_clients(self) -> List[Dict[str, Any]]:
        return self._query("clients", "SELECT * FROM clients ORDER BY rowid")

    def fetch_receipts(self) -> List[Dict[str, Any]]:
        return self._query("receipts", "SELECT * FROM receipts ORDER BY rowid")

    def fetch_invoices(self) -> List[Dict[str, Any]]:
        return self._query("invoices", "SELECT * FROM invoices ORDER BY rowid")

    def fetch_events(self, start_date: str, end_date: str) -> List[Dict[str, Any]]:
        return self._query(
            "calendar_events",
            "SELECT * FROM calendar_events WHERE date(start_time) BETWEEN ? AND ? ORDER BY start_time",
            (start_date, end_date),
        )


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


class _HttpClient:
    def __init__(
        self,
        base_url: str,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = 10,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _get_envelope(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            resp = self.session.get(
                url,
                params={key: value for key, value in (params or {}).items() if value is not None},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise SourceFetchError(f"Request to {url} failed: {exc}") from exc
        try:
            payload = resp.json()
        except ValueError as exc:
            raise SourceFetchError(f"Response from {url} is not JSON") from exc
        if not isinstance(payload, dict):
            raise SourceFetchError(f"Unexpected response shape from {url}")
        return payload


class HttpRecordSource(_HttpClient):
    """Fetch primary records from the CRM API's ``{success, data}`` envelopes."""

    def _get_list(self, path: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        payload = self._get_envelope(path, params)
        if not payload.get("success"):
            raise SourceFetchError(payload.get("message") or f"{path} reported failure")
        data = payload.get("data") or []
        if not isinstance(data, list):
            raise SourceFetchError(f"{path} returned a non-list payload")
        return data

    def fetch_clients(self) -> List[Dict[str, Any]]:
        return self._get_list("/api/clients")

    def fetch_receipts(self) -> List[Dict[str, Any]]:
        return self._get_list("/api/receipts")

    def fetch_invoices(self) -> List[Dict[str, Any]]:
        return self._get_list("/api/invoices")

    def fetch_events(self, start_date: str, end_date: str) -> List[Dict[str, Any]]:
        return self._get_list("/api/events", {"startDate": start_date, "endDate": end_date})


class HttpAnalyticsProvider(_HttpClient):
    """Server-side dashboard analytics, when the upstream API offers them."""

    def fetch_dashboard_analytics(self, date_range: DateRange) -> Optional[Dict[str, Any]]:
        payload = self._get_envelope("/api/analytics/dashboard", date_range.to_dict())
        if payload.get("success") and payload.get("data"):
            return payload["data"]
        return None


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


@dataclass
class RecordSnapshot:
    """The four primary collections as one read-only bundle."""

    clients: List[Dict[str, Any]] = field(default_factory=list)
    receipts: List[Dict[str, Any]] = field(default_factory=list)
    invoices: List[Dict[str, Any]] = field(default_factory=list)
    events: List[Dict[str, Any]] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)

    @classmethod
    def gather(cls, source: RecordSource, date_range: DateRange) -> "RecordSnapshot":
        """Fetch all collections concurrently, tolerating individual failures."""

        calls: Dict[str, Callable[[], List[Dict[str, Any]]]] = {
            "clients": source.fetch_clients,
            "receipts": source.fetch_receipts,
            "invoices": source.fetch_invoices,
            "events": lambda: source.fetch_events(date_range.start_date, date_range.end_date),
        }
        snapshot = cls()
        with ThreadPoolExecutor(
            max_workers=len(calls), thread_name_prefix="analytics_fetch"
        ) as executor:
            futures = {name: executor.submit(call) for name, call in calls.items()}
            for name in SOURCE_NAMES:
                try:
                    collection = futures[name].result()
                except Exception as exc:
                    LOGGER.warning("Could not fetch %s; continuing without them: %s", name, exc)
                    snapshot.failures.append(name)
                    collection = []
                setattr(snapshot, name, list(collection or []))
        return snapshot


__all__ = [
    "HttpAnalyticsProvider",
    "HttpRecordSource",
    "RecordSnapshot",
    "RecordSource",
    "SourceFetchError",
    "SqliteRecordSource",
]
