"""Client-side aggregation engine for the dashboard analytics model."""

from __future__ import annotations

import logging
import math
from collections import OrderedDict
from datetime import date, datetime, timezone, tzinfo
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .bucketing import clients_over_time, revenue_over_time
from .date_ranges import DateRange, previous_period
from .formatting import (
    CLIENT_STATUS_COLORS,
    format_currency,
    service_line_color,
    service_line_color_index,
    status_label,
)
from .records import (
    UNKNOWN_CLIENT_NAME,
    ClientRecord,
    EventRecord,
    InvoiceRecord,
    ReceiptRecord,
    localise,
    normalise_records,
)

LOGGER = logging.getLogger(__name__)

TOP_CLIENT_LIMIT = 5

CLIENT_STATUSES = ("active", "prospect", "completed", "inactive")
PAID_RECEIPT_STATUSES = frozenset({"paid"})
PENDING_RECEIPT_STATUSES = frozenset({"pending", "draft"})
PENDING_INVOICE_STATUSES = frozenset({"pending", "sent"})
COMPLETED_EVENT_STATUS = "completed"


class AggregationError(RuntimeError):
    """Raised when the dashboard model cannot be computed from the records given."""


# ---------------------------------------------------------------------------
# Helper utilities
# ---------------------------------------------------------------------------


def _percentage(part: float, whole: float) -> float:
    if not whole or whole <= 0:
        return 0.0
    value = (part / whole) * 100
    if not math.isfinite(value):
        return 0.0
    return max(0.0, min(100.0, value))


def _local_date(moment: Optional[datetime], tz: tzinfo) -> Optional[date]:
    if moment is None:
        return None
    return moment.astimezone(tz).date()


def _resolve_now(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    return localise(now, timezone.utc)


# ---------------------------------------------------------------------------
# Facets
# ---------------------------------------------------------------------------


def _revenue_facet(
    paid: List[ReceiptRecord],
    clients_by_id: Mapping[str, ClientRecord],
    date_range: DateRange,
    tz: tzinfo,
) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
    groups: "OrderedDict[str, float]" = OrderedDict()
    for receipt in paid:
        groups[receipt.service_line] = groups.get(receipt.service_line, 0.0) + receipt.amount

    # Summing the groups keeps the breakdown and the headline total identical.
    total_revenue = sum(groups.values())

    breakdown = [
        {
            "serviceLineId": name,
            "serviceLineName": name,
            "amount": amount,
            "percentage": _percentage(amount, total_revenue),
            "colorIndex": service_line_color_index(index),
            "color": service_line_color(index),
        }
        for index, (name, amount) in enumerate(groups.items())
    ]

    top_clients = _top_clients(paid, clients_by_id)
    series = revenue_over_time(
        date_range.range_type,
        date_range.start,
        date_range.end,
        ((_local_date(receipt.paid_at, tz), receipt.amount) for receipt in paid),
    )

    return {
        "totalRevenue": total_revenue,
        "previousPeriodRevenue": 0,
        "revenueChange": 0,
        "revenueChangePercent": 0,
        "revenueOverTime": series,
        "revenueByServiceLine": breakdown,
        "averageTransactionValue": total_revenue / len(paid) if paid else 0.0,
        "topClients": [
            {
                "clientId": entry["clientId"],
                "clientName": entry["clientName"],
                "totalRevenue": entry["revenue"],
            }
            for entry in top_clients
        ],
    }, top_clients


def _top_clients(
    paid: Iterable[ReceiptRecord], clients_by_id: Mapping[str, ClientRecord]
) -> List[Dict[str, Any]]:
    per_client: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    for receipt in paid:
        if not receipt.client_id:
            continue
        entry = per_client.get(receipt.client_id)
        if entry is None:
            client = clients_by_id.get(receipt.client_id)
            entry = per_client[receipt.client_id] = {
                "clientId": receipt.client_id,
                "clientName": client.name if client else UNKNOWN_CLIENT_NAME,
                "revenue": 0.0,
                "servicesCount": 0,
            }
        entry["revenue"] += receipt.amount
        entry["servicesCount"] += 1

    # sorted() is stable with reverse=True, so ties keep first-seen order.
    ranked = sorted(per_client.values(), key=lambda entry: entry["revenue"], reverse=True)
    return ranked[:TOP_CLIENT_LIMIT]


def _client_facet(
    clients: List[ClientRecord],
    top_clients: List[Dict[str, Any]],
    date_range: DateRange,
    tz: tzinfo,
) -> Dict[str, Any]:
    counts = {status: 0 for status in CLIENT_STATUSES}
    for client in clients:
        if client.status in counts:
            counts[client.status] += 1

    created_dates = [_local_date(client.created_at, tz) for client in clients]
    start, end = date_range.start, date_range.end
    new_clients = sum(1 for created in created_dates if created and start <= created <= end)
    total = len(clients)

    by_status = [
        {
            "status": status_label(status),
            "count": counts[status],
            "percentage": _percentage(counts[status], total),
            "color": CLIENT_STATUS_COLORS[status],
        }
        for status in CLIENT_STATUSES
        if counts[status] > 0
    ]

    return {
        "totalClients": total,
        "activeClients": counts["active"],
        "prospectClients": counts["prospect"],
        "completedClients": counts["completed"],
        "inactiveClients": counts["inactive"],
        "newClientsThisPeriod": new_clients,
        "previousPeriodNewClients": 0,
        "newClientChange": 0,
        "newClientChangePercent": 0,
        "clientsOverTime": clients_over_time(date_range.range_type, start, end, created_dates),
        "clientsByStatus": by_status,
        "topClientsByRevenue": [dict(entry) for entry in top_clients],
        "retentionRate": _percentage(counts["active"], total),
        "previousRetentionRate": 0,
    }


def _billing_facet(
    invoices: List[InvoiceRecord], receipts: List[ReceiptRecord], now: datetime
) -> Dict[str, Any]:
    pending_invoices = [invoice for invoice in invoices if invoice.status in PENDING_INVOICE_STATUSES]
    pending_receipts = [receipt for receipt in receipts if receipt.status in PENDING_RECEIPT_STATUSES]
    overdue = [
        invoice
        for invoice in pending_invoices
        if invoice.due_date is not None and invoice.due_date < now
    ]

    pending_invoices_amount = sum(invoice.amount for invoice in pending_invoices)
    pending_receipts_amount = sum(receipt.amount for receipt in pending_receipts)
    return {
        "pendingInvoices": len(pending_invoices),
        "pendingInvoicesAmount": pending_invoices_amount,
        "pendingReceipts": len(pending_receipts),
        "pendingReceiptsAmount": pending_receipts_amount,
        "totalOutstanding": pending_invoices_amount + pending_receipts_amount,
        "overdueAmount": sum(invoice.amount for invoice in overdue),
        "overdueCount": len(overdue),
    }


def _activity_facet(events: List[EventRecord], now: datetime) -> Dict[str, Any]:
    upcoming = sum(1 for event in events if event.start_time is not None and event.start_time >= now)
    completed = sum(1 for event in events if event.status == COMPLETED_EVENT_STATUS)
    return {
        # Conversations and time tracking are not part of the fetched records.
        "totalConversations": 0,
        "conversationsByType": [],
        "upcomingEvents": upcoming,
        "completedEvents": completed,
        "eventCompletionRate": _percentage(completed, len(events)),
        "billableHours": 0,
        "previousPeriodBillableHours": 0,
        "billableHoursChange": 0,
    }


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def _aggregate(
    raw_clients: Optional[Iterable[Any]],
    raw_receipts: Optional[Iterable[Any]],
    raw_invoices: Optional[Iterable[Any]],
    raw_events: Optional[Iterable[Any]],
    date_range: DateRange,
    now: datetime,
) -> Dict[str, Any]:
    tz = now.tzinfo
    clients = normalise_records(raw_clients, ClientRecord.from_raw, tz)
    receipts = normalise_records(raw_receipts, ReceiptRecord.from_raw, tz)
    invoices = normalise_records(raw_invoices, InvoiceRecord.from_raw, tz)
    events = normalise_records(raw_events, EventRecord.from_raw, tz)

    paid = [receipt for receipt in receipts if receipt.status in PAID_RECEIPT_STATUSES]
    clients_by_id: Dict[str, ClientRecord] = {}
    for client in clients:
        if client.id is not None:
            clients_by_id.setdefault(client.id, client)

    revenue, top_clients = _revenue_facet(paid, clients_by_id, date_range, tz)
    comparison = previous_period(date_range)
    range_payload = date_range.to_dict()
    range_payload["previousStartDate"] = comparison.start_date
    range_payload["previousEndDate"] = comparison.end_date

    return {
        "dateRange": range_payload,
        "revenue": revenue,
        "clients": _client_facet(clients, top_clients, date_range, tz),
        "activity": _activity_facet(events, now),
        "billing": _billing_facet(invoices, receipts, now),
        "lastUpdated": now.isoformat(),
    }


def compute_dashboard_analytics(
    clients: Optional[Iterable[Any]],
    receipts: Optional[Iterable[Any]],
    invoices: Optional[Iterable[Any]],
    events: Optional[Iterable[Any]],
    date_range: DateRange,
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Aggregate raw CRM collections into the dashboard analytics model.

    ``now`` decides overdue and upcoming classification and supplies the
    reporting timezone used to place records on calendar days. The function
    has no side effects: identical inputs and ``now`` yield an identical model.
    Any failure is raised as :class:`AggregationError`; a partial model is
    never returned.
    """

    current = _resolve_now(now)
    try:
        model = _aggregate(clients, receipts, invoices, events, date_range, current)
    except Exception as exc:
        raise AggregationError(f"Failed to compute dashboard analytics: {exc}") from exc
    LOGGER.debug(
        "Computed dashboard analytics for %s..%s (%s revenue)",
        date_range.start_date,
        date_range.end_date,
        format_currency(model["revenue"]["totalRevenue"]),
    )
    return model


def build_kpi_summary(analytics: Mapping[str, Any]) -> Dict[str, Any]:
    """Project the headline metric cards out of a dashboard model."""

    revenue = analytics["revenue"]
    clients = analytics["clients"]
    billing = analytics["billing"]
    activity = analytics["activity"]
    return {
        "totalRevenue": revenue.get("totalRevenue", 0),
        "revenueChange": revenue.get("revenueChangePercent", 0),
        "activeClients": clients.get("activeClients", 0),
        "clientChange": clients.get("newClientChangePercent", 0),
        "pendingInvoices": billing.get("pendingInvoices", 0),
        "pendingAmount": billing.get("totalOutstanding", 0),
        "upcomingEvents": activity.get("upcomingEvents", 0),
        "completedEvents": activity.get("completedEvents", 0),
        "billableHours": activity.get("billableHours", 0),
        "hoursChange": 0,
    }


def build_growth_summary(analytics: Mapping[str, Any]) -> Dict[str, Any]:
    """Growth view: new clients, retention and both trend series."""

    revenue = analytics["revenue"]
    clients = analytics["clients"]
    return {
        "newClients": clients.get("newClientsThisPeriod", 0),
        "clientRetention": clients.get("retentionRate", 0),
        "revenueGrowth": revenue.get("revenueChangePercent", 0),
        "clientGrowthOverTime": [
            {"date": point["date"], "count": point["newClients"]}
            for point in clients.get("clientsOverTime", [])
        ],
        "revenueGrowthOverTime": [
            {"date": point["date"], "amount": point["amount"]}
            for point in revenue.get("revenueOverTime", [])
        ],
    }


__all__ = [
    "AggregationError",
    "TOP_CLIENT_LIMIT",
    "build_growth_summary",
    "build_kpi_summary",
    "compute_dashboard_analytics",
]
