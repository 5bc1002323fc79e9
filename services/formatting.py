"""Display helpers shared by the dashboard analytics payloads."""

from __future__ import annotations

from datetime import date
from typing import Dict

DAY = "day"
WEEK = "week"
MONTH = "month"

SERVICE_LINE_COLORS = (
    "#5c93ff",  # blue
    "#4CAF50",  # green
    "#FF9800",  # orange
    "#9C27B0",  # purple
    "#00BCD4",  # cyan
    "#E91E63",  # pink
    "#795548",  # brown
    "#607D8B",  # blue grey
)

CLIENT_STATUS_COLORS: Dict[str, str] = {
    "active": "#4CAF50",
    "prospect": "#2196F3",
    "completed": "#9C27B0",
    "inactive": "#757575",
}


def service_line_color_index(index: int) -> int:
    return index % len(SERVICE_LINE_COLORS)


def service_line_color(index: int) -> str:
    return SERVICE_LINE_COLORS[service_line_color_index(index)]


def status_label(status: str) -> str:
    return status.capitalize()


def bucket_label(granularity: str, bucket_start: date, *, multi_year: bool = False) -> str:
    """Human readable label for a bucket; ordering never depends on it."""

    if granularity == DAY:
        return bucket_start.strftime("%a")
    if granularity == WEEK:
        return bucket_start.strftime("%m/%d")
    if multi_year:
        return bucket_start.strftime("%b %Y")
    return bucket_start.strftime("%b")


def format_currency(value: float) -> str:
    return f"${value:,.2f}"
