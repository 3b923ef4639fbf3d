"""Utility functions for the stockcount application."""

from datetime import date, datetime
from typing import Optional

from dateutil import parser
from dateutil.relativedelta import relativedelta

_UNITS = {
    "day": lambda n: relativedelta(days=n),
    "week": lambda n: relativedelta(weeks=n),
    "month": lambda n: relativedelta(months=n),
}


def normalize_scan_token(token: Optional[str]) -> str:
    """Normalize a scanned SKU/barcode for case-insensitive exact matching."""
    if not token:
        return ""
    return token.strip().lower()


def parse_schedule_date(date_str: Optional[str], today: Optional[date] = None) -> Optional[date]:
    """
    Parse the date a count is scheduled for.

    Supports:
    - ISO format: "2026-11-02", "2026/11/02"
    - Relative terms: "today", "tomorrow", "next week", "next month"
    - "in N days/weeks/months"
    - Month/Day: "Nov 2" (rolls into next year if already past)

    Args:
        date_str: String representation of a date
        today: Reference date, defaults to the current date

    Returns:
        date object if parsing succeeds, None for empty or invalid input

    Examples:
        >>> parse_schedule_date("2026-11-02")
        date(2026, 11, 2)

        >>> parse_schedule_date("in 3 days", today=date(2026, 10, 18))
        date(2026, 10, 21)
    """
    if not date_str or not date_str.strip():
        return None

    date_str = date_str.strip()
    today = today or datetime.now().date()
    lower_str = date_str.lower()

    if lower_str == "today":
        return today
    elif lower_str == "tomorrow":
        return today + relativedelta(days=1)
    elif lower_str == "next week":
        return today + relativedelta(weeks=1)
    elif lower_str == "next month":
        return today + relativedelta(months=1)

    # "in 3 days", "in 2 weeks"
    if lower_str.startswith("in "):
        parts = lower_str[3:].split()
        if len(parts) >= 2:
            unit = parts[1].rstrip("s")
            if parts[0].isdigit() and unit in _UNITS:
                return today + _UNITS[unit](int(parts[0]))

    try:
        parsed_dt = parser.parse(date_str, default=datetime(today.year, today.month, today.day))
        parsed_date = parsed_dt.date()
        # Month/day without a year that already passed means next year
        if parsed_date < today and str(parsed_dt.year) not in date_str:
            # Feb 29 has no counterpart in a common year
            parsed_date = parsed_date.replace(year=today.year + 1)
    except (ValueError, OverflowError, parser.ParserError):
        return None
    return parsed_date
