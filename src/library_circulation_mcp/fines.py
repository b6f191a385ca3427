"""Fine calculation.

Pure functions used by the circulation engine. They take dates and policy
values and return amounts; nothing here touches the store.
"""

import math
from datetime import date, datetime, time

SECONDS_PER_DAY = 24 * 60 * 60


def _as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)


def days_late(due_date: date | datetime, return_date: date | datetime) -> int:
    """Whole days between due date and return, rounded up, never negative.

    A return one second after the due instant already counts as one day late.
    Plain dates are treated as midnight.
    """
    delta = _as_datetime(return_date) - _as_datetime(due_date)
    seconds = delta.total_seconds()
    if seconds <= 0:
        return 0
    return math.ceil(seconds / SECONDS_PER_DAY)


def overdue_fine(
    due_date: date | datetime, return_date: date | datetime, per_day: float
) -> float:
    """Overdue fine for a return: ``days_late * per_day``, or 0 when on time."""
    if per_day < 0:
        raise ValueError("Fine per day cannot be negative")
    late = days_late(due_date, return_date)
    if late == 0:
        return 0.0
    return round(late * per_day, 2)


def lost_cost(copy_price: float | None, processing_fee: float) -> float:
    """Charge for a lost copy: its price (0 when unknown) plus the processing fee."""
    if processing_fee < 0:
        raise ValueError("Processing fee cannot be negative")
    return round((copy_price or 0.0) + processing_fee, 2)


def format_amount(amount: float) -> str:
    """Render a monetary amount the way fine reasons and warnings show it."""
    return f"${amount:.2f}"
