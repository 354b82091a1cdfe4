"""
Shipping deadline ("batas kirim") calculation.

Rule: orders created before 12:00 must ship the same day, orders created at
or after 12:00 must ship the next day. The deadline is the last millisecond of
the shipping day (23:59:59.999) in local time.
"""

from datetime import datetime, timedelta
from typing import Optional, Union

from logger import get_logger

logger = get_logger(__name__)

CUTOFF_HOUR = 12


def parse_creation_date(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse a source-supplied order creation date.

    Accepts ISO-8601 text ("2024-01-15T14:00:00", "2024-01-15 14:00",
    "2024-01-15T07:00:00Z") or a datetime. Naive values are local time,
    aware values are converted to local time.

    Returns:
        The parsed datetime, or None when the value is empty or unparseable
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith(('Z', 'z')):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            logger.debug(f"Unparseable order creation date: {value!r}")
            return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone()
    return parsed


def calculate_deadline(order_creation_date: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Calculate the shipping deadline for an order.

    Examples:
        2024-01-15T10:00:00 -> 2024-01-15 23:59:59.999
        2024-01-15T14:00:00 -> 2024-01-16 23:59:59.999

    Args:
        order_creation_date: Creation timestamp as ISO text or datetime

    Returns:
        Deadline in local time, or None if the creation date is missing or
        unparseable
    """
    created = parse_creation_date(order_creation_date)
    if created is None:
        return None

    # Day arithmetic on wall-clock time; a fixed offset would drift across DST
    wall_clock = created.replace(tzinfo=None)
    deadline = wall_clock.replace(hour=23, minute=59, second=59, microsecond=999000)
    if wall_clock.hour >= CUTOFF_HOUR:
        deadline += timedelta(days=1)

    if created.tzinfo is not None:
        return deadline.astimezone()
    return deadline


def is_order_late(deadline: Optional[datetime], status: str,
                  now: Optional[datetime] = None) -> bool:
    """
    Check whether an order missed its deadline.

    An order is late only when it has a deadline, the deadline has passed,
    and it is still pending. Scanned orders are never late.

    Args:
        deadline: Result of calculate_deadline()
        status: Order status value ("pending" or "scanned")
        now: Current time, defaults to the local clock
    """
    if deadline is None:
        return False
    if status != 'pending':
        return False

    if now is None:
        now = datetime.now(deadline.tzinfo)
    if (now.tzinfo is None) != (deadline.tzinfo is None):
        # Mixed naive/aware: compare as local wall-clock time
        now, deadline = _local_naive(now), _local_naive(deadline)

    return now > deadline


def _local_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def format_deadline(deadline: Optional[datetime]) -> str:
    """Format a deadline for display, e.g. "28 Jan, 23:59". Returns "-" for None."""
    if deadline is None:
        return '-'
    return f"{deadline:%d %b, %H:%M}"
