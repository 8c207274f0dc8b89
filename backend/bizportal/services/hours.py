"""
Working-hours arithmetic for attendance records.

A clock-in/clock-out pair is split into regular and overtime units at a fixed
daily threshold (8 hours unless configured otherwise). Both values are
rounded to two decimals. Non-positive intervals yield zero for both.
"""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal

import pytz

from bizportal.core.config import settings

_TWO_PLACES = Decimal("0.01")


def _round2(value: float) -> Decimal:
    return Decimal(str(value)).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)


def compute_units(
    start: datetime | None,
    end: datetime | None,
    threshold: float | None = None,
) -> tuple[Decimal, Decimal]:
    """Return (regular_units, overtime_units) for the interval start..end."""
    zero = Decimal("0.00")
    if start is None or end is None or end <= start:
        return zero, zero

    limit = settings.REGULAR_HOURS_THRESHOLD if threshold is None else threshold
    total_minutes = (end - start).total_seconds() / 60
    total_hours = total_minutes / 60

    regular = _round2(min(total_hours, limit))
    overtime = _round2(max(0.0, total_hours - limit))
    return regular, overtime


def format_hours(total_hours: float | Decimal) -> str:
    """Render a decimal hour total as e.g. '8h 30m'."""
    total = float(total_hours or 0)
    if total <= 0:
        return "0h 0m"
    hours = int(total)
    minutes = int(round((total - hours) * 60))
    if minutes == 60:
        hours, minutes = hours + 1, 0
    return f"{hours}h {minutes}m"


def local_now() -> datetime:
    """Current wall-clock time in the portal timezone, without tzinfo."""
    tz = pytz.timezone(settings.APP_TIMEZONE)
    return datetime.now(tz).replace(tzinfo=None, microsecond=0)


def local_today() -> date:
    return local_now().date()


def to_wall_clock(value: datetime) -> datetime:
    """Aware values are converted to portal wall-clock time; naive ones are kept."""
    if value.tzinfo is None:
        return value
    return value.astimezone(pytz.timezone(settings.APP_TIMEZONE)).replace(tzinfo=None)
