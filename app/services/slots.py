"""
Candidate slot generation from declared business hours.

Everything here is pure: no database, no clock. Times are built in the
business's local timezone and returned in UTC so they compare directly with
stored reservations and blocks.
"""

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import List, Optional, Tuple

Slot = Tuple[datetime, datetime]


def generate_slots(
    day: date,
    open_time: Optional[time],
    close_time: Optional[time],
    duration_minutes: int,
    step_minutes: int = 15,
    tz: tzinfo = timezone.utc,
    is_closed: bool = False,
) -> List[Slot]:
    """
    Produce ordered ``(start, end)`` candidates for one day.

    Starts are spaced ``step_minutes`` apart from ``open_time``; a candidate
    is kept only if ``start + duration`` still fits before ``close_time``.
    A closed day, or one without declared hours, yields no slots.
    """
    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be positive")
    if step_minutes <= 0:
        raise ValueError("step_minutes must be positive")

    if is_closed or open_time is None or close_time is None:
        return []

    opens_at = datetime.combine(day, open_time, tzinfo=tz)
    closes_at = datetime.combine(day, close_time, tzinfo=tz)
    if closes_at <= opens_at:
        return []

    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=step_minutes)

    slots = []
    current = opens_at
    while current + duration <= closes_at:
        slots.append(
            (
                current.astimezone(timezone.utc),
                (current + duration).astimezone(timezone.utc),
            )
        )
        current += step

    return slots


def slots_for_hours(
    day: date, hours, duration_minutes: int, step_minutes: int, tz: tzinfo
) -> List[Slot]:
    """Same as ``generate_slots`` but reading a WorkingHours-like row."""
    if hours is None:
        return []
    return generate_slots(
        day,
        hours.open_time,
        hours.close_time,
        duration_minutes,
        step_minutes=step_minutes,
        tz=tz,
        is_closed=hours.is_closed,
    )
