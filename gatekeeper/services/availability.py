"""
Free-slot computation.

Busy intervals from one or more calendars are unioned and subtracted from a
daily working window, walking a fixed grid of ``slot_duration_mins``.
"""
from datetime import datetime, time, timedelta, tzinfo
from typing import Iterable, List, Tuple

from gatekeeper.domain.models import Slot

MAX_SUGGESTIONS = 10

Interval = Tuple[datetime, datetime]


def parse_day_window(start: str, end: str) -> Tuple[time, time]:
    """Parse 'HH:MM' bounds into a (start, end) pair of times."""
    day_start = time.fromisoformat(start)
    day_end = time.fromisoformat(end)
    if day_end <= day_start:
        raise ValueError(f"Day window end {end} must be after start {start}")
    return day_start, day_end


def _aware(dt: datetime, tz: tzinfo) -> datetime:
    return dt.replace(tzinfo=tz) if dt.tzinfo is None else dt


def merge_intervals(intervals: Iterable[Interval]) -> List[Interval]:
    """Union overlapping or touching intervals, sorted by start."""
    ordered = sorted((s, e) for s, e in intervals if e > s)
    merged: List[Interval] = []
    for start, end in ordered:
        if merged and start <= merged[-1][1]:
            if end > merged[-1][1]:
                merged[-1] = (merged[-1][0], end)
        else:
            merged.append((start, end))
    return merged


def _overlaps(start: datetime, end: datetime, busy: List[Interval]) -> bool:
    for busy_start, busy_end in busy:
        if busy_start >= end:
            break
        if start < busy_end:
            return True
    return False


def compute_free_slots(
    busy: Iterable[Interval],
    now: datetime,
    window_days: int,
    slot_duration_mins: int,
    day_window: Tuple[time, time],
    tz: tzinfo,
    limit: int = MAX_SUGGESTIONS,
) -> List[Slot]:
    """
    Suggest free slots between ``now`` and ``now + window_days``.

    Args:
        busy: Busy (start, end) intervals from any number of calendars
        now: Reference time; slots starting at or before it are skipped
        window_days: Look-ahead horizon in days
        slot_duration_mins: Slot length and grid step
        day_window: Daily (start, end) wall-clock bounds in ``tz``
        tz: Timezone the day window is expressed in
        limit: Maximum number of slots returned

    Returns:
        Slots ordered earliest first
    """
    if slot_duration_mins <= 0:
        raise ValueError("slot_duration_mins must be positive")

    now = _aware(now, tz)
    horizon = now + timedelta(days=window_days)
    merged = merge_intervals((_aware(s, tz), _aware(e, tz)) for s, e in busy)
    step = timedelta(minutes=slot_duration_mins)

    slots: List[Slot] = []
    first_day = now.astimezone(tz).date()
    for offset in range(window_days + 1):
        day = first_day + timedelta(days=offset)
        cursor = datetime.combine(day, day_window[0], tzinfo=tz)
        day_end = datetime.combine(day, day_window[1], tzinfo=tz)

        while cursor + step <= day_end:
            slot_end = cursor + step
            if slot_end > horizon:
                return slots
            if cursor > now and not _overlaps(cursor, slot_end, merged):
                slots.append(Slot(start=cursor, end=slot_end))
                if len(slots) >= limit:
                    return slots
            cursor = slot_end

    return slots


def default_slot(now: datetime, duration_mins: int = 30) -> Slot:
    """Slot used when the client books without choosing one: now to now + duration."""
    return Slot(start=now, end=now + timedelta(minutes=duration_mins))
