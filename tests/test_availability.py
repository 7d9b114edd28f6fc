"""
Free-slot computation tests.
"""
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from gatekeeper.services.availability import (
    MAX_SUGGESTIONS,
    compute_free_slots,
    default_slot,
    merge_intervals,
    parse_day_window,
)

UTC = ZoneInfo("UTC")
WORKDAY = (time(9, 0), time(17, 0))


def at(day: int, hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 3, day, hour, minute, tzinfo=UTC)


class TestComputeFreeSlots:

    def test_first_slot_after_now_and_thirty_minutes_long(self):
        now = at(2, 10, 7)
        slots = compute_free_slots([], now, 7, 30, WORKDAY, UTC)

        assert slots[0].start > now
        assert slots[0].end - slots[0].start == timedelta(minutes=30)
        assert slots[0].start == at(2, 10, 30)

    def test_slot_starting_exactly_now_is_skipped(self):
        now = at(2, 9, 0)
        slots = compute_free_slots([], now, 1, 30, WORKDAY, UTC)
        assert slots[0].start == at(2, 9, 30)

    def test_at_most_ten_slots_earliest_first(self):
        slots = compute_free_slots([], at(2, 8), 7, 30, WORKDAY, UTC)

        assert len(slots) == MAX_SUGGESTIONS
        assert slots == sorted(slots, key=lambda s: s.start)

    def test_busy_intervals_are_skipped(self):
        busy = [(at(2, 9), at(2, 10)), (at(2, 10, 15), at(2, 10, 45))]
        slots = compute_free_slots(busy, at(2, 8), 1, 30, WORKDAY, UTC)

        starts = [s.start for s in slots]
        assert at(2, 9) not in starts
        assert at(2, 9, 30) not in starts
        assert at(2, 10) not in starts
        assert at(2, 10, 30) not in starts
        assert starts[0] == at(2, 11)

    def test_requester_and_owner_busy_are_unioned(self):
        owner = [(at(2, 9), at(2, 9, 30))]
        requester = [(at(2, 9, 30), at(2, 10))]
        slots = compute_free_slots(owner + requester, at(2, 8), 1, 30, WORKDAY, UTC)
        assert slots[0].start == at(2, 10)

    def test_after_hours_rolls_to_next_day(self):
        slots = compute_free_slots([], at(2, 18), 2, 30, WORKDAY, UTC)
        assert slots[0].start == at(3, 9)

    def test_slots_stay_within_horizon(self):
        now = at(2, 16)
        slots = compute_free_slots([], now, 1, 60, WORKDAY, UTC)
        assert all(s.end <= now + timedelta(days=1) for s in slots)
        assert slots[-1].start == at(3, 15)

    def test_day_window_in_local_timezone(self):
        budapest = ZoneInfo("Europe/Budapest")
        now = datetime(2026, 3, 2, 6, 0, tzinfo=timezone.utc)
        slots = compute_free_slots([], now, 1, 30, WORKDAY, budapest)
        # 09:00 in Budapest (UTC+1 in March) is 08:00 UTC
        assert slots[0].start.astimezone(timezone.utc) == datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)

    def test_naive_busy_times_use_given_timezone(self):
        busy = [(datetime(2026, 3, 2, 9, 0), datetime(2026, 3, 2, 12, 0))]
        slots = compute_free_slots(busy, at(2, 8), 1, 30, WORKDAY, UTC)
        assert slots[0].start == at(2, 12)

    def test_invalid_duration(self):
        with pytest.raises(ValueError):
            compute_free_slots([], at(2, 8), 1, 0, WORKDAY, UTC)


class TestHelpers:

    def test_merge_intervals(self):
        merged = merge_intervals([
            (at(2, 11), at(2, 12)),
            (at(2, 9), at(2, 10)),
            (at(2, 10), at(2, 10, 30)),
            (at(2, 9, 15), at(2, 9, 45)),
        ])
        assert merged == [(at(2, 9), at(2, 10, 30)), (at(2, 11), at(2, 12))]

    def test_parse_day_window(self):
        assert parse_day_window("09:00", "17:00") == WORKDAY
        with pytest.raises(ValueError):
            parse_day_window("17:00", "09:00")

    def test_default_slot(self):
        slot = default_slot(at(2, 14, 10))
        assert slot.start == at(2, 14, 10)
        assert slot.duration_minutes == 30
