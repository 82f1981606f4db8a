"""Buffered interval arithmetic for machine slots.

A held window ``[start, end)`` needs ``buffer`` idle minutes on both sides before
another window may touch it. These helpers work on plain datetimes so the
booking service can feed them whatever rows it queried.
"""
from datetime import datetime, timedelta

SLOT_GRANULARITY_MINUTES = 5


def round_up_to_slot(moment: datetime) -> datetime:
    """Next 5-minute boundary at or after ``moment``, seconds cleared."""
    floored = moment.replace(
        minute=moment.minute - moment.minute % SLOT_GRANULARITY_MINUTES,
        second=0,
        microsecond=0,
    )
    if floored == moment:
        return floored
    return floored + timedelta(minutes=SLOT_GRANULARITY_MINUTES)


def windows_conflict(start, end, held_start, held_end, buffer_minutes) -> bool:
    """True if ``[start, end)`` comes within ``buffer_minutes`` of a held window."""
    buffer = timedelta(minutes=buffer_minutes)
    return held_start < end + buffer and held_end > start - buffer


def find_conflict(start, end, held_windows, buffer_minutes):
    """First held ``(start, end)`` window that ``[start, end)`` conflicts with, or None."""
    for held_start, held_end in held_windows:
        if windows_conflict(start, end, held_start, held_end, buffer_minutes):
            return held_start, held_end
    return None


def first_free_start(after, duration_minutes, held_windows, buffer_minutes) -> datetime:
    """Earliest slot-aligned start at or after ``after`` that fits ``duration_minutes``.

    Whenever the candidate hits a held window it jumps past that window's
    trailing buffer and is checked again, so the loop ends once the candidate
    lies beyond every window.
    """
    duration = timedelta(minutes=duration_minutes)
    windows = sorted(held_windows)
    candidate = round_up_to_slot(after)
    while True:
        conflict = find_conflict(candidate, candidate + duration, windows, buffer_minutes)
        if conflict is None:
            return candidate
        candidate = round_up_to_slot(conflict[1] + timedelta(minutes=buffer_minutes))
