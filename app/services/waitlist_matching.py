"""
Queue ordering and slot compatibility rules

Pure functions shared by the matcher and the queue position query, so
both agree on who is next.
"""

from datetime import time
from typing import Iterable, List, Tuple

from app.models.time_slot import TimeSlot
from app.models.waitlist import WaitlistEntry

# Canonical queue order as SQL ORDER BY clauses
QUEUE_ORDER = (
    WaitlistEntry.priority.desc(),
    WaitlistEntry.created_at.asc(),
    WaitlistEntry.id.asc(),
)


def queue_order_key(entry: WaitlistEntry) -> Tuple:
    """Sort key: higher priority first, then earlier join, then id"""
    return (-entry.priority, entry.created_at, entry.id)


def ranks_ahead(other: WaitlistEntry, entry: WaitlistEntry) -> bool:
    return queue_order_key(other) < queue_order_key(entry)


def window_contains(start: time, end: time, value: time) -> bool:
    """Inclusive on both ends"""
    return start <= value <= end


def within_flexibility(entry: WaitlistEntry, slot: TimeSlot) -> bool:
    return abs((slot.slot_date - entry.requested_date).days) <= entry.flexibility_days


def staff_matches(entry: WaitlistEntry, slot: TimeSlot) -> bool:
    # No staff preference means any staff member, including unassigned slots
    return entry.staff_id is None or entry.staff_id == slot.staff_id


def is_compatible(entry: WaitlistEntry, slot: TimeSlot) -> bool:
    """Whether `slot` satisfies every constraint of `entry`"""
    return (
        entry.salon_id == slot.salon_id
        and window_contains(entry.time_window_start, entry.time_window_end, slot.slot_time)
        and within_flexibility(entry, slot)
        and staff_matches(entry, slot)
    )


def filter_compatible(entries: Iterable[WaitlistEntry], slot: TimeSlot) -> List[WaitlistEntry]:
    """Compatible entries in canonical queue order"""
    return sorted(
        (entry for entry in entries if is_compatible(entry, slot)),
        key=queue_order_key
    )
