"""
Unit tests for priority resolution and queue matching rules
"""

import pytest
from datetime import date, datetime, time, timedelta
from uuid import UUID, uuid4

from app.models.time_slot import TimeSlot
from app.models.waitlist import WaitlistEntry, WaitlistPriority
from app.services.loyalty_service import LoyaltyLookup
from app.services.priority import PriorityResolver, tier_to_priority
from app.services.waitlist_matching import (
    filter_compatible,
    is_compatible,
    queue_order_key,
    ranks_ahead,
)

SALON_ID = uuid4()
STAFF_ID = uuid4()


def build_entry(**overrides) -> WaitlistEntry:
    fields = dict(
        id=uuid4(),
        user_id=uuid4(),
        salon_id=SALON_ID,
        service_id=uuid4(),
        staff_id=None,
        requested_date=date(2030, 3, 5),
        time_window_start=time(10, 0),
        time_window_end=time(12, 0),
        flexibility_days=0,
        priority=WaitlistPriority.REGULAR.value,
        created_at=datetime(2030, 3, 1, 9, 0),
    )
    fields.update(overrides)
    return WaitlistEntry(**fields)


def build_slot(start: datetime = datetime(2030, 3, 5, 11, 0), **overrides) -> TimeSlot:
    fields = dict(
        id=uuid4(),
        salon_id=SALON_ID,
        staff_id=STAFF_ID,
        start_datetime=start,
        end_datetime=start + timedelta(minutes=45),
        is_booked=0,
        is_blocked=0,
    )
    fields.update(overrides)
    return TimeSlot(**fields)


class FailingLoyalty(LoyaltyLookup):
    async def get_tier_name(self, customer_id):
        raise ConnectionError("loyalty program unreachable")


class FixedLoyalty(LoyaltyLookup):
    def __init__(self, tier):
        self.tier = tier

    async def get_tier_name(self, customer_id):
        return self.tier


@pytest.mark.unit
class TestTierMapping:

    @pytest.mark.parametrize("tier,expected", [
        ("Elite", WaitlistPriority.ELITE),
        ("PLATINUM member", WaitlistPriority.ELITE),
        ("gold", WaitlistPriority.GOLD),
        ("Gold Plus", WaitlistPriority.GOLD),
        ("silver", WaitlistPriority.REGULAR),
        ("", WaitlistPriority.REGULAR),
        (None, WaitlistPriority.REGULAR),
    ])
    def test_tier_to_priority(self, tier, expected):
        assert tier_to_priority(tier) == expected

    def test_tiers_are_ordered(self):
        assert WaitlistPriority.ELITE > WaitlistPriority.GOLD > WaitlistPriority.REGULAR


@pytest.mark.asyncio
class TestPriorityResolver:

    async def test_resolves_from_loyalty(self):
        resolver = PriorityResolver(FixedLoyalty("gold"))
        assert await resolver.resolve_priority(uuid4()) == WaitlistPriority.GOLD

    async def test_unknown_customer_is_regular(self):
        resolver = PriorityResolver(FixedLoyalty(None))
        assert await resolver.resolve_priority(uuid4()) == WaitlistPriority.REGULAR

    async def test_lookup_failure_falls_back_to_regular(self):
        resolver = PriorityResolver(FailingLoyalty())
        assert await resolver.resolve_priority(uuid4()) == WaitlistPriority.REGULAR


@pytest.mark.unit
class TestQueueOrder:

    def test_priority_beats_join_time(self):
        early_regular = build_entry(created_at=datetime(2030, 3, 1, 9, 0))
        late_gold = build_entry(
            priority=WaitlistPriority.GOLD.value,
            created_at=datetime(2030, 3, 1, 10, 0)
        )
        assert ranks_ahead(late_gold, early_regular)
        assert not ranks_ahead(early_regular, late_gold)

    def test_fifo_within_priority(self):
        first = build_entry(created_at=datetime(2030, 3, 1, 9, 0))
        second = build_entry(created_at=datetime(2030, 3, 1, 9, 5))
        assert sorted([second, first], key=queue_order_key) == [first, second]

    def test_id_breaks_exact_ties(self):
        low = build_entry(id=UUID(int=1))
        high = build_entry(id=UUID(int=2))
        assert sorted([high, low], key=queue_order_key) == [low, high]


@pytest.mark.unit
class TestCompatibility:
    """Test the slot compatibility predicate"""

    def test_slot_inside_window(self):
        assert is_compatible(build_entry(), build_slot())

    def test_window_bounds_are_inclusive(self):
        entry = build_entry()
        assert is_compatible(entry, build_slot(datetime(2030, 3, 5, 10, 0)))
        assert is_compatible(entry, build_slot(datetime(2030, 3, 5, 12, 0)))

    def test_seconds_are_ignored(self):
        assert is_compatible(build_entry(), build_slot(datetime(2030, 3, 5, 12, 0, 30)))

    def test_slot_outside_window(self):
        entry = build_entry()
        assert not is_compatible(entry, build_slot(datetime(2030, 3, 5, 9, 59)))
        assert not is_compatible(entry, build_slot(datetime(2030, 3, 5, 12, 1)))

    def test_other_salon(self):
        assert not is_compatible(build_entry(), build_slot(salon_id=uuid4()))

    def test_date_flexibility(self):
        next_day = build_slot(datetime(2030, 3, 6, 11, 0))
        day_before = build_slot(datetime(2030, 3, 4, 11, 0))
        two_days_later = build_slot(datetime(2030, 3, 7, 11, 0))

        assert not is_compatible(build_entry(), next_day)

        flexible = build_entry(flexibility_days=1)
        assert is_compatible(flexible, next_day)
        assert is_compatible(flexible, day_before)
        assert not is_compatible(flexible, two_days_later)

    def test_staff_preference(self):
        slot = build_slot()
        assert is_compatible(build_entry(staff_id=None), slot)
        assert is_compatible(build_entry(staff_id=STAFF_ID), slot)
        assert not is_compatible(build_entry(staff_id=uuid4()), slot)

    def test_unassigned_slot_only_matches_any_staff(self):
        slot = build_slot(staff_id=None)
        assert is_compatible(build_entry(staff_id=None), slot)
        assert not is_compatible(build_entry(staff_id=STAFF_ID), slot)

    def test_filter_compatible_orders_candidates(self):
        slot = build_slot()
        regular = build_entry(created_at=datetime(2030, 3, 1, 8, 0))
        elite = build_entry(priority=WaitlistPriority.ELITE.value)
        wrong_staff = build_entry(staff_id=uuid4(), priority=WaitlistPriority.ELITE.value)
        wrong_window = build_entry(time_window_start=time(14, 0), time_window_end=time(16, 0))

        result = filter_compatible([regular, wrong_staff, elite, wrong_window], slot)

        assert result == [elite, regular]
