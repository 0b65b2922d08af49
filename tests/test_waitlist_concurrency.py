"""
Concurrency tests for the waitlist engine
Tests racing offers, double accepts and duplicate joins
"""

import pytest
import asyncio
from datetime import time, timedelta

from sqlalchemy import func, select

from app.core.exceptions import ConflictError, WaitlistStateError
from app.models.booking import Booking
from app.models.time_slot import TimeSlot
from app.models.waitlist import WaitlistEntry, WaitlistNotification, WaitlistStatus
from app.schemas.waitlist import JoinWaitlistRequest

from conftest import NOW, TARGET_DATE, create_user, reload


@pytest.mark.concurrency
@pytest.mark.asyncio
class TestConcurrentOffers:
    """At most one outstanding offer per slot"""

    async def test_racing_offers_for_one_slot(self, waitlist, db_session, make_entry, make_slot):
        customers = [await create_user(db_session) for _ in range(5)]
        entries = [await make_entry(c) for c in customers]
        slot = await make_slot()

        results = await asyncio.gather(
            *[waitlist.notify_waitlist_entry(e.id, slot.id) for e in entries],
            return_exceptions=True
        )

        assert results.count(True) == 1
        assert results.count(False) == len(entries) - 1

        notified = await db_session.scalar(
            select(func.count(WaitlistEntry.id)).where(WaitlistEntry.status == WaitlistStatus.NOTIFIED)
        )
        assert notified == 1
        offers = await db_session.scalar(select(func.count(WaitlistNotification.id)))
        assert offers == 1

    async def test_racing_slot_releases(self, waitlist, db_session, make_entry, make_slot):
        customers = [await create_user(db_session) for _ in range(3)]
        for i, c in enumerate(customers):
            await make_entry(c, created_at=NOW + timedelta(minutes=i))
        slot = await make_slot(start=time(11, 0))

        results = await asyncio.gather(
            *[waitlist.process_slot_release(slot.id) for _ in range(4)],
            return_exceptions=True
        )

        assert not any(isinstance(r, Exception) for r in results)
        assert len([r for r in results if r is not None]) == 1

        db_session.expire_all()
        notified = await db_session.scalar(
            select(func.count(WaitlistEntry.id)).where(WaitlistEntry.status == WaitlistStatus.NOTIFIED)
        )
        assert notified == 1


@pytest.mark.concurrency
@pytest.mark.asyncio
class TestConcurrentAccepts:
    """No double booking"""

    async def test_double_accept_books_once(self, waitlist, db_session, customer, make_entry, make_slot):
        entry = await make_entry(customer)
        slot = await make_slot()
        await waitlist.notify_waitlist_entry(entry.id, slot.id)

        results = await asyncio.gather(
            *[waitlist.respond_to_notification(customer.id, entry.id, "accepted") for _ in range(3)],
            return_exceptions=True
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert all(isinstance(f, (ConflictError, WaitlistStateError)) for f in failures)

        assert await db_session.scalar(select(func.count(Booking.id))) == 1
        slot = await reload(db_session, TimeSlot, slot.id)
        assert slot.is_booked == 1
        assert slot.booking_id == successes[0].booking_id

        entry = await reload(db_session, WaitlistEntry, entry.id)
        assert entry.status == WaitlistStatus.BOOKED

    async def test_accept_racing_decline(self, waitlist, db_session, customer, make_entry, make_slot):
        entry = await make_entry(customer)
        slot = await make_slot()
        await waitlist.notify_waitlist_entry(entry.id, slot.id)

        results = await asyncio.gather(
            waitlist.respond_to_notification(customer.id, entry.id, "accepted"),
            waitlist.respond_to_notification(customer.id, entry.id, "declined"),
            return_exceptions=True
        )

        entry = await reload(db_session, WaitlistEntry, entry.id)
        bookings = await db_session.scalar(select(func.count(Booking.id)))
        assert entry.status in (WaitlistStatus.BOOKED, WaitlistStatus.CANCELLED)
        assert bookings == (1 if entry.status == WaitlistStatus.BOOKED else 0)
        assert sum(1 for r in results if not isinstance(r, Exception)) >= 1


@pytest.mark.concurrency
@pytest.mark.asyncio
class TestConcurrentJoins:

    async def test_duplicate_joins_create_one_entry(self, waitlist, db_session, customer, salon, haircut):
        request = JoinWaitlistRequest(
            salon_id=salon.id,
            service_id=haircut.id,
            requested_date=TARGET_DATE,
            time_window_start="10:00",
            time_window_end="12:00",
        )

        results = await asyncio.gather(
            *[waitlist.join_waitlist(customer.id, request) for _ in range(3)],
            return_exceptions=True
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert all(isinstance(f, ConflictError) and f.code == "DUPLICATE_ENTRY" for f in failures)

        count = await db_session.scalar(select(func.count(WaitlistEntry.id)))
        assert count == 1
