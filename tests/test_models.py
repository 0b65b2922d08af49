"""
Unit tests for database models
"""

import pytest
from datetime import datetime, time, timedelta
from sqlalchemy.exc import IntegrityError

from app.models.booking import Booking, BookingStatus, PaymentMethod
from app.models.user import User, UserRole
from app.models.waitlist import (
    NotificationResponse,
    WaitlistNotification,
    WaitlistPriority,
    WaitlistStatus,
)

from conftest import NOW, TARGET_DATE


@pytest.mark.unit
@pytest.mark.asyncio
class TestUserModel:
    """Test User model"""

    async def test_create_user(self, db_session):
        user = User(email="asha@example.com", first_name="Asha", last_name="Rao", phone="+919876543210")
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)

        assert user.id is not None
        assert user.full_name == "Asha Rao"
        assert user.role == UserRole.CUSTOMER
        assert user.is_active is True
        assert user.loyalty_tier is None
        assert user.created_at is not None

    async def test_user_unique_email(self, db_session):
        """Test email uniqueness constraint"""
        db_session.add(User(email="unique@example.com"))
        await db_session.commit()

        db_session.add(User(email="unique@example.com"))
        with pytest.raises(IntegrityError):
            await db_session.commit()


@pytest.mark.unit
@pytest.mark.asyncio
class TestTimeSlotModel:

    async def test_slot_properties(self, make_slot):
        slot = await make_slot(start=time(14, 30))

        assert slot.slot_date == TARGET_DATE
        assert slot.slot_time == time(14, 30)
        assert slot.is_free is True

    async def test_booked_or_blocked_slot_is_not_free(self, make_slot):
        assert (await make_slot(is_booked=1)).is_free is False
        assert (await make_slot(start=time(11, 0), is_blocked=1)).is_free is False


@pytest.mark.unit
@pytest.mark.asyncio
class TestWaitlistModel:
    """Test WaitlistEntry and WaitlistNotification models"""

    async def test_create_waitlist_entry(self, make_entry, customer):
        entry = await make_entry(customer, priority=WaitlistPriority.GOLD)

        assert entry.id is not None
        assert entry.status == WaitlistStatus.WAITING
        assert entry.priority_tier == WaitlistPriority.GOLD
        assert entry.is_active is True
        assert entry.notified_at is None
        assert entry.notified_slot_id is None

    async def test_one_active_entry_per_date(self, make_entry, customer):
        """Test customer can only have one active entry per salon, service and date"""
        await make_entry(customer)

        with pytest.raises(IntegrityError):
            await make_entry(customer, status=WaitlistStatus.NOTIFIED)

    async def test_window_must_be_ordered(self, make_entry, customer):
        with pytest.raises(IntegrityError):
            await make_entry(customer, window=(time(12, 0), time(10, 0)))

    async def test_flexibility_is_bounded(self, make_entry, customer):
        with pytest.raises(IntegrityError):
            await make_entry(customer, flexibility_days=8)

    async def test_unknown_priority_falls_to_lower_tier(self, make_entry, customer):
        entry = await make_entry(customer)

        entry.priority = 25
        assert entry.priority_tier == WaitlistPriority.GOLD
        entry.priority = 99
        assert entry.priority_tier == WaitlistPriority.ELITE
        entry.priority = 5
        assert entry.priority_tier == WaitlistPriority.REGULAR

    async def test_closed_entries_allow_rejoin(self, make_entry, customer):
        await make_entry(customer, status=WaitlistStatus.CANCELLED)
        await make_entry(customer, status=WaitlistStatus.EXPIRED)

        entry = await make_entry(customer)
        assert entry.is_active is True

    async def test_one_outstanding_offer_per_slot(self, db_session, make_entry, make_slot, customer, other_customer):
        slot = await make_slot()
        first = await make_entry(customer)
        second = await make_entry(other_customer)

        first.status = WaitlistStatus.NOTIFIED
        first.notified_slot_id = slot.id
        await db_session.commit()

        second.status = WaitlistStatus.NOTIFIED
        second.notified_slot_id = slot.id
        with pytest.raises(IntegrityError):
            await db_session.commit()

    async def test_one_pending_notification_per_offer(self, db_session, make_entry, make_slot, customer):
        entry = await make_entry(customer)
        slot = await make_slot()

        db_session.add(WaitlistNotification(waitlist_id=entry.id, slot_id=slot.id, notification_type="push", sent_at=NOW))
        await db_session.commit()

        db_session.add(WaitlistNotification(waitlist_id=entry.id, slot_id=slot.id, notification_type="sms", sent_at=NOW))
        with pytest.raises(IntegrityError):
            await db_session.commit()

    async def test_answered_notifications_are_kept(self, db_session, make_entry, make_slot, customer):
        entry = await make_entry(customer)
        slot = await make_slot()

        for _ in range(2):
            db_session.add(WaitlistNotification(
                waitlist_id=entry.id,
                slot_id=slot.id,
                notification_type="push",
                sent_at=NOW,
                response=NotificationResponse.EXPIRED,
                responded_at=NOW + timedelta(minutes=15),
            ))
            await db_session.commit()

        await db_session.refresh(entry, ["notifications"])
        assert len(entry.notifications) == 2


@pytest.mark.unit
@pytest.mark.asyncio
class TestBookingModel:

    async def test_create_booking(self, db_session, customer, salon, haircut, make_slot):
        slot = await make_slot()
        booking = Booking(
            salon_id=salon.id,
            service_id=haircut.id,
            time_slot_id=slot.id,
            user_id=customer.id,
            customer_name=customer.full_name,
            customer_email=customer.email,
            customer_phone=customer.phone,
            booking_date=slot.slot_date.isoformat(),
            booking_time="10:00",
            total_amount_paisa=haircut.price_in_paisa,
        )
        db_session.add(booking)
        await db_session.commit()
        await db_session.refresh(booking)

        assert booking.status == BookingStatus.PENDING
        assert booking.payment_method == PaymentMethod.PAY_NOW
        assert booking.currency == "INR"
        assert isinstance(booking.created_at, datetime)
