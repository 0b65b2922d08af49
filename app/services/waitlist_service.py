"""
Slot waitlist engine

Customers queue for fully booked time windows. When a slot frees up the best
compatible entry is offered the slot, and an accepted offer is converted into
exactly one confirmed booking.

Every status transition is a conditional UPDATE guarded by the expected
current status; zero affected rows means another request or sweep got there
first and is treated as a lost race, not an error.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Dict, List, Optional
import enum
import logging
import uuid

from sqlalchemy import select, update, func, and_, or_
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.clock import local_now
from app.core.database import DatabaseManager, db_manager as default_db_manager
from app.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    SlotsAvailableError,
    ValidationError,
    WaitlistStateError,
)
from app.core.metrics import metrics_collector
from app.models.booking import Booking, BookingStatus, PaymentMethod
from app.models.salon import Salon, Service, Staff
from app.models.time_slot import TimeSlot
from app.models.user import User
from app.models.waitlist import (
    ACTIVE_STATUSES,
    NotificationResponse,
    WaitlistEntry,
    WaitlistNotification,
    WaitlistStatus,
)
from app.schemas.waitlist import JoinWaitlistRequest
from app.services.notification_service import NotificationDispatcher
from app.services.priority import PriorityResolver
from app.services.waitlist_matching import QUEUE_ORDER, filter_compatible
from app.services.waitlist_validation import (
    parse_time_of_day,
    validate_entities,
    validate_requested_date,
    validate_time_window,
)

logger = logging.getLogger(__name__)


@dataclass
class AvailableSlot:
    slot_id: uuid.UUID
    salon_id: uuid.UUID
    staff_id: Optional[uuid.UUID]
    slot_date: date
    slot_time: time

    @classmethod
    def from_slot(cls, slot: TimeSlot) -> "AvailableSlot":
        return cls(
            slot_id=slot.id,
            salon_id=slot.salon_id,
            staff_id=slot.staff_id,
            slot_date=slot.slot_date,
            slot_time=slot.slot_time,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slot_id": str(self.slot_id),
            "salon_id": str(self.salon_id),
            "staff_id": str(self.staff_id) if self.staff_id else None,
            "slot_date": self.slot_date.isoformat(),
            "slot_time": self.slot_time.strftime("%H:%M"),
        }


@dataclass
class RespondResult:
    entry_id: uuid.UUID
    response: NotificationResponse
    booking_id: Optional[uuid.UUID] = None
    slot_date: Optional[str] = None
    slot_time: Optional[str] = None


class OfferOutcome(str, enum.Enum):
    NOTIFIED = "notified"
    ENTRY_UNAVAILABLE = "entry_unavailable"  # entry left WAITING first
    SLOT_UNAVAILABLE = "slot_unavailable"  # slot already has an outstanding offer


def _is_lock_error(error: OperationalError) -> bool:
    message = str(error.orig if error.orig is not None else error).lower()
    return "lock" in message


class WaitlistService:
    """
    Waitlist queue, matcher, notifier and response handler
    """

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        priority_resolver: Optional[PriorityResolver] = None,
        clock: Callable[[], datetime] = local_now,
    ):
        self.db_manager = db_manager or default_db_manager
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.priority_resolver = priority_resolver or PriorityResolver()
        self.clock = clock
        self.logger = logging.getLogger(__name__)

        self.response_timeout = timedelta(minutes=settings.WAITLIST_RESPONSE_TIMEOUT_MINUTES)
        self.expiry_days = settings.WAITLIST_EXPIRY_DAYS
        self.max_entries_per_date = settings.WAITLIST_MAX_ENTRIES_PER_DATE
        self.min_window_minutes = settings.WAITLIST_MIN_WINDOW_MINUTES
        self.channel = settings.WAITLIST_NOTIFICATION_CHANNEL
        self.slot_scan_limit = settings.WAITLIST_SLOT_SCAN_LIMIT

    # Availability

    async def probe_availability(
        self,
        session: AsyncSession,
        salon_id: uuid.UUID,
        requested_date: date,
        window_start: time,
        window_end: time,
        staff_id: Optional[uuid.UUID] = None,
        now: Optional[datetime] = None
    ) -> List[AvailableSlot]:
        """
        Free slots starting inside the window on the requested date that
        have not started yet. Slot inventory is per salon and staff member,
        not per service.
        """
        if now is None:
            now = self.clock()
        stmt = (
            select(TimeSlot)
            .where(
                TimeSlot.salon_id == salon_id,
                TimeSlot.is_booked == 0,
                TimeSlot.is_blocked == 0,
                TimeSlot.start_datetime >= datetime.combine(requested_date, window_start),
                TimeSlot.start_datetime <= datetime.combine(requested_date, window_end),
                TimeSlot.start_datetime > now,
            )
            .order_by(TimeSlot.start_datetime)
        )
        if staff_id is not None:
            stmt = stmt.where(TimeSlot.staff_id == staff_id)

        result = await session.execute(stmt)
        return [AvailableSlot.from_slot(slot) for slot in result.scalars().all()]

    # Joining and queue position

    async def join_waitlist(self, customer_id: uuid.UUID, request: JoinWaitlistRequest) -> Dict[str, Any]:
        """
        Add a customer to the queue for a fully booked window.

        Raises SlotsAvailableError when the window has bookable slots, so
        the client can book directly instead.
        """
        now = self.clock()
        validate_requested_date(request.requested_date, now.date())
        window_start = parse_time_of_day(request.time_window_start, "time_window_start")
        window_end = parse_time_of_day(request.time_window_end, "time_window_end")

        try:
            async with self.db_manager.atomic_transaction() as session:
                salon, service, staff = await validate_entities(
                    session, request.salon_id, request.service_id, request.staff_id
                )
                validate_time_window(window_start, window_end, self.min_window_minutes)

                active_for_date = (
                    WaitlistEntry.user_id == customer_id,
                    WaitlistEntry.requested_date == request.requested_date,
                    WaitlistEntry.status.in_(ACTIVE_STATUSES),
                )

                duplicate = await session.scalar(
                    select(WaitlistEntry.id).where(
                        *active_for_date,
                        WaitlistEntry.salon_id == request.salon_id,
                        WaitlistEntry.service_id == request.service_id,
                    ).limit(1)
                )
                if duplicate is not None:
                    raise self._duplicate_error()

                active_count = await session.scalar(
                    select(func.count(WaitlistEntry.id)).where(*active_for_date)
                )
                if active_count >= self.max_entries_per_date:
                    raise ConflictError(
                        f"Maximum {self.max_entries_per_date} waitlist entries per date allowed",
                        code="TOO_MANY_ENTRIES"
                    )

                available = await self.probe_availability(
                    session, request.salon_id, request.requested_date,
                    window_start, window_end, request.staff_id, now=now
                )
                if available:
                    raise SlotsAvailableError([slot.to_dict() for slot in available])

                priority = await self.priority_resolver.resolve_priority(customer_id)

                entry = WaitlistEntry(
                    user_id=customer_id,
                    salon_id=request.salon_id,
                    service_id=request.service_id,
                    staff_id=request.staff_id,
                    requested_date=request.requested_date,
                    time_window_start=window_start,
                    time_window_end=window_end,
                    flexibility_days=request.flexibility_days,
                    priority=priority.value,
                    status=WaitlistStatus.WAITING,
                    expires_at=datetime.combine(request.requested_date, time.min) + timedelta(days=self.expiry_days),
                    created_at=now,
                    updated_at=now,
                )
                session.add(entry)
                await session.flush()

                position = await self._queue_position(session, entry, now)
        except IntegrityError:
            # Lost the check-then-insert race to a concurrent join
            raise self._duplicate_error()

        await metrics_collector.record_transition(WaitlistStatus.WAITING.value)
        self.logger.info(
            f"Customer {customer_id} joined waitlist at position {position} (priority {entry.priority})",
            extra={"entry_id": entry.id}
        )
        return self._entry_view(entry, salon=salon, service=service, staff=staff, position=position)

    async def get_queue_position(self, entry_id: uuid.UUID) -> int:
        """1-based position among waiting entries, 0 if the entry is not waiting"""
        async with self.db_manager.read_session() as session:
            entry = await session.get(WaitlistEntry, entry_id)
            if entry is None:
                raise NotFoundError("Waitlist entry", entry_id)
            return await self._queue_position(session, entry, self.clock())

    async def _queue_position(self, session: AsyncSession, entry: WaitlistEntry, now: datetime) -> int:
        if entry.status != WaitlistStatus.WAITING or entry.expires_at <= now:
            return 0

        ranks_ahead = or_(
            WaitlistEntry.priority > entry.priority,
            and_(
                WaitlistEntry.priority == entry.priority,
                WaitlistEntry.created_at < entry.created_at,
            ),
            and_(
                WaitlistEntry.priority == entry.priority,
                WaitlistEntry.created_at == entry.created_at,
                WaitlistEntry.id < entry.id,
            ),
        )
        ahead = await session.scalar(
            select(func.count(WaitlistEntry.id)).where(
                WaitlistEntry.salon_id == entry.salon_id,
                WaitlistEntry.requested_date == entry.requested_date,
                WaitlistEntry.status == WaitlistStatus.WAITING,
                WaitlistEntry.expires_at > now,
                ranks_ahead,
            )
        )
        return ahead + 1

    # Matching and offers

    async def find_matching_entries(self, slot_id: uuid.UUID) -> List[WaitlistEntry]:
        """Waiting entries compatible with the slot, best candidate first"""
        async with self.db_manager.read_session() as session:
            slot = await session.get(TimeSlot, slot_id)
            if slot is None:
                return []
            return await self._find_matching_entries(session, slot)

    async def _find_matching_entries(
        self, session: AsyncSession, slot: TimeSlot, now: Optional[datetime] = None
    ) -> List[WaitlistEntry]:
        # Entries past expires_at are closed even before the expiry sweep marks them
        if now is None:
            now = self.clock()
        slot_time = slot.slot_time
        result = await session.execute(
            select(WaitlistEntry)
            .where(
                WaitlistEntry.salon_id == slot.salon_id,
                WaitlistEntry.status == WaitlistStatus.WAITING,
                WaitlistEntry.expires_at > now,
                WaitlistEntry.time_window_start <= slot_time,
                WaitlistEntry.time_window_end >= slot_time,
            )
            .order_by(*QUEUE_ORDER)
        )
        # Flexibility and staff rules are checked in Python
        return filter_compatible(result.scalars().all(), slot)

    async def notify_waitlist_entry(self, entry_id: uuid.UUID, slot_id: uuid.UUID) -> bool:
        """
        Offer a slot to a waiting entry. Returns False when the entry is no
        longer waiting or the slot already has an outstanding offer.
        """
        return await self._offer_slot(entry_id, slot_id) == OfferOutcome.NOTIFIED

    async def _offer_slot(self, entry_id: uuid.UUID, slot_id: uuid.UUID) -> OfferOutcome:
        now = self.clock()
        deadline = now + self.response_timeout

        try:
            async with self.db_manager.atomic_transaction() as session:
                result = await session.execute(
                    update(WaitlistEntry)
                    .where(
                        WaitlistEntry.id == entry_id,
                        WaitlistEntry.status == WaitlistStatus.WAITING,
                        WaitlistEntry.expires_at > now,
                    )
                    .values(
                        status=WaitlistStatus.NOTIFIED,
                        notified_at=now,
                        notified_slot_id=slot_id,
                        response_deadline=deadline,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    await metrics_collector.record_race_loss()
                    self.logger.info(
                        f"Entry {entry_id} is no longer waiting, not notifying",
                        extra={"entry_id": entry_id, "slot_id": slot_id}
                    )
                    return OfferOutcome.ENTRY_UNAVAILABLE

                session.add(WaitlistNotification(
                    waitlist_id=entry_id,
                    slot_id=slot_id,
                    notification_type=self.channel,
                    sent_at=now,
                ))
        except IntegrityError:
            await metrics_collector.record_race_loss()
            self.logger.info(
                f"Slot {slot_id} already has an outstanding offer",
                extra={"entry_id": entry_id, "slot_id": slot_id}
            )
            return OfferOutcome.SLOT_UNAVAILABLE

        await metrics_collector.record_transition(WaitlistStatus.NOTIFIED.value)
        self.logger.info(
            f"Offered slot {slot_id} to entry {entry_id}, respond by {deadline.isoformat()}",
            extra={"entry_id": entry_id, "slot_id": slot_id}
        )
        await self._deliver_offer(entry_id, slot_id, deadline)
        return OfferOutcome.NOTIFIED

    async def _deliver_offer(self, entry_id: uuid.UUID, slot_id: uuid.UUID, deadline: datetime):
        """Best-effort delivery after the offer is committed"""
        try:
            async with self.db_manager.read_session() as session:
                entry = await session.get(WaitlistEntry, entry_id)
                slot = await session.get(TimeSlot, slot_id)
                salon = await session.get(Salon, entry.salon_id)
                service = await session.get(Service, entry.service_id)
                customer = await session.get(User, entry.user_id)

            payload = {
                "entry_id": str(entry_id),
                "slot_id": str(slot_id),
                "salon_name": salon.name if salon else "your salon",
                "service_name": service.name if service else "your service",
                "slot_date": slot.slot_date.isoformat(),
                "slot_time": slot.slot_time.strftime("%H:%M"),
                "response_deadline": deadline.strftime("%H:%M"),
                "phone": customer.phone if customer else None,
            }
            result = await self.dispatcher.send(entry.user_id, self.channel, payload)
            await metrics_collector.record_notification(self.channel, result.success)
        except Exception as e:
            self.logger.error(
                f"Failed to deliver offer for entry {entry_id}: {e}",
                extra={"entry_id": entry_id, "slot_id": slot_id},
                exc_info=True
            )
            await metrics_collector.record_notification(self.channel, False)

    async def process_slot_release(self, slot_id: uuid.UUID) -> Optional[uuid.UUID]:
        """
        Entry point for a freed slot (booking cancelled, offer declined or
        timed out). Returns the id of the notified entry, if any.
        """
        self.logger.info(f"Slot {slot_id} released", extra={"slot_id": slot_id})
        return await self.process_next_in_queue(slot_id)

    async def process_next_in_queue(self, slot_id: uuid.UUID) -> Optional[uuid.UUID]:
        """Offer the slot to the best compatible waiting entry"""
        now = self.clock()

        async with self.db_manager.read_session() as session:
            slot = await session.get(TimeSlot, slot_id)
            if slot is None or not slot.is_free or slot.start_datetime <= now:
                return None

            outstanding = await session.scalar(
                select(WaitlistEntry.id).where(WaitlistEntry.notified_slot_id == slot_id)
            )
            if outstanding is not None:
                return None

            candidates = await self._find_matching_entries(session, slot, now)

        for candidate in candidates:
            outcome = await self._offer_slot(candidate.id, slot_id)
            if outcome == OfferOutcome.NOTIFIED:
                return candidate.id
            if outcome == OfferOutcome.SLOT_UNAVAILABLE:
                return None

        return None

    async def release_slot(self, slot_id: uuid.UUID, actor: User) -> Optional[uuid.UUID]:
        """Owner-triggered release, used by booking cancellation flows"""
        async with self.db_manager.read_session() as session:
            slot = await session.get(TimeSlot, slot_id)
            if slot is None:
                raise NotFoundError("Slot", slot_id)
            salon = await session.get(Salon, slot.salon_id)

        if not actor.is_admin and (salon is None or salon.owner_id != actor.id):
            raise AuthorizationError("Not authorized to manage this salon's slots")

        return await self.process_slot_release(slot_id)

    # Responses

    async def respond_to_notification(
        self,
        customer_id: uuid.UUID,
        entry_id: uuid.UUID,
        response: str
    ) -> RespondResult:
        """Accept or decline an outstanding slot offer"""
        try:
            response = NotificationResponse(response)
        except ValueError:
            response = None
        if response not in (NotificationResponse.ACCEPTED, NotificationResponse.DECLINED):
            raise ValidationError("Response must be 'accepted' or 'declined'", field="response")

        now = self.clock()
        entry = await self._get_owned_entry(customer_id, entry_id, "respond to")

        if entry.status != WaitlistStatus.NOTIFIED:
            raise WaitlistStateError("This entry has no pending slot offer", code="NOT_PENDING")

        if entry.response_deadline is not None and now > entry.response_deadline:
            released = await self._close_offer(
                entry_id, WaitlistStatus.EXPIRED, NotificationResponse.EXPIRED
            )
            if released is not None:
                await metrics_collector.record_transition(WaitlistStatus.EXPIRED.value)
                await self.process_slot_release(released)
            raise WaitlistStateError("The response deadline has passed", code="RESPONSE_DEADLINE_PASSED")

        if response == NotificationResponse.DECLINED:
            released = await self._close_offer(
                entry_id, WaitlistStatus.CANCELLED, NotificationResponse.DECLINED
            )
            if released is None:
                raise WaitlistStateError("This entry has no pending slot offer", code="NOT_PENDING")

            await metrics_collector.record_transition(WaitlistStatus.CANCELLED.value)
            self.logger.info(f"Entry {entry_id} declined slot {released}", extra={"entry_id": entry_id})
            await self.process_slot_release(released)
            return RespondResult(entry_id=entry_id, response=response)

        return await self._accept_offer(entry, now)

    async def _accept_offer(self, entry: WaitlistEntry, now: datetime) -> RespondResult:
        """Convert an accepted offer into a confirmed booking"""
        slot_id = entry.notified_slot_id
        booking_id = uuid.uuid4()
        slot_taken = False
        expired_here = False

        try:
            async with self.db_manager.atomic_transaction() as session:
                result = await session.execute(
                    select(TimeSlot).where(TimeSlot.id == slot_id).with_for_update()
                )
                slot = result.scalar_one_or_none()
                if slot is None:
                    raise NotFoundError("Slot", message="The offered slot no longer exists")

                if not slot.is_free:
                    slot_taken = True
                    expired_here = await self._expire_offer(session, entry.id, slot_id, now)
                else:
                    service = await session.get(Service, entry.service_id)
                    if service is None:
                        raise NotFoundError("Service", entry.service_id)

                    customer = await session.get(User, entry.user_id)
                    if customer is None:
                        raise NotFoundError("Customer", entry.user_id)

                    claimed = await session.execute(
                        update(TimeSlot)
                        .where(TimeSlot.id == slot_id, TimeSlot.is_booked == 0)
                        .values(is_booked=1, booking_id=booking_id)
                        .execution_options(synchronize_session=False)
                    )
                    if claimed.rowcount != 1:
                        slot_taken = True
                        expired_here = await self._expire_offer(session, entry.id, slot_id, now)
                    else:
                        session.add(Booking(
                            id=booking_id,
                            salon_id=entry.salon_id,
                            service_id=entry.service_id,
                            staff_id=slot.staff_id,
                            time_slot_id=slot_id,
                            user_id=customer.id,
                            customer_name=customer.full_name or customer.email,
                            customer_email=customer.email,
                            customer_phone=customer.phone or "",
                            booking_date=slot.slot_date.isoformat(),
                            booking_time=slot.slot_time.strftime("%H:%M"),
                            status=BookingStatus.CONFIRMED,
                            total_amount_paisa=service.price_in_paisa or 0,
                            payment_method=PaymentMethod.PAY_AT_SALON,
                            notes="Booked from waitlist",
                        ))

                        booked = await session.execute(
                            update(WaitlistEntry)
                            .where(
                                WaitlistEntry.id == entry.id,
                                WaitlistEntry.status == WaitlistStatus.NOTIFIED,
                                WaitlistEntry.notified_slot_id == slot_id,
                            )
                            .values(
                                status=WaitlistStatus.BOOKED,
                                booked_at=now,
                                notified_slot_id=None,
                            )
                            .execution_options(synchronize_session=False)
                        )
                        if booked.rowcount != 1:
                            # Expired by a sweep after we read it; roll the booking back
                            raise WaitlistStateError(
                                "This entry has no pending slot offer",
                                code="NOT_PENDING"
                            )

                        await self._close_notification(
                            session, entry.id, slot_id, NotificationResponse.ACCEPTED, now
                        )
        except OperationalError as e:
            if not _is_lock_error(e):
                raise
            await metrics_collector.record_booking_conflict()
            self.logger.warning(
                f"Slot {slot_id} contended while accepting entry {entry.id}: {e}",
                extra={"entry_id": entry.id, "slot_id": slot_id}
            )
            raise ConflictError(
                "This slot is being booked by another request, please try again",
                code="SLOT_CONTENDED"
            )

        if slot_taken:
            await metrics_collector.record_booking_conflict()
            if expired_here:
                await metrics_collector.record_transition(WaitlistStatus.EXPIRED.value)
            self.logger.info(
                f"Slot {slot_id} was taken before entry {entry.id} accepted",
                extra={"entry_id": entry.id, "slot_id": slot_id}
            )
            raise ConflictError("This slot has already been booked", code="SLOT_TAKEN")

        await metrics_collector.record_transition(WaitlistStatus.BOOKED.value)
        self.logger.info(
            f"Entry {entry.id} accepted slot {slot_id}, booking {booking_id} confirmed",
            extra={"entry_id": entry.id, "slot_id": slot_id}
        )
        return RespondResult(
            entry_id=entry.id,
            response=NotificationResponse.ACCEPTED,
            booking_id=booking_id,
            slot_date=slot.slot_date.isoformat(),
            slot_time=slot.slot_time.strftime("%H:%M"),
        )

    async def _expire_offer(
        self,
        session: AsyncSession,
        entry_id: uuid.UUID,
        slot_id: uuid.UUID,
        now: datetime
    ) -> bool:
        """Expire an offer whose slot was booked elsewhere; True if this call expired it"""
        result = await session.execute(
            update(WaitlistEntry)
            .where(
                WaitlistEntry.id == entry_id,
                WaitlistEntry.status == WaitlistStatus.NOTIFIED,
            )
            .values(status=WaitlistStatus.EXPIRED, notified_slot_id=None)
            .execution_options(synchronize_session=False)
        )
        await self._close_notification(session, entry_id, slot_id, NotificationResponse.EXPIRED, now)
        return result.rowcount == 1

    async def _close_notification(
        self,
        session: AsyncSession,
        entry_id: uuid.UUID,
        slot_id: uuid.UUID,
        response: NotificationResponse,
        now: datetime
    ):
        await session.execute(
            update(WaitlistNotification)
            .where(
                WaitlistNotification.waitlist_id == entry_id,
                WaitlistNotification.slot_id == slot_id,
                WaitlistNotification.response.is_(None),
            )
            .values(response=response, responded_at=now)
            .execution_options(synchronize_session=False)
        )

    async def _close_offer(
        self,
        entry_id: uuid.UUID,
        new_status: WaitlistStatus,
        response: NotificationResponse
    ) -> Optional[uuid.UUID]:
        """
        Move a notified entry to `new_status` and close its notification.
        Returns the released slot id, or None if the entry was no longer notified.
        """
        now = self.clock()
        async with self.db_manager.atomic_transaction() as session:
            entry = await session.get(WaitlistEntry, entry_id)
            if entry is None or entry.status != WaitlistStatus.NOTIFIED:
                return None
            slot_id = entry.notified_slot_id

            result = await session.execute(
                update(WaitlistEntry)
                .where(
                    WaitlistEntry.id == entry_id,
                    WaitlistEntry.status == WaitlistStatus.NOTIFIED,
                )
                .values(status=new_status, notified_slot_id=None)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await metrics_collector.record_race_loss()
                return None

            await self._close_notification(session, entry_id, slot_id, response, now)

        return slot_id

    # Customer operations

    async def cancel_waitlist_entry(self, customer_id: uuid.UUID, entry_id: uuid.UUID):
        """Leave the queue; an outstanding offer is declined and its slot released"""
        entry = await self._get_owned_entry(customer_id, entry_id, "cancel")

        if entry.status == WaitlistStatus.BOOKED:
            raise WaitlistStateError(
                "This entry has already been converted to a booking",
                code="ALREADY_BOOKED"
            )
        if entry.status in (WaitlistStatus.CANCELLED, WaitlistStatus.EXPIRED):
            raise WaitlistStateError(
                "This entry is already cancelled or expired",
                code="ALREADY_CLOSED"
            )

        if entry.status == WaitlistStatus.NOTIFIED:
            released = await self._close_offer(
                entry_id, WaitlistStatus.CANCELLED, NotificationResponse.DECLINED
            )
            if released is None:
                raise WaitlistStateError("This entry changed state, please refresh", code="STATE_CHANGED")
            await metrics_collector.record_transition(WaitlistStatus.CANCELLED.value)
            self.logger.info(f"Entry {entry_id} cancelled with an outstanding offer", extra={"entry_id": entry_id})
            await self.process_slot_release(released)
            return

        async with self.db_manager.atomic_transaction() as session:
            result = await session.execute(
                update(WaitlistEntry)
                .where(
                    WaitlistEntry.id == entry_id,
                    WaitlistEntry.status == WaitlistStatus.WAITING,
                )
                .values(status=WaitlistStatus.CANCELLED)
                .execution_options(synchronize_session=False)
            )
            cancelled = result.rowcount == 1

        if not cancelled:
            await metrics_collector.record_race_loss()
            raise WaitlistStateError("This entry changed state, please refresh", code="STATE_CHANGED")

        await metrics_collector.record_transition(WaitlistStatus.CANCELLED.value)
        self.logger.info(f"Entry {entry_id} cancelled", extra={"entry_id": entry_id})

    async def get_customer_entries(self, customer_id: uuid.UUID) -> List[Dict[str, Any]]:
        """Active entries for a customer with salon, service and staff details"""
        now = self.clock()
        async with self.db_manager.read_session() as session:
            result = await session.execute(
                select(WaitlistEntry)
                .where(
                    WaitlistEntry.user_id == customer_id,
                    WaitlistEntry.status.in_(ACTIVE_STATUSES),
                )
                .order_by(WaitlistEntry.requested_date, WaitlistEntry.time_window_start)
            )
            entries = result.scalars().all()

            salons = await self._load_by_id(session, Salon, {e.salon_id for e in entries})
            services = await self._load_by_id(session, Service, {e.service_id for e in entries})
            staff = await self._load_by_id(session, Staff, {e.staff_id for e in entries if e.staff_id})

            views = []
            for entry in entries:
                views.append(self._entry_view(
                    entry,
                    salon=salons.get(entry.salon_id),
                    service=services.get(entry.service_id),
                    staff=staff.get(entry.staff_id),
                    position=await self._queue_position(session, entry, now),
                ))
            return views

    async def get_salon_analytics(self, salon_id: uuid.UUID, owner_id: uuid.UUID) -> Dict[str, Any]:
        """Waitlist demand for a salon, visible to its owner only"""
        now = self.clock()
        async with self.db_manager.read_session() as session:
            salon = await session.get(Salon, salon_id)
            if salon is None:
                raise NotFoundError("Salon", salon_id)
            if salon.owner_id != owner_id:
                raise AuthorizationError("Not authorized to view this salon's waitlist")

            result = await session.execute(
                select(WaitlistEntry)
                .where(
                    WaitlistEntry.salon_id == salon_id,
                    WaitlistEntry.status.in_(ACTIVE_STATUSES),
                )
                .order_by(WaitlistEntry.created_at.desc())
                .limit(50)
            )
            entries = result.scalars().all()
            services = await self._load_by_id(session, Service, {e.service_id for e in entries})

            by_date: Dict[str, int] = {}
            by_service: Dict[uuid.UUID, int] = {}
            for entry in entries:
                key = entry.requested_date.isoformat()
                by_date[key] = by_date.get(key, 0) + 1
                by_service[entry.service_id] = by_service.get(entry.service_id, 0) + 1

            recent_entries = []
            for entry in entries[:10]:
                recent_entries.append(self._entry_view(
                    entry,
                    service=services.get(entry.service_id),
                    position=await self._queue_position(session, entry, now),
                ))

        return {
            "salon_id": salon_id,
            "total_waiting": len(entries),
            "by_date": by_date,
            "by_service": [
                {
                    "service_id": service_id,
                    "service_name": services[service_id].name if service_id in services else None,
                    "count": count,
                }
                for service_id, count in by_service.items()
            ],
            "recent_entries": recent_entries,
        }

    # Sweeps

    async def process_available_slots(self) -> int:
        """Offer every free future slot to its best candidate"""
        now = self.clock()
        async with self.db_manager.read_session() as session:
            result = await session.execute(
                select(TimeSlot.id)
                .where(
                    TimeSlot.is_booked == 0,
                    TimeSlot.is_blocked == 0,
                    TimeSlot.start_datetime > now,
                )
                .order_by(TimeSlot.start_datetime)
                .limit(self.slot_scan_limit)
            )
            slot_ids = result.scalars().all()

        notified = 0
        for slot_id in slot_ids:
            if await self.process_next_in_queue(slot_id) is not None:
                notified += 1
        return notified

    async def expire_old_entries(self) -> int:
        """Expire waiting entries past their expiry time"""
        now = self.clock()
        async with self.db_manager.atomic_transaction() as session:
            result = await session.execute(
                update(WaitlistEntry)
                .where(
                    WaitlistEntry.status == WaitlistStatus.WAITING,
                    WaitlistEntry.expires_at <= now,
                )
                .values(status=WaitlistStatus.EXPIRED)
                .execution_options(synchronize_session=False)
            )
            expired = result.rowcount

        await metrics_collector.record_transition(WaitlistStatus.EXPIRED.value, expired)
        if expired:
            self.logger.info(f"Expired {expired} stale waitlist entries")
        return expired

    async def escalate_unresponded_notifications(self) -> int:
        """Expire offers past their deadline and pass each slot to the next candidate"""
        now = self.clock()
        async with self.db_manager.read_session() as session:
            result = await session.execute(
                select(WaitlistEntry.id).where(
                    WaitlistEntry.status == WaitlistStatus.NOTIFIED,
                    WaitlistEntry.response_deadline < now,
                )
            )
            entry_ids = result.scalars().all()

        escalated = 0
        for entry_id in entry_ids:
            try:
                slot_id = await self._close_offer(
                    entry_id, WaitlistStatus.EXPIRED, NotificationResponse.EXPIRED
                )
                if slot_id is None:
                    continue
                escalated += 1
                await metrics_collector.record_transition(WaitlistStatus.EXPIRED.value)
                await self.process_slot_release(slot_id)
            except Exception as e:
                self.logger.error(
                    f"Failed to escalate entry {entry_id}: {e}",
                    extra={"entry_id": entry_id},
                    exc_info=True
                )

        if escalated:
            self.logger.info(f"Escalated {escalated} unanswered offers")
        return escalated

    # Helpers

    async def _get_owned_entry(self, customer_id: uuid.UUID, entry_id: uuid.UUID, action: str) -> WaitlistEntry:
        async with self.db_manager.read_session() as session:
            entry = await session.get(WaitlistEntry, entry_id)

        if entry is None:
            raise NotFoundError("Waitlist entry", entry_id)
        if entry.user_id != customer_id:
            raise AuthorizationError(f"Not authorized to {action} this waitlist entry")
        return entry

    async def _load_by_id(self, session: AsyncSession, model, ids) -> Dict[uuid.UUID, Any]:
        if not ids:
            return {}
        result = await session.execute(select(model).where(model.id.in_(ids)))
        return {obj.id: obj for obj in result.scalars().all()}

    def _duplicate_error(self) -> ConflictError:
        return ConflictError(
            "You are already on the waitlist for this service on this date",
            code="DUPLICATE_ENTRY"
        )

    def _entry_view(
        self,
        entry: WaitlistEntry,
        salon: Optional[Salon] = None,
        service: Optional[Service] = None,
        staff: Optional[Staff] = None,
        position: int = 0
    ) -> Dict[str, Any]:
        """Format an entry for API responses"""
        window_start = entry.time_window_start.strftime("%H:%M")
        window_end = entry.time_window_end.strftime("%H:%M")
        return {
            "id": entry.id,
            "salon": {
                "id": salon.id,
                "name": salon.name,
                "image_url": salon.image_url,
            } if salon else None,
            "service": {
                "id": service.id,
                "name": service.name,
                "price_in_paisa": service.price_in_paisa,
                "duration_minutes": service.duration_minutes,
            } if service else None,
            "staff": {"id": staff.id, "name": staff.name} if staff else None,
            "requested_date": entry.requested_date,
            "time_window_start": window_start,
            "time_window_end": window_end,
            "time_window": f"{window_start} - {window_end}",
            "flexibility_days": entry.flexibility_days,
            "priority": entry.priority,
            "priority_tier": entry.priority_tier.name.lower(),
            "position": position,
            "status": entry.status.value,
            "notified_slot_id": entry.notified_slot_id,
            "notified_at": entry.notified_at,
            "response_deadline": entry.response_deadline,
            "expires_at": entry.expires_at,
            "booked_at": entry.booked_at,
            "created_at": entry.created_at,
        }


# Initialize service
waitlist_service = WaitlistService()


def get_waitlist_service() -> WaitlistService:
    """Dependency returning the shared waitlist service"""
    return waitlist_service
