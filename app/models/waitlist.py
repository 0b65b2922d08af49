"""
Slot waitlist models
"""

from sqlalchemy import (
    Column, String, Integer, Date, Time, DateTime, ForeignKey, Enum, Uuid, Index, CheckConstraint, text
)
from sqlalchemy.orm import relationship
import enum

from app.models.base import BaseModel


class WaitlistStatus(str, enum.Enum):
    WAITING = "waiting"
    NOTIFIED = "notified"
    BOOKED = "booked"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


ACTIVE_STATUSES = (WaitlistStatus.WAITING, WaitlistStatus.NOTIFIED)


class WaitlistPriority(int, enum.Enum):
    """
    Queue priority tiers; higher is served first.
    Values are spaced so a tier can be added between two existing ones.
    """
    REGULAR = 10
    GOLD = 20
    ELITE = 30


class NotificationResponse(str, enum.Enum):
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


class WaitlistEntry(BaseModel):
    """
    One customer's request to be offered a slot when one frees up
    """
    __tablename__ = "slot_waitlist"
    __table_args__ = (
        # One active entry per customer/salon/service/date; Enum columns store member names
        Index(
            "uq_slot_waitlist_active",
            "user_id", "salon_id", "service_id", "requested_date",
            unique=True,
            postgresql_where=text("status IN ('WAITING', 'NOTIFIED')"),
            sqlite_where=text("status IN ('WAITING', 'NOTIFIED')"),
        ),
        Index("ix_slot_waitlist_queue", "salon_id", "status", "priority", "created_at"),
        Index("ix_slot_waitlist_deadline", "status", "response_deadline"),
        CheckConstraint("time_window_end > time_window_start", name="chk_slot_waitlist_window"),
        CheckConstraint("flexibility_days BETWEEN 0 AND 7", name="chk_slot_waitlist_flexibility"),
    )

    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    salon_id = Column(Uuid(as_uuid=True), ForeignKey("salons.id"), nullable=False)
    service_id = Column(Uuid(as_uuid=True), ForeignKey("services.id"), nullable=False)
    staff_id = Column(Uuid(as_uuid=True), ForeignKey("staff.id"), nullable=True)  # NULL = any staff
    requested_date = Column(Date, nullable=False)
    time_window_start = Column(Time, nullable=False)
    time_window_end = Column(Time, nullable=False)
    flexibility_days = Column(Integer, default=0, nullable=False)
    priority = Column(Integer, default=WaitlistPriority.REGULAR.value, nullable=False)
    status = Column(
        Enum(WaitlistStatus),
        default=WaitlistStatus.WAITING,
        nullable=False,
        index=True
    )
    # Set only while status is NOTIFIED; unique so a slot has at most one outstanding offer
    notified_slot_id = Column(Uuid(as_uuid=True), ForeignKey("time_slots.id"), nullable=True, unique=True)
    notified_at = Column(DateTime)
    response_deadline = Column(DateTime)
    expires_at = Column(DateTime, nullable=False)
    booked_at = Column(DateTime)

    # Relationships
    user = relationship("User", back_populates="waitlist_entries")
    notifications = relationship(
        "WaitlistNotification",
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="WaitlistNotification.sent_at"
    )

    @property
    def priority_tier(self) -> WaitlistPriority:
        """Tier for the stored priority; unknown values fall to the nearest lower tier"""
        try:
            return WaitlistPriority(self.priority)
        except ValueError:
            lower = [tier for tier in WaitlistPriority if tier.value <= (self.priority or 0)]
            return max(lower) if lower else WaitlistPriority.REGULAR

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def __repr__(self):
        return (
            f"<WaitlistEntry(id={self.id}, user_id={self.user_id}, salon_id={self.salon_id}, "
            f"date={self.requested_date}, priority={self.priority}, status={self.status})>"
        )


class WaitlistNotification(BaseModel):
    """
    Audit record of one slot offer made to a waitlist entry
    """
    __tablename__ = "waitlist_notifications"
    __table_args__ = (
        Index(
            "uq_waitlist_notification_pending",
            "waitlist_id", "slot_id",
            unique=True,
            postgresql_where=text("response IS NULL"),
            sqlite_where=text("response IS NULL"),
        ),
    )

    waitlist_id = Column(Uuid(as_uuid=True), ForeignKey("slot_waitlist.id"), nullable=False, index=True)
    slot_id = Column(Uuid(as_uuid=True), ForeignKey("time_slots.id"), nullable=False)
    notification_type = Column(String(20), nullable=False)
    sent_at = Column(DateTime, nullable=False)
    response = Column(Enum(NotificationResponse), nullable=True)
    responded_at = Column(DateTime)

    entry = relationship("WaitlistEntry", back_populates="notifications")

    def __repr__(self):
        return f"<WaitlistNotification(id={self.id}, waitlist_id={self.waitlist_id}, slot_id={self.slot_id}, response={self.response})>"
