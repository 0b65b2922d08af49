"""
Booking model
"""

from sqlalchemy import Column, String, Integer, Text, ForeignKey, Enum, Uuid
import enum

from app.models.base import BaseModel


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class PaymentMethod(str, enum.Enum):
    PAY_NOW = "pay_now"
    PAY_AT_SALON = "pay_at_salon"


class Booking(BaseModel):
    """
    Salon appointment. The waitlist engine only creates confirmed,
    pay-at-salon bookings for accepted offers.
    """
    __tablename__ = "bookings"

    salon_id = Column(Uuid(as_uuid=True), ForeignKey("salons.id"), nullable=False, index=True)
    service_id = Column(Uuid(as_uuid=True), ForeignKey("services.id"), nullable=False)
    staff_id = Column(Uuid(as_uuid=True), ForeignKey("staff.id"), nullable=True)
    time_slot_id = Column(Uuid(as_uuid=True), ForeignKey("time_slots.id"), nullable=True, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True)
    customer_name = Column(String(255), nullable=False)
    customer_email = Column(String(255), nullable=False)
    customer_phone = Column(String(20), nullable=False)
    booking_date = Column(String(10), nullable=False)  # YYYY-MM-DD
    booking_time = Column(String(5), nullable=False)  # HH:MM
    status = Column(
        Enum(BookingStatus),
        default=BookingStatus.PENDING,
        nullable=False,
        index=True
    )
    total_amount_paisa = Column(Integer, nullable=False)
    currency = Column(String(3), default="INR", nullable=False)
    payment_method = Column(
        Enum(PaymentMethod),
        default=PaymentMethod.PAY_NOW,
        nullable=False
    )
    notes = Column(Text)

    def __repr__(self):
        return f"<Booking(id={self.id}, slot={self.time_slot_id}, status={self.status}, amount={self.total_amount_paisa})>"
