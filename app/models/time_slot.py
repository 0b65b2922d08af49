"""
Time slot model
"""

from sqlalchemy import Column, Integer, DateTime, ForeignKey, Uuid, Index

from app.models.base import BaseModel


class TimeSlot(BaseModel):
    """
    Bookable slot generated from a salon's availability patterns.
    Start and end are salon wall-clock times.
    """
    __tablename__ = "time_slots"
    __table_args__ = (
        Index("ix_time_slots_free_start", "is_booked", "start_datetime"),
    )

    salon_id = Column(Uuid(as_uuid=True), ForeignKey("salons.id"), nullable=False, index=True)
    staff_id = Column(Uuid(as_uuid=True), ForeignKey("staff.id"), nullable=True)
    start_datetime = Column(DateTime, nullable=False, index=True)
    end_datetime = Column(DateTime, nullable=False)
    is_booked = Column(Integer, default=0, nullable=False)
    is_blocked = Column(Integer, default=0, nullable=False)  # Manually blocked by salon
    booking_id = Column(Uuid(as_uuid=True), nullable=True)

    @property
    def slot_date(self):
        return self.start_datetime.date()

    @property
    def slot_time(self):
        return self.start_datetime.time().replace(second=0, microsecond=0)

    @property
    def is_free(self) -> bool:
        return self.is_booked == 0 and self.is_blocked == 0

    def __repr__(self):
        return f"<TimeSlot(id={self.id}, salon_id={self.salon_id}, start={self.start_datetime}, booked={self.is_booked})>"
