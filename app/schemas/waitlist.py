"""
Waitlist schemas
"""

from pydantic import Field, field_validator
from typing import Dict, List, Literal, Optional
from uuid import UUID
from datetime import date, datetime

from app.schemas.base import BaseSchema, IDSchema
from app.services.waitlist_validation import TIME_OF_DAY


class JoinWaitlistRequest(BaseSchema):
    """Join waitlist request schema"""
    salon_id: UUID
    service_id: UUID
    staff_id: Optional[UUID] = None
    requested_date: date
    time_window_start: str = Field(..., examples=["10:00"])
    time_window_end: str = Field(..., examples=["12:00"])
    flexibility_days: int = Field(0, ge=0, le=7)

    @field_validator("time_window_start", "time_window_end")
    @classmethod
    def validate_time_of_day(cls, v: str) -> str:
        if not TIME_OF_DAY.fullmatch(v):
            raise ValueError("Time must be in HH:MM format")
        return v


class RespondWaitlistRequest(BaseSchema):
    """Response to a slot offer"""
    response: Literal["accepted", "declined"]


class SalonSummary(BaseSchema):
    id: UUID
    name: str
    image_url: Optional[str] = None


class ServiceSummary(BaseSchema):
    id: UUID
    name: str
    price_in_paisa: Optional[int] = None
    duration_minutes: Optional[int] = None


class StaffSummary(BaseSchema):
    id: UUID
    name: str


class WaitlistEntryResponse(IDSchema):
    """Waitlist entry response schema"""
    salon: Optional[SalonSummary] = None
    service: Optional[ServiceSummary] = None
    staff: Optional[StaffSummary] = None
    requested_date: date
    time_window_start: str
    time_window_end: str
    time_window: str
    flexibility_days: int
    priority: int
    priority_tier: str
    position: int
    status: str
    notified_slot_id: Optional[UUID] = None
    notified_at: Optional[datetime] = None
    response_deadline: Optional[datetime] = None
    expires_at: datetime
    booked_at: Optional[datetime] = None
    created_at: datetime


class JoinWaitlistResponse(BaseSchema):
    success: bool = True
    waitlist_entry: WaitlistEntryResponse


class MyEntriesResponse(BaseSchema):
    entries: List[WaitlistEntryResponse]


class SlotInfo(BaseSchema):
    date: str
    time: str


class RespondWaitlistResponse(BaseSchema):
    success: bool = True
    message: str
    booking_id: Optional[UUID] = None
    slot_info: Optional[SlotInfo] = None


class ServiceDemand(BaseSchema):
    service_id: UUID
    service_name: Optional[str] = None
    count: int


class SalonWaitlistAnalytics(BaseSchema):
    """Owner view of waitlist demand"""
    salon_id: UUID
    total_waiting: int
    by_date: Dict[str, int]
    by_service: List[ServiceDemand]
    recent_entries: List[WaitlistEntryResponse]


class SlotReleaseResponse(BaseSchema):
    success: bool = True
    slot_id: UUID
    notified_entry_id: Optional[UUID] = None
