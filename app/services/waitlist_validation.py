"""
Request validation for waitlist joins
"""

from datetime import date, datetime, time
from typing import Optional, Tuple
import re
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import InvalidWindowError, NotFoundError, ValidationError
from app.models.salon import Salon, Service, Staff

TIME_OF_DAY = re.compile(r"([01]\d|2[0-3]):[0-5]\d")


def parse_time_of_day(value: str, field: str = "time") -> time:
    """Parse an HH:MM string into a time"""
    if not isinstance(value, str) or not TIME_OF_DAY.fullmatch(value):
        raise ValidationError(f"Invalid {field} '{value}', expected HH:MM", field=field)
    return datetime.strptime(value, "%H:%M").time()


def window_minutes(start: time, end: time) -> int:
    return (end.hour * 60 + end.minute) - (start.hour * 60 + start.minute)


def validate_time_window(start: time, end: time, min_minutes: int) -> None:
    """
    Reject inverted, empty or too-narrow windows. Windows never span
    midnight.
    """
    if end <= start:
        raise InvalidWindowError("Time window end must be after time window start")

    if window_minutes(start, end) < min_minutes:
        raise InvalidWindowError(f"Time window must be at least {min_minutes} minutes")


def validate_requested_date(requested: date, today: date) -> None:
    if requested < today:
        raise ValidationError("Cannot join the waitlist for a past date", field="requested_date")


async def validate_entities(
    session: AsyncSession,
    salon_id: uuid.UUID,
    service_id: uuid.UUID,
    staff_id: Optional[uuid.UUID] = None
) -> Tuple[Salon, Service, Optional[Staff]]:
    """
    Load the salon, service and optional staff member for a join request,
    checking they exist and belong together
    """
    salon = await session.get(Salon, salon_id)
    if not salon or not salon.is_active:
        raise NotFoundError("Salon", message="Salon not found or inactive")

    result = await session.execute(
        select(Service).where(Service.id == service_id, Service.salon_id == salon_id)
    )
    service = result.scalar_one_or_none()
    if not service:
        raise NotFoundError("Service", message="Service not found for this salon")

    staff = None
    if staff_id is not None:
        result = await session.execute(
            select(Staff).where(
                Staff.id == staff_id,
                Staff.salon_id == salon_id,
                Staff.is_active == True  # noqa: E712
            )
        )
        staff = result.scalar_one_or_none()
        if not staff:
            raise NotFoundError("Staff", message="Staff member not found for this salon")

    return salon, service, staff
