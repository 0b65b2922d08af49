"""
Database models
"""

from app.models.user import User, UserRole
from app.models.salon import Salon, Service, Staff
from app.models.time_slot import TimeSlot
from app.models.booking import Booking, BookingStatus, PaymentMethod
from app.models.waitlist import (
    WaitlistEntry,
    WaitlistNotification,
    WaitlistStatus,
    WaitlistPriority,
    NotificationResponse,
)

__all__ = [
    "User",
    "UserRole",
    "Salon",
    "Service",
    "Staff",
    "TimeSlot",
    "Booking",
    "BookingStatus",
    "PaymentMethod",
    "WaitlistEntry",
    "WaitlistNotification",
    "WaitlistStatus",
    "WaitlistPriority",
    "NotificationResponse",
]
