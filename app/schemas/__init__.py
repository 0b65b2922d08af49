"""
Pydantic schemas for request and response validation
"""

from app.schemas.waitlist import (
    JoinWaitlistRequest,
    JoinWaitlistResponse,
    RespondWaitlistRequest,
    RespondWaitlistResponse,
    WaitlistEntryResponse,
    MyEntriesResponse,
    SalonWaitlistAnalytics,
    SlotReleaseResponse
)
from app.schemas.response import (
    ErrorResponse,
    MessageResponse
)

__all__ = [
    "JoinWaitlistRequest",
    "JoinWaitlistResponse",
    "RespondWaitlistRequest",
    "RespondWaitlistResponse",
    "WaitlistEntryResponse",
    "MyEntriesResponse",
    "SalonWaitlistAnalytics",
    "SlotReleaseResponse",
    "ErrorResponse",
    "MessageResponse"
]
