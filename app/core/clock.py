"""
Business clock

Slot start times are stored as salon wall-clock values, so every timestamp the
waitlist engine writes or compares uses the same naive local time.
"""

from datetime import datetime
from zoneinfo import ZoneInfo

from app.config import settings

BUSINESS_TZ = ZoneInfo(settings.BUSINESS_TIMEZONE)


def local_now() -> datetime:
    """Current time in the business timezone, without tzinfo"""
    return datetime.now(BUSINESS_TZ).replace(tzinfo=None)
