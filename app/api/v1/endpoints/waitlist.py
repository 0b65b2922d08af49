"""
Slot waitlist endpoints
"""

from typing import Any
import uuid
import logging
from fastapi import APIRouter, Depends, HTTPException, status

from app.core.exceptions import SalonWaitlistException
from app.core.security import get_current_user, require_salon_staff, RateLimiter
from app.models.user import User
from app.schemas.response import ErrorResponse, MessageResponse
from app.schemas.waitlist import (
    JoinWaitlistRequest,
    JoinWaitlistResponse,
    MyEntriesResponse,
    RespondWaitlistRequest,
    RespondWaitlistResponse,
    SalonWaitlistAnalytics,
    SlotReleaseResponse,
)
from app.services.waitlist_service import WaitlistService, get_waitlist_service
from app.config import settings

logger = logging.getLogger(__name__)
router = APIRouter(
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    }
)

waitlist_rate_limit = RateLimiter(
    max_requests=settings.RATE_LIMIT_WAITLIST_PER_MINUTE,
    window=60,
    scope="waitlist"
)


def _internal_error(operation: str, e: Exception) -> HTTPException:
    logger.error(f"Unexpected error in {operation}: {type(e).__name__}: {e}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error_type": "internal_error",
            "message": "Waitlist service temporarily unavailable",
            "support_reference": f"waitlist_error_{uuid.uuid4().hex[:8]}"
        }
    )


@router.post(
    "/join",
    response_model=JoinWaitlistResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(waitlist_rate_limit)]
)
async def join_waitlist(
    request: JoinWaitlistRequest,
    current_user: User = Depends(get_current_user),
    service: WaitlistService = Depends(get_waitlist_service)
) -> Any:
    """
    Join the waitlist for a fully booked time window.
    Returns 422 with the open slots when the window is actually bookable.
    """
    try:
        entry = await service.join_waitlist(current_user.id, request)
        return {"success": True, "waitlist_entry": entry}
    except SalonWaitlistException:
        raise
    except Exception as e:
        raise _internal_error("join_waitlist", e)


@router.get("/my-entries", response_model=MyEntriesResponse)
async def get_my_entries(
    current_user: User = Depends(get_current_user),
    service: WaitlistService = Depends(get_waitlist_service)
) -> Any:
    """
    Active waitlist entries for the current user
    """
    try:
        entries = await service.get_customer_entries(current_user.id)
        return {"entries": entries}
    except SalonWaitlistException:
        raise
    except Exception as e:
        raise _internal_error("get_my_entries", e)


@router.delete("/{entry_id}", response_model=MessageResponse)
async def cancel_entry(
    entry_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    service: WaitlistService = Depends(get_waitlist_service)
) -> Any:
    """
    Leave the waitlist
    """
    try:
        await service.cancel_waitlist_entry(current_user.id, entry_id)
        return {"success": True, "message": "Removed from waitlist"}
    except SalonWaitlistException:
        raise
    except Exception as e:
        raise _internal_error("cancel_entry", e)


@router.post(
    "/{entry_id}/respond",
    response_model=RespondWaitlistResponse,
    dependencies=[Depends(waitlist_rate_limit)]
)
async def respond_to_offer(
    entry_id: uuid.UUID,
    body: RespondWaitlistRequest,
    current_user: User = Depends(get_current_user),
    service: WaitlistService = Depends(get_waitlist_service)
) -> Any:
    """
    Accept or decline a slot offer. Accepting creates a confirmed booking.
    """
    try:
        result = await service.respond_to_notification(current_user.id, entry_id, body.response)
    except SalonWaitlistException:
        raise
    except Exception as e:
        raise _internal_error("respond_to_offer", e)

    if result.booking_id is None:
        return {"success": True, "message": "Slot declined, it will be offered to the next customer"}

    return {
        "success": True,
        "message": "Booking confirmed from waitlist",
        "booking_id": result.booking_id,
        "slot_info": {"date": result.slot_date, "time": result.slot_time}
    }


@router.get("/salons/{salon_id}", response_model=SalonWaitlistAnalytics)
async def get_salon_waitlist(
    salon_id: uuid.UUID,
    current_user: User = Depends(require_salon_staff),
    service: WaitlistService = Depends(get_waitlist_service)
) -> Any:
    """
    Waitlist demand for a salon (owner only)
    """
    try:
        return await service.get_salon_analytics(salon_id, current_user.id)
    except SalonWaitlistException:
        raise
    except Exception as e:
        raise _internal_error("get_salon_waitlist", e)


@router.post("/slots/{slot_id}/release", response_model=SlotReleaseResponse)
async def release_slot(
    slot_id: uuid.UUID,
    current_user: User = Depends(require_salon_staff),
    service: WaitlistService = Depends(get_waitlist_service)
) -> Any:
    """
    Hand a freed slot to the waitlist, called after a booking is cancelled
    """
    try:
        notified_entry_id = await service.release_slot(slot_id, current_user)
        return {"success": True, "slot_id": slot_id, "notified_entry_id": notified_entry_id}
    except SalonWaitlistException:
        raise
    except Exception as e:
        raise _internal_error("release_slot", e)
