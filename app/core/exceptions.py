"""
Waitlist error types

Each carries a stable `code` that clients branch on and the HTTP status the
API answers with; app.main renders them as {"success": false, "error": {...}}.
"""

from typing import Optional, Dict, Any, List


class SalonWaitlistException(Exception):
    """Base exception for the waitlist service"""

    code = "WAITLIST_ERROR"
    status_code = 400

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class AuthorizationError(SalonWaitlistException):
    """Acting user may not touch this entry, slot or salon"""

    code = "AUTH_FORBIDDEN"
    status_code = 403

    def __init__(self, message: str = "Not authorized", details: Optional[Dict] = None):
        super().__init__(message, details=details)


class NotFoundError(SalonWaitlistException):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, identifier: Any = None, message: Optional[str] = None):
        if message is None:
            message = f"{resource} with id {identifier} not found" if identifier else f"{resource} not found"
        super().__init__(message, details={"resource": resource})


class ValidationError(SalonWaitlistException):
    """Request is well-formed JSON but breaks a waitlist rule"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message, code=code, details={"field": field} if field else None)


class InvalidWindowError(ValidationError):
    code = "INVALID_WINDOW"

    def __init__(self, message: str):
        super().__init__(message, field="time_window")


class ConflictError(SalonWaitlistException):
    """Duplicate entries, entry limits and lost races for a slot"""

    code = "CONFLICT"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict] = None,
        status_code: Optional[int] = None
    ):
        super().__init__(message, code=code, status_code=status_code, details=details)


class SlotsAvailableError(ConflictError):
    """Matching slots are free right now; the customer should book instead of queueing"""

    code = "SLOTS_AVAILABLE"
    status_code = 422

    def __init__(self, available_slots: List[Dict[str, Any]]):
        super().__init__(
            "Slots are actually available for this time window. Please proceed to booking.",
            details={"available_slots": available_slots}
        )

    @property
    def available_slots(self) -> List[Dict[str, Any]]:
        return self.details["available_slots"]


class WaitlistStateError(SalonWaitlistException):
    """Operation not allowed in the entry's current status"""

    code = "INVALID_STATE"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict] = None):
        super().__init__(message, code=code, details=details)


class RateLimitError(SalonWaitlistException):
    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429

    def __init__(self, limit: int, window: int):
        super().__init__(
            f"Rate limit exceeded. Max {limit} requests per {window} seconds",
            details={"limit": limit, "window": window}
        )
