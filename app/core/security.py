"""
Bearer token verification, role checks and request rate limiting

Tokens are issued by the platform's auth service; this service only
verifies them and resolves the acting user.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
import logging
import uuid

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.database import get_session
from app.core.exceptions import RateLimitError
from app.models.user import User

logger = logging.getLogger(__name__)

TOKEN_URL = f"{settings.API_PREFIX}/auth/login"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=TOKEN_URL)
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl=TOKEN_URL, auto_error=False)


def _unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Sign an access token. Used by tests and local tooling; production
    tokens come from the auth service with the same claims.
    """
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_delta if expires_delta is not None else timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {**data, "type": "access", "iat": issued_at, "exp": issued_at + lifetime}
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    """Verify signature, expiry and token type; raise 401 otherwise"""
    try:
        claims = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"Rejected bearer token: {e}")
        raise _unauthorized()

    if claims.get("type") != "access":
        raise _unauthorized("Invalid token type. Expected access")
    return claims


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_session)
) -> User:
    """
    Resolve the authenticated user from the bearer token
    """
    subject = decode_token(token).get("sub")
    try:
        user_id = uuid.UUID(str(subject))
    except ValueError:
        raise _unauthorized()

    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        raise _unauthorized("User not found")
    return user


async def require_salon_staff(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_salon_staff:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Salon owner access required"
        )
    return current_user


class RateLimiter:
    """
    Rate limiter for API endpoints, keyed by user when a token is present
    and by client address otherwise
    """

    def __init__(self, max_requests: int, window: int = 60, scope: str = "requests"):
        self.max_requests = max_requests
        self.window = window
        self.scope = scope

    async def __call__(self, request: Request, token: Optional[str] = Depends(optional_oauth2_scheme)):
        if not settings.RATE_LIMIT_ENABLED:
            return

        from app.core.redis import redis_manager

        client_id = request.client.host if request.client else "anonymous"
        if token:
            try:
                client_id = f"user:{decode_token(token).get('sub', client_id)}"
            except HTTPException:
                pass  # authentication is enforced by get_current_user

        key = f"{client_id}:{self.scope}"
        is_limited, count = await redis_manager.is_rate_limited(
            key, self.max_requests, self.window
        )

        if is_limited:
            logger.warning(f"Rate limit hit for {key} ({count}/{self.max_requests})")
            raise RateLimitError(self.max_requests, self.window)
