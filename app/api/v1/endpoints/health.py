"""
Health check endpoints
"""

from typing import Any
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import func, select

from app.core.database import get_session, db_manager
from app.core.metrics import HealthChecker, metrics_collector
from app.core.redis import redis_manager
from app.core.security import require_salon_staff
from app.models.waitlist import WaitlistEntry, WaitlistStatus
from app.config import settings

router = APIRouter()


@router.get("/live")
async def liveness() -> Any:
    """
    Kubernetes liveness probe
    """
    return {"status": "alive", "service": "salon-waitlist"}


@router.get("/ready")
async def readiness() -> Any:
    """
    Kubernetes readiness probe. Redis is optional, the database is not.
    """
    health = await HealthChecker(redis_manager, db_manager).get_system_health()
    return {
        "status": "ready" if health["status"] != "unhealthy" else "not ready",
        "checks": health["components"],
        "version": settings.APP_VERSION
    }


@router.get("/status")
async def system_status(
    db: AsyncSession = Depends(get_session)
) -> Any:
    """
    Queue sizes by status
    """
    result = await db.execute(
        select(WaitlistEntry.status, func.count(WaitlistEntry.id))
        .group_by(WaitlistEntry.status)
    )
    counts = {row[0].value: row[1] for row in result.all()}

    return {
        "status": "operational",
        "environment": settings.APP_ENV,
        "version": settings.APP_VERSION,
        "statistics": {
            waitlist_status.value: counts.get(waitlist_status.value, 0)
            for waitlist_status in WaitlistStatus
        }
    }


@router.get("/metrics")
async def waitlist_metrics(_=Depends(require_salon_staff)) -> Any:
    """
    In-process waitlist counters and sweep stats
    """
    return await metrics_collector.get_metrics()
