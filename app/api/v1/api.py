"""
Main API Router
Aggregates all API endpoints for v1
"""

from fastapi import APIRouter
from app.api.v1.endpoints import (
    waitlist,
    health
)

api_router = APIRouter()

# Include all routers
api_router.include_router(waitlist.router, prefix="/waitlist", tags=["waitlist"])
api_router.include_router(health.router, prefix="/health", tags=["health"])
