"""
Loyalty program lookup

The loyalty program owns tier assignment; the waitlist only reads the
current tier name for a customer.
"""

from typing import Optional
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.database import async_session
from app.models.user import User


class LoyaltyLookup:
    """Interface for resolving a customer's loyalty tier name"""

    async def get_tier_name(self, customer_id: uuid.UUID) -> Optional[str]:
        raise NotImplementedError


class DatabaseLoyaltyLookup(LoyaltyLookup):
    """Reads the tier synced onto the user record"""

    def __init__(self, session_factory: async_sessionmaker = async_session):
        self.session_factory = session_factory

    async def get_tier_name(self, customer_id: uuid.UUID) -> Optional[str]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(User.loyalty_tier).where(User.id == customer_id)
            )
            return result.scalar_one_or_none()
