"""
Waitlist priority resolution from loyalty tiers
"""

from typing import Optional
import logging
import uuid

from app.models.waitlist import WaitlistPriority
from app.services.loyalty_service import LoyaltyLookup, DatabaseLoyaltyLookup

logger = logging.getLogger(__name__)


def tier_to_priority(tier_name: Optional[str]) -> WaitlistPriority:
    """
    Map a loyalty tier name to a queue priority.
    Matching is by case-insensitive substring so "Gold Plus" still ranks as gold.
    """
    if not tier_name:
        return WaitlistPriority.REGULAR

    tier = tier_name.lower()
    if "elite" in tier or "platinum" in tier:
        return WaitlistPriority.ELITE
    if "gold" in tier:
        return WaitlistPriority.GOLD
    return WaitlistPriority.REGULAR


class PriorityResolver:
    """Resolves queue priority for a customer, never failing the join"""

    def __init__(self, loyalty: Optional[LoyaltyLookup] = None):
        self.loyalty = loyalty or DatabaseLoyaltyLookup()

    async def resolve_priority(self, customer_id: uuid.UUID) -> WaitlistPriority:
        try:
            tier_name = await self.loyalty.get_tier_name(customer_id)
        except Exception as e:
            logger.warning(f"Loyalty lookup failed for {customer_id}, using regular priority: {e}")
            return WaitlistPriority.REGULAR

        return tier_to_priority(tier_name)
