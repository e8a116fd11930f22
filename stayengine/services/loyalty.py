"""
Loyalty tiers

The tier is derived from completed bookings by the caller (account history
lives outside this service); the pricing engine only consumes it.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import List, Optional


class LoyaltyTier(str, Enum):
    BRONZE = "BRONZE"
    SILVER = "SILVER"
    GOLD = "GOLD"


@dataclass(frozen=True)
class LoyaltyTierInfo:
    tier: LoyaltyTier
    display_name: str
    rate: Decimal
    min_bookings: int


# Ordered by min_bookings descending for lookup
LOYALTY_TIERS: List[LoyaltyTierInfo] = [
    LoyaltyTierInfo(LoyaltyTier.GOLD, "Gold", Decimal("0.10"), 6),
    LoyaltyTierInfo(LoyaltyTier.SILVER, "Silver", Decimal("0.07"), 3),
    LoyaltyTierInfo(LoyaltyTier.BRONZE, "Bronze", Decimal("0.05"), 0),
]


def calculate_loyalty_tier(total_bookings: int) -> LoyaltyTier:
    for info in LOYALTY_TIERS:
        if total_bookings >= info.min_bookings:
            return info.tier
    return LoyaltyTier.BRONZE


def loyalty_rate(tier: Optional[LoyaltyTier]) -> Decimal:
    """Discount rate for a tier, 0 when no tier is given"""
    if tier is None:
        return Decimal("0")
    for info in LOYALTY_TIERS:
        if info.tier == LoyaltyTier(tier):
            return info.rate
    return Decimal("0")

