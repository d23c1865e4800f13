"""
Subscription pricing table.

Maps tier (number of entitled characters) to a monthly price in minor units.
"""

from dataclasses import dataclass

from companion_accounts.exceptions import ValidationError

BILLING_INTERVAL = "month"


@dataclass(frozen=True)
class PricingTier:
    """Subscription tier configuration."""

    tier: int
    price_minor: int
    name: str

    def __post_init__(self) -> None:
        """Validate tier configuration."""
        if self.tier <= 0:
            raise ValueError(f"Tier must be positive: {self.tier}")
        if self.price_minor <= 0:
            raise ValueError(f"Price must be positive: {self.price_minor}")
        if not self.name:
            raise ValueError("Name required")


PRICING_TIERS: dict[int, PricingTier] = {
    1: PricingTier(tier=1, price_minor=1999, name="1 Character"),
    2: PricingTier(tier=2, price_minor=3499, name="2 Characters"),
    4: PricingTier(tier=4, price_minor=5999, name="4 Characters"),
    6: PricingTier(tier=6, price_minor=7999, name="All 6 Characters"),
}


def get_tier(tier: int) -> PricingTier:
    """
    Get pricing for a tier.

    Raises:
        ValidationError: If the tier is not offered
    """
    pricing = PRICING_TIERS.get(tier)
    if pricing is None:
        raise ValidationError(f"Invalid tier: {tier}")
    return pricing
