"""
Commission rate table.

Rates per product type, by attribution tier:
- default:  no affiliate attribution
- direct:   affiliate drove the sale
- indirect: upstream referrer of the selling affiliate

The table is an immutable value handed to the calculator, so tests can
build their own instead of patching module state.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from functools import lru_cache
from types import MappingProxyType
from typing import Mapping, Optional

from redetour.config import settings


class ProductType(str, Enum):
    """Product types that carry their own commission tier."""
    TOUR_PACKAGE = "pacote_turistico"
    ACCOMMODATION = "acomodacao"
    TRANSPORT = "transporte"
    TOUR = "passeio"
    SUBSCRIPTION = "assinatura"


class Attribution(str, Enum):
    """How an affiliate is credited for an event."""
    DEFAULT = "default"
    DIRECT = "direct"
    INDIRECT = "indirect"


@dataclass(frozen=True)
class CommissionTier:
    """Commission fractions for one product type."""

    default: Decimal
    direct: Decimal
    indirect: Decimal

    def rate_for(self, attribution: Attribution) -> Decimal:
        if attribution is Attribution.DIRECT:
            return self.direct
        if attribution is Attribution.INDIRECT:
            return self.indirect
        return self.default


DEFAULT_TIER = CommissionTier(
    default=Decimal("0.10"),
    direct=Decimal("0.15"),
    indirect=Decimal("0.05"),
)

DEFAULT_TIERS: Mapping[str, CommissionTier] = MappingProxyType({
    ProductType.TOUR_PACKAGE.value: CommissionTier(
        default=Decimal("0.10"), direct=Decimal("0.15"), indirect=Decimal("0.05"),
    ),
    ProductType.ACCOMMODATION.value: CommissionTier(
        default=Decimal("0.08"), direct=Decimal("0.12"), indirect=Decimal("0.03"),
    ),
    ProductType.TRANSPORT.value: CommissionTier(
        default=Decimal("0.05"), direct=Decimal("0.08"), indirect=Decimal("0.02"),
    ),
    ProductType.TOUR.value: CommissionTier(
        default=Decimal("0.10"), direct=Decimal("0.15"), indirect=Decimal("0.05"),
    ),
    ProductType.SUBSCRIPTION.value: CommissionTier(
        default=Decimal("0.20"), direct=Decimal("0.30"), indirect=Decimal("0.10"),
    ),
})

# Stripe card fee retained on every gross amount
DEFAULT_PLATFORM_FEE_RATE = Decimal("0.029")


@dataclass(frozen=True)
class RateTable:
    """Read-only lookup of commission tiers and the platform fee rate."""

    platform_fee_rate: Decimal = DEFAULT_PLATFORM_FEE_RATE
    tiers: Mapping[str, CommissionTier] = field(default_factory=lambda: DEFAULT_TIERS)
    default_tier: CommissionTier = DEFAULT_TIER

    def __post_init__(self):
        # Freeze caller-supplied dicts as well
        if not isinstance(self.tiers, MappingProxyType):
            object.__setattr__(self, "tiers", MappingProxyType(dict(self.tiers)))

    def lookup(self, product_type: Optional[str]) -> CommissionTier:
        """Tier for a product type; unknown or missing types get the global default."""
        if product_type is None:
            return self.default_tier
        key = product_type.value if isinstance(product_type, ProductType) else product_type
        return self.tiers.get(key, self.default_tier)


@lru_cache
def get_rate_table() -> RateTable:
    """
    Rate table configured for this process.

    FastAPI dependency; override it in tests to change rates.
    """
    return RateTable(platform_fee_rate=Decimal(str(settings.platform_fee_rate)))
