# hedge_engine/domain/risk_tiers.py
from enum import Enum
from typing import Any, Dict, NamedTuple, Union

from .errors import UnknownTier, ValidationError


class Role(str, Enum):
    BUYER = "buyer"
    PROVIDER = "provider"


class BuyerTier(str, Enum):
    CONSERVATIVE = "conservative"
    STANDARD = "standard"
    FLEXIBLE = "flexible"
    CRASH_INSURANCE = "crash_insurance"


class ProviderTier(str, Enum):
    CONSERVATIVE = "conservative"
    BALANCED = "balanced"
    AGGRESSIVE = "aggressive"


TIERS_BY_ROLE = {
    Role.BUYER: BuyerTier,
    Role.PROVIDER: ProviderTier,
}

# One source of truth for the per-tier premium adjustment (basis points, 10000 = 1.0x)
RISK_TIERS = {
    Role.BUYER: {
        BuyerTier.CONSERVATIVE:    {"adjustment_bps": 11000, "note": "Strike at or above spot"},
        BuyerTier.STANDARD:        {"adjustment_bps": 10000, "note": "Strike 90-100% of spot"},
        BuyerTier.FLEXIBLE:        {"adjustment_bps": 9000,  "note": "Strike 80-90% of spot"},
        BuyerTier.CRASH_INSURANCE: {"adjustment_bps": 8000,  "note": "Deep out-of-the-money tail cover"},
    },
    Role.PROVIDER: {
        ProviderTier.CONSERVATIVE: {"adjustment_bps": 7000,  "risk_points": 1, "note": "Lowest yield, lowest assignment risk"},
        ProviderTier.BALANCED:     {"adjustment_bps": 10000, "risk_points": 3, "note": "Market yield"},
        ProviderTier.AGGRESSIVE:   {"adjustment_bps": 13000, "risk_points": 5, "note": "Highest yield, highest assignment risk"},
    },
}


class RiskTier(NamedTuple):
    """A tier name always travels with the role whose table it belongs to."""
    role: Role
    tier: Union[BuyerTier, ProviderTier]

    @property
    def value(self) -> str:
        return self.tier.value

    def __str__(self) -> str:
        return f"{self.role.value}:{self.tier.value}"


def parse_role(role: Any) -> Role:
    if isinstance(role, Role):
        return role
    try:
        return Role(role)
    except ValueError:
        raise ValidationError(f"Unknown role: {role!r}")


def risk_tier(role: Any, tier: Any) -> RiskTier:
    """
    Resolve a (role, tier) pair against the closed tier set of that role.
    Matching is case-sensitive; a member of the other role's enum is rejected
    even when its string value is shared (e.g. "conservative").
    """
    r = parse_role(role)
    table = TIERS_BY_ROLE[r]
    if isinstance(tier, table):
        return RiskTier(r, tier)
    if isinstance(tier, Enum) or not isinstance(tier, str):
        raise UnknownTier(f"Unknown {r.value} risk tier: {tier!r}")
    try:
        return RiskTier(r, table(tier))
    except ValueError:
        raise UnknownTier(f"Unknown {r.value} risk tier: {tier!r}")


def tier_info(rt: RiskTier) -> Dict[str, Any]:
    return RISK_TIERS[rt.role][rt.tier]
