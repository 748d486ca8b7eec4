# hedge_engine/services/premium_verifier.py
"""
Independent re-derivation of the acceptable premium window.

This is a coarse sanity check, not a pricing model: the baseline is
intrinsic value at spot plus a flat time-value charge, scaled linearly by
notional. A stricter model can replace `baseline_premium` /
`premium_bounds` without changing what `verify_submitted_premium` returns.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..domain.errors import PremiumOutOfBounds, UnknownTier
from ..domain.models import OptionType, PremiumBounds, parse_option_type
from ..domain.risk_tiers import RiskTier
from ..utils.fixed_point import ensure_scaled, mul_down, percentage
from .parameter_store import SystemParameters
from .settlement import intrinsic_value


@dataclass(frozen=True)
class PremiumVerdict:
    accepted: bool
    bounds: PremiumBounds
    submitted: int

    @property
    def rejection(self) -> Optional[PremiumOutOfBounds]:
        if self.accepted:
            return None
        return PremiumOutOfBounds(self.bounds.min, self.bounds.max, self.submitted)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accepted": self.accepted,
            "min": self.bounds.min,
            "max": self.bounds.max,
            "submitted": self.submitted,
        }


def baseline_premium(
    option_type: OptionType,
    protected_value: int,
    protection_amount: int,
    spot: int,
    time_value_bps: int,
) -> int:
    """
    baseline = (intrinsic_at_spot + spot * time_value_bps / 10000) * notional / SCALE
    """
    per_unit = intrinsic_value(option_type, protected_value, spot) + percentage(spot, time_value_bps)
    return mul_down(per_unit, protection_amount)


def adjusted_premium(
    option_type: OptionType,
    protected_value: int,
    protection_amount: int,
    spot: int,
    tier: RiskTier,
    params: SystemParameters,
) -> int:
    """Baseline scaled by the tier's basis-point factor from the role's own table."""
    adj = params.risk_adjustment(tier.role, tier.tier)
    baseline = baseline_premium(option_type, protected_value, protection_amount, spot, params.time_value_bps)
    return percentage(baseline, adj.adjustment_bps)


def premium_bounds(
    option_type: OptionType,
    protected_value: int,
    protection_amount: int,
    spot: int,
    tier: RiskTier,
    params: SystemParameters,
) -> PremiumBounds:
    adjusted = adjusted_premium(option_type, protected_value, protection_amount, spot, tier, params)
    adj = params.risk_adjustment(tier.role, tier.tier)
    return PremiumBounds(
        min=mul_down(adjusted, adj.min_factor),
        max=mul_down(adjusted, adj.max_factor),
    )


def verify_submitted_premium(
    submitted_premium: int,
    option_type: Any,
    protected_value: int,
    protection_amount: int,
    current_oracle_price: int,
    risk_tier: RiskTier,
    system_parameters: SystemParameters,
) -> PremiumVerdict:
    """
    Accept iff min <= submitted <= max, with bounds computed fresh from the
    given price and parameters. Pure: same inputs, same verdict.

    Raises InvalidOptionType / UnknownTier / ScaleMismatch for bad input and
    Overflow when the arithmetic leaves the representable range. An
    out-of-range premium is not raised; it is a rejected verdict.
    """
    ot = parse_option_type(option_type)
    if not isinstance(risk_tier, RiskTier):
        raise UnknownTier(f"risk tier must carry its role, got {risk_tier!r}")

    submitted = ensure_scaled("submitted_premium", submitted_premium)
    bounds = premium_bounds(
        ot,
        ensure_scaled("protected_value", protected_value),
        ensure_scaled("protection_amount", protection_amount),
        ensure_scaled("current_oracle_price", current_oracle_price),
        risk_tier,
        system_parameters,
    )
    return PremiumVerdict(accepted=bounds.contains(submitted), bounds=bounds, submitted=submitted)
