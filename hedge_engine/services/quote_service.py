# hedge_engine/services/quote_service.py
"""
Off-chain preparation: turn user-facing inputs (strike as a percentage of
spot, notional in whole units, an expiration timestamp) into a
ScaledAmount PolicyRequest with a Black-Scholes candidate premium and a
derived risk tier.

The premium proposed here is never trusted downstream; the orchestrator
re-derives the accepted window from its own price and parameter reads.
The quote carries that window as a preview (`within_bounds`), computed
with the same reads, so a caller can tell before submitting.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional

from ..domain.errors import ValidationError
from ..domain.models import OptionType, PolicyRequest, PremiumBounds, parse_option_type
from ..domain.risk_tiers import BuyerTier, RiskTier, Role, parse_role, risk_tier, tier_info
from ..utils.config import Settings, settings
from ..utils.deadline import call_with_deadline
from ..utils.fixed_point import SCALE, div_down, from_scaled, mul_down, percentage, to_scaled
from ..utils.logging import get_logger
from ..utils.option_pricing import PricingConfig, premium_components, provider_yield
from .parameter_store import ParameterStore
from .premium_verifier import premium_bounds
from .price_oracle import PriceOracle
from .volatility import VolatilitySource

log = get_logger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


def pricing_config(cfg: Settings = settings) -> PricingConfig:
    return PricingConfig(
        risk_free_rate=cfg.QUOTE_RISK_FREE_RATE,
        base_rate=cfg.QUOTE_BASE_RATE,
        volatility_multiplier=cfg.QUOTE_VOLATILITY_MULTIPLIER,
        duration_factor=cfg.QUOTE_DURATION_FACTOR,
    )


def buyer_tier_for(option_type: OptionType, protected_value_pct: Decimal) -> BuyerTier:
    """
    Distance of the strike out of the money, in percent of spot:
      <= 0     -> conservative    (at or in the money)
      <= 10    -> standard
      <= 20    -> flexible
      beyond   -> crash_insurance
    For a PUT a 90% strike is 10 out; for a CALL a 110% strike is.
    """
    if option_type is OptionType.PUT:
        distance = Decimal(100) - protected_value_pct
    else:
        distance = protected_value_pct - Decimal(100)
    if distance <= 0:
        return BuyerTier.CONSERVATIVE
    if distance <= 10:
        return BuyerTier.STANDARD
    if distance <= 20:
        return BuyerTier.FLEXIBLE
    return BuyerTier.CRASH_INSURANCE


def break_even_price(option_type: OptionType, strike: int, premium: int, notional: int) -> int:
    """Expiration price at which the payout equals the premium paid."""
    per_unit = div_down(premium, notional)
    if option_type is OptionType.PUT:
        return max(0, strike - per_unit)
    return strike + per_unit


def _positive_decimal(name: str, value: Any) -> Decimal:
    try:
        d = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{name} must be a number, got {value!r}")
    if not d.is_finite() or d <= 0:
        raise ValidationError(f"{name} must be positive, got {value!r}")
    return d


@dataclass(frozen=True)
class Quote:
    request: PolicyRequest
    tier: RiskTier
    spot_price: int
    volatility: float
    bounds: PremiumBounds
    break_even: int
    components: Dict[str, float]
    created_at: datetime
    expires_at: datetime

    @property
    def within_bounds(self) -> bool:
        return self.bounds.contains(self.request.submitted_premium)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.now(timezone.utc)) >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        premium = self.request.submitted_premium
        return {
            "request": self.request.to_dict(),
            "role": self.tier.role.value,
            "risk_tier": self.tier.value,
            "tier_note": tier_info(self.tier)["note"],
            "spot_price": self.spot_price,
            "volatility": self.volatility,
            "premium": premium,
            "premium_display": str(from_scaled(premium)),
            "components": self.components,
            "break_even_price": self.break_even,
            "min_premium": self.bounds.min,
            "max_premium": self.bounds.max,
            "within_bounds": self.within_bounds,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }


@dataclass(frozen=True)
class YieldQuote:
    tier: RiskTier
    commitment: int
    period_days: int
    spot_price: int
    volatility: float
    figures: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        f = self.figures
        return {
            "role": self.tier.role.value,
            "risk_tier": self.tier.value,
            "tier_note": tier_info(self.tier)["note"],
            "commitment": self.commitment,
            "period_days": self.period_days,
            "spot_price": self.spot_price,
            "volatility": self.volatility,
            "estimated_yield": to_scaled(f["estimated_yield"]),
            "estimated_acquisition_price": to_scaled(f["estimated_acquisition_price"]),
            "annualized_yield_pct": f["annualized_yield_pct"],
            "risk_level": f["risk_level"],
            "capital_efficiency": f["capital_efficiency"],
            "breakdown": {
                "base_yield": to_scaled(f["base_yield"]),
                "tier_adjustment": f["tier_adjustment"],
                "duration_adjustment": f["duration_adjustment"],
                "market_adjustment": f["market_adjustment"],
            },
        }


class QuoteService:
    def __init__(
        self,
        oracle: PriceOracle,
        parameters: ParameterStore,
        volatility: VolatilitySource,
        ttl_seconds: int = settings.QUOTE_TTL_SECONDS,
        timeout: float = settings.COLLABORATOR_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.time,
        pricing: Optional[PricingConfig] = None,
    ):
        self.oracle = oracle
        self.parameters = parameters
        self.volatility = volatility
        self.ttl_seconds = ttl_seconds
        self.timeout = timeout
        self.clock = clock
        self.pricing = pricing or pricing_config()

    def _market(self):
        spot = call_with_deadline("oracle.current_price", self.oracle.current_price, timeout=self.timeout)
        vol = call_with_deadline(
            "volatility.annualized_volatility", self.volatility.annualized_volatility, timeout=self.timeout
        )
        return spot, vol

    def build_quote(
        self,
        option_type: Any,
        protected_value_pct: Any,
        protection_amount: Any,
        expiration: int,
        asset: str = "BTC",
        role: Any = Role.BUYER,
        provider_tier: Optional[str] = None,
    ) -> Quote:
        ot = parse_option_type(option_type)
        pct = _positive_decimal("protected_value_pct", protected_value_pct)
        amount = _positive_decimal("protection_amount", protection_amount)
        r = parse_role(role)
        if isinstance(expiration, bool) or not isinstance(expiration, int):
            raise ValidationError(f"expiration must be an integer marker, got {expiration!r}")

        if r is Role.BUYER:
            tier = RiskTier(Role.BUYER, buyer_tier_for(ot, pct))
        else:
            if provider_tier is None:
                raise ValidationError("provider quotes need provider_tier")
            tier = risk_tier(Role.PROVIDER, provider_tier)

        now_ts = self.clock()
        days = (expiration - now_ts) / SECONDS_PER_DAY
        if days <= 0:
            raise ValidationError(f"expiration {expiration} is not in the future")

        spot, vol = self._market()
        params = call_with_deadline(
            "parameters.system_parameters", self.parameters.system_parameters, timeout=self.timeout
        )

        # strike = spot * pct / 100, all in ScaledAmount
        strike = mul_down(spot, to_scaled(pct / 100))
        notional = to_scaled(amount)
        if strike == 0 or notional == 0:
            raise ValidationError("inputs too small to represent at 8 decimal places")

        components = premium_components(
            ot.value,
            float(from_scaled(spot)),
            float(from_scaled(strike)),
            vol,
            days,
            float(from_scaled(notional)),
            self.pricing,
        )
        adj = params.risk_adjustment(tier.role, tier.tier)
        premium = percentage(to_scaled(components["premium"]), adj.adjustment_bps)
        bounds = premium_bounds(ot, strike, notional, spot, tier, params)

        request = PolicyRequest(
            option_type=ot.value,
            protected_value=strike,
            protection_amount=notional,
            risk_tier=tier.value,
            submitted_premium=premium,
            asset=asset,
            expiration=expiration,
            role=tier.role.value,
            scale=SCALE,
        )
        now = datetime.fromtimestamp(now_ts, tz=timezone.utc)
        quote = Quote(
            request=request,
            tier=tier,
            spot_price=spot,
            volatility=vol,
            bounds=bounds,
            break_even=break_even_price(ot, strike, premium, notional),
            components=components,
            created_at=now,
            expires_at=now + timedelta(seconds=self.ttl_seconds),
        )
        log.info(f"quote type={ot.value} tier={tier} spot={spot} strike={strike} "
                 f"notional={notional} sigma={vol:.4f} days={days:.2f} premium={premium}")
        if not quote.within_bounds:
            log.warning(f"quote premium={premium} outside verifier window "
                        f"[{bounds.min}, {bounds.max}]; it will be rejected if submitted")
        return quote

    def build_yield_quote(self, commitment_amount: Any, provider_tier: Any, period_days: Any) -> YieldQuote:
        """Expected provider income for committing `commitment_amount` (USD) for `period_days`."""
        commitment = _positive_decimal("commitment_amount", commitment_amount)
        if isinstance(period_days, bool) or not isinstance(period_days, int) or period_days <= 0:
            raise ValidationError(f"period_days must be a positive integer, got {period_days!r}")
        tier = risk_tier(Role.PROVIDER, provider_tier)

        spot, vol = self._market()
        params = call_with_deadline(
            "parameters.system_parameters", self.parameters.system_parameters, timeout=self.timeout
        )
        adj = params.risk_adjustment(tier.role, tier.tier)

        figures = provider_yield(
            float(commitment),
            adj.adjustment_bps / 10_000,
            tier_info(tier)["risk_points"],
            period_days,
            vol,
            float(from_scaled(spot)),
        )
        log.info(f"yield quote tier={tier} commitment={commitment} days={period_days} "
                 f"sigma={vol:.4f} apy={figures['annualized_yield_pct']}")
        return YieldQuote(
            tier=tier,
            commitment=to_scaled(commitment),
            period_days=period_days,
            spot_price=spot,
            volatility=vol,
            figures=figures,
        )
