# hedge_engine/utils/option_pricing.py

from __future__ import annotations
import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict

DAYS_PER_YEAR = 365.0


def _q2(x: float) -> float:
    """Round to cents using HALF_UP."""
    return float(Decimal(str(x)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def _norm_cdf(x: float) -> float:
    return 0.5 * (1.0 + math.erf(x / math.sqrt(2.0)))


@dataclass(frozen=True)
class PricingConfig:
    """Market-maker loadings applied on top of the Black-Scholes value."""
    risk_free_rate: float = 0.02
    base_rate: float = 0.01
    volatility_multiplier: float = 1.5
    duration_factor: float = 0.5


def black_scholes(
    option_type: str,
    spot: float,
    strike: float,
    volatility: float,
    days: float,
    risk_free_rate: float = 0.02,
) -> float:
    """
    European option value per unit of underlying, T = days / 365:
      d1 = (ln(S/K) + (r + sigma^2 / 2) T) / (sigma sqrt(T)),  d2 = d1 - sigma sqrt(T)
      PUT  = K e^(-rT) N(-d2) - S N(-d1)
      CALL = S N(d1) - K e^(-rT) N(d2)
    With no volatility or no time left this is the discounted intrinsic value.
    """
    S, K, sigma, r = float(spot), float(strike), float(volatility), float(risk_free_rate)
    T = float(days) / DAYS_PER_YEAR
    if S <= 0 or K <= 0 or sigma < 0 or T < 0:
        raise ValueError(f"invalid pricing inputs S={S} K={K} sigma={sigma} T={T}")

    disc = math.exp(-r * T)
    is_put = option_type == "PUT"
    if sigma * math.sqrt(T) == 0:
        intrinsic = max(0.0, K - S) if is_put else max(0.0, S - K)
        return intrinsic * disc

    sig_t = sigma * math.sqrt(T)
    d1 = (math.log(S / K) + (r + 0.5 * sigma ** 2) * T) / sig_t
    d2 = d1 - sig_t
    if is_put:
        value = K * disc * _norm_cdf(-d2) - S * _norm_cdf(-d1)
    else:
        value = S * _norm_cdf(d1) - K * disc * _norm_cdf(d2)
    return max(0.0, value)


def premium_components(
    option_type: str,
    spot: float,
    strike: float,
    volatility: float,
    days: float,
    amount: float,
    cfg: PricingConfig = PricingConfig(),
) -> Dict[str, float]:
    """
    Quoted premium for `amount` units, cents-rounded:
      premium = BS * (1 + base_rate) * volatility_multiplier * (1 + T * duration_factor) * amount

    The time-value part of the raw BS value is split 30/70 into
    `time_value` and `volatility_impact` for display.
    """
    per_unit = black_scholes(option_type, spot, strike, volatility, days, cfg.risk_free_rate)
    T = float(days) / DAYS_PER_YEAR
    loaded = (
        per_unit
        * (1.0 + cfg.base_rate)
        * cfg.volatility_multiplier
        * (1.0 + T * cfg.duration_factor)
    )
    intrinsic = max(0.0, strike - spot) if option_type == "PUT" else max(0.0, spot - strike)
    extrinsic = max(0.0, per_unit - intrinsic)
    return {
        "premium": _q2(max(0.0, loaded * amount)),
        "intrinsic_value": _q2(intrinsic * amount),
        "time_value": _q2(extrinsic * 0.3 * amount),
        "volatility_impact": _q2(extrinsic * 0.7 * amount),
    }


def provider_yield(
    commitment_usd: float,
    tier_multiplier: float,
    tier_risk_points: int,
    period_days: float,
    volatility: float,
    spot: float,
) -> Dict[str, float]:
    """
    Expected income for capital committed to back policies:
      base annual rate = 80% of annualized volatility
      duration factor  = 1 - e^(-days / 90)
      market factor    = 1 + (volatility - 0.2) / 2
      annual rate      = base * tier * duration factor * market factor
    Risk level is a 1-10 score from tier, period and volatility.
    """
    if commitment_usd <= 0 or period_days <= 0 or volatility <= 0:
        raise ValueError(
            f"invalid yield inputs commitment={commitment_usd} period={period_days} sigma={volatility}"
        )
    years = period_days / DAYS_PER_YEAR
    base_rate = volatility * 0.8
    duration_factor = 1.0 - math.exp(-period_days / 90.0)
    market_factor = 1.0 + (volatility - 0.2) * 0.5

    base_yield = base_rate * years * commitment_usd
    annual_rate = base_rate * tier_multiplier * duration_factor * market_factor

    risk_level = min(10, _round_half_up(
        1 + tier_risk_points + min(3.0, period_days / 120.0) + min(2.0, volatility * 10)
    ))
    acquisition = max(0.0, spot * (1.0 - volatility * tier_multiplier * 0.5))

    return {
        "estimated_yield": _q2(annual_rate * years * commitment_usd),
        "annualized_yield_pct": _q2(annual_rate * 100),
        "base_yield": _q2(base_yield),
        "tier_adjustment": _q2(base_yield * (tier_multiplier - 1)),
        "duration_adjustment": _q2(base_yield * (duration_factor - 0.8)),
        "market_adjustment": _q2(base_yield * (market_factor - 1)),
        "estimated_acquisition_price": _q2(acquisition),
        "risk_level": risk_level,
        "capital_efficiency": _q2(tier_multiplier * 0.8),
    }
