# hedge_engine/services/parameter_store.py

import threading
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Protocol

from ..domain.errors import UnknownTier
from ..domain.risk_tiers import RISK_TIERS, Role, risk_tier
from ..utils.config import Settings, settings
from ..utils.fixed_point import to_scaled
from ..utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class RiskAdjustment:
    adjustment_bps: int
    min_factor: int
    max_factor: int


@dataclass(frozen=True)
class SystemParameters:
    """
    Inputs of the premium bounds model. Factors are ScaledAmount (1.0 == SCALE),
    tier adjustments are basis points keyed by role, then tier value.
    """
    time_value_bps: int
    min_factor: int
    max_factor: int
    tier_bps: Mapping[Role, Mapping[str, int]]

    def __post_init__(self):
        if self.time_value_bps < 0:
            raise ValueError("time_value_bps must be non-negative")
        if self.min_factor < 0 or self.max_factor < 0:
            raise ValueError("bound factors must be non-negative")
        if self.min_factor > self.max_factor:
            raise ValueError(f"min_factor {self.min_factor} exceeds max_factor {self.max_factor}")

    def risk_adjustment(self, role: Any, tier: Any) -> RiskAdjustment:
        rt = risk_tier(role, tier)
        table = self.tier_bps.get(rt.role) or {}
        if rt.value not in table:
            raise UnknownTier(f"No adjustment configured for {rt}")
        return RiskAdjustment(table[rt.value], self.min_factor, self.max_factor)


def default_tier_bps(
    buyer_overrides: Optional[Dict[str, int]] = None,
    provider_overrides: Optional[Dict[str, int]] = None,
) -> Dict[Role, Dict[str, int]]:
    tables = {
        role: {t.value: info["adjustment_bps"] for t, info in tiers.items()}
        for role, tiers in RISK_TIERS.items()
    }
    for role, overrides in ((Role.BUYER, buyer_overrides), (Role.PROVIDER, provider_overrides)):
        for name, bps in (overrides or {}).items():
            if name not in tables[role]:
                raise ValueError(f"override for unknown {role.value} tier: {name}")
            tables[role][name] = int(bps)
    return tables


def load_system_parameters(cfg: Settings = settings) -> SystemParameters:
    return SystemParameters(
        time_value_bps=cfg.PREMIUM_TIME_VALUE_BPS,
        min_factor=to_scaled(cfg.PREMIUM_MIN_FACTOR),
        max_factor=to_scaled(cfg.PREMIUM_MAX_FACTOR),
        tier_bps=default_tier_bps(cfg.TIER_BUYER_BPS, cfg.TIER_PROVIDER_BPS),
    )


class ParameterStore(Protocol):
    def system_parameters(self) -> SystemParameters:
        ...

    def risk_adjustment(self, role: Any, tier: Any) -> RiskAdjustment:
        ...


class StaticParameterStore:
    """Holds one SystemParameters snapshot; `update` swaps it atomically."""

    def __init__(self, params: Optional[SystemParameters] = None):
        self._lock = threading.Lock()
        self._params = params or load_system_parameters()

    def system_parameters(self) -> SystemParameters:
        with self._lock:
            return self._params

    def risk_adjustment(self, role: Any, tier: Any) -> RiskAdjustment:
        return self.system_parameters().risk_adjustment(role, tier)

    def update(self, params: SystemParameters) -> None:
        with self._lock:
            self._params = params
        log.info(f"system parameters updated time_value_bps={params.time_value_bps} "
                 f"min_factor={params.min_factor} max_factor={params.max_factor}")
