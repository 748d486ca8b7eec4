# hedge_engine/domain/models.py

from __future__ import annotations
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from .errors import InvalidOptionType, InvalidTransition
from .risk_tiers import RiskTier, risk_tier
from ..utils.fixed_point import SCALE


class OptionType(str, Enum):
    PUT = "PUT"
    CALL = "CALL"


def parse_option_type(value: Any) -> OptionType:
    if isinstance(value, OptionType):
        return value
    if isinstance(value, str):
        try:
            return OptionType(value)
        except ValueError:
            pass
    raise InvalidOptionType(f"Invalid option type: {value!r}. Must be one of: PUT, CALL")


class PolicyState(str, Enum):
    REQUESTED = "Requested"
    VERIFIED = "Verified"
    ACTIVE = "Active"
    EXERCISED = "Exercised"
    EXPIRED = "Expired"
    SETTLED = "Settled"


TRANSITIONS: Dict[PolicyState, FrozenSet[PolicyState]] = {
    PolicyState.REQUESTED: frozenset({PolicyState.VERIFIED}),
    PolicyState.VERIFIED:  frozenset({PolicyState.ACTIVE}),
    PolicyState.ACTIVE:    frozenset({PolicyState.EXERCISED, PolicyState.EXPIRED}),
    PolicyState.EXERCISED: frozenset({PolicyState.SETTLED}),
    PolicyState.EXPIRED:   frozenset({PolicyState.SETTLED}),
    PolicyState.SETTLED:   frozenset(),
}


def check_transition(current: PolicyState, target: PolicyState) -> None:
    if target not in TRANSITIONS[current]:
        raise InvalidTransition(f"transition {current.value} -> {target.value} is not allowed")


@dataclass(frozen=True)
class PolicyRequest:
    """What the preparation layer hands to the orchestrator. Amounts are ScaledAmount."""
    option_type: Any
    protected_value: Any
    protection_amount: Any
    risk_tier: Any
    submitted_premium: Any
    asset: str
    expiration: int
    role: Any = "buyer"
    scale: int = SCALE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "option_type": _enum_value(self.option_type),
            "protected_value": self.protected_value,
            "protection_amount": self.protection_amount,
            "risk_tier": _enum_value(self.risk_tier),
            "submitted_premium": self.submitted_premium,
            "asset": self.asset,
            "expiration": self.expiration,
            "role": _enum_value(self.role),
            "scale": self.scale,
        }


@dataclass(frozen=True)
class PolicyTerms:
    option_type: OptionType
    protected_value: int
    protection_amount: int
    risk_tier: RiskTier
    asset: str
    expiration: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "option_type": self.option_type.value,
            "protected_value": self.protected_value,
            "protection_amount": self.protection_amount,
            "role": self.risk_tier.role.value,
            "risk_tier": self.risk_tier.value,
            "asset": self.asset,
            "expiration": self.expiration,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PolicyTerms":
        return cls(
            option_type=parse_option_type(d["option_type"]),
            protected_value=int(d["protected_value"]),
            protection_amount=int(d["protection_amount"]),
            risk_tier=risk_tier(d["role"], d["risk_tier"]),
            asset=d["asset"],
            expiration=int(d["expiration"]),
        )


@dataclass(frozen=True)
class PremiumBounds:
    min: int
    max: int

    def contains(self, premium: int) -> bool:
        return self.min <= premium <= self.max


@dataclass(frozen=True)
class SettlementResult:
    payout: int
    expiration_price: int
    intrinsic: int
    outcome: PolicyState

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payout": self.payout,
            "expiration_price": self.expiration_price,
            "intrinsic": self.intrinsic,
            "outcome": self.outcome.value,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SettlementResult":
        return cls(
            payout=int(d["payout"]),
            expiration_price=int(d["expiration_price"]),
            intrinsic=int(d["intrinsic"]),
            outcome=PolicyState(d["outcome"]),
        )


@dataclass(frozen=True)
class PolicyRecord:
    """
    Persisted view of one policy. Records are never mutated in place:
    each committed transition produces a new record via `advance`.
    """
    policy_id: str
    state: PolicyState
    terms: PolicyTerms
    premium: int
    created_at: str
    settlement: Optional[SettlementResult] = None
    collateral_released: bool = False
    history: tuple = field(default_factory=tuple)

    def advance(self, target: PolicyState, **changes) -> "PolicyRecord":
        check_transition(self.state, target)
        return replace(self, state=target, history=self.history + (target.value,), **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "policy_id": self.policy_id,
            "state": self.state.value,
            "terms": self.terms.to_dict(),
            "premium": self.premium,
            "created_at": self.created_at,
            "settlement": self.settlement.to_dict() if self.settlement else None,
            "collateral_released": self.collateral_released,
            "history": list(self.history),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PolicyRecord":
        s = d.get("settlement")
        return cls(
            policy_id=d["policy_id"],
            state=PolicyState(d["state"]),
            terms=PolicyTerms.from_dict(d["terms"]),
            premium=int(d["premium"]),
            created_at=d["created_at"],
            settlement=SettlementResult.from_dict(s) if s else None,
            collateral_released=bool(d.get("collateral_released", False)),
            history=tuple(d.get("history") or ()),
        )


def _enum_value(x: Any) -> Any:
    if isinstance(x, RiskTier):
        return x.value
    return x.value if isinstance(x, Enum) else x
