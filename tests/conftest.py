import pytest

from hedge_engine.domain.models import PolicyRequest
from hedge_engine.services.collateral_vault import InMemoryVault
from hedge_engine.services.orchestrator import PolicyOrchestrator
from hedge_engine.services.parameter_store import (
    StaticParameterStore,
    SystemParameters,
    default_tier_bps,
)
from hedge_engine.services.price_oracle import StaticOracle
from hedge_engine.storage.policy_store import InMemoryPolicyStore
from hedge_engine.utils.fixed_point import SCALE, to_scaled

NOW = 1_700_000_000
EXPIRY = NOW + 7 * 24 * 60 * 60
SPOT = 50_000 * SCALE


@pytest.fixture
def params():
    return SystemParameters(
        time_value_bps=500,
        min_factor=to_scaled("0.5"),
        max_factor=to_scaled("2.0"),
        tier_bps=default_tier_bps(),
    )


@pytest.fixture
def clock():
    """Mutable clock: tests move time with `clock.now = ...`."""
    class Clock:
        now = NOW

        def __call__(self):
            return self.now

    return Clock()


@pytest.fixture
def make_request():
    # 90% PUT on 1 BTC at 50k spot: standard-tier window is [1250, 5000] USD
    def _make(**overrides):
        fields = dict(
            option_type="PUT",
            protected_value=45_000 * SCALE,
            protection_amount=1 * SCALE,
            risk_tier="standard",
            submitted_premium=2_500 * SCALE,
            asset="BTC",
            expiration=EXPIRY,
        )
        fields.update(overrides)
        return PolicyRequest(**fields)
    return _make


@pytest.fixture
def make_orchestrator(params, clock):
    def _make(oracle=None, vault=None, store=None, timeout=2.0):
        return PolicyOrchestrator(
            oracle=oracle or StaticOracle(SPOT),
            parameters=StaticParameterStore(params),
            vault=vault or InMemoryVault(100 * SCALE),
            store=store or InMemoryPolicyStore(),
            timeout=timeout,
            clock=clock,
        )
    return _make
