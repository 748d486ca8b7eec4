import threading
import time

import pytest

from hedge_engine.domain.errors import (
    CollaboratorUnavailable,
    InsufficientLiquidity,
    InvalidTransition,
    PolicyBusy,
    PolicyNotFound,
    PremiumOutOfBounds,
    ScaleMismatch,
    SettlementNotDue,
    UnknownTier,
    ValidationError,
)
from hedge_engine.domain.models import PolicyState
from hedge_engine.services.collateral_vault import InMemoryVault
from hedge_engine.services.price_oracle import StaticOracle
from hedge_engine.storage.policy_store import InMemoryPolicyStore
from hedge_engine.utils.fixed_point import SCALE

SPOT = 50_000 * SCALE


class SlowOracle(StaticOracle):
    def __init__(self, price, delay):
        super().__init__(price)
        self.delay = delay

    def current_price(self):
        time.sleep(self.delay)
        return super().current_price()


class CountingOracle(StaticOracle):
    def __init__(self, price, delay=0.0):
        super().__init__(price)
        self.delay = delay
        self.history_reads = 0

    def price_at(self, expiration):
        self.history_reads += 1
        time.sleep(self.delay)
        return super().price_at(expiration)


class SlowVault(InMemoryVault):
    def __init__(self, capacity, delay):
        super().__init__(capacity)
        self.delay = delay

    def check_and_reserve(self, policy_id, notional):
        time.sleep(self.delay)
        super().check_and_reserve(policy_id, notional)


class FlakyReleaseVault(InMemoryVault):
    def __init__(self, capacity, failures=1):
        super().__init__(capacity)
        self.failures = failures

    def release(self, policy_id):
        if self.failures:
            self.failures -= 1
            raise RuntimeError("vault node down")
        return super().release(policy_id)


class SlowReleaseVault(InMemoryVault):
    """First release outlives the caller's deadline, then completes."""

    def __init__(self, capacity, delay):
        super().__init__(capacity)
        self.delay = delay
        self.release_calls = 0

    def release(self, policy_id):
        self.release_calls += 1
        if self.release_calls == 1:
            time.sleep(self.delay)
        return super().release(policy_id)


class FailingMarkStore(InMemoryPolicyStore):
    def __init__(self, failures=1):
        super().__init__()
        self.failures = failures

    def mark_collateral_released(self, policy_id):
        if self.failures:
            self.failures -= 1
            raise CollaboratorUnavailable("policy store unavailable: write timed out")
        return super().mark_collateral_released(policy_id)


class FailingInsertStore(InMemoryPolicyStore):
    def insert(self, record):
        raise CollaboratorUnavailable("policy store unavailable: write timed out")


def test_create_policy_activates_and_reserves(make_orchestrator, make_request):
    vault = InMemoryVault(10 * SCALE)
    orch = make_orchestrator(vault=vault)

    rec = orch.create_policy(make_request(), policy_id="p1")

    assert rec.state is PolicyState.ACTIVE
    assert rec.history == ("Requested", "Verified", "Active")
    assert rec.premium == 2_500 * SCALE
    assert orch.get_policy("p1") == rec
    assert vault.reserved == SCALE


def test_rejected_premium_leaves_no_trace(make_orchestrator, make_request):
    vault = InMemoryVault(10 * SCALE)
    orch = make_orchestrator(vault=vault)

    with pytest.raises(PremiumOutOfBounds) as exc:
        orch.create_policy(make_request(submitted_premium=100 * SCALE), policy_id="p1")

    assert exc.value.min == 1_250 * SCALE
    assert exc.value.max == 5_000 * SCALE
    assert vault.reserved == 0
    with pytest.raises(PolicyNotFound):
        orch.get_policy("p1")


def test_insufficient_liquidity_leaves_vault_unchanged(make_orchestrator, make_request):
    vault = InMemoryVault(SCALE // 2)
    orch = make_orchestrator(vault=vault)

    with pytest.raises(InsufficientLiquidity):
        orch.create_policy(make_request(), policy_id="p1")

    assert vault.reserved == 0
    assert orch.store.get("p1") is None


def test_failed_commit_releases_reservation(make_orchestrator, make_request):
    vault = InMemoryVault(10 * SCALE)
    orch = make_orchestrator(vault=vault, store=FailingInsertStore())

    with pytest.raises(CollaboratorUnavailable):
        orch.create_policy(make_request(), policy_id="p1")

    assert vault.reserved == 0


def test_duplicate_policy_id(make_orchestrator, make_request):
    orch = make_orchestrator()
    orch.create_policy(make_request(), policy_id="p1")
    with pytest.raises(InvalidTransition):
        orch.create_policy(make_request(), policy_id="p1")
    assert orch.vault.reserved == SCALE


def test_concurrent_creations_cannot_overdraw(make_orchestrator, make_request):
    vault = InMemoryVault(SCALE)
    orch = make_orchestrator(vault=vault)
    outcomes = []

    def create(pid):
        try:
            orch.create_policy(make_request(), policy_id=pid)
            outcomes.append("ok")
        except InsufficientLiquidity:
            outcomes.append("short")

    threads = [threading.Thread(target=create, args=(f"p{i}",)) for i in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ["ok", "short", "short", "short"]
    assert vault.reserved == SCALE


def test_request_validation(make_orchestrator, make_request):
    orch = make_orchestrator()
    with pytest.raises(ScaleMismatch):
        orch.create_policy(make_request(scale=10 ** 6))
    with pytest.raises(ScaleMismatch):
        orch.create_policy(make_request(protected_value=45_000.0))
    with pytest.raises(UnknownTier):
        orch.create_policy(make_request(risk_tier="balanced"))
    with pytest.raises(ValidationError):
        orch.create_policy(make_request(protection_amount=0))
    with pytest.raises(ValidationError):
        orch.create_policy(make_request(expiration=orch.clock() - 1))
    assert orch.vault.reserved == 0


def test_provider_tier_is_resolved_against_provider_table(make_orchestrator, make_request):
    orch = make_orchestrator()
    # balanced provider is 1.0x, so the buyer-standard premium is still in range
    rec = orch.create_policy(make_request(role="provider", risk_tier="balanced"), policy_id="p1")
    assert str(rec.terms.risk_tier) == "provider:balanced"


def test_slow_oracle_fails_fast(make_orchestrator, make_request):
    vault = InMemoryVault(10 * SCALE)
    orch = make_orchestrator(oracle=SlowOracle(SPOT, delay=0.5), vault=vault, timeout=0.05)

    started = time.monotonic()
    with pytest.raises(CollaboratorUnavailable):
        orch.create_policy(make_request(), policy_id="p1")

    assert time.monotonic() - started < 0.4
    assert vault.reserved == 0
    assert orch.store.get("p1") is None


def test_late_reservation_is_undone(make_orchestrator, make_request):
    vault = SlowVault(10 * SCALE, delay=0.2)
    orch = make_orchestrator(vault=vault, timeout=0.05)

    with pytest.raises(CollaboratorUnavailable):
        orch.create_policy(make_request(), policy_id="p1")

    time.sleep(0.5)
    assert vault.reserved == 0
    assert orch.store.get("p1") is None


def test_settle_before_expiration(make_orchestrator, make_request):
    orch = make_orchestrator()
    orch.create_policy(make_request(), policy_id="p1")
    with pytest.raises(SettlementNotDue):
        orch.settle_policy("p1")
    assert orch.get_policy("p1").state is PolicyState.ACTIVE


def test_settle_exercised_put(make_orchestrator, make_request, clock):
    oracle = StaticOracle(SPOT)
    vault = InMemoryVault(10 * SCALE)
    orch = make_orchestrator(oracle=oracle, vault=vault)
    req = make_request()
    orch.create_policy(req, policy_id="p1")

    clock.now = req.expiration
    oracle.set_price_at(req.expiration, 40_000 * SCALE)
    rec = orch.settle_policy("p1")

    assert rec.state is PolicyState.SETTLED
    assert rec.history == ("Requested", "Verified", "Active", "Exercised", "Settled")
    assert rec.settlement.payout == 5_000 * SCALE
    assert rec.settlement.expiration_price == 40_000 * SCALE
    assert rec.collateral_released
    assert vault.reserved == 0


def test_settle_expired_out_of_the_money(make_orchestrator, make_request, clock):
    orch = make_orchestrator()
    req = make_request()
    orch.create_policy(req, policy_id="p1")
    clock.now = req.expiration + 60

    rec = orch.settle_policy("p1")
    assert rec.settlement.outcome is PolicyState.EXPIRED
    assert rec.settlement.payout == 0
    assert rec.history[-2:] == ("Expired", "Settled")


def test_settle_is_idempotent(make_orchestrator, make_request, clock):
    oracle = StaticOracle(SPOT)
    vault = InMemoryVault(10 * SCALE)
    orch = make_orchestrator(oracle=oracle, vault=vault)
    req = make_request()
    orch.create_policy(req, policy_id="p1")
    clock.now = req.expiration
    oracle.set_price_at(req.expiration, 40_000 * SCALE)

    first = orch.settle_policy("p1")
    # a later price must not change a committed settlement
    oracle.set_price_at(req.expiration, 10_000 * SCALE)
    second = orch.settle_policy("p1")

    assert second == first
    assert vault.reserved == 0


def test_settle_retry_finishes_failed_release(make_orchestrator, make_request, clock):
    vault = FlakyReleaseVault(10 * SCALE)
    orch = make_orchestrator(vault=vault)
    req = make_request()
    orch.create_policy(req, policy_id="p1")
    clock.now = req.expiration

    first = orch.settle_policy("p1")
    assert first.state is PolicyState.SETTLED
    assert not first.collateral_released
    assert orch.get_policy("p1") == first
    assert vault.reserved == SCALE

    rec = orch.settle_policy("p1")
    assert rec.collateral_released
    assert rec.settlement == first.settlement
    assert vault.reserved == 0


def test_late_release_is_recorded_and_never_repeated(make_orchestrator, make_request, clock):
    vault = SlowReleaseVault(10 * SCALE, delay=0.3)
    orch = make_orchestrator(vault=vault, timeout=0.05)
    req = make_request()
    orch.create_policy(req, policy_id="p1")
    orch.create_policy(req, policy_id="p2")
    assert vault.reserved == 2 * SCALE
    clock.now = req.expiration

    rec = orch.settle_policy("p1")
    assert rec.state is PolicyState.SETTLED
    time.sleep(0.6)

    assert orch.get_policy("p1").collateral_released
    orch.settle_policy("p1")
    assert vault.held_by("p2") == SCALE
    assert vault.reserved == SCALE
    assert vault.release_calls == 1


def test_release_marker_failure_does_not_free_twice(make_orchestrator, make_request, clock):
    vault = InMemoryVault(10 * SCALE)
    orch = make_orchestrator(vault=vault, store=FailingMarkStore())
    req = make_request()
    orch.create_policy(req, policy_id="p1")
    orch.create_policy(req, policy_id="p2")
    clock.now = req.expiration

    assert not orch.settle_policy("p1").collateral_released
    assert orch.settle_policy("p1").collateral_released
    assert vault.reserved == SCALE
    assert vault.held_by("p2") == SCALE


def test_concurrent_settles_of_one_policy(make_orchestrator, make_request, clock):
    oracle = CountingOracle(SPOT, delay=0.1)
    vault = InMemoryVault(10 * SCALE)
    orch = make_orchestrator(oracle=oracle, vault=vault)
    req = make_request()
    orch.create_policy(req, policy_id="p1")
    clock.now = req.expiration
    oracle.set_price_at(req.expiration, 40_000 * SCALE)

    results = []
    threads = [threading.Thread(target=lambda: results.append(orch.settle_policy("p1"))) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 4
    assert all(r == results[0] for r in results)
    assert results[0].settlement.payout == 5_000 * SCALE
    assert oracle.history_reads == 1
    assert vault.reserved == 0


def test_held_policy_lock_fails_fast(make_orchestrator, make_request, clock):
    orch = make_orchestrator(timeout=0.05)
    req = make_request()
    orch.create_policy(req, policy_id="p1")
    clock.now = req.expiration

    with orch.locks.hold("p1"):
        started = time.monotonic()
        with pytest.raises(PolicyBusy):
            orch.settle_policy("p1")
        assert time.monotonic() - started < 1.0
        # other policies are not blocked
        orch.create_policy(make_request(expiration=req.expiration + 86_400), policy_id="p2")

    assert orch.settle_policy("p1").state is PolicyState.SETTLED
    assert orch.locks._locks == {}


def test_settle_unknown_policy(make_orchestrator):
    with pytest.raises(PolicyNotFound):
        make_orchestrator().settle_policy("missing")


def test_verify_request_reads_fresh_price(make_orchestrator, make_request):
    oracle = StaticOracle(SPOT)
    orch = make_orchestrator(oracle=oracle)
    req = make_request(submitted_premium=1_300 * SCALE)

    assert orch.verify_request(req).accepted
    oracle.set_price(60_000 * SCALE)
    # 5% of 60k = 3000, so the floor moves to 1500
    assert not orch.verify_request(req).accepted
