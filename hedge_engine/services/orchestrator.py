# hedge_engine/services/orchestrator.py
"""
Policy lifecycle: Requested -> Verified -> Active -> {Exercised | Expired} -> Settled.

The orchestrator is the only writer of policy state. Every transition is
all-or-nothing: external checks run first, the store is written last, and
capital reserved along the way is released if that write never happens.
Only Active and Settled records are ever persisted; the intermediate states
exist on the in-flight record and in its history.
"""

import threading
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Dict, Iterator, List, Optional

from ..domain.errors import (
    AppError,
    InvalidTransition,
    PolicyBusy,
    PolicyNotFound,
    ScaleMismatch,
    SettlementNotDue,
    ValidationError,
)
from ..domain.models import (
    PolicyRecord,
    PolicyRequest,
    PolicyState,
    PolicyTerms,
    parse_option_type,
)
from ..domain.risk_tiers import risk_tier
from ..storage.policy_store import PolicyStore
from ..utils.config import settings
from ..utils.deadline import call_with_deadline
from ..utils.fixed_point import SCALE, ensure_scaled
from ..utils.logging import get_logger
from .collateral_vault import CollateralVault
from .parameter_store import ParameterStore
from .premium_verifier import PremiumVerdict, verify_submitted_premium
from .price_oracle import PriceOracle
from .settlement import calculate_settlement

log = get_logger(__name__)


class PolicyLocks:
    """One lock per policy id; entries are dropped when nobody holds or waits."""

    def __init__(self, acquire_timeout: float):
        self.acquire_timeout = acquire_timeout
        self._guard = threading.Lock()
        self._locks: Dict[str, List] = {}  # id -> [lock, users]

    @contextmanager
    def hold(self, policy_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(policy_id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            if not entry[0].acquire(timeout=self.acquire_timeout):
                raise PolicyBusy(f"policy {policy_id} has a transition in progress")
            try:
                yield
            finally:
                entry[0].release()
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(policy_id, None)


class PolicyOrchestrator:
    def __init__(
        self,
        oracle: PriceOracle,
        parameters: ParameterStore,
        vault: CollateralVault,
        store: PolicyStore,
        timeout: float = settings.COLLABORATOR_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ):
        self.oracle = oracle
        self.parameters = parameters
        self.vault = vault
        self.store = store
        self.timeout = timeout
        self.clock = clock
        self.id_factory = id_factory
        # a transition makes at most four collaborator calls
        self.locks = PolicyLocks(acquire_timeout=timeout * 4)

    # ----------------- collaborators -----------------

    def _call(self, name: str, fn: Callable, *args, **kwargs):
        return call_with_deadline(name, fn, *args, timeout=self.timeout, **kwargs)

    def _release(self, policy_id: str, on_late_result: Optional[Callable] = None) -> None:
        freed = self._call("vault.release", self.vault.release, policy_id, on_late_result=on_late_result)
        log.info(f"policy={policy_id} released notional={freed}")

    # ----------------- request handling -----------------

    def terms_from_request(self, request: PolicyRequest) -> PolicyTerms:
        """
        Validate a preparation-layer request. Amounts must already be
        ScaledAmount at the canonical scale; nothing is renormalized here.
        """
        if request.scale != SCALE:
            raise ScaleMismatch(f"request scale {request.scale!r} does not match {SCALE}")
        option_type = parse_option_type(request.option_type)
        protected_value = ensure_scaled("protected_value", request.protected_value)
        protection_amount = ensure_scaled("protection_amount", request.protection_amount)
        if protected_value == 0 or protection_amount == 0:
            raise ValidationError("protected_value and protection_amount must be positive")
        if not isinstance(request.asset, str) or not request.asset:
            raise ValidationError("asset identifier is required")
        if isinstance(request.expiration, bool) or not isinstance(request.expiration, int):
            raise ValidationError(f"expiration must be an integer marker, got {request.expiration!r}")
        return PolicyTerms(
            option_type=option_type,
            protected_value=protected_value,
            protection_amount=protection_amount,
            risk_tier=risk_tier(request.role, request.risk_tier),
            asset=request.asset,
            expiration=request.expiration,
        )

    def verify(self, terms: PolicyTerms, submitted_premium: int) -> PremiumVerdict:
        """Fresh price and parameters on every call; nothing is cached."""
        spot = self._call("oracle.current_price", self.oracle.current_price)
        params = self._call("parameters.system_parameters", self.parameters.system_parameters)
        return verify_submitted_premium(
            submitted_premium,
            terms.option_type,
            terms.protected_value,
            terms.protection_amount,
            spot,
            terms.risk_tier,
            params,
        )

    def verify_request(self, request: PolicyRequest) -> PremiumVerdict:
        return self.verify(self.terms_from_request(request), request.submitted_premium)

    # ----------------- lifecycle -----------------

    def get_policy(self, policy_id: str) -> PolicyRecord:
        record = self.store.get(policy_id)
        if record is None:
            raise PolicyNotFound(f"policy {policy_id} not found")
        return record

    def create_policy(self, request: PolicyRequest, policy_id: Optional[str] = None) -> PolicyRecord:
        """
        Requested -> Verified -> Active.

        Raises PremiumOutOfBounds or InsufficientLiquidity as business
        outcomes; in every failure case no policy is stored and no capital
        stays reserved.
        """
        terms = self.terms_from_request(request)
        premium = ensure_scaled("submitted_premium", request.submitted_premium)
        if terms.expiration <= self.clock():
            raise ValidationError(f"expiration {terms.expiration} is not in the future")
        pid = policy_id or self.id_factory()

        with self.locks.hold(pid):
            if self.store.get(pid) is not None:
                raise InvalidTransition(f"policy {pid} already exists")

            record = PolicyRecord(
                policy_id=pid,
                state=PolicyState.REQUESTED,
                terms=terms,
                premium=premium,
                created_at=datetime.now(timezone.utc).isoformat(),
                history=(PolicyState.REQUESTED.value,),
            )

            verdict = self.verify(terms, premium)
            if not verdict.accepted:
                log.warning(f"policy={pid} rejected premium={premium} "
                            f"bounds=[{verdict.bounds.min}, {verdict.bounds.max}]")
                raise verdict.rejection
            record = record.advance(PolicyState.VERIFIED)

            notional = terms.protection_amount
            self._call(
                "vault.check_and_reserve",
                self.vault.check_and_reserve,
                pid,
                notional,
                on_late_result=lambda _: self.vault.release(pid),
            )
            try:
                record = record.advance(PolicyState.ACTIVE)
                self.store.insert(record)
            except Exception:
                log.warning(f"policy={pid} commit failed after reservation; releasing")
                try:
                    self._release(pid)
                except AppError as e:
                    log.error(f"policy={pid} release after failed commit also failed: {e.message}")
                raise

        log.info(f"policy={pid} Active type={terms.option_type.value} tier={terms.risk_tier} "
                 f"strike={terms.protected_value} notional={notional} premium={premium}")
        return record

    def settle_policy(self, policy_id: str) -> PolicyRecord:
        """
        Active -> {Exercised | Expired} -> Settled, at or after expiration.

        Idempotent: a Settled policy is returned as stored, without
        recomputing. Once the settlement is committed this never raises; a
        collateral release that fails is left pending (`collateral_released`
        stays False) and the next call finishes it.
        """
        with self.locks.hold(policy_id):
            record = self.get_policy(policy_id)

            if record.state is PolicyState.SETTLED:
                if not record.collateral_released:
                    record = self._release_settled(record)
                return record
            if record.state is not PolicyState.ACTIVE:
                raise InvalidTransition(f"policy {policy_id} is {record.state.value}, cannot settle")

            expiration = record.terms.expiration
            if self.clock() < expiration:
                raise SettlementNotDue(f"policy {policy_id} expires at {expiration}")

            price = self._call("oracle.price_at", self.oracle.price_at, expiration)
            result = calculate_settlement(
                record.terms.option_type,
                record.terms.protected_value,
                record.terms.protection_amount,
                price,
            )
            settled = record.advance(result.outcome).advance(PolicyState.SETTLED, settlement=result)
            self.store.save_settlement(settled)
            log.info(f"policy={policy_id} Settled outcome={result.outcome.value} "
                     f"expiration_price={price} payout={result.payout}")

            return self._release_settled(settled)

    def _release_settled(self, record: PolicyRecord) -> PolicyRecord:
        pid = record.policy_id
        try:
            self._release(pid, on_late_result=lambda _: self.store.mark_collateral_released(pid))
            return self.store.mark_collateral_released(pid)
        except AppError as e:
            log.warning(f"policy={pid} settled; collateral release pending: {e.message}")
            return record
