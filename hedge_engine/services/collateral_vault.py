# hedge_engine/services/collateral_vault.py

import threading
from typing import Dict, Protocol

from ..domain.errors import InsufficientLiquidity, InvalidTransition
from ..utils.fixed_point import ensure_scaled
from ..utils.logging import get_logger

log = get_logger(__name__)


class CollateralVault(Protocol):
    def check_and_reserve(self, policy_id: str, notional: int) -> None:
        """Reserve `notional` for the policy or raise InsufficientLiquidity. Atomic."""
        ...

    def release(self, policy_id: str) -> int:
        """Free the policy's reservation; returns what was freed, 0 if nothing was held."""
        ...


class InMemoryVault:
    """
    Single-pool vault: capacity minus outstanding reservations is what new
    policies can draw on. Reservations are keyed by policy id, so a policy
    holds at most one and releasing it twice frees capital once.
    """

    def __init__(self, capacity: int):
        self.capacity = ensure_scaled("capacity", capacity)
        self._reservations: Dict[str, int] = {}
        self._lock = threading.Lock()

    @property
    def reserved(self) -> int:
        with self._lock:
            return sum(self._reservations.values())

    @property
    def available(self) -> int:
        return self.capacity - self.reserved

    def held_by(self, policy_id: str) -> int:
        with self._lock:
            return self._reservations.get(policy_id, 0)

    def check_and_reserve(self, policy_id: str, notional: int) -> None:
        notional = ensure_scaled("notional", notional)
        with self._lock:
            if policy_id in self._reservations:
                raise InvalidTransition(f"policy {policy_id} already holds a reservation")
            free = self.capacity - sum(self._reservations.values())
            if notional > free:
                raise InsufficientLiquidity(
                    f"insufficient liquidity: requested {notional}, available {free}"
                )
            self._reservations[policy_id] = notional
        log.info(f"vault reserved policy={policy_id} notional={notional}")

    def release(self, policy_id: str) -> int:
        with self._lock:
            notional = self._reservations.pop(policy_id, 0)
        if notional:
            log.info(f"vault released policy={policy_id} notional={notional}")
        else:
            log.info(f"vault release policy={policy_id}: nothing held")
        return notional
