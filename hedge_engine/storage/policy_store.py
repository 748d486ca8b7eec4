# hedge_engine/storage/policy_store.py

import threading
from dataclasses import replace
from typing import Any, Dict, Optional, Protocol

from pymongo import MongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

from ..domain.errors import CollaboratorUnavailable, InvalidTransition, PolicyNotFound
from ..domain.models import PolicyRecord, PolicyState
from ..utils.logging import get_logger

log = get_logger(__name__)


class PolicyStore(Protocol):
    def insert(self, record: PolicyRecord) -> None:
        ...

    def get(self, policy_id: str) -> Optional[PolicyRecord]:
        ...

    def save_settlement(self, record: PolicyRecord) -> None:
        """Commit a Settled record; only succeeds if the stored policy is still Active."""
        ...

    def mark_collateral_released(self, policy_id: str) -> PolicyRecord:
        ...


class InMemoryPolicyStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._records: Dict[str, PolicyRecord] = {}

    def insert(self, record: PolicyRecord) -> None:
        with self._lock:
            if record.policy_id in self._records:
                raise InvalidTransition(f"policy {record.policy_id} already exists")
            self._records[record.policy_id] = record

    def get(self, policy_id: str) -> Optional[PolicyRecord]:
        with self._lock:
            return self._records.get(policy_id)

    def save_settlement(self, record: PolicyRecord) -> None:
        with self._lock:
            current = self._records.get(record.policy_id)
            if current is None:
                raise PolicyNotFound(f"policy {record.policy_id} not found")
            if current.state is not PolicyState.ACTIVE:
                raise InvalidTransition(
                    f"policy {record.policy_id} is {current.state.value}, expected Active"
                )
            self._records[record.policy_id] = record

    def mark_collateral_released(self, policy_id: str) -> PolicyRecord:
        with self._lock:
            current = self._records.get(policy_id)
            if current is None:
                raise PolicyNotFound(f"policy {policy_id} not found")
            updated = replace(current, collateral_released=True)
            self._records[policy_id] = updated
            return updated


def _encode(value: Any) -> Any:
    # BSON ints are 64-bit; ScaledAmounts can reach 2**128
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_encode(v) for v in value]
    return value


class MongoPolicyStore:
    """
    One document per policy, `_id` = policy id. Amounts are stored as decimal
    strings. Settlement is a conditional update on state == Active, so two
    writers can never both settle the same policy.
    """

    def __init__(self, collection):
        self._col = collection

    @classmethod
    def from_uri(cls, uri: str, collection: str = "policies", timeout_ms: int = 3000) -> "MongoPolicyStore":
        client = MongoClient(uri, serverSelectionTimeoutMS=timeout_ms)
        log.info(f"policy store using mongo collection={collection}")
        return cls(client.get_default_database()[collection])

    def insert(self, record: PolicyRecord) -> None:
        doc = _encode(record.to_dict())
        doc["_id"] = record.policy_id
        try:
            self._col.insert_one(doc)
        except DuplicateKeyError:
            raise InvalidTransition(f"policy {record.policy_id} already exists")
        except PyMongoError as e:
            raise CollaboratorUnavailable(f"policy store unavailable: {e}") from e

    def get(self, policy_id: str) -> Optional[PolicyRecord]:
        try:
            doc = self._col.find_one({"_id": policy_id})
        except PyMongoError as e:
            raise CollaboratorUnavailable(f"policy store unavailable: {e}") from e
        if not doc:
            return None
        return PolicyRecord.from_dict(doc)

    def save_settlement(self, record: PolicyRecord) -> None:
        d = _encode(record.to_dict())
        update = {"$set": {
            "state": d["state"],
            "settlement": d["settlement"],
            "collateral_released": d["collateral_released"],
            "history": d["history"],
        }}
        try:
            res = self._col.update_one(
                {"_id": record.policy_id, "state": PolicyState.ACTIVE.value}, update
            )
        except PyMongoError as e:
            raise CollaboratorUnavailable(f"policy store unavailable: {e}") from e
        if res.matched_count == 1:
            return
        current = self.get(record.policy_id)
        if current is None:
            raise PolicyNotFound(f"policy {record.policy_id} not found")
        raise InvalidTransition(f"policy {record.policy_id} is {current.state.value}, expected Active")

    def mark_collateral_released(self, policy_id: str) -> PolicyRecord:
        try:
            res = self._col.update_one({"_id": policy_id}, {"$set": {"collateral_released": True}})
        except PyMongoError as e:
            raise CollaboratorUnavailable(f"policy store unavailable: {e}") from e
        if res.matched_count == 0:
            raise PolicyNotFound(f"policy {policy_id} not found")
        return self.get(policy_id)
