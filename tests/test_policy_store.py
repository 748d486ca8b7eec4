import copy
from types import SimpleNamespace

import pytest
from pymongo.errors import DuplicateKeyError, ServerSelectionTimeoutError

from hedge_engine.domain.errors import CollaboratorUnavailable, InvalidTransition, PolicyNotFound
from hedge_engine.domain.models import (
    OptionType,
    PolicyRecord,
    PolicyState,
    PolicyTerms,
    SettlementResult,
)
from hedge_engine.domain.risk_tiers import risk_tier
from hedge_engine.storage.policy_store import InMemoryPolicyStore, MongoPolicyStore
from hedge_engine.utils.fixed_point import MAX_UINT, SCALE


class FakeCollection:
    """Just enough of pymongo's Collection for the store."""

    def __init__(self, down=False):
        self.docs = {}
        self.down = down

    def _check(self):
        if self.down:
            raise ServerSelectionTimeoutError("no servers available")

    def insert_one(self, doc):
        self._check()
        if doc["_id"] in self.docs:
            raise DuplicateKeyError("E11000 duplicate key error")
        self.docs[doc["_id"]] = copy.deepcopy(doc)

    def find_one(self, flt):
        self._check()
        doc = self.docs.get(flt["_id"])
        return copy.deepcopy(doc) if doc else None

    def update_one(self, flt, update):
        self._check()
        doc = self.docs.get(flt["_id"])
        if doc is None or any(doc.get(k) != v for k, v in flt.items() if k != "_id"):
            return SimpleNamespace(matched_count=0)
        doc.update(copy.deepcopy(update["$set"]))
        return SimpleNamespace(matched_count=1)


def _active(policy_id="p1", notional=SCALE):
    terms = PolicyTerms(
        option_type=OptionType.PUT,
        protected_value=45_000 * SCALE,
        protection_amount=notional,
        risk_tier=risk_tier("provider", "balanced"),
        asset="BTC",
        expiration=1_700_600_000,
    )
    return PolicyRecord(
        policy_id=policy_id,
        state=PolicyState.ACTIVE,
        terms=terms,
        premium=2_500 * SCALE,
        created_at="2023-11-14T22:13:20+00:00",
        history=("Requested", "Verified", "Active"),
    )


def _settle(rec):
    result = SettlementResult(0, 50_000 * SCALE, 0, PolicyState.EXPIRED)
    return rec.advance(PolicyState.EXPIRED).advance(PolicyState.SETTLED, settlement=result)


@pytest.fixture(params=["memory", "mongo"])
def store(request):
    if request.param == "memory":
        return InMemoryPolicyStore()
    return MongoPolicyStore(FakeCollection())


def test_insert_and_get(store):
    rec = _active()
    store.insert(rec)
    assert store.get("p1") == rec
    assert store.get("nope") is None


def test_duplicate_insert(store):
    store.insert(_active())
    with pytest.raises(InvalidTransition):
        store.insert(_active())


def test_settlement_commits_only_from_active(store):
    rec = _active()
    store.insert(rec)
    settled = _settle(rec)

    store.save_settlement(settled)
    assert store.get("p1").state is PolicyState.SETTLED
    assert store.get("p1").settlement == settled.settlement

    with pytest.raises(InvalidTransition):
        store.save_settlement(settled)
    with pytest.raises(PolicyNotFound):
        store.save_settlement(_settle(_active("ghost")))


def test_mark_collateral_released(store):
    store.insert(_active())
    store.save_settlement(_settle(_active()))
    rec = store.mark_collateral_released("p1")
    assert rec.collateral_released
    assert store.get("p1").collateral_released
    with pytest.raises(PolicyNotFound):
        store.mark_collateral_released("ghost")


def test_mongo_keeps_amounts_beyond_64_bits():
    col = FakeCollection()
    store = MongoPolicyStore(col)
    rec = _active(notional=MAX_UINT)
    store.insert(rec)

    assert col.docs["p1"]["terms"]["protection_amount"] == str(MAX_UINT)
    assert col.docs["p1"]["collateral_released"] is False
    assert store.get("p1").terms.protection_amount == MAX_UINT


def test_mongo_outage_is_collaborator_error():
    store = MongoPolicyStore(FakeCollection(down=True))
    with pytest.raises(CollaboratorUnavailable):
        store.insert(_active())
    with pytest.raises(CollaboratorUnavailable):
        store.get("p1")
