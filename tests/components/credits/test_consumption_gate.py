import logging

import pytest

from scan2ship.components.credits.consumption import ConsumptionGate, ConsumptionState
from scan2ship.components.credits.costs import CreditCostTable, Feature
from scan2ship.components.credits.errors import InsufficientCredits, UnknownFeature
from scan2ship.components.credits.store import CreditAccountStore
from scan2ship.models.credit_deduction_failure import CreditDeductionFailure, DeductionFailureStatus
from scan2ship.models.credit_transaction import CreditTransaction
from scan2ship.platform.config import Settings
from tests.conftest import TestingSessionLocal


@pytest.fixture
def costs():
    return CreditCostTable.from_settings(Settings())


@pytest.fixture
def store(db):
    return CreditAccountStore(db)


def test_unknown_feature_fails_at_registration(store, costs):
    with pytest.raises(UnknownFeature):
        ConsumptionGate(store, "TELEPATHY", costs=costs)


def test_successful_operation_is_charged(db, tenant, store, costs):
    store.credit(tenant.id, 10)
    gate = ConsumptionGate(store, Feature.IMAGE_PROCESSING, costs=costs)

    outcome = gate.run(tenant.id, lambda: {"parsed": True}, actor_id="user-1")

    assert outcome.result == {"parsed": True}
    assert outcome.charged == 2
    assert outcome.balance_after == 8
    assert outcome.state == ConsumptionState.DONE
    assert outcome.deduction_failed is False
    entry = store.last_transaction
    assert entry.feature == "IMAGE_PROCESSING"
    assert entry.description == "AI Usage in Order reference"
    assert entry.actor_id == "user-1"


class _BusyNeighbourStore(CreditAccountStore):
    """Another writer commits right after each debit."""

    def debit(self, *args, **kwargs):
        snapshot = super().debit(*args, **kwargs)
        other = TestingSessionLocal()
        try:
            CreditAccountStore(other).credit(snapshot.tenant_id, 100)
        finally:
            other.close()
        return snapshot


def test_balance_after_reflects_this_charge(db, tenant, costs):
    store = _BusyNeighbourStore(db)
    store.credit(tenant.id, 10)
    gate = ConsumptionGate(store, Feature.IMAGE_PROCESSING, costs=costs)

    outcome = gate.run(tenant.id, lambda: "ok")

    assert outcome.balance_after == 8
    assert store.last_transaction.balance_after == 8
    db.expire_all()
    assert store.get_account(tenant.id).balance == 108


def test_order_id_can_be_derived_from_the_result(db, tenant, store, costs):
    store.credit(tenant.id, 10)
    gate = ConsumptionGate(store, "ORDER", costs=costs)

    outcome = gate.run(tenant.id, lambda: {"order_id": 77}, order_id=lambda result: result["order_id"])

    assert outcome.charged == 1
    assert store.last_transaction.order_id == 77
    assert store.last_transaction.description == "Order creation"


def test_insufficient_balance_skips_the_operation(db, tenant, store, costs):
    store.credit(tenant.id, 1)
    calls = []
    gate = ConsumptionGate(store, Feature.IMAGE_PROCESSING, costs=costs)

    with pytest.raises(InsufficientCredits) as excinfo:
        gate.run(tenant.id, lambda: calls.append("ran"))

    assert calls == []
    assert excinfo.value.required == 2
    assert excinfo.value.available == 1
    assert db.query(CreditTransaction).count() == 1


def test_failed_operation_is_not_charged(db, tenant, store, costs):
    store.credit(tenant.id, 10)
    gate = ConsumptionGate(store, Feature.WHATSAPP, costs=costs)

    def send():
        raise ConnectionError("gateway down")

    with pytest.raises(ConnectionError):
        gate.run(tenant.id, send)
    db.expire_all()
    assert store.get_account(tenant.id).balance == 10
    assert db.query(CreditTransaction).count() == 1


def test_tenant_override_cost_is_charged(db, tenant, store, costs):
    store.credit(tenant.id, 10)
    costs.upsert_tenant_costs(db, tenant.id, {"WHATSAPP": 3})
    gate = ConsumptionGate(store, Feature.WHATSAPP, costs=costs)

    outcome = gate.run(tenant.id, lambda: "sent")
    assert outcome.charged == 3
    assert outcome.balance_after == 7


def test_deduction_failure_returns_result_and_is_recorded(db, tenant, store, costs, monkeypatch, caplog):
    store.credit(tenant.id, 10)
    gate = ConsumptionGate(store, Feature.ORDER, costs=costs)

    def broken_debit(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(store, "debit", broken_debit)
    with caplog.at_level(logging.ERROR, logger="scan2ship.credits.alerts"):
        outcome = gate.run(tenant.id, lambda: "order-created", order_id=5)

    assert outcome.result == "order-created"
    assert outcome.deduction_failed is True
    assert outcome.charged == 0
    assert outcome.balance_after is None
    assert outcome.state == ConsumptionState.DEDUCT
    failure = db.get(CreditDeductionFailure, outcome.failure_id)
    assert failure.status == DeductionFailureStatus.PENDING
    assert failure.amount == 1
    assert failure.order_id == 5
    assert "database went away" in failure.error
    assert any(r.name == "scan2ship.credits.alerts" for r in caplog.records)
    db.expire_all()
    assert store.get_account(tenant.id).balance == 10
