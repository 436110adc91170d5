"""Concurrent writers on one account: no overdraw, no double credit, no double charge."""
import threading
from contextlib import contextmanager

import pytest

from scan2ship.components.credits.costs import Feature
from scan2ship.components.credits.errors import InsufficientCredits, PaymentAlreadyProcessed
from scan2ship.components.credits.payments import PaymentCreditingGate
from scan2ship.components.credits.reconciliation import (
    audit_account,
    reconcile_deduction_failures,
    record_deduction_failure,
)
from scan2ship.components.credits.store import CreditAccountStore, TenantLockRegistry
from scan2ship.models.credit_deduction_failure import CreditDeductionFailure, DeductionFailureStatus
from scan2ship.models.credit_transaction import CreditTransaction, TransactionKind
from tests.conftest import TestingSessionLocal, create_tenant

pytestmark = pytest.mark.concurrency


def _run_in_threads(count, target):
    barrier = threading.Barrier(count)
    results = []
    results_lock = threading.Lock()

    def worker():
        session = TestingSessionLocal()
        try:
            barrier.wait()
            outcome = target(session)
        except Exception as exc:
            outcome = exc
        finally:
            session.close()
        with results_lock:
            results.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return results


def test_fifteen_concurrent_debits_on_balance_of_ten(db, tenant):
    CreditAccountStore(db).credit(tenant.id, 10)

    def debit(session):
        CreditAccountStore(session).debit(tenant.id, 1, Feature.ORDER, "Order creation")
        return "ok"

    results = _run_in_threads(15, debit)

    assert results.count("ok") == 10
    rejected = [r for r in results if isinstance(r, InsufficientCredits)]
    assert len(rejected) == 5
    db.expire_all()
    assert CreditAccountStore(db).get_account(tenant.id).balance == 0
    debits = db.query(CreditTransaction).filter(CreditTransaction.kind == TransactionKind.DEBIT).count()
    assert debits == 10
    assert audit_account(db, tenant.id) == []


def test_debits_with_separate_lock_registries_never_overdraw(db, tenant):
    # A registry per worker stands in for separate processes; only the database serializes them.
    CreditAccountStore(db).credit(tenant.id, 10)

    def debit(session):
        store = CreditAccountStore(session, locks=TenantLockRegistry())
        store.debit(tenant.id, 1, Feature.ORDER, "Order creation")
        return "ok"

    results = _run_in_threads(15, debit)

    assert results.count("ok") == 10
    assert sum(isinstance(r, InsufficientCredits) for r in results) == 5
    db.expire_all()
    assert CreditAccountStore(db).get_account(tenant.id).balance == 0
    assert audit_account(db, tenant.id) == []


def test_concurrent_duplicate_payments_credit_once(db, tenant):
    def pay(session):
        gate = PaymentCreditingGate(CreditAccountStore(session))
        return gate.verify_and_credit(tenant.id, "UPI-RACE", 50).balance

    results = _run_in_threads(8, pay)

    assert results.count(50) == 1
    assert sum(isinstance(r, PaymentAlreadyProcessed) for r in results) == 7
    db.expire_all()
    assert CreditAccountStore(db).get_account(tenant.id).balance == 50


def test_tenants_do_not_block_each_other(db):
    tenants = [create_tenant(db) for _ in range(3)]
    store = CreditAccountStore(db)
    for t in tenants:
        store.credit(t.id, 4)
    ids = [t.id for t in tenants] * 4
    cursor = iter(ids)
    cursor_lock = threading.Lock()

    def debit(session):
        with cursor_lock:
            tenant_id = next(cursor)
        CreditAccountStore(session).debit(tenant_id, 1, Feature.WHATSAPP)
        return tenant_id

    results = _run_in_threads(len(ids), debit)

    assert sorted(results) == sorted(ids)
    db.expire_all()
    for t in tenants:
        assert store.get_account(t.id).balance == 0
        assert audit_account(db, t.id) == []


class _InterleavedStore(CreditAccountStore):
    """Holds every worker at the door of its first mutation until all have arrived."""

    def __init__(self, db, barrier):
        super().__init__(db, locks=TenantLockRegistry())
        self._barrier = barrier

    @contextmanager
    def mutation(self, tenant_id):
        self._barrier.wait(timeout=30)
        with super().mutation(tenant_id) as account:
            yield account


def test_overlapping_reconcile_runs_charge_a_failure_once(db, tenant):
    CreditAccountStore(db).credit(tenant.id, 10)
    failure = record_deduction_failure(
        db,
        tenant_id=tenant.id,
        feature=Feature.IMAGE_PROCESSING.value,
        amount=3,
        description="AI Usage in Order reference",
        error=RuntimeError("timeout"),
    )
    failure_id = failure.id
    both_loaded = threading.Barrier(2)

    def reconcile(session):
        return reconcile_deduction_failures(
            session,
            store_factory=lambda s: _InterleavedStore(s, both_loaded),
        )

    results = _run_in_threads(2, reconcile)

    assert sorted(r["charged"] for r in results) == [0, 1]
    assert sorted(r["skipped"] for r in results) == [0, 1]
    db.expire_all()
    assert CreditAccountStore(db).get_account(tenant.id).balance == 7
    row = db.get(CreditDeductionFailure, failure_id)
    assert row.status == DeductionFailureStatus.CHARGED
    debits = db.query(CreditTransaction).filter(CreditTransaction.kind == TransactionKind.DEBIT).count()
    assert debits == 1
    assert audit_account(db, tenant.id) == []
