"""Deduction-failure bookkeeping and ledger audits."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ...models.credit_account import CreditAccount
from ...models.credit_deduction_failure import CreditDeductionFailure, DeductionFailureStatus
from ...platform.database import transaction_scope
from ...services.credit_ledger_service import ordered_entries, replay_balance
from .errors import CreditError, InsufficientCredits
from .store import CreditAccountStore

logger = logging.getLogger("scan2ship.credits.reconciliation")
alerts = logging.getLogger("scan2ship.credits.alerts")

RECONCILER_ACTOR = "system:reconciler"


def record_deduction_failure(
    db: Session,
    *,
    tenant_id: str,
    feature: str,
    amount: int,
    description: str,
    error: BaseException,
    actor_id: str | None = None,
    order_id: int | None = None,
) -> Optional[CreditDeductionFailure]:
    """Persist an uncharged operation. Returns None if even that write fails."""
    try:
        with transaction_scope(db):
            failure = CreditDeductionFailure(
                tenant_id=tenant_id,
                feature=feature,
                amount=amount,
                description=description,
                actor_id=actor_id,
                order_id=order_id,
                error=f"{type(error).__name__}: {error}",
                attempts=1,
                status=DeductionFailureStatus.PENDING,
            )
            db.add(failure)
        return failure
    except Exception:
        alerts.exception(
            "Could not record credit deduction failure for tenant %s",
            tenant_id,
            extra={"tenant_id": tenant_id, "feature": feature, "amount": amount},
        )
        return None


def pending_failures(db: Session, limit: int = 100) -> List[CreditDeductionFailure]:
    return (
        db.query(CreditDeductionFailure)
        .filter(CreditDeductionFailure.status == DeductionFailureStatus.PENDING)
        .order_by(CreditDeductionFailure.id.asc())
        .limit(limit)
        .all()
    )


def reconcile_deduction_failures(
    db: Session,
    *,
    limit: int = 100,
    store_factory: Callable[[Session], CreditAccountStore] = CreditAccountStore,
) -> Dict[str, int]:
    """Retry the charge for each pending failure; failures stay pending if still unaffordable.

    The debit and the CHARGED mark commit together, with the failure row locked,
    so overlapping runs charge a failure once and a crash leaves no half-done row.
    """
    summary = {"checked": 0, "charged": 0, "pending": 0, "errors": 0, "skipped": 0}
    store = store_factory(db)
    keys = [(row.id, row.tenant_id) for row in pending_failures(db, limit=limit)]
    for failure_id, tenant_id in keys:
        summary["checked"] += 1
        try:
            charged = _charge_failure(db, store, failure_id, tenant_id)
        except InsufficientCredits:
            _bump_attempts(db, failure_id)
            summary["pending"] += 1
            continue
        except CreditError as exc:
            logger.error(
                "Reconciliation of deduction failure %s failed: %s",
                failure_id,
                exc,
                extra={"tenant_id": tenant_id, "failure_id": failure_id},
            )
            _bump_attempts(db, failure_id)
            summary["errors"] += 1
            continue

        if not charged:
            summary["skipped"] += 1
            continue
        summary["charged"] += 1
        logger.info(
            "Charged deduction failure %s",
            failure_id,
            extra={"tenant_id": tenant_id, "failure_id": failure_id},
        )
    return summary


def _charge_failure(db: Session, store: CreditAccountStore, failure_id: int, tenant_id: str) -> bool:
    """Charge one failure. Returns False if another run already resolved it."""
    with store.mutation(tenant_id) as account:
        row = db.execute(
            select(CreditDeductionFailure)
            .where(CreditDeductionFailure.id == failure_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None or row.status != DeductionFailureStatus.PENDING:
            return False
        entry = store.apply_debit(
            account,
            int(row.amount),
            row.feature,
            f"{row.description} (reconciled)",
            actor_id=row.actor_id or RECONCILER_ACTOR,
            order_id=row.order_id,
        )
        row.status = DeductionFailureStatus.CHARGED
        row.attempts = int(row.attempts or 0) + 1
        row.resolved_at = datetime.now(timezone.utc)
        row.resolution_transaction_id = entry.id
    store.last_transaction = entry
    return True


def _bump_attempts(db: Session, failure_id: int) -> None:
    with transaction_scope(db):
        row = db.get(CreditDeductionFailure, failure_id)
        row.attempts = int(row.attempts or 0) + 1


def waive_deduction_failure(db: Session, failure_id: int) -> Optional[CreditDeductionFailure]:
    with transaction_scope(db):
        row = db.get(CreditDeductionFailure, failure_id)
        if row is None or row.status != DeductionFailureStatus.PENDING:
            return None
        row.status = DeductionFailureStatus.WAIVED
        row.resolved_at = datetime.now(timezone.utc)
    logger.info(
        "Waived deduction failure %s",
        failure_id,
        extra={"tenant_id": row.tenant_id, "failure_id": failure_id},
    )
    return row


def serialize_failure(row: CreditDeductionFailure) -> Dict[str, Any]:
    return {
        "id": row.id,
        "tenantId": row.tenant_id,
        "feature": row.feature,
        "amount": row.amount,
        "description": row.description,
        "orderId": row.order_id,
        "error": row.error,
        "attempts": row.attempts,
        "status": row.status.value,
        "resolutionTransactionId": row.resolution_transaction_id,
        "createdAt": row.created_at.isoformat() if row.created_at else None,
        "resolvedAt": row.resolved_at.isoformat() if row.resolved_at else None,
    }


def audit_account(db: Session, tenant_id: str) -> List[str]:
    """Compare an account to its ledger. An empty list means they agree."""
    problems: List[str] = []
    account = db.get(CreditAccount, tenant_id)
    entries = ordered_entries(db, tenant_id)
    if account is None:
        if entries:
            problems.append(f"{len(entries)} ledger entries exist without an account")
        return problems

    replayed = replay_balance(db, tenant_id)
    if replayed != account.balance:
        problems.append(f"balance {account.balance} != ledger sum {replayed}")
    if account.balance != account.total_added - account.total_used:
        problems.append(
            f"balance {account.balance} != total_added {account.total_added} - total_used {account.total_used}"
        )
    if len(entries) != account.ledger_seq:
        problems.append(f"ledger_seq {account.ledger_seq} != entry count {len(entries)}")

    running = 0
    for expected_seq, entry in enumerate(entries, start=1):
        if entry.seq != expected_seq:
            problems.append(f"sequence gap: expected {expected_seq}, found {entry.seq}")
            break
        running += entry.signed_amount
        if entry.balance_after != running:
            problems.append(
                f"entry {entry.seq} balance_after {entry.balance_after} != running balance {running}"
            )
            break
    return problems


def audit_all_accounts(db: Session) -> Dict[str, List[str]]:
    results: Dict[str, List[str]] = {}
    for (tenant_id,) in db.query(CreditAccount.tenant_id).order_by(CreditAccount.tenant_id).all():
        problems = audit_account(db, tenant_id)
        if problems:
            results[tenant_id] = problems
    return results
