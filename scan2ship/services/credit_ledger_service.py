"""Append-only credit transaction ledger: writes, paginated reads, grouping and replay."""

from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from ..models.credit_account import CreditAccount
from ..models.credit_transaction import CreditTransaction, TransactionKind
from ..platform.config import settings

# Ledger tags for entries that are not feature consumption.
MANUAL_TAG = "MANUAL"
PAYMENT_TAG = "PAYMENT"
RESET_TAG = "RESET"

# Feature tags whose order-less entries are grouped under their own bucket.
_AI_GROUPS = {
    "IMAGE_PROCESSING": "image_processing",
    "TEXT_PROCESSING": "text_processing",
}


def append_credit_ledger_entry(
    db: Session,
    *,
    account: CreditAccount,
    kind: TransactionKind,
    amount: int,
    feature: str,
    description: str,
    payment_ref: str | None = None,
    actor_id: str | None = None,
    order_id: int | None = None,
) -> CreditTransaction:
    """Write the entry for a mutation already applied to `account` in this transaction.

    The account row must be freshly loaded: its `ledger_seq` and `balance` become the
    entry's sequence number and `balance_after`.
    """
    entry = CreditTransaction(
        tenant_id=account.tenant_id,
        seq=int(account.ledger_seq),
        kind=kind,
        amount=int(amount),
        balance_after=int(account.balance),
        feature=feature,
        description=description,
        payment_ref=payment_ref,
        actor_id=actor_id,
        order_id=order_id,
    )
    db.add(entry)
    db.flush()
    return entry


def find_payment_entry(db: Session, tenant_id: str, payment_ref: str) -> Optional[CreditTransaction]:
    """Credit entry that already accounts for this payment reference.

    The `payment_ref` column is checked first. A credit whose description mentions
    the reference also counts, so a payment an admin credited by hand is not
    credited a second time.
    """
    entry = (
        db.query(CreditTransaction)
        .filter(
            CreditTransaction.tenant_id == tenant_id,
            CreditTransaction.payment_ref == payment_ref,
        )
        .first()
    )
    if entry is not None:
        return entry
    candidates = (
        db.query(CreditTransaction)
        .filter(
            CreditTransaction.tenant_id == tenant_id,
            CreditTransaction.kind == TransactionKind.CREDIT,
            CreditTransaction.description.contains(payment_ref, autoescape=True),
        )
        .order_by(CreditTransaction.seq.asc())
        .all()
    )
    # LIKE ignores case on SQLite; references are compared exactly.
    for candidate in candidates:
        if payment_ref in candidate.description:
            return candidate
    return None


def compose_payment_description(
    payment_ref: str,
    utr_number: str | None = None,
    tenant_name: str | None = None,
) -> str:
    description = f"Credit recharge via UPI - {payment_ref}"
    if utr_number and utr_number.strip():
        description += f" | UTR: {utr_number.strip()}"
    if tenant_name:
        description += f" | Client: {tenant_name}"
    return description


def normalize_pagination(page: Any, limit: Any) -> Tuple[int, int]:
    try:
        page_num = int(page)
    except (TypeError, ValueError):
        page_num = 1
    try:
        page_size = int(limit)
    except (TypeError, ValueError):
        page_size = settings.CREDIT_TRANSACTIONS_DEFAULT_PAGE_SIZE
    page_num = max(page_num, 1)
    page_size = min(max(page_size, 1), settings.CREDIT_TRANSACTIONS_MAX_PAGE_SIZE)
    return page_num, page_size


def _pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": math.ceil(total / limit) if limit else 0,
    }


def serialize_transaction(entry: CreditTransaction) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "seq": entry.seq,
        "type": entry.kind.value,
        "amount": entry.amount,
        "balanceAfter": entry.balance_after,
        "feature": entry.feature,
        "description": entry.description,
        "paymentRef": entry.payment_ref,
        "actorId": entry.actor_id,
        "orderId": entry.order_id,
        "createdAt": entry.created_at.isoformat() if entry.created_at else None,
    }


def list_transactions(
    db: Session,
    tenant_id: str,
    page: Any = 1,
    limit: Any = None,
) -> Tuple[List[CreditTransaction], Dict[str, int]]:
    """Newest-first page of a tenant's ledger."""
    page_num, page_size = normalize_pagination(page, limit or settings.CREDIT_TRANSACTIONS_DEFAULT_PAGE_SIZE)
    base = db.query(CreditTransaction).filter(CreditTransaction.tenant_id == tenant_id)
    total = base.count()
    entries = (
        base.order_by(CreditTransaction.seq.desc())
        .offset((page_num - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return entries, _pagination(page_num, page_size, total)


def group_by_order(
    db: Session,
    tenant_id: str,
    page: Any = 1,
    limit: Any = None,
) -> Tuple[List[Dict[str, Any]], Dict[str, int]]:
    """Group a tenant's entries by order, most recently touched group first."""
    page_num, page_size = normalize_pagination(page, limit or settings.CREDIT_TRANSACTIONS_DEFAULT_PAGE_SIZE)
    entries = (
        db.query(CreditTransaction)
        .filter(CreditTransaction.tenant_id == tenant_id)
        .order_by(CreditTransaction.seq.desc())
        .all()
    )

    groups: Dict[str, Dict[str, Any]] = {}
    for entry in entries:
        if entry.order_id is not None:
            key = str(entry.order_id)
            label = f"Order #{entry.order_id}"
        elif entry.feature in _AI_GROUPS:
            key = _AI_GROUPS[entry.feature]
            label = "AI Usage in Order reference"
        else:
            key = "manual"
            label = "Manual Transaction"

        group = groups.get(key)
        if group is None:
            group = {
                "orderId": entry.order_id if entry.order_id is not None else key,
                "orderReference": label,
                "totalCredits": 0,
                "transactions": [],
                "createdAt": entry.created_at,
                "lastUpdated": entry.created_at,
                "_last_seq": entry.seq,
            }
            groups[key] = group
        group["transactions"].append(serialize_transaction(entry))
        group["totalCredits"] += entry.signed_amount
        if entry.seq > group["_last_seq"]:
            group["_last_seq"] = entry.seq
            group["lastUpdated"] = entry.created_at
        if entry.created_at and group["createdAt"] and entry.created_at < group["createdAt"]:
            group["createdAt"] = entry.created_at

    ordered = sorted(groups.values(), key=lambda g: g["_last_seq"], reverse=True)
    total = len(ordered)
    start = (page_num - 1) * page_size
    page_groups = []
    for group in ordered[start:start + page_size]:
        group.pop("_last_seq", None)
        group["createdAt"] = group["createdAt"].isoformat() if group["createdAt"] else None
        group["lastUpdated"] = group["lastUpdated"].isoformat() if group["lastUpdated"] else None
        page_groups.append(group)
    return page_groups, _pagination(page_num, page_size, total)


def replay_balance(db: Session, tenant_id: str) -> int:
    """Sum of signed ledger amounts; equals the account balance when the ledger is consistent."""
    signed = case(
        (CreditTransaction.kind == TransactionKind.CREDIT, CreditTransaction.amount),
        else_=-CreditTransaction.amount,
    )
    total = (
        db.query(func.coalesce(func.sum(signed), 0))
        .filter(CreditTransaction.tenant_id == tenant_id)
        .scalar()
    )
    return int(total or 0)


def ordered_entries(db: Session, tenant_id: str) -> List[CreditTransaction]:
    return (
        db.query(CreditTransaction)
        .filter(CreditTransaction.tenant_id == tenant_id)
        .order_by(CreditTransaction.seq.asc())
        .all()
    )
