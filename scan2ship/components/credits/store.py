"""Per-tenant credit account store.

Every balance change runs under the tenant's in-process lock and inside one
database transaction that also writes the ledger entry. Debits are a single
conditional UPDATE so the balance can never go negative, even across processes.
The one-shot credit, debit and reset return an AccountSnapshot of what they
committed.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from ...models.credit_account import CreditAccount
from ...models.credit_transaction import CreditTransaction, TransactionKind
from ...platform.config import settings
from ...platform.database import dialect_name, transaction_scope
from ...services.credit_ledger_service import (
    MANUAL_TAG,
    RESET_TAG,
    append_credit_ledger_entry,
)
from .errors import CreditAccountConflict, InsufficientCredits, InvalidCreditAmount

logger = logging.getLogger("scan2ship.credits.store")


class TenantLockRegistry:
    """One lock per tenant; tenants never wait on each other."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def get(self, tenant_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(tenant_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[tenant_id] = lock
            return lock

    @contextmanager
    def hold(self, tenant_id: str, timeout: float) -> Iterator[None]:
        lock = self.get(tenant_id)
        if not lock.acquire(timeout=timeout):
            raise CreditAccountConflict(
                "Timed out waiting for the credit account lock",
                tenant_id=tenant_id,
            )
        try:
            yield
        finally:
            lock.release()


tenant_locks = TenantLockRegistry()


@dataclass(frozen=True)
class AccountSnapshot:
    """Account state as this store's last mutation committed it.

    The ORM row expires at commit; reading it afterwards reloads whatever
    another writer has committed since.
    """

    tenant_id: str
    balance: int
    total_added: int
    total_used: int
    updated_at: Optional[datetime] = None

    @classmethod
    def of(cls, account: CreditAccount) -> "AccountSnapshot":
        return cls(
            tenant_id=account.tenant_id,
            balance=int(account.balance),
            total_added=int(account.total_added),
            total_used=int(account.total_used),
            updated_at=account.updated_at,
        )


def _positive_amount(amount: Any) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidCreditAmount(f"Credit amount must be an integer, got {amount!r}")
    if amount <= 0:
        raise InvalidCreditAmount("Credit amount must be greater than zero", amount=amount)
    return amount


def _tag(feature: Any) -> str:
    value = getattr(feature, "value", feature)
    tag = str(value or "").strip().upper()
    if not tag:
        raise InvalidCreditAmount("A feature tag is required for every ledger entry")
    return tag


class CreditAccountStore:
    def __init__(
        self,
        db: Session,
        *,
        locks: TenantLockRegistry | None = None,
        lock_timeout: float | None = None,
    ):
        self.db = db
        self._locks = locks or tenant_locks
        self._lock_timeout = lock_timeout if lock_timeout is not None else settings.CREDIT_LOCK_TIMEOUT_SECONDS
        # Entry written by the most recent successful credit/debit/reset on this store.
        self.last_transaction: Optional[CreditTransaction] = None

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def get_account(self, tenant_id: str) -> CreditAccount:
        """Current account, created with a zero balance on first access."""
        account = self.db.get(CreditAccount, tenant_id)
        if account is None:
            with transaction_scope(self.db):
                self._insert_if_absent(tenant_id)
            account = self.db.get(CreditAccount, tenant_id)
        return account

    def has_sufficient_credits(self, tenant_id: str, amount: int) -> bool:
        if amount <= 0:
            return True
        balance = (
            self.db.query(CreditAccount.balance)
            .filter(CreditAccount.tenant_id == tenant_id)
            .scalar()
        )
        return balance is not None and int(balance) >= int(amount)

    # -----------------------------------------------------------------------
    # Mutation scope
    # -----------------------------------------------------------------------

    @contextmanager
    def mutation(self, tenant_id: str) -> Iterator[CreditAccount]:
        """Hold the tenant lock and one transaction; yields the freshly read account row.

        Use the apply_* methods inside the block. Any exception rolls back every
        change made in the block, ledger entries included.
        """
        with self._locks.hold(tenant_id, self._lock_timeout):
            with transaction_scope(self.db):
                self._insert_if_absent(tenant_id)
                yield self._lock_row(tenant_id)

    def _insert_if_absent(self, tenant_id: str) -> None:
        values = {
            "tenant_id": tenant_id,
            "balance": 0,
            "total_added": 0,
            "total_used": 0,
            "ledger_seq": 0,
        }
        dialect = dialect_name(self.db)
        if dialect == "postgresql":
            stmt = pg_insert(CreditAccount).values(**values).on_conflict_do_nothing(index_elements=["tenant_id"])
        elif dialect == "sqlite":
            stmt = sqlite_insert(CreditAccount).values(**values).on_conflict_do_nothing(index_elements=["tenant_id"])
        else:
            if self.db.get(CreditAccount, tenant_id) is None:
                self.db.add(CreditAccount(**values))
                self.db.flush()
            return
        self.db.execute(stmt)

    def _lock_row(self, tenant_id: str) -> CreditAccount:
        # FOR UPDATE is dropped by the SQLite compiler; the write transaction serializes there.
        stmt = (
            select(CreditAccount)
            .where(CreditAccount.tenant_id == tenant_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one()

    # -----------------------------------------------------------------------
    # Mutations inside a scope
    # -----------------------------------------------------------------------

    def apply_credit(
        self,
        account: CreditAccount,
        amount: int,
        feature: Any = MANUAL_TAG,
        description: str = "",
        *,
        actor_id: str | None = None,
        payment_ref: str | None = None,
        order_id: int | None = None,
    ) -> CreditTransaction:
        amount = _positive_amount(amount)
        self.db.execute(
            update(CreditAccount)
            .where(CreditAccount.tenant_id == account.tenant_id)
            .values(
                balance=CreditAccount.balance + amount,
                total_added=CreditAccount.total_added + amount,
                ledger_seq=CreditAccount.ledger_seq + 1,
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        self.db.refresh(account)
        return append_credit_ledger_entry(
            self.db,
            account=account,
            kind=TransactionKind.CREDIT,
            amount=amount,
            feature=_tag(feature),
            description=description or "Credits added",
            payment_ref=payment_ref,
            actor_id=actor_id,
            order_id=order_id,
        )

    def apply_debit(
        self,
        account: CreditAccount,
        amount: int,
        feature: Any,
        description: str = "",
        *,
        actor_id: str | None = None,
        order_id: int | None = None,
    ) -> CreditTransaction:
        amount = _positive_amount(amount)
        result = self.db.execute(
            update(CreditAccount)
            .where(
                CreditAccount.tenant_id == account.tenant_id,
                CreditAccount.balance >= amount,
            )
            .values(
                balance=CreditAccount.balance - amount,
                total_used=CreditAccount.total_used + amount,
                ledger_seq=CreditAccount.ledger_seq + 1,
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        self.db.refresh(account)
        if result.rowcount != 1:
            raise InsufficientCredits(
                tenant_id=account.tenant_id,
                required=amount,
                available=int(account.balance),
            )
        return append_credit_ledger_entry(
            self.db,
            account=account,
            kind=TransactionKind.DEBIT,
            amount=amount,
            feature=_tag(feature),
            description=description or "Credits used",
            actor_id=actor_id,
            order_id=order_id,
        )

    def apply_reset(
        self,
        account: CreditAccount,
        new_balance: int,
        description: str = "",
        *,
        actor_id: str | None = None,
    ) -> Optional[CreditTransaction]:
        """Set the balance to `new_balance`, recording the difference as one entry.

        Returns None when the balance already equals `new_balance`.
        """
        if isinstance(new_balance, bool) or not isinstance(new_balance, int):
            raise InvalidCreditAmount(f"New balance must be an integer, got {new_balance!r}")
        if new_balance < 0:
            raise InvalidCreditAmount("New balance cannot be negative", newBalance=new_balance)

        old_balance = int(account.balance)
        delta = new_balance - old_balance
        if delta == 0:
            return None

        result = self.db.execute(
            update(CreditAccount)
            .where(
                CreditAccount.tenant_id == account.tenant_id,
                CreditAccount.balance == old_balance,
            )
            .values(
                balance=new_balance,
                total_added=CreditAccount.total_added + max(delta, 0),
                total_used=CreditAccount.total_used + max(-delta, 0),
                ledger_seq=CreditAccount.ledger_seq + 1,
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise CreditAccountConflict(
                "Credit balance changed during reset; retry",
                tenant_id=account.tenant_id,
            )
        self.db.refresh(account)
        return append_credit_ledger_entry(
            self.db,
            account=account,
            kind=TransactionKind.CREDIT if delta > 0 else TransactionKind.DEBIT,
            amount=abs(delta),
            feature=RESET_TAG,
            description=description or f"Balance reset from {old_balance} to {new_balance}",
            actor_id=actor_id,
        )

    # -----------------------------------------------------------------------
    # One-shot operations
    # -----------------------------------------------------------------------

    def credit(
        self,
        tenant_id: str,
        amount: int,
        feature: Any = MANUAL_TAG,
        description: str = "",
        *,
        actor_id: str | None = None,
        payment_ref: str | None = None,
        order_id: int | None = None,
    ) -> AccountSnapshot:
        amount = _positive_amount(amount)
        with self.mutation(tenant_id) as account:
            entry = self.apply_credit(
                account,
                amount,
                feature,
                description,
                actor_id=actor_id,
                payment_ref=payment_ref,
                order_id=order_id,
            )
            snapshot = AccountSnapshot.of(account)
        self.last_transaction = entry
        logger.info(
            "Credited %d to tenant %s",
            amount,
            tenant_id,
            extra={
                "tenant_id": tenant_id,
                "feature": _tag(feature),
                "amount": amount,
                "balance_after": snapshot.balance,
                "transaction_id": entry.id,
            },
        )
        return snapshot

    def debit(
        self,
        tenant_id: str,
        amount: int,
        feature: Any,
        description: str = "",
        *,
        actor_id: str | None = None,
        order_id: int | None = None,
    ) -> AccountSnapshot:
        amount = _positive_amount(amount)
        try:
            with self.mutation(tenant_id) as account:
                entry = self.apply_debit(
                    account,
                    amount,
                    feature,
                    description,
                    actor_id=actor_id,
                    order_id=order_id,
                )
                snapshot = AccountSnapshot.of(account)
        except InsufficientCredits as exc:
            logger.warning(
                "Insufficient credits for tenant %s: required=%d available=%s",
                tenant_id,
                amount,
                exc.available,
                extra={"tenant_id": tenant_id, "feature": _tag(feature), "amount": amount},
            )
            raise
        self.last_transaction = entry
        logger.info(
            "Debited %d from tenant %s",
            amount,
            tenant_id,
            extra={
                "tenant_id": tenant_id,
                "feature": _tag(feature),
                "amount": amount,
                "balance_after": snapshot.balance,
                "order_id": order_id,
                "transaction_id": entry.id,
            },
        )
        return snapshot

    def reset(
        self,
        tenant_id: str,
        new_balance: int,
        description: str = "",
        *,
        actor_id: str | None = None,
    ) -> AccountSnapshot:
        with self.mutation(tenant_id) as account:
            old_balance = int(account.balance)
            entry = self.apply_reset(account, new_balance, description, actor_id=actor_id)
            snapshot = AccountSnapshot.of(account)
        self.last_transaction = entry
        logger.info(
            "Reset credit balance of tenant %s from %d to %d",
            tenant_id,
            old_balance,
            new_balance,
            extra={
                "tenant_id": tenant_id,
                "feature": RESET_TAG,
                "balance_after": new_balance,
                "transaction_id": entry.id if entry else None,
            },
        )
        return snapshot
