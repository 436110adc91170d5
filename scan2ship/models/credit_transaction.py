import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import relationship

from ..platform.database import Base


class TransactionKind(str, enum.Enum):
    CREDIT = "credit"
    DEBIT = "debit"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CreditTransaction(Base):
    """Immutable ledger entry. Corrections are new entries, never edits."""

    __tablename__ = "credit_transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_credit_transactions_amount_pos"),
        CheckConstraint("balance_after >= 0", name="ck_credit_transactions_balance_after_nonneg"),
        UniqueConstraint("tenant_id", "seq", name="uq_credit_transactions_tenant_seq"),
        UniqueConstraint("tenant_id", "payment_ref", name="uq_credit_transactions_tenant_payment_ref"),
        Index("ix_credit_transactions_tenant_created", "tenant_id", "created_at"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String, ForeignKey("tenants.id"), index=True, nullable=False)
    seq = Column(Integer, nullable=False)
    kind = Column(
        Enum(TransactionKind, native_enum=False, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    amount = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    feature = Column(String, nullable=False)
    description = Column(String, nullable=False)
    payment_ref = Column(String, nullable=True)
    # Plain identifiers: the ledger keeps history even if the user or order row goes away.
    actor_id = Column(String, nullable=True)
    order_id = Column(Integer, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    tenant = relationship("Tenant")

    @property
    def signed_amount(self) -> int:
        return self.amount if self.kind == TransactionKind.CREDIT else -self.amount


@event.listens_for(CreditTransaction, "before_update")
def _reject_update(mapper, connection, target):
    raise RuntimeError(f"credit transaction {target.id} is append-only")


@event.listens_for(CreditTransaction, "before_delete")
def _reject_delete(mapper, connection, target):
    raise RuntimeError(f"credit transaction {target.id} is append-only")
