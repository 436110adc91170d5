from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..platform.database import Base


class CreditAccount(Base):
    """Current prepaid balance and lifetime totals for one tenant."""

    __tablename__ = "credit_accounts"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_credit_accounts_balance_nonneg"),
        CheckConstraint("total_added >= 0", name="ck_credit_accounts_added_nonneg"),
        CheckConstraint("total_used >= 0", name="ck_credit_accounts_used_nonneg"),
        CheckConstraint(
            "balance = total_added - total_used",
            name="ck_credit_accounts_balance_matches_totals",
        ),
    )

    tenant_id = Column(String, ForeignKey("tenants.id"), primary_key=True)
    balance = Column(Integer, nullable=False, default=0)
    total_added = Column(Integer, nullable=False, default=0)
    total_used = Column(Integer, nullable=False, default=0)
    # Number of ledger entries written for this tenant; the next entry gets ledger_seq + 1.
    ledger_seq = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    tenant = relationship("Tenant", back_populates="credit_account")
