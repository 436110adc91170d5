import enum

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.sql import func

from ..platform.database import Base


class DeductionFailureStatus(str, enum.Enum):
    PENDING = "pending"
    CHARGED = "charged"
    WAIVED = "waived"


class CreditDeductionFailure(Base):
    """A feature call that succeeded but could not be charged. Reconciled out of band."""

    __tablename__ = "credit_deduction_failures"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String, ForeignKey("tenants.id"), index=True, nullable=False)
    feature = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)
    description = Column(String, nullable=False)
    actor_id = Column(String, nullable=True)
    order_id = Column(Integer, nullable=True)
    error = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    status = Column(
        Enum(DeductionFailureStatus, native_enum=False, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=DeductionFailureStatus.PENDING,
        index=True,
    )
    resolution_transaction_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    resolved_at = Column(DateTime(timezone=True), nullable=True)
