from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..platform.database import Base


class TenantCreditCost(Base):
    """Per-tenant price override for one chargeable feature."""

    __tablename__ = "tenant_credit_costs"
    __table_args__ = (
        CheckConstraint("cost >= 1", name="ck_tenant_credit_costs_cost_min"),
        UniqueConstraint("tenant_id", "feature", name="uq_tenant_credit_costs_tenant_feature"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String, ForeignKey("tenants.id"), index=True, nullable=False)
    feature = Column(String, nullable=False)
    cost = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    tenant = relationship("Tenant", back_populates="credit_costs")
