import uuid

from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..platform.database import Base


class Tenant(Base):
    """A client organization. Owns exactly one credit account and its ledger."""

    __tablename__ = "tenants"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    company_name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    users = relationship("User", back_populates="tenant")
    credit_account = relationship("CreditAccount", back_populates="tenant", uselist=False)
    credit_costs = relationship("TenantCreditCost", back_populates="tenant")

    @property
    def display_name(self) -> str:
        return self.company_name or self.name
