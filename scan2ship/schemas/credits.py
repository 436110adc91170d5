from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator


class VerifyPaymentRequest(BaseModel):
    transactionRef: str = Field(min_length=1, max_length=128)
    amount: int = Field(gt=0)
    utrNumber: Optional[str] = Field(default=None, max_length=64)
    extractedAmount: Optional[float] = None
    # Free-form details read off the payment screenshot; logged, never trusted.
    paymentDetails: Optional[Dict[str, Any]] = None

    @field_validator("transactionRef")
    @classmethod
    def _strip_ref(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("transactionRef is required")
        return value


class AdminCreditRequest(BaseModel):
    amount: int = Field(gt=0)
    description: str = Field(min_length=1, max_length=500)

    @field_validator("description")
    @classmethod
    def _require_description(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("description is required")
        return value


class AdminResetRequest(BaseModel):
    newBalance: int = Field(ge=0)
    description: Optional[str] = Field(default=None, max_length=500)


class CostsUpdateRequest(BaseModel):
    costs: Dict[str, int]

    @field_validator("costs")
    @classmethod
    def _non_empty(cls, value: Dict[str, int]) -> Dict[str, int]:
        if not value:
            raise ValueError("at least one feature cost is required")
        return value
