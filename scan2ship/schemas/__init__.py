from .credits import (
    AdminCreditRequest,
    AdminResetRequest,
    CostsUpdateRequest,
    VerifyPaymentRequest,
)

__all__ = [
    "AdminCreditRequest",
    "AdminResetRequest",
    "CostsUpdateRequest",
    "VerifyPaymentRequest",
]
