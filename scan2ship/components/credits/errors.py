"""Credit ledger error taxonomy. Routes map each class to its HTTP status."""

from __future__ import annotations


class CreditError(Exception):
    status_code = 400
    code = "credit_error"

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_payload(self) -> dict:
        payload = {"detail": self.message, "error": self.message, "code": self.code}
        payload.update(self.context)
        return payload


class InsufficientCredits(CreditError):
    status_code = 402
    code = "insufficient_credits"

    def __init__(self, *, tenant_id: str, required: int, available: int | None = None):
        if available is None:
            message = f"Insufficient credits. Required: {required}."
        else:
            message = f"Insufficient credits. Required: {required}, available: {available}."
        super().__init__(message, required=required, available=available)
        self.tenant_id = tenant_id
        self.required = required
        self.available = available


class AmountMismatch(CreditError):
    status_code = 400
    code = "amount_mismatch"

    def __init__(self, *, claimed_amount: int, extracted_amount: int):
        super().__init__(
            f"Amount mismatch! Expected: ₹{claimed_amount:,}, Found: ₹{extracted_amount:,}. "
            "Please verify the payment screenshot.",
            claimedAmount=claimed_amount,
            extractedAmount=extracted_amount,
        )
        self.claimed_amount = claimed_amount
        self.extracted_amount = extracted_amount


class PaymentAlreadyProcessed(CreditError):
    """Duplicate payment reference. Callers treat this as an idempotent success."""

    status_code = 409
    code = "payment_already_processed"

    def __init__(self, *, payment_ref: str, balance: int | None = None):
        super().__init__("Payment already processed", success=True, transactionRef=payment_ref)
        self.payment_ref = payment_ref
        self.balance = balance


class UnknownFeature(CreditError):
    """Cost lookup miss. Raised while building the cost table, never defaulted to zero."""

    status_code = 400
    code = "unknown_feature"

    def __init__(self, feature: object):
        super().__init__(f"Unknown credit feature: {feature!r}", feature=str(feature))
        self.feature = feature


class InvalidCreditAmount(CreditError):
    status_code = 400
    code = "invalid_amount"


class InvalidPaymentReference(CreditError):
    status_code = 400
    code = "invalid_payment_reference"


class CreditAccountConflict(CreditError):
    """The account changed between read and write; the caller may retry."""

    status_code = 409
    code = "credit_account_conflict"


class PostOperationDeductionFailure(CreditError):
    """The gated operation succeeded but the charge did not. Logged, never shown to the user."""

    status_code = 500
    code = "post_operation_deduction_failure"

    def __init__(self, *, tenant_id: str, feature: str, amount: int, cause: BaseException):
        super().__init__(
            f"Failed to deduct {amount} credits for {feature} after a successful operation",
            feature=feature,
            amount=amount,
        )
        self.tenant_id = tenant_id
        self.feature = feature
        self.amount = amount
        self.cause = cause
