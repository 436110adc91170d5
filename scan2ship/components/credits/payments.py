"""Idempotent crediting of verified UPI payments."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import IntegrityError

from ...platform.config import settings
from ...services.credit_ledger_service import (
    PAYMENT_TAG,
    compose_payment_description,
    find_payment_entry,
)
from .errors import (
    AmountMismatch,
    InvalidCreditAmount,
    InvalidPaymentReference,
    PaymentAlreadyProcessed,
)
from .store import CreditAccountStore

logger = logging.getLogger("scan2ship.credits.payments")

MAX_PAYMENT_REF_LENGTH = 128


@dataclass(frozen=True)
class PaymentCreditResult:
    tenant_id: str
    payment_ref: str
    amount: int
    balance: int
    transaction_id: str
    description: str


def normalize_payment_ref(value: Any) -> str:
    ref = str(value or "").strip()
    if not ref:
        raise InvalidPaymentReference("Transaction reference is required")
    if len(ref) > MAX_PAYMENT_REF_LENGTH:
        raise InvalidPaymentReference(
            f"Transaction reference must be at most {MAX_PAYMENT_REF_LENGTH} characters"
        )
    return ref


def _whole_amount(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise InvalidCreditAmount(f"{field} must be a number")
    if isinstance(value, float):
        if not value.is_integer():
            raise InvalidCreditAmount(f"{field} must be a whole amount", **{field: value})
        value = int(value)
    if not isinstance(value, int):
        raise InvalidCreditAmount(f"{field} must be a number")
    return value


class PaymentCreditingGate:
    """Credits a payment at most once per (tenant, payment reference)."""

    def __init__(self, store: CreditAccountStore, *, credits_per_unit: int | None = None):
        self.store = store
        self.credits_per_unit = credits_per_unit or settings.CREDITS_PER_CURRENCY_UNIT

    def verify_and_credit(
        self,
        tenant_id: str,
        payment_ref: Any,
        claimed_amount: Any,
        extracted_amount: Any = None,
        *,
        utr_number: str | None = None,
        tenant_name: str | None = None,
        actor_id: str | None = None,
    ) -> PaymentCreditResult:
        ref = normalize_payment_ref(payment_ref)
        claimed = _whole_amount(claimed_amount, "amount")
        if claimed <= 0:
            raise InvalidCreditAmount("Payment amount must be greater than zero", amount=claimed)

        if extracted_amount is not None:
            if isinstance(extracted_amount, bool) or not isinstance(extracted_amount, (int, float)):
                raise InvalidCreditAmount("extractedAmount must be a number")
            extracted = extracted_amount
            if isinstance(extracted, float) and extracted.is_integer():
                extracted = int(extracted)
            if extracted != claimed:
                logger.warning(
                    "Payment amount mismatch for tenant %s: claimed=%d extracted=%s",
                    tenant_id,
                    claimed,
                    extracted,
                    extra={"tenant_id": tenant_id, "payment_ref": ref},
                )
                raise AmountMismatch(claimed_amount=claimed, extracted_amount=extracted)

        credits = claimed * self.credits_per_unit
        description = compose_payment_description(ref, utr_number, tenant_name)
        db = self.store.db

        try:
            with self.store.mutation(tenant_id) as account:
                if find_payment_entry(db, tenant_id, ref) is not None:
                    raise PaymentAlreadyProcessed(payment_ref=ref, balance=int(account.balance))
                entry = self.store.apply_credit(
                    account,
                    credits,
                    PAYMENT_TAG,
                    description,
                    actor_id=actor_id,
                    payment_ref=ref,
                )
                balance = int(account.balance)
                transaction_id = entry.id
        except PaymentAlreadyProcessed:
            logger.info(
                "Duplicate payment reference for tenant %s",
                tenant_id,
                extra={"tenant_id": tenant_id, "payment_ref": ref},
            )
            raise
        except IntegrityError as exc:
            # Another process credited the same reference between our check and insert.
            if find_payment_entry(db, tenant_id, ref) is not None:
                raise PaymentAlreadyProcessed(payment_ref=ref) from exc
            raise

        self.store.last_transaction = entry
        logger.info(
            "Credited payment for tenant %s",
            tenant_id,
            extra={
                "tenant_id": tenant_id,
                "payment_ref": ref,
                "amount": credits,
                "balance_after": balance,
                "transaction_id": transaction_id,
            },
        )
        return PaymentCreditResult(
            tenant_id=tenant_id,
            payment_ref=ref,
            amount=credits,
            balance=balance,
            transaction_id=transaction_id,
            description=description,
        )
