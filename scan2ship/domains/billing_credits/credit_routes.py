"""Tenant-facing credits: balance, history, effective costs and UPI recharge."""
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...components.credits.costs import get_cost_table
from ...components.credits.payments import PaymentCreditingGate
from ...components.credits.store import AccountSnapshot, CreditAccountStore
from ...deps import get_current_user
from ...models.credit_account import CreditAccount
from ...models.user import User
from ...platform.database import get_db
from ...schemas.credits import VerifyPaymentRequest
from ...services.credit_ledger_service import (
    group_by_order,
    list_transactions,
    serialize_transaction,
)

logger = logging.getLogger("scan2ship.credits.api")

router = APIRouter(prefix="/credits", tags=["Credits"])


def serialize_account(account: CreditAccount | AccountSnapshot) -> dict:
    return {
        "tenantId": account.tenant_id,
        "balance": account.balance,
        "totalAdded": account.total_added,
        "totalUsed": account.total_used,
        "updatedAt": account.updated_at.isoformat() if account.updated_at else None,
    }


@router.get("")
def get_credits(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    account = CreditAccountStore(db).get_account(current_user.tenant_id)
    return serialize_account(account)


@router.get("/transactions")
def get_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    entries, pagination = list_transactions(db, current_user.tenant_id, page, limit)
    return {
        "transactions": [serialize_transaction(entry) for entry in entries],
        "pagination": pagination,
    }


@router.get("/transactions/by-order")
def get_transactions_by_order(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    groups, pagination = group_by_order(db, current_user.tenant_id, page, limit)
    return {"orders": groups, "pagination": pagination}


@router.get("/costs")
def get_costs(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return {"costs": get_cost_table().costs_for_tenant(db, current_user.tenant_id)}


@router.post("/verify-payment")
def verify_payment(
    body: VerifyPaymentRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    tenant = current_user.tenant
    if body.paymentDetails:
        logger.info(
            "Payment details submitted with %s",
            body.transactionRef,
            extra={"tenant_id": current_user.tenant_id, "payment_ref": body.transactionRef},
        )
    gate = PaymentCreditingGate(CreditAccountStore(db))
    result = gate.verify_and_credit(
        current_user.tenant_id,
        body.transactionRef,
        body.amount,
        body.extractedAmount,
        utr_number=body.utrNumber,
        tenant_name=tenant.display_name if tenant else None,
        actor_id=current_user.id,
    )
    return {
        "success": True,
        "message": f"Successfully added {result.amount} credits",
        "creditsAdded": result.amount,
        "balance": result.balance,
        "newBalance": result.balance,
        "transactionRef": result.payment_ref,
        "transactionId": result.transaction_id,
    }
