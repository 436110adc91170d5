"""Admin credit management: balances across tenants, manual credit, reset, cost overrides."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from ...components.credits.costs import get_cost_table
from ...components.credits.reconciliation import (
    audit_account,
    serialize_failure,
    waive_deduction_failure,
)
from ...components.credits.store import CreditAccountStore
from ...deps import require_admin, require_master_admin
from ...models.credit_account import CreditAccount
from ...models.credit_deduction_failure import CreditDeductionFailure, DeductionFailureStatus
from ...models.tenant import Tenant
from ...models.user import User
from ...platform.database import get_db
from ...schemas.credits import AdminCreditRequest, AdminResetRequest, CostsUpdateRequest
from ...services.credit_ledger_service import (
    MANUAL_TAG,
    list_transactions,
    serialize_transaction,
)
from .credit_routes import serialize_account

logger = logging.getLogger("scan2ship.credits.admin")

router = APIRouter(prefix="/admin/credits", tags=["Admin Credits"])


def _get_tenant(db: Session, tenant_id: str) -> Tenant:
    tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
    if tenant is None:
        raise HTTPException(status_code=404, detail="Client not found")
    return tenant


def _tenant_summary(tenant: Tenant, account: CreditAccount | None) -> dict:
    return {
        "tenantId": tenant.id,
        "name": tenant.name,
        "companyName": tenant.company_name,
        "email": tenant.email,
        "balance": account.balance if account else 0,
        "totalAdded": account.total_added if account else 0,
        "totalUsed": account.total_used if account else 0,
        "updatedAt": account.updated_at.isoformat() if account and account.updated_at else None,
    }


@router.get("")
def list_tenant_credits(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    rows = (
        db.query(Tenant, CreditAccount)
        .outerjoin(CreditAccount, CreditAccount.tenant_id == Tenant.id)
        .filter(Tenant.is_active.is_(True))
        .order_by(Tenant.created_at.desc(), Tenant.name.asc())
        .all()
    )
    clients = [_tenant_summary(tenant, account) for tenant, account in rows]
    return {
        "clients": clients,
        "summary": {
            "totalClients": len(clients),
            "totalCredits": sum(c["balance"] for c in clients),
            "totalAdded": sum(c["totalAdded"] for c in clients),
            "totalUsed": sum(c["totalUsed"] for c in clients),
        },
    }


@router.get("/deduction-failures")
def list_deduction_failures(
    status: str = Query("pending"),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_master_admin),
):
    try:
        wanted = DeductionFailureStatus(status)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
    rows = (
        db.query(CreditDeductionFailure)
        .filter(CreditDeductionFailure.status == wanted)
        .order_by(CreditDeductionFailure.id.desc())
        .limit(limit)
        .all()
    )
    pending_total = (
        db.query(func.count(CreditDeductionFailure.id))
        .filter(CreditDeductionFailure.status == DeductionFailureStatus.PENDING)
        .scalar()
    )
    return {"failures": [serialize_failure(row) for row in rows], "pendingTotal": int(pending_total or 0)}


@router.post("/deduction-failures/{failure_id}/waive")
def waive_failure(
    failure_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_master_admin),
):
    row = waive_deduction_failure(db, failure_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Pending deduction failure not found")
    logger.info("Deduction failure %s waived by %s", failure_id, current_user.id)
    return serialize_failure(row)


@router.get("/{tenant_id}")
def get_tenant_credits(
    tenant_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_master_admin),
):
    tenant = _get_tenant(db, tenant_id)
    account = CreditAccountStore(db).get_account(tenant.id)
    return _tenant_summary(tenant, account)


@router.post("/{tenant_id}")
def add_tenant_credits(
    tenant_id: str,
    body: AdminCreditRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_master_admin),
):
    tenant = _get_tenant(db, tenant_id)
    store = CreditAccountStore(db)
    snapshot = store.credit(
        tenant.id,
        body.amount,
        MANUAL_TAG,
        body.description,
        actor_id=current_user.id,
    )
    return {
        "success": True,
        "message": f"Added {body.amount} credits",
        "account": serialize_account(snapshot),
        "transaction": serialize_transaction(store.last_transaction),
    }


@router.put("/{tenant_id}")
def reset_tenant_credits(
    tenant_id: str,
    body: AdminResetRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_master_admin),
):
    tenant = _get_tenant(db, tenant_id)
    store = CreditAccountStore(db)
    snapshot = store.reset(
        tenant.id,
        body.newBalance,
        body.description or "",
        actor_id=current_user.id,
    )
    entry = store.last_transaction
    return {
        "success": True,
        "message": f"Credits reset to {body.newBalance}",
        "account": serialize_account(snapshot),
        "transaction": serialize_transaction(entry) if entry else None,
    }


@router.get("/{tenant_id}/transactions")
def get_tenant_transactions(
    tenant_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_master_admin),
):
    tenant = _get_tenant(db, tenant_id)
    entries, pagination = list_transactions(db, tenant.id, page, limit)
    return {
        "transactions": [serialize_transaction(entry) for entry in entries],
        "pagination": pagination,
    }


@router.get("/{tenant_id}/costs")
def get_tenant_costs(
    tenant_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_master_admin),
):
    tenant = _get_tenant(db, tenant_id)
    return {"costs": get_cost_table().costs_for_tenant(db, tenant.id)}


@router.put("/{tenant_id}/costs")
def update_tenant_costs(
    tenant_id: str,
    body: CostsUpdateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_master_admin),
):
    tenant = _get_tenant(db, tenant_id)
    table = get_cost_table()
    table.upsert_tenant_costs(db, tenant.id, body.costs)
    return {"success": True, "costs": table.costs_for_tenant(db, tenant.id)}


@router.delete("/{tenant_id}/costs/{feature}")
def delete_tenant_cost(
    tenant_id: str,
    feature: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_master_admin),
):
    tenant = _get_tenant(db, tenant_id)
    table = get_cost_table()
    if not table.deactivate_tenant_cost(db, tenant.id, feature):
        raise HTTPException(status_code=404, detail="No custom cost for this feature")
    return {"success": True, "costs": table.costs_for_tenant(db, tenant.id)}


@router.get("/{tenant_id}/audit")
def audit_tenant_credits(
    tenant_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_master_admin),
):
    tenant = _get_tenant(db, tenant_id)
    problems = audit_account(db, tenant.id)
    return {"tenantId": tenant.id, "consistent": not problems, "discrepancies": problems}
