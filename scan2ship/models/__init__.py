from .tenant import Tenant
from .user import User, UserRole
from .credit_account import CreditAccount
from .credit_transaction import CreditTransaction, TransactionKind
from .tenant_credit_cost import TenantCreditCost
from .credit_deduction_failure import CreditDeductionFailure, DeductionFailureStatus

__all__ = [
    "Tenant",
    "User",
    "UserRole",
    "CreditAccount",
    "CreditTransaction",
    "TransactionKind",
    "TenantCreditCost",
    "CreditDeductionFailure",
    "DeductionFailureStatus",
]
