"""
Scan2Ship service layer.

Convenience imports for ledger helpers shared by components and routes.
"""

from .credit_ledger_service import (
    MANUAL_TAG,
    PAYMENT_TAG,
    RESET_TAG,
    append_credit_ledger_entry,
    group_by_order,
    list_transactions,
    replay_balance,
)

__all__ = [
    "MANUAL_TAG",
    "PAYMENT_TAG",
    "RESET_TAG",
    "append_credit_ledger_entry",
    "group_by_order",
    "list_transactions",
    "replay_balance",
]
