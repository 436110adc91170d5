"""Charge-on-success wrapper for chargeable operations.

A call moves PENDING -> CHECK -> EXECUTE -> DEDUCT -> DONE. An insufficient
balance stops it at CHECK, a failed operation stops it at EXECUTE with no
charge, and a failed charge after a successful operation still returns the
result while the failure is logged and queued for reconciliation.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar, Union

from .costs import CreditCostTable, Feature, get_cost_table, parse_feature
from .errors import InsufficientCredits, PostOperationDeductionFailure
from .reconciliation import record_deduction_failure
from .store import CreditAccountStore

logger = logging.getLogger("scan2ship.credits.consumption")
alerts = logging.getLogger("scan2ship.credits.alerts")

T = TypeVar("T")

DEFAULT_DESCRIPTIONS = {
    Feature.ORDER: "Order creation",
    Feature.WHATSAPP: "WhatsApp message sent",
    Feature.IMAGE_PROCESSING: "AI Usage in Order reference",
    Feature.TEXT_PROCESSING: "AI Usage in Order reference",
}


class ConsumptionState(str, enum.Enum):
    PENDING = "pending"
    CHECK = "check"
    EXECUTE = "execute"
    DEDUCT = "deduct"
    DONE = "done"


@dataclass
class ConsumptionOutcome(Generic[T]):
    result: T
    feature: Feature
    cost: int
    charged: int
    balance_after: Optional[int]
    # Last phase reached: DONE, or DEDUCT when the charge failed.
    state: ConsumptionState = ConsumptionState.DONE
    deduction_failed: bool = False
    failure_id: Optional[int] = None


class ConsumptionGate:
    def __init__(
        self,
        store: CreditAccountStore,
        feature: Any,
        *,
        costs: CreditCostTable | None = None,
    ):
        self.store = store
        self.feature = parse_feature(feature)
        self.costs = costs or get_cost_table()
        # Fail at registration, not on the first request.
        self.costs.cost(self.feature)

    def check(self, tenant_id: str) -> int:
        """Return the tenant's cost for this feature, raising if the balance cannot cover it."""
        cost = self.costs.cost_for_tenant(self.store.db, tenant_id, self.feature)
        if not self.store.has_sufficient_credits(tenant_id, cost):
            available = int(self.store.get_account(tenant_id).balance)
            logger.info(
                "Rejected %s for tenant %s: insufficient credits",
                self.feature.value,
                tenant_id,
                extra={"tenant_id": tenant_id, "feature": self.feature.value, "amount": cost},
            )
            raise InsufficientCredits(tenant_id=tenant_id, required=cost, available=available)
        return cost

    def run(
        self,
        tenant_id: str,
        operation: Callable[[], T],
        *,
        description: str | None = None,
        actor_id: str | None = None,
        order_id: Union[int, Callable[[T], Optional[int]], None] = None,
    ) -> ConsumptionOutcome[T]:
        cost = self.check(tenant_id)

        result = operation()

        state = ConsumptionState.DEDUCT
        resolved_order_id = order_id(result) if callable(order_id) else order_id
        text = description or DEFAULT_DESCRIPTIONS[self.feature]
        try:
            snapshot = self.store.debit(
                tenant_id,
                cost,
                self.feature,
                text,
                actor_id=actor_id,
                order_id=resolved_order_id,
            )
            balance_after = snapshot.balance
        except Exception as exc:
            failure = PostOperationDeductionFailure(
                tenant_id=tenant_id,
                feature=self.feature.value,
                amount=cost,
                cause=exc,
            )
            row = record_deduction_failure(
                self.store.db,
                tenant_id=tenant_id,
                feature=self.feature.value,
                amount=cost,
                description=text,
                error=exc,
                actor_id=actor_id,
                order_id=resolved_order_id,
            )
            failure_id = row.id if row is not None else None
            alerts.error(
                "%s",
                failure.message,
                exc_info=exc,
                extra={
                    "tenant_id": tenant_id,
                    "feature": self.feature.value,
                    "amount": cost,
                    "order_id": resolved_order_id,
                    "failure_id": failure_id,
                },
            )
            return ConsumptionOutcome(
                result=result,
                feature=self.feature,
                cost=cost,
                charged=0,
                balance_after=None,
                state=state,
                deduction_failed=True,
                failure_id=failure_id,
            )

        return ConsumptionOutcome(
            result=result,
            feature=self.feature,
            cost=cost,
            charged=cost,
            balance_after=balance_after,
        )
