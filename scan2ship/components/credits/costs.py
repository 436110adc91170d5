"""Feature credit costs: static defaults from settings plus per-tenant overrides."""

from __future__ import annotations

import enum
import logging
from functools import lru_cache
from typing import Any, Dict, List, Mapping

from sqlalchemy.orm import Session

from ...models.tenant_credit_cost import TenantCreditCost
from ...platform.config import Settings, settings as app_settings
from ...platform.database import transaction_scope
from .errors import InvalidCreditAmount, UnknownFeature

logger = logging.getLogger("scan2ship.credits.costs")


class Feature(str, enum.Enum):
    """Chargeable capabilities. Every member must have a cost."""

    ORDER = "ORDER"
    WHATSAPP = "WHATSAPP"
    IMAGE_PROCESSING = "IMAGE_PROCESSING"
    TEXT_PROCESSING = "TEXT_PROCESSING"


def parse_feature(value: Any) -> Feature:
    if isinstance(value, Feature):
        return value
    try:
        return Feature(str(value or "").strip().upper())
    except ValueError:
        raise UnknownFeature(value) from None


def _validate_cost(feature: Feature, cost: Any) -> int:
    if isinstance(cost, bool) or not isinstance(cost, int) or cost < 1:
        raise InvalidCreditAmount(
            f"Credit cost for {feature.value} must be a positive integer, got {cost!r}",
            feature=feature.value,
        )
    return cost


class CreditCostTable:
    """Immutable feature -> cost mapping, validated on construction."""

    def __init__(self, costs: Mapping[Any, Any]):
        resolved: Dict[Feature, int] = {}
        for key, value in costs.items():
            feature = parse_feature(key)
            resolved[feature] = _validate_cost(feature, value)
        for feature in Feature:
            if feature not in resolved:
                raise UnknownFeature(feature.value)
        self._costs = resolved

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "CreditCostTable":
        return cls((config or app_settings).default_credit_costs)

    def cost(self, feature: Any) -> int:
        return self._costs[parse_feature(feature)]

    def as_dict(self) -> Dict[str, int]:
        return {feature.value: cost for feature, cost in self._costs.items()}

    # -----------------------------------------------------------------------
    # Per-tenant overrides
    # -----------------------------------------------------------------------

    def cost_for_tenant(self, db: Session, tenant_id: str, feature: Any) -> int:
        parsed = parse_feature(feature)
        override = (
            db.query(TenantCreditCost)
            .filter(
                TenantCreditCost.tenant_id == tenant_id,
                TenantCreditCost.feature == parsed.value,
                TenantCreditCost.is_active.is_(True),
            )
            .first()
        )
        if override is not None:
            return int(override.cost)
        return self._costs[parsed]

    def costs_for_tenant(self, db: Session, tenant_id: str) -> List[Dict[str, Any]]:
        overrides = {
            row.feature: row
            for row in db.query(TenantCreditCost)
            .filter(TenantCreditCost.tenant_id == tenant_id, TenantCreditCost.is_active.is_(True))
            .all()
        }
        rows = []
        for feature in Feature:
            override = overrides.get(feature.value)
            rows.append({
                "feature": feature.value,
                "cost": int(override.cost) if override else self._costs[feature],
                "defaultCost": self._costs[feature],
                "isCustom": override is not None,
            })
        return rows

    def upsert_tenant_costs(
        self,
        db: Session,
        tenant_id: str,
        costs: Mapping[Any, Any],
    ) -> List[TenantCreditCost]:
        """Create or update overrides for several features in one transaction."""
        validated = []
        for key, value in costs.items():
            feature = parse_feature(key)
            validated.append((feature, _validate_cost(feature, value)))

        saved: List[TenantCreditCost] = []
        with transaction_scope(db):
            for feature, cost in validated:
                row = (
                    db.query(TenantCreditCost)
                    .filter(TenantCreditCost.tenant_id == tenant_id, TenantCreditCost.feature == feature.value)
                    .first()
                )
                if row is None:
                    row = TenantCreditCost(tenant_id=tenant_id, feature=feature.value, cost=cost, is_active=True)
                    db.add(row)
                else:
                    row.cost = cost
                    row.is_active = True
                saved.append(row)
        logger.info(
            "Updated credit costs for tenant %s: %s",
            tenant_id,
            {feature.value: cost for feature, cost in validated},
            extra={"tenant_id": tenant_id},
        )
        return saved

    def deactivate_tenant_cost(self, db: Session, tenant_id: str, feature: Any) -> bool:
        parsed = parse_feature(feature)
        with transaction_scope(db):
            row = (
                db.query(TenantCreditCost)
                .filter(
                    TenantCreditCost.tenant_id == tenant_id,
                    TenantCreditCost.feature == parsed.value,
                    TenantCreditCost.is_active.is_(True),
                )
                .first()
            )
            if row is None:
                return False
            row.is_active = False
        return True


@lru_cache(maxsize=1)
def get_cost_table() -> CreditCostTable:
    """Process-wide table built from settings. Raises at startup if misconfigured."""
    return CreditCostTable.from_settings()
