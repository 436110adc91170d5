from scan2ship.components.credits.costs import CreditCostTable, Feature
from scan2ship.components.credits.errors import InvalidCreditAmount, UnknownFeature
from scan2ship.models.tenant_credit_cost import TenantCreditCost
from scan2ship.platform.config import Settings
import pytest


@pytest.fixture
def table():
    return CreditCostTable.from_settings(Settings())


def test_tenant_without_overrides_gets_defaults(db, tenant, table):
    assert table.cost_for_tenant(db, tenant.id, Feature.ORDER) == 1
    rows = table.costs_for_tenant(db, tenant.id)
    assert [row["feature"] for row in rows] == [f.value for f in Feature]
    assert all(row["isCustom"] is False for row in rows)


def test_override_applies_only_to_its_tenant(db, table):
    from tests.conftest import create_tenant

    first = create_tenant(db)
    second = create_tenant(db)
    table.upsert_tenant_costs(db, first.id, {"ORDER": 5})

    assert table.cost_for_tenant(db, first.id, "ORDER") == 5
    assert table.cost_for_tenant(db, second.id, "ORDER") == 1
    order_row = next(r for r in table.costs_for_tenant(db, first.id) if r["feature"] == "ORDER")
    assert order_row == {"feature": "ORDER", "cost": 5, "defaultCost": 1, "isCustom": True}


def test_upsert_updates_existing_override(db, tenant, table):
    table.upsert_tenant_costs(db, tenant.id, {"WHATSAPP": 2})
    table.upsert_tenant_costs(db, tenant.id, {"whatsapp": 4})
    rows = db.query(TenantCreditCost).filter(TenantCreditCost.tenant_id == tenant.id).all()
    assert len(rows) == 1
    assert rows[0].cost == 4


def test_deactivated_override_falls_back_to_default(db, tenant, table):
    table.upsert_tenant_costs(db, tenant.id, {"IMAGE_PROCESSING": 7})
    assert table.deactivate_tenant_cost(db, tenant.id, "IMAGE_PROCESSING") is True
    assert table.cost_for_tenant(db, tenant.id, "IMAGE_PROCESSING") == 2
    assert table.deactivate_tenant_cost(db, tenant.id, "IMAGE_PROCESSING") is False


def test_invalid_override_writes_nothing(db, tenant, table):
    with pytest.raises(InvalidCreditAmount):
        table.upsert_tenant_costs(db, tenant.id, {"ORDER": 3, "WHATSAPP": 0})
    with pytest.raises(UnknownFeature):
        table.upsert_tenant_costs(db, tenant.id, {"TELEPORT": 3})
    assert db.query(TenantCreditCost).count() == 0
