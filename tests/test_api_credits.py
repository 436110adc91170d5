from scan2ship.components.credits.costs import Feature
from scan2ship.components.credits.store import CreditAccountStore
from scan2ship.models.user import UserRole
from tests.conftest import TestingSessionLocal, auth_headers, create_user, headers_for


def _seed_balance(tenant_id, amount):
    session = TestingSessionLocal()
    try:
        CreditAccountStore(session).credit(tenant_id, amount)
    finally:
        session.close()


def test_credits_require_authentication(client):
    assert client.get("/api/v1/credits").status_code == 401
    resp = client.get("/api/v1/credits", headers={"Authorization": "Bearer not-a-token"})
    assert resp.status_code == 401


def test_inactive_user_is_rejected(client, db):
    _headers, _user, tenant = auth_headers(db)
    inactive = create_user(db, tenant, is_active=False)
    assert client.get("/api/v1/credits", headers=headers_for(inactive)).status_code == 401


def test_new_tenant_starts_at_zero(client, db):
    headers, _user, tenant = auth_headers(db)
    resp = client.get("/api/v1/credits", headers=headers)
    assert resp.status_code == 200
    data = resp.json()
    assert data["balance"] == 0
    assert data["totalAdded"] == 0
    assert data["totalUsed"] == 0
    assert data["tenantId"] == tenant.id


def test_verify_payment_credits_balance(client, db):
    headers, user, tenant = auth_headers(db, company_name="Acme Logistics")
    resp = client.post(
        "/api/v1/credits/verify-payment",
        json={"transactionRef": "UPI-1001", "amount": 100, "utrNumber": "UTR77", "extractedAmount": 100},
        headers=headers,
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["creditsAdded"] == 100
    assert data["newBalance"] == 100
    assert data["transactionRef"] == "UPI-1001"

    history = client.get("/api/v1/credits/transactions", headers=headers).json()
    entry = history["transactions"][0]
    assert entry["type"] == "credit"
    assert entry["paymentRef"] == "UPI-1001"
    assert entry["actorId"] == user.id
    assert entry["description"] == "Credit recharge via UPI - UPI-1001 | UTR: UTR77 | Client: Acme Logistics"


def test_duplicate_payment_returns_409_success_shaped(client, db):
    headers, _user, _tenant = auth_headers(db)
    body = {"transactionRef": "UPI-2002", "amount": 40}
    assert client.post("/api/v1/credits/verify-payment", json=body, headers=headers).status_code == 200

    resp = client.post("/api/v1/credits/verify-payment", json=body, headers=headers)
    assert resp.status_code == 409
    data = resp.json()
    assert data["error"] == "Payment already processed"
    assert data["success"] is True
    assert data["transactionRef"] == "UPI-2002"
    assert client.get("/api/v1/credits", headers=headers).json()["balance"] == 40


def test_payment_credited_by_admin_is_not_credited_again(client, db, master_admin_headers):
    headers, _user, tenant = auth_headers(db)
    added = client.post(
        f"/api/v1/admin/credits/{tenant.id}",
        json={"amount": 50, "description": "UPI recharge UPI-4004 confirmed by phone"},
        headers=master_admin_headers,
    )
    assert added.status_code == 200

    resp = client.post(
        "/api/v1/credits/verify-payment",
        json={"transactionRef": "UPI-4004", "amount": 50},
        headers=headers,
    )
    assert resp.status_code == 409
    assert resp.json()["success"] is True
    assert client.get("/api/v1/credits", headers=headers).json()["balance"] == 50


def test_amount_mismatch_returns_400(client, db):
    headers, _user, _tenant = auth_headers(db)
    resp = client.post(
        "/api/v1/credits/verify-payment",
        json={"transactionRef": "UPI-3003", "amount": 500, "extractedAmount": 50},
        headers=headers,
    )
    assert resp.status_code == 400
    data = resp.json()
    assert data["code"] == "amount_mismatch"
    assert data["detail"].startswith("Amount mismatch! Expected: ₹500, Found: ₹50.")
    assert client.get("/api/v1/credits", headers=headers).json()["balance"] == 0


def test_verify_payment_validates_body(client, db):
    headers, _user, _tenant = auth_headers(db)
    for body in (
        {"transactionRef": "", "amount": 10},
        {"transactionRef": "   ", "amount": 10},
        {"transactionRef": "UPI-1", "amount": 0},
        {"transactionRef": "UPI-1", "amount": -5},
        {"amount": 10},
    ):
        resp = client.post("/api/v1/credits/verify-payment", json=body, headers=headers)
        assert resp.status_code == 422, body


def test_verify_payment_is_rate_limited(client, db):
    headers, _user, _tenant = auth_headers(db)
    statuses = [
        client.post(
            "/api/v1/credits/verify-payment",
            json={"transactionRef": f"UPI-RL-{i}", "amount": 1},
            headers=headers,
        ).status_code
        for i in range(11)
    ]
    assert statuses[:10] == [200] * 10
    assert statuses[10] == 429


def test_transactions_pagination(client, db):
    headers, _user, tenant = auth_headers(db)
    _seed_balance(tenant.id, 10)
    session = TestingSessionLocal()
    try:
        store = CreditAccountStore(session)
        for order_id in range(1, 6):
            store.debit(tenant.id, 1, Feature.ORDER, "Order creation", order_id=order_id)
    finally:
        session.close()

    resp = client.get("/api/v1/credits/transactions?page=1&limit=2", headers=headers)
    assert resp.status_code == 200
    data = resp.json()
    assert [t["orderId"] for t in data["transactions"]] == [5, 4]
    assert data["pagination"] == {"page": 1, "limit": 2, "total": 6, "totalPages": 3}

    grouped = client.get("/api/v1/credits/transactions/by-order?limit=3", headers=headers).json()
    assert [g["orderId"] for g in grouped["orders"]] == [5, 4, 3]
    assert grouped["pagination"]["total"] == 6


def test_costs_endpoint_reflects_overrides(client, db, master_admin_headers):
    headers, _user, tenant = auth_headers(db)
    resp = client.get("/api/v1/credits/costs", headers=headers)
    assert resp.status_code == 200
    costs = {row["feature"]: row["cost"] for row in resp.json()["costs"]}
    assert costs == {"ORDER": 1, "WHATSAPP": 1, "IMAGE_PROCESSING": 2, "TEXT_PROCESSING": 1}

    client.put(
        f"/api/v1/admin/credits/{tenant.id}/costs",
        json={"costs": {"ORDER": 4}},
        headers=master_admin_headers,
    )
    costs = {row["feature"]: row for row in client.get("/api/v1/credits/costs", headers=headers).json()["costs"]}
    assert costs["ORDER"]["cost"] == 4
    assert costs["ORDER"]["isCustom"] is True


def test_admin_role_cannot_use_master_admin_routes(client, db):
    headers, _user, tenant = auth_headers(db, role=UserRole.ADMIN)
    assert client.get("/api/v1/admin/credits", headers=headers).status_code == 200
    assert client.get(f"/api/v1/admin/credits/{tenant.id}", headers=headers).status_code == 403


def test_response_carries_request_id_and_security_headers(client, db):
    headers, _user, _tenant = auth_headers(db)
    resp = client.get("/api/v1/credits", headers={**headers, "X-Request-ID": "req-123"})
    assert resp.headers["X-Request-ID"] == "req-123"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
