import json

import pytest
from fastapi.testclient import TestClient

from main import app
from modules.catalog.service import catalog_service
from modules.payment.gateways import BaseGateway, PaymentSessionResult, get_gateway
from modules.payment.service import payment_service

from conftest import ORIGIN, OTHER_USER


@pytest.fixture
def client(db):
    return TestClient(app)


@pytest.fixture
def plate(db):
    item = catalog_service.create_item(db, "Plain Plate", "10.00")
    db.commit()
    return item.id


def checkout_body(plate_id, **extra):
    body = {
        "items": [{"id": plate_id, "quantity": 2}],
        "email": "diner@example.com",
        "successUrl": f"{ORIGIN}/success",
        "cancelUrl": f"{ORIGIN}/cart",
    }
    body.update(extra)
    return body


class DownGateway(BaseGateway):
    name = "down"

    def webhook_secret(self):
        return ""

    def create_session(self, req):
        return PaymentSessionResult(False, error_message="connection refused to 10.0.0.7")


def test_health(client):
    assert client.get("/health").json() == {"status": "ok", "version": "1.0.0"}


def test_checkout_requires_login(client, plate):
    resp = client.post("/api/checkout", json=checkout_body(plate))
    assert resp.status_code == 401
    assert resp.json() == {"error": "Unauthorized", "code": "unauthorized", "retryable": False}


def test_checkout_success_and_session_lookup(client, plate, make_promo, make_credit, auth_headers):
    make_promo("SAVE10", value=10)
    credit = make_credit(100)
    headers = {**auth_headers(), "X-Idempotency-Key": "idem-42"}

    resp = client.post(
        "/api/checkout", headers=headers,
        json=checkout_body(plate, promo_code="SAVE10", credit_id=credit.id, frontend_total=19.58),
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "open"
    assert data["id"].startswith("cs_test_")
    assert data["url"].endswith(data["id"])

    lookup = client.get(f"/api/checkout/session/{data['id']}", headers=auth_headers())
    assert lookup.status_code == 200
    session = lookup.json()
    assert session["subtotal_cents"] == 2000
    assert session["promo_discount_cents"] == 200
    assert session["credit_discount_cents"] == 100
    assert session["tax_cents"] == 149
    assert session["total_cents"] == 1849
    assert session["total_display"] == "$18.49"

    foreign = client.get(f"/api/checkout/session/{data['id']}", headers=auth_headers(OTHER_USER))
    assert foreign.status_code == 404
    assert foreign.json()["error"] == "Session not found"


def test_checkout_validation_error(client, auth_headers):
    resp = client.post("/api/checkout", headers=auth_headers(), json=checkout_body(424242))
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "Invalid cart"
    assert body["code"] == "validation_error"
    assert body["errors"] == {"items[0]": "Item not found"}


def test_checkout_promo_error(client, plate, auth_headers):
    resp = client.post("/api/checkout", headers=auth_headers(), json=checkout_body(plate, promo_code="NOPE"))
    assert resp.status_code == 422
    assert resp.json() == {"error": "Promo code not found", "code": "promo_error", "retryable": False}


def test_checkout_infrastructure_error_is_generic(client, plate, auth_headers, monkeypatch):
    monkeypatch.setattr(payment_service, "get_active_gateway", lambda name=None: DownGateway())
    resp = client.post("/api/checkout", headers=auth_headers(), json=checkout_body(plate))
    assert resp.status_code == 503
    body = resp.json()
    assert body == {"error": "Payment service unavailable. Please try again.", "code": "unavailable", "retryable": True}
    assert "10.0.0.7" not in resp.text


def test_checkout_rate_limited(client, auth_headers):
    for _ in range(10):
        assert client.post("/api/checkout", headers=auth_headers(), json=checkout_body(1, items=[])).status_code == 400
    resp = client.post("/api/checkout", headers=auth_headers(), json=checkout_body(1, items=[]))
    assert resp.status_code == 429
    assert resp.headers["Retry-After"] == "900"
    assert resp.json()["retry_after"] == 900
    assert resp.json()["retryable"] is True


def test_promo_validate_route(client, make_promo, auth_headers):
    make_promo("SAVE10", value=10)
    ok = client.post("/api/promo/validate", headers=auth_headers(), json={"code": "save10", "cart_total_cents": 2000})
    assert ok.status_code == 200
    assert ok.json()["valid"] is True
    assert ok.json()["discount_cents"] == 200

    empty = client.post("/api/promo/validate", headers=auth_headers(), json={"code": " "})
    assert empty.status_code == 400
    assert empty.json() == {"valid": False, "error": "Code required"}

    assert client.post("/api/promo/validate", json={"code": "SAVE10"}).status_code == 401


def test_credits_route(client, make_credit, auth_headers):
    credit = make_credit(1250)
    make_credit(999, user_id=OTHER_USER)
    resp = client.get("/api/credits", headers=auth_headers())
    assert resp.status_code == 200
    assert resp.json()["credits"] == [{
        "id": credit.id, "amount_cents": 1250, "amount_display": "$12.50",
        "source": "manual_admin", "expires_at": None,
    }]


def test_webhook_route(client, plate, auth_headers):
    created = client.post("/api/checkout", headers=auth_headers(), json=checkout_body(plate)).json()
    gateway = get_gateway("sandbox")
    payload = json.dumps({"type": "checkout.session.completed", "data": {"object": {"id": created["id"]}}}).encode()

    bad = client.post("/api/payment/webhook", content=payload, headers={"Stripe-Signature": "t=1,v1=00"})
    assert bad.status_code == 400
    assert bad.json()["error"] == "Invalid signature"

    good = client.post("/api/payment/webhook", content=payload, headers={"Stripe-Signature": gateway.sign(payload)})
    assert good.status_code == 200
    assert good.json() == {"received": True, "handled": True}

    lookup = client.get(f"/api/checkout/session/{created['id']}", headers=auth_headers())
    assert lookup.json()["status"] == "complete"
