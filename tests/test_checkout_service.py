import json
from datetime import timedelta

import pytest

from common.exceptions import NotFoundError, ValidationError
from common.helpers import now_utc
from modules.catalog.service import catalog_service
from modules.checkout.models import CheckoutSession, PendingCart
from modules.checkout.orchestrator import CheckoutOrchestrator, CheckoutRequest
from modules.checkout.service import checkout_service
from modules.credit.models import UserCredit
from modules.payment.gateways import get_gateway
from modules.payment.service import payment_service
from modules.promo.models import Promotion, PromoRedemption

from conftest import ORIGIN, OTHER_USER, USER


@pytest.fixture
def open_session(db, make_promo, make_credit):
    """A committed checkout (promo + credit) through the sandbox gateway."""
    item = catalog_service.create_item(db, "Plain Plate", "10.00")
    db.commit()
    make_promo("SAVE10", value=10)
    credit = make_credit(300)
    result = CheckoutOrchestrator(db, get_gateway("sandbox"), rate_limiter=None).run(USER, CheckoutRequest(
        items=[{"id": item.id, "quantity": 2}], email="diner@example.com",
        success_url=f"{ORIGIN}/success", cancel_url=f"{ORIGIN}/cart",
        promo_code="SAVE10", credit_id=str(credit.id),
    ))
    return result.id, credit.id


def state(db, session_id, credit_id):
    db.expire_all()
    session = db.query(CheckoutSession).filter(CheckoutSession.id == session_id).one()
    promo = db.query(Promotion).filter(Promotion.code == "SAVE10").one()
    credit = db.query(UserCredit).filter(UserCredit.id == credit_id).one()
    return session.status, promo.current_uses, credit.used


def webhook_body(event_type, session_id):
    return json.dumps({"type": event_type, "data": {"object": {"id": session_id}}}).encode()


def test_sandbox_session_id_shape(open_session):
    session_id, _ = open_session
    assert session_id.startswith("cs_test_")


def test_owner_lookup(db, open_session):
    session_id, _ = open_session
    assert checkout_service.get_session_for_user(db, session_id, USER).id == session_id
    with pytest.raises(NotFoundError, match="Session not found"):
        checkout_service.get_session_for_user(db, session_id, OTHER_USER)
    with pytest.raises(NotFoundError):
        checkout_service.get_session_for_user(db, "../../etc/passwd", USER)


def test_complete_is_one_way(db, open_session):
    session_id, credit_id = open_session
    assert checkout_service.mark_complete(db, session_id) is True
    assert checkout_service.mark_complete(db, session_id) is False
    assert checkout_service.mark_expired(db, session_id) is False
    assert state(db, session_id, credit_id) == ("complete", 1, True)


def test_expire_releases_reservations_once(db, open_session):
    session_id, credit_id = open_session
    assert state(db, session_id, credit_id) == ("open", 1, True)

    assert checkout_service.mark_expired(db, session_id) is True
    assert state(db, session_id, credit_id) == ("expired", 0, False)
    assert db.query(PromoRedemption).count() == 0

    assert checkout_service.mark_expired(db, session_id) is False
    assert state(db, session_id, credit_id) == ("expired", 0, False)


def test_expire_unknown_session(db):
    assert checkout_service.mark_expired(db, "cs_test_missing") is False


def test_expire_stale_sessions(db, open_session):
    session_id, credit_id = open_session
    assert checkout_service.expire_stale_sessions(db) == 0

    session = db.query(CheckoutSession).filter(CheckoutSession.id == session_id).one()
    session.expires_at = now_utc() - timedelta(minutes=1)
    db.commit()

    assert checkout_service.expire_stale_sessions(db) == 1
    assert state(db, session_id, credit_id) == ("expired", 0, False)


def test_purge_keeps_paid_and_recent_carts(db, open_session):
    session_id, _ = open_session
    assert checkout_service.purge_pending_carts(db) == 0

    old = now_utc() - timedelta(hours=48)
    db.query(PendingCart).update({PendingCart.created_at: old}, synchronize_session=False)
    db.commit()
    checkout_service.mark_complete(db, session_id)
    assert checkout_service.purge_pending_carts(db) == 0

    stale = PendingCart(user_id=USER, items=[], subtotal_cents=0, tax_cents=0, total_cents=0, created_at=old)
    db.add(stale)
    db.commit()
    assert checkout_service.purge_pending_carts(db) == 1
    assert db.query(PendingCart).count() == 1


def test_purge_unlinks_unpaid_session(db, open_session):
    session_id, _ = open_session
    db.query(PendingCart).update(
        {PendingCart.created_at: now_utc() - timedelta(hours=48)}, synchronize_session=False,
    )
    db.commit()

    assert checkout_service.purge_pending_carts(db) == 1
    db.expire_all()
    assert db.query(CheckoutSession).filter(CheckoutSession.id == session_id).one().pending_cart_id is None


# ==========================================
# Webhooks
# ==========================================

def test_webhook_completed(db, open_session):
    session_id, credit_id = open_session
    gateway = get_gateway("sandbox")
    body = webhook_body("checkout.session.completed", session_id)

    result = payment_service.handle_webhook(db, body, gateway.sign(body), gateway)
    assert result == {"received": True, "handled": True}
    assert state(db, session_id, credit_id)[0] == "complete"

    replay = payment_service.handle_webhook(db, body, gateway.sign(body), gateway)
    assert replay == {"received": True, "handled": False}


def test_webhook_expired_releases(db, open_session):
    session_id, credit_id = open_session
    gateway = get_gateway("sandbox")
    body = webhook_body("checkout.session.expired", session_id)

    payment_service.handle_webhook(db, body, gateway.sign(body), gateway)
    assert state(db, session_id, credit_id) == ("expired", 0, False)


def test_webhook_ignores_other_events(db, open_session):
    session_id, credit_id = open_session
    gateway = get_gateway("sandbox")
    body = webhook_body("payment_intent.created", session_id)
    assert payment_service.handle_webhook(db, body, gateway.sign(body), gateway)["handled"] is False
    assert state(db, session_id, credit_id)[0] == "open"


def test_webhook_bad_signature(db, open_session):
    session_id, credit_id = open_session
    gateway = get_gateway("sandbox")
    body = webhook_body("checkout.session.expired", session_id)
    forged = gateway.sign(b"something else")

    with pytest.raises(ValidationError, match="Invalid signature"):
        payment_service.handle_webhook(db, body, forged, gateway)
    with pytest.raises(ValidationError):
        payment_service.handle_webhook(db, body, None, gateway)
    assert state(db, session_id, credit_id)[0] == "open"


def test_webhook_signature_tolerance():
    gateway = get_gateway("sandbox")
    body = webhook_body("checkout.session.completed", "cs_test_x")
    header = gateway.sign(body, timestamp=1_000_000)
    assert gateway.verify_signature(body, header, now=1_000_100)
    assert not gateway.verify_signature(body, header, now=1_000_000 + 301)
    assert not gateway.verify_signature(body, "t=abc,v1=00")
