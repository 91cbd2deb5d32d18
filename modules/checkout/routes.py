"""
Checkout Routes
=================
JSON API for starting a checkout and polling its session.
Every amount in the response is computed server-side.
"""

from typing import Any, List, Optional, Union

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from config.database import get_db
from common.helpers import as_utc, format_usd
from modules.auth.deps import require_login
from modules.checkout.orchestrator import CheckoutOrchestrator, CheckoutRequest
from modules.checkout.rate_limit import session_lookup_limiter
from modules.checkout.service import checkout_service
from modules.payment.service import payment_service

router = APIRouter(prefix="/api/checkout", tags=["checkout"])


# ==========================================
# Schemas
# ==========================================

class CheckoutBody(BaseModel):
    """Line items stay untyped here; the orchestrator validates them and reports 400s."""
    model_config = ConfigDict(populate_by_name=True)

    items: List[Any] = Field(default_factory=list)
    email: str = Field("", max_length=254)
    name: Optional[str] = Field(None, max_length=200)
    phone: Optional[str] = Field(None, max_length=50)
    promo_code: Optional[str] = Field(None, max_length=50)
    credit_id: Optional[Union[int, str]] = None
    success_url: str = Field("", alias="successUrl", max_length=2048)
    cancel_url: str = Field("", alias="cancelUrl", max_length=2048)
    frontend_total: Optional[float] = None


# ==========================================
# POST /api/checkout
# ==========================================

@router.post("")
async def create_checkout(
    body: CheckoutBody,
    x_idempotency_key: Optional[str] = Header(None, max_length=255),
    db: Session = Depends(get_db),
    user_id: str = Depends(require_login),
):
    orchestrator = CheckoutOrchestrator(db, payment_service.get_active_gateway())
    result = orchestrator.run(user_id, CheckoutRequest(
        items=body.items,
        email=body.email,
        success_url=body.success_url,
        cancel_url=body.cancel_url,
        name=body.name,
        phone=body.phone,
        promo_code=body.promo_code,
        credit_id=str(body.credit_id) if body.credit_id is not None else None,
        frontend_total=body.frontend_total,
        idempotency_key=x_idempotency_key,
    ))
    return result.to_response()


# ==========================================
# GET /api/checkout/session/{session_id}
# ==========================================

@router.get("/session/{session_id}")
async def get_checkout_session(
    session_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_login),
):
    session_lookup_limiter.check(db, user_id)
    session = checkout_service.get_session_for_user(db, session_id, user_id)
    return {
        "id": session.id,
        "status": session.status,
        "subtotal_cents": session.subtotal_cents,
        "discount_cents": session.discount_cents,
        "promo_discount_cents": session.promo_discount_cents,
        "credit_discount_cents": session.credit_discount_cents,
        "tax_cents": session.tax_cents,
        "total_cents": session.total_cents,
        "total_display": format_usd(session.total_cents),
        "expires_at": as_utc(session.expires_at).isoformat() if session.expires_at else None,
    }
