"""
Promo Routes
==============
Side-effect-free promo check for the cart page. Nothing is reserved here;
the real reservation happens inside checkout.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config.database import get_db
from modules.auth.deps import require_login
from modules.promo.service import promo_service

router = APIRouter(prefix="/api/promo", tags=["promo"])


class PromoCheckRequest(BaseModel):
    code: str = Field("", max_length=50)
    cart_total_cents: int = Field(0, ge=0)


@router.post("/validate")
async def validate_promo(
    body: PromoCheckRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_login),
):
    """Check a code against a cart subtotal (cents)."""
    if not body.code.strip():
        return JSONResponse({"valid": False, "error": "Code required"}, status_code=400)

    result = promo_service.quick_check(db, body.code, user_id, body.cart_total_cents)
    return JSONResponse(result)
