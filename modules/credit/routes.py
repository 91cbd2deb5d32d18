"""
Credit Routes
===============
The caller's spendable credits, for the checkout page credit picker.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from config.database import get_db
from common.helpers import as_utc, format_usd
from modules.auth.deps import require_login
from modules.credit.service import credit_service

router = APIRouter(prefix="/api/credits", tags=["credits"])


@router.get("")
async def list_credits(
    db: Session = Depends(get_db),
    user_id: str = Depends(require_login),
):
    credits = credit_service.list_available(db, user_id)
    return {
        "credits": [
            {
                "id": c.id,
                "amount_cents": c.amount_cents,
                "amount_display": format_usd(c.amount_cents),
                "source": c.source,
                "expires_at": as_utc(c.expires_at).isoformat() if c.expires_at else None,
            }
            for c in credits
        ],
    }
