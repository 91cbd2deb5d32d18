"""
Payment Routes
================
Processor webhook endpoint.
"""

from fastapi import APIRouter, Request, Depends
from sqlalchemy.orm import Session

from config.database import get_db
from modules.payment.service import payment_service

router = APIRouter(prefix="/api/payment", tags=["payment"])


@router.post("/webhook")
async def payment_webhook(request: Request, db: Session = Depends(get_db)):
    """Signature is computed over the raw body, so it is read before any parsing."""
    payload = await request.body()
    return payment_service.handle_webhook(db, payload, request.headers.get("stripe-signature"))
