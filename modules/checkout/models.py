"""
Checkout Module - Models
==========================
PendingCart (server-side priced snapshot), CheckoutSession (payment session
status + totals) and CheckoutRateLimit (per-user attempt window).
"""

import enum
from sqlalchemy import (
    Column, Integer, String, Text, DateTime, ForeignKey, JSON, Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base


class SessionStatus(str, enum.Enum):
    OPEN = "open"
    COMPLETE = "complete"
    EXPIRED = "expired"


# ==========================================
# PendingCart
# ==========================================

class PendingCart(Base):
    __tablename__ = "pending_carts"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    # [{"item_id", "name", "unit_price_cents", "quantity", "line_subtotal_cents", "notes", "modifiers"}]
    items = Column(JSON, nullable=False)
    subtotal_cents = Column(Integer, nullable=False)
    discount_cents = Column(Integer, default=0, nullable=False)
    tax_cents = Column(Integer, nullable=False)
    total_cents = Column(Integer, nullable=False)
    promo_id = Column(Integer, ForeignKey("promotions.id", ondelete="SET NULL"), nullable=True)
    credit_id = Column(Integer, ForeignKey("user_credits.id", ondelete="SET NULL"), nullable=True)
    customer_email = Column(String(255), nullable=True)
    customer_name = Column(String(200), nullable=True)
    customer_phone = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


# ==========================================
# CheckoutSession
# ==========================================

class CheckoutSession(Base):
    __tablename__ = "checkout_sessions"

    id = Column(String(255), primary_key=True)   # payment processor session id
    user_id = Column(String(64), nullable=False, index=True)
    pending_cart_id = Column(Integer, ForeignKey("pending_carts.id", ondelete="SET NULL"), nullable=True)
    status = Column(String(20), default=SessionStatus.OPEN.value, nullable=False)

    subtotal_cents = Column(Integer, nullable=False)
    discount_cents = Column(Integer, default=0, nullable=False)
    promo_discount_cents = Column(Integer, default=0, nullable=False)
    credit_discount_cents = Column(Integer, default=0, nullable=False)
    tax_cents = Column(Integer, nullable=False)
    total_cents = Column(Integer, nullable=False)

    promo_id = Column(Integer, ForeignKey("promotions.id", ondelete="SET NULL"), nullable=True)
    credit_id = Column(Integer, ForeignKey("user_credits.id", ondelete="SET NULL"), nullable=True)

    redirect_url = Column(Text, nullable=False)
    gateway = Column(String(30), nullable=False)
    idempotency_key = Column(String(255), nullable=True)
    # sha256 fingerprint per line, for audit
    fingerprints = Column(JSON, nullable=True)

    expires_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    pending_cart = relationship("PendingCart")

    __table_args__ = (
        Index("ix_checkout_session_status_expiry", "status", "expires_at"),
    )

    def __repr__(self):
        return f"<CheckoutSession {self.id} {self.status} {self.total_cents}c>"


# ==========================================
# CheckoutRateLimit
# ==========================================

class CheckoutRateLimit(Base):
    __tablename__ = "checkout_rate_limits"

    user_id = Column(String(64), primary_key=True)
    scope = Column(String(30), primary_key=True, default="checkout")
    attempts = Column(Integer, default=0, nullable=False)
    last_attempt = Column(DateTime(timezone=True), nullable=False)
    blocked_until = Column(DateTime(timezone=True), nullable=True)
