"""
Promo Module - Models
=======================
Shared, limited-use discount codes and their redemption audit trail.

Invariant: current_uses <= max_uses at all times. current_uses is only ever
changed by a single conditional UPDATE evaluated by the database
(see PromoService.reserve_slot / release_slot).
"""

import enum
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey,
    CheckConstraint, Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base


class DiscountType(str, enum.Enum):
    PERCENT = "percent"   # value = whole percent (0-100)
    FIXED = "fixed"       # value = cents


# ==========================================
# Promotion
# ==========================================

class Promotion(Base):
    __tablename__ = "promotions"

    id = Column(Integer, primary_key=True)
    code = Column(String(50), unique=True, nullable=False, index=True)
    discount_type = Column(String(10), nullable=False, default=DiscountType.PERCENT.value)
    value = Column(Integer, nullable=False)

    # Caps (NULL = unlimited)
    max_uses = Column(Integer, nullable=True)
    current_uses = Column(Integer, default=0, nullable=False)
    per_user_limit = Column(Integer, nullable=True)

    min_order_cents = Column(Integer, default=0, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    redemptions = relationship("PromoRedemption", back_populates="promotion", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("value > 0", name="ck_promotion_value_positive"),
        CheckConstraint("current_uses >= 0", name="ck_promotion_uses_non_negative"),
        CheckConstraint("max_uses IS NULL OR current_uses <= max_uses", name="ck_promotion_uses_within_cap"),
    )

    def __repr__(self):
        return f"<Promotion {self.code} {self.current_uses}/{self.max_uses}>"

    @property
    def discount_display(self) -> str:
        if self.discount_type == DiscountType.PERCENT.value:
            return f"{self.value}% off"
        return f"${self.value / 100:,.2f} off"


# ==========================================
# PromoRedemption (audit trail)
# ==========================================

class PromoRedemption(Base):
    __tablename__ = "promo_redemptions"

    id = Column(Integer, primary_key=True)
    promotion_id = Column(Integer, ForeignKey("promotions.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(64), nullable=False)
    discount_cents = Column(Integer, nullable=False)   # amount actually applied (after ceiling)
    checkout_session_id = Column(String(255), nullable=True)
    used_at = Column(DateTime(timezone=True), server_default=func.now())

    promotion = relationship("Promotion", back_populates="redemptions")

    __table_args__ = (
        Index("ix_redemption_user_promo", "user_id", "promotion_id"),
        CheckConstraint("discount_cents >= 0", name="ck_redemption_discount_non_negative"),
    )
