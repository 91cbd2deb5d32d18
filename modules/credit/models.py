"""
Credit Module - Models
========================
Single-use, user-owned monetary credits applied at checkout.

Invariant: `used` goes false -> true exactly once per successful reservation,
always via a conditional UPDATE guarded by `used = false`.
"""

import enum
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, CheckConstraint, Index,
)
from sqlalchemy.sql import func
from config.database import Base


class CreditSource(str, enum.Enum):
    LOYALTY_REDEMPTION = "loyalty_redemption"
    MARKETING_GRANT = "marketing_grant"
    REFUND = "refund"
    MANUAL_ADMIN = "manual_admin"


class UserCredit(Base):
    __tablename__ = "user_credits"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    amount_cents = Column(Integer, nullable=False)
    source = Column(String(30), nullable=False, default=CreditSource.MANUAL_ADMIN.value)

    used = Column(Boolean, default=False, nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    checkout_session_id = Column(String(255), nullable=True)   # session that consumed it

    expires_at = Column(DateTime(timezone=True), nullable=True)  # NULL = never
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_credit_amount_positive"),
        Index("ix_credit_user_unused", "user_id", "used", "expires_at"),
    )

    def __repr__(self):
        return f"<UserCredit {self.id} user={self.user_id} {self.amount_cents}c used={self.used}>"
