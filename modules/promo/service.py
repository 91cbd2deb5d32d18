"""
Promo Service
===============
Validate, reserve, release and audit promo codes.

Validation chain (first failure wins):
  1. Code exists
  2. Code is active
  3. Not expired
  4. Subtotal meets min_order_cents
  5. Caller's redemption count below per_user_limit
  6. Atomic slot reservation (UPDATE ... WHERE current_uses < max_uses)

Reservation and release are each committed immediately: they are saga steps,
visible to concurrent checkouts the moment they succeed.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import update, or_, case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from common.exceptions import PromoError, PromoExhausted
from common.helpers import clean_str, is_expired, round_cents
from modules.promo.models import Promotion, PromoRedemption, DiscountType

logger = logging.getLogger("plateful.promo")


@dataclass(frozen=True)
class PromoReservation:
    promo_id: int
    code: str
    discount_cents: int


class PromoService:

    # ------------------------------------------
    # Validate (no side effects, raises PromoError)
    # ------------------------------------------

    def validate(self, db: Session, code: str, user_id: str, subtotal_cents: int) -> Promotion:
        code = clean_str(code, 50).upper()

        promo = db.query(Promotion).filter(Promotion.code == code).first() if code else None
        if not promo:
            raise PromoError("Promo code not found")

        if not promo.active:
            raise PromoError("Promo code is inactive")

        if is_expired(promo.expires_at):
            raise PromoError("Promo code has expired")

        if subtotal_cents < (promo.min_order_cents or 0):
            minimum = Decimal(promo.min_order_cents) / 100
            raise PromoError(f"Promo requires a minimum order of ${minimum:.2f}")

        if promo.per_user_limit is not None:
            used = self.count_user_redemptions(db, promo.id, user_id)
            if used >= promo.per_user_limit:
                raise PromoError("You have already used this promo code")

        return promo

    def count_user_redemptions(self, db: Session, promo_id: int, user_id: str) -> int:
        return (
            db.query(PromoRedemption)
            .filter(PromoRedemption.promotion_id == promo_id, PromoRedemption.user_id == user_id)
            .count()
        )

    # ------------------------------------------
    # Calculate discount amount
    # ------------------------------------------

    def calculate_discount(self, promo: Promotion, subtotal_cents: int) -> int:
        """percent: round(subtotal × value/100); fixed: min(value, subtotal)."""
        if subtotal_cents <= 0:
            return 0
        if promo.discount_type == DiscountType.PERCENT.value:
            raw = round_cents(Decimal(subtotal_cents) * Decimal(promo.value) / 100)
            return max(0, min(raw, subtotal_cents))
        return max(0, min(int(promo.value), subtotal_cents))

    # ------------------------------------------
    # Atomic slot reservation / release
    # ------------------------------------------

    def reserve_slot(self, db: Session, promo_id: int) -> None:
        """
        Increment current_uses only while below max_uses, in one statement.
        Zero rows affected means the promo is at capacity.
        """
        stmt = (
            update(Promotion)
            .where(
                Promotion.id == promo_id,
                or_(Promotion.max_uses.is_(None), Promotion.current_uses < Promotion.max_uses),
            )
            .values(current_uses=Promotion.current_uses + 1)
            .execution_options(synchronize_session=False)
        )
        try:
            result = db.execute(stmt)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise

        if result.rowcount == 0:
            raise PromoExhausted()

    def release_slot(self, db: Session, promo_id: int) -> bool:
        """Decrement current_uses by one, never below zero. Returns False if nothing changed."""
        stmt = (
            update(Promotion)
            .where(Promotion.id == promo_id, Promotion.current_uses > 0)
            .values(current_uses=case(
                (Promotion.current_uses > 0, Promotion.current_uses - 1),
                else_=0,
            ))
            .execution_options(synchronize_session=False)
        )
        try:
            result = db.execute(stmt)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        return result.rowcount > 0

    # ------------------------------------------
    # Pipeline steps
    # ------------------------------------------

    def apply_promo_code(self, db: Session, code: str, user_id: str, subtotal_cents: int) -> PromoReservation:
        """
        Validate, then reserve a slot. Caller owns the reservation and must
        call rollback_promo_reservation() if a later step fails.
        """
        promo = self.validate(db, code, user_id, subtotal_cents)
        self.reserve_slot(db, promo.id)

        discount = self.calculate_discount(promo, subtotal_cents)
        logger.info(f"promo_applied promo_id={promo.id} code={promo.code} user={user_id} discount_cents={discount}")
        return PromoReservation(promo_id=promo.id, code=promo.code, discount_cents=discount)

    def rollback_promo_reservation(self, db: Session, promo_id: int) -> None:
        released = self.release_slot(db, promo_id)
        if released:
            logger.info(f"promo_rolled_back promo_id={promo_id}")
        else:
            logger.warning(f"promo_rollback_noop promo_id={promo_id} (counter already at zero)")

    # ------------------------------------------
    # Audit trail
    # ------------------------------------------

    def record_redemption(
        self, db: Session, promo_id: int, user_id: str,
        discount_cents: int, checkout_session_id: Optional[str],
    ) -> PromoRedemption:
        """Record what was actually applied (post-ceiling). Caller commits."""
        redemption = PromoRedemption(
            promotion_id=promo_id,
            user_id=user_id,
            discount_cents=max(0, int(discount_cents)),
            checkout_session_id=checkout_session_id,
        )
        db.add(redemption)
        db.flush()
        return redemption

    def delete_session_redemptions(self, db: Session, checkout_session_id: str) -> int:
        """Drop audit rows of a session that was never paid. Caller commits."""
        return (
            db.query(PromoRedemption)
            .filter(PromoRedemption.checkout_session_id == checkout_session_id)
            .delete(synchronize_session=False)
        )

    # ------------------------------------------
    # Quick check (API, no side effects)
    # ------------------------------------------

    def quick_check(self, db: Session, code: str, user_id: str, subtotal_cents: int) -> Dict[str, Any]:
        """Same as validate but returns a result dict instead of raising."""
        try:
            promo = self.validate(db, code, user_id, subtotal_cents)
        except PromoError as e:
            return {"valid": False, "error": e.message}

        if promo.max_uses is not None and promo.current_uses >= promo.max_uses:
            return {"valid": False, "error": PromoExhausted().message}

        return {
            "valid": True,
            "promo_id": promo.id,
            "code": promo.code,
            "discount_type": promo.discount_type,
            "value": promo.value,
            "discount_display": promo.discount_display,
            "discount_cents": self.calculate_discount(promo, subtotal_cents),
        }

    # ------------------------------------------
    # Create (seed / tests)
    # ------------------------------------------

    def create_promotion(self, db: Session, data: dict) -> Promotion:
        """per_user_limit defaults to 1 when absent; an explicit None means no cap."""
        per_user_limit = data.get("per_user_limit", 1)
        promo = Promotion(
            code=data["code"].strip().upper(),
            discount_type=data.get("discount_type", DiscountType.PERCENT.value),
            value=int(data["value"]),
            max_uses=int(data["max_uses"]) if data.get("max_uses") is not None else None,
            current_uses=int(data.get("current_uses", 0)),
            per_user_limit=int(per_user_limit) if per_user_limit is not None else None,
            min_order_cents=int(data.get("min_order_cents", 0)),
            expires_at=data.get("expires_at"),
            active=bool(data.get("active", True)),
        )
        db.add(promo)
        db.flush()
        return promo


promo_service = PromoService()
