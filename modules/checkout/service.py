"""
Checkout Module - Service Layer
=================================
Everything that happens to a checkout session after it exists:
owner lookup, status transitions driven by the payment processor,
expiration of abandoned sessions, pending-cart cleanup.

Status only moves out of `open`, once. Replayed events are no-ops.
"""

import logging
import re
from datetime import timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from common.exceptions import NotFoundError
from common.helpers import now_utc
from config.settings import PENDING_CART_RETENTION_HOURS
from modules.checkout.models import CheckoutSession, PendingCart, SessionStatus
from modules.credit.service import credit_service
from modules.promo.service import promo_service

logger = logging.getLogger("plateful.checkout")

SESSION_ID_RE = re.compile(r"^cs_(test|live)_[A-Za-z0-9]{1,250}$")


class CheckoutService:

    # ==========================================
    # Query
    # ==========================================

    def get_session_for_user(self, db: Session, session_id: str, user_id: str) -> CheckoutSession:
        """Owner-only lookup. Unknown and foreign sessions look the same."""
        if not session_id or not SESSION_ID_RE.match(session_id):
            raise NotFoundError("Session not found")
        session = db.query(CheckoutSession).filter(CheckoutSession.id == session_id).first()
        if not session or session.user_id != user_id:
            raise NotFoundError("Session not found")
        return session

    def get_session(self, db: Session, session_id: str) -> Optional[CheckoutSession]:
        return db.query(CheckoutSession).filter(CheckoutSession.id == session_id).first()

    # ==========================================
    # Status transitions
    # ==========================================

    def _transition(self, db: Session, session_id: str, new_status: SessionStatus, **extra) -> bool:
        """Conditional open -> new_status. Returns False if the session was not open."""
        result = db.execute(
            update(CheckoutSession)
            .where(CheckoutSession.id == session_id, CheckoutSession.status == SessionStatus.OPEN.value)
            .values(status=new_status.value, **extra)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    def mark_complete(self, db: Session, session_id: str) -> bool:
        changed = self._transition(db, session_id, SessionStatus.COMPLETE, completed_at=now_utc())
        db.commit()
        if changed:
            logger.info(f"checkout_session_completed session={session_id}")
        return changed

    def mark_expired(self, db: Session, session_id: str) -> bool:
        """
        open -> expired, then give back the session's promo slot and credit.
        The status flip is the guard: a replay finds nothing to release.
        """
        session = self.get_session(db, session_id)
        if not session:
            return False
        promo_id, credit_id = session.promo_id, session.credit_id

        if not self._transition(db, session_id, SessionStatus.EXPIRED):
            db.rollback()
            return False
        if promo_id:
            promo_service.delete_session_redemptions(db, session_id)
        db.commit()

        if promo_id:
            promo_service.rollback_promo_reservation(db, promo_id)
        if credit_id:
            if credit_service.restore(db, credit_id, checkout_session_id=session_id):
                logger.info(f"credit_released credit_id={credit_id} session={session_id}")

        logger.info(f"checkout_session_expired session={session_id} promo_id={promo_id} credit_id={credit_id}")
        return True

    # ==========================================
    # Scheduled cleanup
    # ==========================================

    def expire_stale_sessions(self, db: Session) -> int:
        """Expire open sessions past expires_at and release their reservations."""
        now = now_utc()
        stale_ids = [
            row.id for row in (
                db.query(CheckoutSession.id)
                .filter(
                    CheckoutSession.status == SessionStatus.OPEN.value,
                    CheckoutSession.expires_at.isnot(None),
                    CheckoutSession.expires_at < now,
                )
                .all()
            )
        ]

        count = 0
        for session_id in stale_ids:
            if self.mark_expired(db, session_id):
                count += 1

        if count:
            logger.info(f"Expired {count} abandoned checkout sessions")
        return count

    def purge_pending_carts(self, db: Session, retention_hours: int = PENDING_CART_RETENTION_HOURS) -> int:
        """Delete pending carts older than the retention window unless their session was paid."""
        cutoff = now_utc() - timedelta(hours=retention_hours)
        paid_cart_ids = (
            select(CheckoutSession.pending_cart_id)
            .where(
                CheckoutSession.status == SessionStatus.COMPLETE.value,
                CheckoutSession.pending_cart_id.isnot(None),
            )
        )
        stale_ids = [
            row.id for row in (
                db.query(PendingCart.id)
                .filter(PendingCart.created_at < cutoff, PendingCart.id.notin_(paid_cart_ids))
                .all()
            )
        ]
        if not stale_ids:
            return 0

        (
            db.query(CheckoutSession)
            .filter(CheckoutSession.pending_cart_id.in_(stale_ids))
            .update({CheckoutSession.pending_cart_id: None}, synchronize_session=False)
        )
        deleted = (
            db.query(PendingCart)
            .filter(PendingCart.id.in_(stale_ids))
            .delete(synchronize_session=False)
        )
        db.commit()
        logger.info(f"Purged {deleted} pending carts older than {retention_hours}h")
        return deleted


checkout_service = CheckoutService()
