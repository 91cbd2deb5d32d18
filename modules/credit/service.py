"""
Credit Service
================
Validate, consume and restore single-use stored credits.

Validation chain (first failure wins):
  1. Credit exists
  2. Owned by the caller
  3. Not already used
  4. Not expired
  5. Something left to cover (remaining total > 0)
  6. Atomic mark-used (UPDATE ... WHERE used = false)

A credit may partially cover an order; unused value is never refunded.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import update, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from common.exceptions import CreditError, CreditAlreadyConsumed
from common.helpers import is_expired, now_utc, safe_int
from modules.credit.models import UserCredit, CreditSource

logger = logging.getLogger("plateful.credit")


@dataclass(frozen=True)
class CreditReservation:
    credit_id: int
    applied_cents: int


class CreditService:

    # ------------------------------------------
    # Validate (no side effects, raises CreditError)
    # ------------------------------------------

    def validate(self, db: Session, credit_id, user_id: str) -> UserCredit:
        cid = safe_int(credit_id)
        credit = db.query(UserCredit).filter(UserCredit.id == cid).first() if cid is not None else None
        if not credit:
            raise CreditError("Credit not found")

        if credit.user_id != user_id:
            raise CreditError("Credit does not belong to this user")

        if credit.used:
            raise CreditError("Credit has already been used")

        if is_expired(credit.expires_at):
            raise CreditError("Credit has expired")

        return credit

    # ------------------------------------------
    # Atomic consume / restore
    # ------------------------------------------

    def mark_used(self, db: Session, credit_id: int) -> None:
        """Flip used false -> true in one guarded statement; zero rows = lost the race."""
        stmt = (
            update(UserCredit)
            .where(UserCredit.id == credit_id, UserCredit.used == False)  # noqa: E712
            .values(used=True, used_at=now_utc())
            .execution_options(synchronize_session=False)
        )
        try:
            result = db.execute(stmt)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise

        if result.rowcount == 0:
            raise CreditAlreadyConsumed()

    def restore(self, db: Session, credit_id: int, checkout_session_id: Optional[str] = None) -> bool:
        """
        Reset used and clear session linkage. Returns False if the credit was
        not in use (or, when checkout_session_id is given, used by another session).
        """
        conditions = [UserCredit.id == credit_id, UserCredit.used == True]  # noqa: E712
        if checkout_session_id is not None:
            conditions.append(UserCredit.checkout_session_id == checkout_session_id)
        stmt = (
            update(UserCredit)
            .where(*conditions)
            .values(used=False, used_at=None, checkout_session_id=None)
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

    def apply_stored_credit(self, db: Session, credit_id, user_id: str, remaining_cents: int) -> CreditReservation:
        """
        Validate and consume. Applied amount is min(credit, remaining).
        Caller must call rollback_credit_reservation() if a later step fails.
        """
        credit = self.validate(db, credit_id, user_id)

        applied = min(credit.amount_cents, max(0, int(remaining_cents)))
        if applied <= 0:
            raise CreditError("Credit cannot be applied to this order")

        cid = credit.id
        self.mark_used(db, cid)

        logger.info(f"credit_applied credit_id={cid} user={user_id} applied_cents={applied}")
        return CreditReservation(credit_id=cid, applied_cents=applied)

    def rollback_credit_reservation(self, db: Session, credit_id: int) -> None:
        restored = self.restore(db, credit_id)
        if restored:
            logger.info(f"credit_rolled_back credit_id={credit_id}")
        else:
            logger.warning(f"credit_rollback_noop credit_id={credit_id} (not marked used)")

    def attach_session(self, db: Session, credit_id: int, checkout_session_id: str) -> None:
        """Link a consumed credit to the session that used it. Caller commits."""
        (
            db.query(UserCredit)
            .filter(UserCredit.id == credit_id)
            .update({UserCredit.checkout_session_id: checkout_session_id}, synchronize_session=False)
        )

    # ------------------------------------------
    # Queries
    # ------------------------------------------

    def list_available(self, db: Session, user_id: str) -> List[UserCredit]:
        """Unused, unexpired credits of a user, largest first."""
        now = now_utc()
        return (
            db.query(UserCredit)
            .filter(
                UserCredit.user_id == user_id,
                UserCredit.used == False,  # noqa: E712
                or_(UserCredit.expires_at.is_(None), UserCredit.expires_at > now),
            )
            .order_by(UserCredit.amount_cents.desc(), UserCredit.id)
            .all()
        )

    # ------------------------------------------
    # Create (seed / tests)
    # ------------------------------------------

    def grant(
        self, db: Session, user_id: str, amount_cents: int,
        source: str = CreditSource.MANUAL_ADMIN.value, expires_at=None,
    ) -> UserCredit:
        if amount_cents <= 0:
            raise ValueError("Credit amount must be positive")
        credit = UserCredit(user_id=user_id, amount_cents=int(amount_cents), source=source, expires_at=expires_at)
        db.add(credit)
        db.flush()
        return credit


credit_service = CreditService()
