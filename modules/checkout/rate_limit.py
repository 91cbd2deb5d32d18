"""
Checkout Module - Rate Limiting
=================================
Per-user persisted attempt window with a cool-down block.

  - blocked_until in the future   -> reject
  - last attempt outside window   -> counter restarts at 1
  - counter above the limit       -> block for `block_minutes`

State lives in the database so every worker process sees the same window.
The counter row is created with INSERT ... ON CONFLICT DO NOTHING and then
advanced by a single conditional UPDATE, so simultaneous first attempts
never collide on the primary key.
"""

import logging
import math
from datetime import timedelta

from sqlalchemy import case, literal, or_, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from common.exceptions import RateLimitError
from common.helpers import as_utc, now_utc
from config.settings import (
    MAX_ATTEMPTS_PER_WINDOW, WINDOW_MINUTES, BLOCK_MINUTES,
    SESSION_LOOKUP_MAX_ATTEMPTS, SESSION_LOOKUP_BLOCK_MINUTES,
)
from modules.checkout.models import CheckoutRateLimit

logger = logging.getLogger("plateful.ratelimit")

# PostgreSQL in production, SQLite for local dev and tests
UPSERT_DIALECTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class RateLimiter:

    def __init__(self, scope: str, max_attempts: int, window_minutes: int, block_minutes: int):
        self.scope = scope
        self.max_attempts = max_attempts
        self.window = timedelta(minutes=window_minutes)
        self.block = timedelta(minutes=block_minutes)

    def _key(self, user_id: str):
        return (CheckoutRateLimit.user_id == user_id, CheckoutRateLimit.scope == self.scope)

    def _ensure_row(self, db: Session, user_id: str, now) -> None:
        dialect = db.get_bind().dialect.name
        insert = UPSERT_DIALECTS.get(dialect)
        if insert is None:
            raise RuntimeError(f"Rate limiting is not supported on dialect '{dialect}'")
        db.execute(
            insert(CheckoutRateLimit)
            .values(user_id=user_id, scope=self.scope, attempts=0, last_attempt=now)
            .on_conflict_do_nothing(index_elements=["user_id", "scope"])
        )

    def check(self, db: Session, user_id: str) -> None:
        """Count one attempt for user_id. Raises RateLimitError when over the limit."""
        now = now_utc()
        key = self._key(user_id)
        self._ensure_row(db, user_id, now)

        # SET expressions read the pre-update row
        next_attempts = case(
            (CheckoutRateLimit.last_attempt < now - self.window, 1),
            else_=CheckoutRateLimit.attempts + 1,
        )
        blocked_until = case(
            (next_attempts > self.max_attempts, literal(now + self.block, CheckoutRateLimit.blocked_until.type)),
            else_=None,
        )
        updated = db.execute(
            update(CheckoutRateLimit)
            .where(*key, or_(CheckoutRateLimit.blocked_until.is_(None), CheckoutRateLimit.blocked_until <= now))
            .values(attempts=next_attempts, last_attempt=now, blocked_until=blocked_until)
            .execution_options(synchronize_session=False)
        ).rowcount

        row = db.query(CheckoutRateLimit.attempts, CheckoutRateLimit.blocked_until).filter(*key).one()
        db.commit()

        if updated == 0:
            raise RateLimitError(retry_after=self._seconds_until(as_utc(row.blocked_until), now))

        if row.blocked_until is not None:
            logger.warning(f"rate_limited scope={self.scope} user={user_id} attempts={row.attempts}")
            raise RateLimitError(retry_after=int(self.block.total_seconds()))

    def reset(self, db: Session, user_id: str) -> None:
        (
            db.query(CheckoutRateLimit)
            .filter(*self._key(user_id))
            .delete(synchronize_session=False)
        )
        db.commit()

    @staticmethod
    def _seconds_until(when, now) -> int:
        return max(1, math.ceil((when - now).total_seconds()))


checkout_limiter = RateLimiter("checkout", MAX_ATTEMPTS_PER_WINDOW, WINDOW_MINUTES, BLOCK_MINUTES)
session_lookup_limiter = RateLimiter(
    "session_lookup", SESSION_LOOKUP_MAX_ATTEMPTS, WINDOW_MINUTES, SESSION_LOOKUP_BLOCK_MINUTES,
)
