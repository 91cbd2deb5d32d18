import threading
from datetime import timedelta

import pytest

from common.exceptions import RateLimitError
from config.database import SessionLocal
from modules.checkout.models import CheckoutRateLimit
from modules.checkout.rate_limit import RateLimiter

from conftest import USER, OTHER_USER


@pytest.fixture
def limiter():
    return RateLimiter("checkout", max_attempts=3, window_minutes=5, block_minutes=15)


def row(db, user_id=USER, scope="checkout"):
    db.expire_all()
    return db.query(CheckoutRateLimit).filter_by(user_id=user_id, scope=scope).one()


def test_allows_up_to_limit_then_blocks(db, limiter):
    for _ in range(3):
        limiter.check(db, USER)
    with pytest.raises(RateLimitError) as exc:
        limiter.check(db, USER)
    assert exc.value.retry_after == 15 * 60
    assert exc.value.to_dict()["retry_after"] == 900
    assert row(db).blocked_until is not None


def test_blocked_user_stays_blocked(db, limiter):
    for _ in range(3):
        limiter.check(db, USER)
    with pytest.raises(RateLimitError):
        limiter.check(db, USER)
    with pytest.raises(RateLimitError) as exc:
        limiter.check(db, USER)
    assert 0 < exc.value.retry_after <= 900


def test_users_and_scopes_are_independent(db, limiter):
    for _ in range(3):
        limiter.check(db, USER)
    limiter.check(db, OTHER_USER)
    RateLimiter("session_lookup", 3, 5, 15).check(db, USER)
    assert row(db, OTHER_USER).attempts == 1
    assert row(db, USER, "session_lookup").attempts == 1


def test_window_restarts_after_inactivity(db, limiter):
    for _ in range(3):
        limiter.check(db, USER)
    r = row(db)
    r.last_attempt = r.last_attempt - timedelta(minutes=6)
    db.commit()

    limiter.check(db, USER)
    assert row(db).attempts == 1


def test_block_expires(db, limiter):
    for _ in range(3):
        limiter.check(db, USER)
    with pytest.raises(RateLimitError):
        limiter.check(db, USER)
    r = row(db)
    r.blocked_until = r.blocked_until - timedelta(minutes=16)
    r.last_attempt = r.last_attempt - timedelta(minutes=16)
    db.commit()

    limiter.check(db, USER)
    assert row(db).attempts == 1
    assert row(db).blocked_until is None


def test_reset(db, limiter):
    for _ in range(3):
        limiter.check(db, USER)
    limiter.reset(db, USER)
    limiter.check(db, USER)
    assert row(db).attempts == 1


def test_simultaneous_first_attempts_share_one_row(db, limiter):
    barrier = threading.Barrier(8)
    outcomes = []
    lock = threading.Lock()

    def attempt():
        session = SessionLocal()
        try:
            barrier.wait()
            limiter.check(session, USER)
            result = "ok"
        except RateLimitError:
            result = "limited"
        finally:
            session.close()
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=attempt) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("ok") == 3
    assert outcomes.count("limited") == 5
    assert db.query(CheckoutRateLimit).count() == 1
    assert row(db).attempts == 4
    assert row(db).blocked_until is not None
