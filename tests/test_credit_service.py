import threading
from datetime import timedelta

import pytest

from config.database import SessionLocal
from common.exceptions import CreditAlreadyConsumed, CreditError
from common.helpers import now_utc
from modules.credit.service import credit_service

from conftest import USER, OTHER_USER


def test_apply_partial_cover(db, make_credit):
    credit = make_credit(1000)
    reservation = credit_service.apply_stored_credit(db, str(credit.id), USER, 600)
    assert reservation.credit_id == credit.id
    assert reservation.applied_cents == 600
    db.refresh(credit)
    assert credit.used is True
    assert credit.used_at is not None


def test_apply_full_amount_when_total_is_larger(db, make_credit):
    credit = make_credit(500)
    assert credit_service.apply_stored_credit(db, credit.id, USER, 2000).applied_cents == 500


@pytest.mark.parametrize("case, message", [
    ("missing", "Credit not found"),
    ("garbage", "Credit not found"),
    ("foreign", "Credit does not belong to this user"),
    ("used", "Credit has already been used"),
    ("expired", "Credit has expired"),
    ("nothing_left", "Credit cannot be applied to this order"),
])
def test_apply_rejections(db, make_credit, case, message):
    credit = make_credit(
        500,
        user_id=OTHER_USER if case == "foreign" else USER,
        expires_at=now_utc() - timedelta(days=1) if case == "expired" else None,
    )
    if case == "used":
        credit_service.mark_used(db, credit.id)
    credit_id = {"missing": credit.id + 100, "garbage": "abc"}.get(case, credit.id)
    remaining = 0 if case == "nothing_left" else 2000

    with pytest.raises(CreditError) as exc:
        credit_service.apply_stored_credit(db, credit_id, USER, remaining)
    assert exc.value.message == message


def test_mark_used_twice_loses_race(db, make_credit):
    credit = make_credit(500)
    credit_service.mark_used(db, credit.id)
    with pytest.raises(CreditAlreadyConsumed):
        credit_service.mark_used(db, credit.id)


def test_stale_read_cannot_double_spend(db, make_credit):
    """Both attempts validate before either consumes; the second update finds nothing."""
    credit = make_credit(500)
    first, second = SessionLocal(), SessionLocal()
    try:
        credit_service.validate(first, credit.id, USER)
        credit_service.validate(second, credit.id, USER)
        credit_service.mark_used(first, credit.id)
        with pytest.raises(CreditAlreadyConsumed):
            credit_service.mark_used(second, credit.id)
    finally:
        first.close()
        second.close()


def test_concurrent_apply_consumes_once(db, make_credit):
    credit_id = make_credit(500).id
    barrier = threading.Barrier(6)
    outcomes = []
    lock = threading.Lock()

    def attempt():
        session = SessionLocal()
        try:
            barrier.wait()
            credit_service.apply_stored_credit(session, credit_id, USER, 2000)
            result = "ok"
        except CreditError:
            result = "rejected"
        finally:
            session.close()
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=attempt) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("ok") == 1
    assert outcomes.count("rejected") == 5


def test_rollback_restores_credit(db, make_credit):
    credit = make_credit(500)
    credit_service.apply_stored_credit(db, credit.id, USER, 2000)
    credit_service.attach_session(db, credit.id, "cs_test_x")
    db.commit()

    credit_service.rollback_credit_reservation(db, credit.id)
    db.refresh(credit)
    assert credit.used is False
    assert credit.used_at is None
    assert credit.checkout_session_id is None

    # reusable afterwards
    assert credit_service.apply_stored_credit(db, credit.id, USER, 2000).applied_cents == 500


def test_restore_guarded_by_session(db, make_credit):
    credit = make_credit(500)
    credit_service.mark_used(db, credit.id)
    credit_service.attach_session(db, credit.id, "cs_test_owner")
    db.commit()

    assert credit_service.restore(db, credit.id, checkout_session_id="cs_test_other") is False
    assert credit_service.restore(db, credit.id, checkout_session_id="cs_test_owner") is True
    assert credit_service.restore(db, credit.id) is False


def test_list_available(db, make_credit):
    big = make_credit(900)
    small = make_credit(100)
    used = make_credit(300)
    make_credit(400, expires_at=now_utc() - timedelta(days=1))
    make_credit(700, user_id=OTHER_USER)
    credit_service.mark_used(db, used.id)

    assert [c.id for c in credit_service.list_available(db, USER)] == [big.id, small.id]


def test_grant_rejects_non_positive(db):
    with pytest.raises(ValueError):
        credit_service.grant(db, USER, 0)
