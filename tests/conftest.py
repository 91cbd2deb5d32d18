"""
Shared fixtures. Environment is set before any project import so that
config.settings builds the engine against a throwaway SQLite file.
"""

import os
import tempfile
from types import SimpleNamespace

_DB_DIR = tempfile.mkdtemp(prefix="plateful-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["PAYMENT_GATEWAY"] = "sandbox"
os.environ["ALLOWED_ORIGINS"] = "http://localhost:3000"

import pytest  # noqa: E402

from config.database import Base, SessionLocal, engine  # noqa: E402
from common.security import create_token  # noqa: E402
from modules.catalog.service import catalog_service  # noqa: E402
from modules.credit.service import credit_service  # noqa: E402
from modules.modifiers.conditions import ConditionEffect, ConditionOperator  # noqa: E402
from modules.promo.service import promo_service  # noqa: E402
import modules.checkout.models  # noqa: F401,E402

USER = "user-1"
OTHER_USER = "user-2"
ORIGIN = "http://localhost:3000"


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def menu(db):
    """
    Burger $12.00
      Size (required, pick 1): Regular +0, Large +1.50
      Extras (0..3): Bacon +2.00, Cheese +0.75, Onion +0
      Cheese Type (0..1): Cheddar +0, Swiss +0.50
        hidden unless Cheese is picked, required when it is
    Fries $3.00 (no modifiers)
    """
    burger = catalog_service.create_item(db, "Burger", "12.00", groups=[
        {"name": "Size", "required": True, "min_selections": 1, "max_selections": 1, "modifiers": [
            {"name": "Regular", "price_adjustment": "0"},
            {"name": "Large", "price_adjustment": "1.50"},
        ]},
        {"name": "Extras", "type": "checkbox", "max_selections": 3, "modifiers": [
            {"name": "Bacon", "price_adjustment": "2.00"},
            {"name": "Cheese", "price_adjustment": "0.75"},
            {"name": "Onion", "price_adjustment": "0"},
        ]},
        {"name": "Cheese Type", "max_selections": 1, "modifiers": [
            {"name": "Cheddar", "price_adjustment": "0"},
            {"name": "Swiss", "price_adjustment": "0.50"},
        ]},
    ])
    size, extras, cheese_type = burger.modifier_groups
    cheese = extras.modifiers[1]
    catalog_service.add_rule(db, burger, cheese_type.id, ConditionEffect.HIDE, [{
        "operator": ConditionOperator.MODIFIER_NOT_SELECTED,
        "target_group_id": extras.id,
        "target_modifier_id": cheese.id,
    }])
    catalog_service.add_rule(db, burger, cheese_type.id, ConditionEffect.REQUIRE, [{
        "operator": ConditionOperator.MODIFIER_SELECTED,
        "target_group_id": extras.id,
        "target_modifier_id": cheese.id,
    }])
    fries = catalog_service.create_item(db, "Fries", "3.00")
    db.commit()

    return SimpleNamespace(
        burger=burger.id,
        fries=fries.id,
        size=str(size.id),
        regular=str(size.modifiers[0].id),
        large=str(size.modifiers[1].id),
        extras=str(extras.id),
        bacon=str(extras.modifiers[0].id),
        cheese=str(cheese.id),
        onion=str(extras.modifiers[2].id),
        cheese_type=str(cheese_type.id),
        cheddar=str(cheese_type.modifiers[0].id),
        swiss=str(cheese_type.modifiers[1].id),
    )


@pytest.fixture
def make_promo(db):
    def _make(code="SAVE20", **kwargs):
        data = {"code": code, "discount_type": "percent", "value": 20}
        data.update(kwargs)
        promo = promo_service.create_promotion(db, data)
        db.commit()
        return promo
    return _make


@pytest.fixture
def make_credit(db):
    def _make(amount_cents=500, user_id=USER, **kwargs):
        credit = credit_service.grant(db, user_id, amount_cents, **kwargs)
        db.commit()
        return credit
    return _make


@pytest.fixture
def auth_headers():
    def _headers(user_id=USER):
        return {"Authorization": f"Bearer {create_token({'sub': user_id})}"}
    return _headers
