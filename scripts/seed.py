"""
Plateful Checkout - Demo Database Seeder
==========================================
Seeds a small menu, promo codes and a stored credit for local testing.

Usage:
    python scripts/seed.py          # Seed (idempotent)
    python scripts/seed.py --reset  # Drop all tables and reseed

Seeded:
  1. Menu items with modifier groups and a conditional rule
  2. Promo codes (percent, fixed, single-use)
  3. Stored credit for the demo user
"""

import sys
import os
from datetime import timedelta

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config.database import SessionLocal, Base, engine
from common.helpers import now_utc
from common.security import create_token
from modules.catalog.models import MenuItem
from modules.catalog.service import catalog_service
from modules.modifiers.conditions import ConditionEffect, ConditionOperator
from modules.promo.models import Promotion, DiscountType
from modules.promo.service import promo_service
from modules.credit.models import CreditSource
from modules.credit.service import credit_service
import modules.checkout.models  # noqa: F401

DEMO_USER = "demo-user-1"


def ensure_tables():
    """Create all tables if they don't exist (safe to call multiple times)."""
    print("[0/3] Ensuring all tables exist...")
    Base.metadata.create_all(bind=engine)
    print("  + All tables OK\n")


def seed():
    db = SessionLocal()
    try:
        print("=" * 50)
        print("  Plateful Checkout - Demo Seeder")
        print("=" * 50)

        ensure_tables()

        # ==========================================
        # 1. Menu
        # ==========================================
        print("[1/3] Menu Items")

        if not db.query(MenuItem).filter(MenuItem.name == "Classic Burger").first():
            burger = catalog_service.create_item(db, "Classic Burger", "12.00", groups=[
                {
                    "name": "Size", "type": "radio", "required": True, "min_selections": 1, "max_selections": 1,
                    "modifiers": [
                        {"name": "Regular", "price_adjustment": "0"},
                        {"name": "Large", "price_adjustment": "1.50"},
                    ],
                },
                {
                    "name": "Extras", "type": "checkbox", "min_selections": 0, "max_selections": 3,
                    "modifiers": [
                        {"name": "Bacon", "price_adjustment": "2.00"},
                        {"name": "Cheese", "price_adjustment": "0.75"},
                        {"name": "Onion", "price_adjustment": "0"},
                    ],
                },
                {
                    "name": "Cheese Type", "type": "radio", "min_selections": 0, "max_selections": 1,
                    "modifiers": [
                        {"name": "Cheddar", "price_adjustment": "0"},
                        {"name": "Swiss", "price_adjustment": "0.50"},
                    ],
                },
            ])
            extras, cheese_type = burger.modifier_groups[1], burger.modifier_groups[2]
            cheese = extras.modifiers[1]
            catalog_service.add_rule(db, burger, cheese_type.id, ConditionEffect.SHOW, [{
                "operator": ConditionOperator.MODIFIER_SELECTED,
                "target_group_id": extras.id,
                "target_modifier_id": cheese.id,
            }])
            print(f"  + Classic Burger (#{burger.id})")
        else:
            print("  = exists: Classic Burger")

        if not db.query(MenuItem).filter(MenuItem.name == "Caesar Salad").first():
            salad = catalog_service.create_item(db, "Caesar Salad", "9.50", groups=[
                {
                    "name": "Protein", "type": "radio", "min_selections": 0, "max_selections": 1,
                    "modifiers": [
                        {"name": "Chicken", "price_adjustment": "3.00"},
                        {"name": "Shrimp", "price_adjustment": "4.50"},
                    ],
                },
            ])
            print(f"  + Caesar Salad (#{salad.id})")
        else:
            print("  = exists: Caesar Salad")

        # ==========================================
        # 2. Promo codes
        # ==========================================
        print("\n[2/3] Promo Codes")

        promos = [
            {"code": "SAVE20", "discount_type": DiscountType.PERCENT.value, "value": 20, "max_uses": 100},
            {"code": "FIVEOFF", "discount_type": DiscountType.FIXED.value, "value": 500, "min_order_cents": 1500},
            {"code": "LASTONE", "discount_type": DiscountType.PERCENT.value, "value": 50, "max_uses": 1,
             "expires_at": now_utc() + timedelta(days=7)},
        ]
        for data in promos:
            if db.query(Promotion).filter(Promotion.code == data["code"]).first():
                print(f"  = exists: {data['code']}")
                continue
            promo = promo_service.create_promotion(db, data)
            print(f"  + {promo.code} ({promo.discount_display})")

        # ==========================================
        # 3. Stored credit
        # ==========================================
        print("\n[3/3] Stored Credit")

        if not credit_service.list_available(db, DEMO_USER):
            credit = credit_service.grant(
                db, DEMO_USER, 1000, source=CreditSource.MARKETING_GRANT.value,
                expires_at=now_utc() + timedelta(days=30),
            )
            print(f"  + credit #{credit.id}: $10.00 for {DEMO_USER}")
        else:
            print(f"  = {DEMO_USER} already has credit")

        db.commit()

        print("\n" + "=" * 50)
        print("  Seed complete. Demo bearer token:")
        print(f"  {create_token({'sub': DEMO_USER})}")
        print("=" * 50)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def reset_and_seed():
    print("Dropping all tables...")
    Base.metadata.drop_all(bind=engine)
    seed()


if __name__ == "__main__":
    if "--reset" in sys.argv:
        reset_and_seed()
    else:
        seed()
