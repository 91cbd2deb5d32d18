"""
Alembic Environment Configuration
===================================
DATABASE_URL comes from config.settings; alembic.ini only carries logging.
Every model module is imported below so autogenerate sees the checkout schema.

SQLite (local dev, tests) cannot ALTER columns in place, so migrations run
in batch mode there.
"""

import sys
import os
from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool
from alembic import context

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config.settings import DATABASE_URL
from config.database import Base

# Catalog, discounts, checkout
from modules.catalog.models import MenuItem, ModifierGroup, Modifier, ModifierRule  # noqa: F401
from modules.promo.models import Promotion, PromoRedemption  # noqa: F401
from modules.credit.models import UserCredit  # noqa: F401
from modules.checkout.models import PendingCart, CheckoutSession, CheckoutRateLimit  # noqa: F401

config = context.config
config.set_main_option("sqlalchemy.url", DATABASE_URL)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata
IS_SQLITE = DATABASE_URL.startswith("sqlite")


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=IS_SQLITE,
        **kwargs,
    )


def run_migrations_offline() -> None:
    _configure(url=DATABASE_URL, literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
