"""
Alembic Environment
=====================
Migrations run against the application's own engine (config.database),
so DATABASE_URL comes from settings and never from alembic.ini.
"""

import os
import sys
from logging.config import fileConfig

from alembic import context

# Project root on the path so config/ and modules/ resolve
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config.settings import DATABASE_URL  # noqa: E402
from config.database import Base, engine  # noqa: E402

# Every mapped table must be imported before autogenerate compares metadata
from modules.user.models import User  # noqa: F401,E402
from modules.booking.models import Homestay, Booking  # noqa: F401,E402
from modules.payment.models import Payment  # noqa: F401,E402

alembic_cfg = context.config
if alembic_cfg.config_file_name is not None:
    fileConfig(alembic_cfg.config_file_name)

# SQLite cannot ALTER columns in place; batch mode recreates the table instead
RENDER_AS_BATCH = DATABASE_URL.startswith("sqlite")


def migrate_offline() -> None:
    context.configure(
        url=DATABASE_URL,
        target_metadata=Base.metadata,
        literal_binds=True,
        compare_type=True,
        render_as_batch=RENDER_AS_BATCH,
    )
    with context.begin_transaction():
        context.run_migrations()


def migrate_online() -> None:
    with engine.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=Base.metadata,
            compare_type=True,
            render_as_batch=RENDER_AS_BATCH,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    migrate_offline()
else:
    migrate_online()
