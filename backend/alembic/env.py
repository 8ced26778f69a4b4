"""Alembic environment for the StudyChat schema."""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from studychat.config import get_settings
from studychat.db.base import Base
from studychat.db import models  # noqa: F401 - Import models to register them

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

settings = get_settings()


def get_url() -> str:
    """
    Database URL for migrations (sync psycopg2 driver).

    ``alembic -x dburl=postgresql://...`` overrides the app settings, which
    is handy when migrating a hosted database from a laptop.
    """
    return context.get_x_argument(as_dictionary=True).get("dburl") or settings.database_url_sync


def run_migrations_offline() -> None:
    """Emit the migration SQL to stdout without connecting."""
    context.configure(
        url=get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations against a live database."""
    connectable = create_engine(get_url(), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
