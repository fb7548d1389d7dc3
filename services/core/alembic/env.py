"""Alembic migrations for the queue schema, run against MYSQL_URL."""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool

from quotedesk_core.config import get_settings
from quotedesk_core.domain.models import Base
from quotedesk_core.infra.db import create_db_engine

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_url() -> str:
    # -x url=... wins over settings, e.g. to diff against a scratch database
    return context.get_x_argument(as_dictionary=True).get("url") or get_settings().mysql_url


def run_migrations_offline() -> None:
    """Emit the migration SQL without connecting."""
    context.configure(
        url=get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = create_db_engine(get_url(), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
        )

        with context.begin_transaction():
            context.run_migrations()

    connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
