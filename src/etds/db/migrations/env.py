"""Alembic environment for the ETDS schema.

The database URL comes from ``DATABASE_URL``, then ``ETDS_DATABASE__URL``,
then ``sqlalchemy.url`` in alembic.ini. Plain ``postgresql://`` URLs are
rewritten to the psycopg driver, which serves both the async application
engine and these synchronous migrations.
"""

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from etds.db import to_async_url
from etds.db.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Every model module is imported by etds.db.models, so the metadata is complete
target_metadata = Base.metadata


def get_url() -> str:
    """Resolve the migration database URL."""
    url = (
        os.environ.get("DATABASE_URL")
        or os.environ.get("ETDS_DATABASE__URL")
        or config.get_main_option("sqlalchemy.url", "")
    )
    return to_async_url(url)


def _configure_kwargs() -> dict:
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        "compare_server_default": True,
    }


def run_migrations_offline() -> None:
    """Emit the migration SQL without connecting to a database."""
    context.configure(
        url=get_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_kwargs(),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations over a short-lived connection."""
    connectable = create_engine(get_url(), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(connection=connection, **_configure_kwargs())

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
