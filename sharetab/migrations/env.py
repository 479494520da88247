"""
sharetab/migrations/env.py — Alembic environment.

The database URL is resolved the same way the app resolves it, through
sharetab.config (which loads .env): DATABASE_URL, or TEST_DATABASE_URL when
TEST_RUN is set. SQLite targets are migrated in batch mode so ALTERs work.
"""

from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from sharetab.config import env_str, normalize_database_url
from sharetab.app.extensions import db
from sharetab.app.models import (  # noqa: F401
    expense,
    expense_share,
    friendship,
    group,
    group_member,
    manual_friend,
    refresh_token,
    user,
)

_url_var = "TEST_DATABASE_URL" if os.getenv("TEST_RUN") else "DATABASE_URL"
database_url = normalize_database_url(env_str(_url_var, default=""))
if not database_url:
    raise RuntimeError(f"{_url_var} must be set to run migrations.")

config = context.config
config.set_main_option("sqlalchemy.url", database_url)
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

_common_options = {
    "target_metadata": db.metadata,
    "compare_type": True,
    "render_as_batch": database_url.startswith("sqlite"),
}


def run_migrations_offline() -> None:
    """Emit SQL to stdout instead of connecting."""
    context.configure(
        url=database_url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_common_options,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with engine.connect() as connection:
        context.configure(connection=connection, **_common_options)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
