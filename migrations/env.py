"""Alembic environment for the shared tenant catalog.

Only the default schema is managed here. Tenant schemas are versioned by
``tenancy.schema_migrations`` and are excluded from autogenerate.
"""
from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from tenancy.db import models  # noqa: F401
from tenancy.db.base import Base
from tenancy.naming import SCHEMA_PREFIX


config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

CATALOG_SCHEMA = os.getenv("CATALOG_SCHEMA", "public")
VERSION_TABLE = "alembic_version_catalog"

target_metadata = Base.metadata


def _database_url() -> str:
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL is required for Alembic migrations")
    return database_url


def include_name(name, type_, parent_names) -> bool:
    if type_ == "schema":
        return not (name or "").startswith(SCHEMA_PREFIX)
    return True


def run_migrations_offline() -> None:
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        version_table=VERSION_TABLE,
        version_table_schema=CATALOG_SCHEMA,
        include_schemas=True,
        include_name=include_name,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    section = config.get_section(config.config_ini_section) or {}
    section["sqlalchemy.url"] = _database_url()

    connectable = engine_from_config(
        section,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            version_table=VERSION_TABLE,
            version_table_schema=CATALOG_SCHEMA,
            include_schemas=True,
            include_name=include_name,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
