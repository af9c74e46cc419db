"""Schema-level DDL primitives.

Every function takes an open connection and leaves transaction handling to the
caller, except ``ensure_uuid_extension`` which is best-effort and isolates itself.
Schema names are validated by ``quote_schema`` before being interpolated.
"""
from __future__ import annotations

import logging

from sqlalchemy import inspect, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from tenancy.naming import SCHEMA_PREFIX, quote_schema


logger = logging.getLogger("tenancy.ddl")

UUID_EXTENSION = "uuid-ossp"


def _current_role(conn: Connection) -> str:
    role = conn.execute(text("SELECT current_user")).scalar_one()
    return conn.dialect.identifier_preparer.quote(str(role))


def create_schema_if_missing(conn: Connection, schema: str) -> None:
    quoted = quote_schema(schema)
    conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {quoted}"))

    role = _current_role(conn)
    conn.execute(text(f"GRANT ALL ON SCHEMA {quoted} TO {role}"))
    conn.execute(text(f"GRANT ALL ON ALL TABLES IN SCHEMA {quoted} TO {role}"))
    conn.execute(text(f"GRANT ALL ON ALL SEQUENCES IN SCHEMA {quoted} TO {role}"))
    conn.execute(text(f"ALTER DEFAULT PRIVILEGES IN SCHEMA {quoted} GRANT ALL ON TABLES TO {role}"))
    conn.execute(text(f"ALTER DEFAULT PRIVILEGES IN SCHEMA {quoted} GRANT ALL ON SEQUENCES TO {role}"))
    logger.info("tenant_schema_created schema=%s", schema)


def drop_schema_cascade(conn: Connection, schema: str) -> None:
    """Drop ``schema`` and everything in it. Irreversible."""
    if schema == "public":
        raise ValueError("Cannot drop public schema")
    quoted = quote_schema(schema)
    conn.execute(text(f"DROP SCHEMA IF EXISTS {quoted} CASCADE"))
    logger.warning("tenant_schema_dropped schema=%s", schema)


def schema_exists(conn: Connection, schema: str) -> bool:
    return bool(inspect(conn).has_schema(schema))


def table_exists(conn: Connection, schema: str, table: str) -> bool:
    return bool(inspect(conn).has_table(table, schema=schema))


def list_tenant_schemas(conn: Connection) -> list[str]:
    names = inspect(conn).get_schema_names()
    return sorted(name for name in names if name.startswith(SCHEMA_PREFIX))


def bind_search_path(conn: Connection, schema: str) -> None:
    conn.execute(text(f"SET search_path TO {quote_schema(schema)}"))


def reset_search_path(conn: Connection) -> None:
    conn.execute(text("RESET search_path"))


def ensure_uuid_extension(engine: Engine) -> bool:
    try:
        with engine.begin() as conn:
            conn.execute(text(f'CREATE EXTENSION IF NOT EXISTS "{UUID_EXTENSION}"'))
    except SQLAlchemyError as exc:
        logger.warning("uuid_extension_skipped extension=%s error=%s", UUID_EXTENSION, exc)
        return False
    logger.info("uuid_extension_ready extension=%s", UUID_EXTENSION)
    return True


# Database-wide helpers for operators working in psql. Schema naming mirrors
# tenancy.naming.schema_name_for.
HELPER_ROUTINES = ("create_tenant_schema", "setup_tenant_tables", "onboard_tenant", "delete_tenant_schema")

_HELPER_ROUTINE_SQL = (
    """
    CREATE OR REPLACE FUNCTION create_tenant_schema(tenant_slug VARCHAR)
    RETURNS VOID AS $$
    DECLARE
      schema_name VARCHAR := 'tenant_' || replace(tenant_slug, '-', '_');
    BEGIN
      EXECUTE format('CREATE SCHEMA IF NOT EXISTS %I', schema_name);
      EXECUTE format('GRANT ALL ON SCHEMA %I TO CURRENT_USER', schema_name);
      EXECUTE format('GRANT ALL ON ALL TABLES IN SCHEMA %I TO CURRENT_USER', schema_name);
      EXECUTE format('GRANT ALL ON ALL SEQUENCES IN SCHEMA %I TO CURRENT_USER', schema_name);
    END;
    $$ LANGUAGE plpgsql
    """,
    """
    CREATE OR REPLACE FUNCTION setup_tenant_tables(tenant_slug VARCHAR)
    RETURNS VOID AS $$
    DECLARE
      schema_name VARCHAR := 'tenant_' || replace(tenant_slug, '-', '_');
    BEGIN
      EXECUTE format('SET LOCAL search_path TO %I, public', schema_name);
    END;
    $$ LANGUAGE plpgsql
    """,
    """
    CREATE OR REPLACE FUNCTION onboard_tenant(tenant_slug VARCHAR)
    RETURNS VOID AS $$
    BEGIN
      PERFORM create_tenant_schema(tenant_slug);
      PERFORM setup_tenant_tables(tenant_slug);
    END;
    $$ LANGUAGE plpgsql
    """,
    """
    CREATE OR REPLACE FUNCTION delete_tenant_schema(tenant_slug VARCHAR)
    RETURNS VOID AS $$
    DECLARE
      schema_name VARCHAR := 'tenant_' || replace(tenant_slug, '-', '_');
    BEGIN
      EXECUTE format('DROP SCHEMA IF EXISTS %I CASCADE', schema_name);
    END;
    $$ LANGUAGE plpgsql
    """,
    """
    CREATE OR REPLACE VIEW tenant_schemas AS
    SELECT
      s.schema_name,
      substring(s.schema_name from 8) AS tenant_id,
      pg_size_pretty(
        COALESCE(sum(pg_total_relation_size(quote_ident(t.schemaname) || '.' || quote_ident(t.tablename)))::bigint, 0)
      ) AS total_size
    FROM information_schema.schemata s
    LEFT JOIN pg_tables t ON t.schemaname = s.schema_name
    WHERE s.schema_name LIKE 'tenant\\_%'
    GROUP BY s.schema_name
    ORDER BY s.schema_name
    """,
)


def install_helper_routines(conn: Connection) -> None:
    """Install the tenant helper functions and the ``tenant_schemas`` view.

    Functions are dropped first so parameter renames do not conflict with an
    older installed signature.
    """
    for name in HELPER_ROUTINES:
        conn.execute(text(f"DROP FUNCTION IF EXISTS {name}(character varying)"))
    for statement in _HELPER_ROUTINE_SQL:
        conn.execute(text(statement))
    logger.info("tenant_helper_routines_installed routines=%s", ",".join(HELPER_ROUTINES))
