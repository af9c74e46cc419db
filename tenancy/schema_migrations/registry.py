from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence

from sqlalchemy import text
from sqlalchemy.engine import Connection

from tenancy.db import ddl
from tenancy.naming import quote_schema


logger = logging.getLogger("tenancy.migrations")

TRACKING_TABLE = "tenant_migrations"


class MigrationKind(str, enum.Enum):
    ORDINARY = "ordinary"
    # Idempotent repair step, re-run on every apply regardless of history.
    ENSURE = "ensure"


ApplyFn = Callable[[Connection, str], None]


@dataclass(frozen=True)
class TenantMigration:
    version: int
    name: str
    apply: ApplyFn
    kind: MigrationKind = MigrationKind.ORDINARY

    @property
    def is_ensure(self) -> bool:
        return self.kind is MigrationKind.ENSURE


def kind_for_name(name: str) -> MigrationKind:
    return MigrationKind.ENSURE if name.startswith("Ensure") else MigrationKind.ORDINARY


def migration(version: int, name: str, kind: MigrationKind | None = None) -> Callable[[ApplyFn], TenantMigration]:
    """Decorator turning an ``apply(conn, schema)`` function into a registry entry."""

    def decorator(fn: ApplyFn) -> TenantMigration:
        return TenantMigration(version=version, name=name, apply=fn, kind=kind or kind_for_name(name))

    return decorator


def build_registry(entries: Iterable[TenantMigration]) -> tuple[TenantMigration, ...]:
    """Freeze ``entries`` into an ordered registry.

    Versions must be strictly increasing in declaration order; a reused or
    out-of-order version is a programming error and fails at import time.
    """
    registry = tuple(entries)
    previous: TenantMigration | None = None
    for entry in registry:
        if previous is not None and entry.version <= previous.version:
            raise ValueError(
                f"Migration {entry.version} ({entry.name}) must come after "
                f"{previous.version} ({previous.name})"
            )
        previous = entry
    return registry


def ensure_tracking_table(conn: Connection, schema: str) -> None:
    conn.execute(
        text(
            f"""
            CREATE TABLE IF NOT EXISTS {quote_schema(schema)}.{TRACKING_TABLE} (
              version BIGINT PRIMARY KEY,
              name VARCHAR(255) NOT NULL,
              applied_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
    )


def applied_versions(conn: Connection, schema: str) -> list[int]:
    if not ddl.table_exists(conn, schema, TRACKING_TABLE):
        return []
    rows = conn.execute(
        text(f"SELECT version FROM {quote_schema(schema)}.{TRACKING_TABLE} ORDER BY version ASC")
    ).scalars()
    return [int(version) for version in rows]


def applied_records(conn: Connection, schema: str) -> list[tuple[int, str]]:
    if not ddl.table_exists(conn, schema, TRACKING_TABLE):
        return []
    rows = conn.execute(
        text(f"SELECT version, name FROM {quote_schema(schema)}.{TRACKING_TABLE} ORDER BY version ASC")
    ).all()
    return [(int(version), str(name)) for version, name in rows]


def record_migration(conn: Connection, schema: str, entry: TenantMigration) -> None:
    conn.execute(
        text(
            f"INSERT INTO {quote_schema(schema)}.{TRACKING_TABLE} (version, name) "
            "VALUES (:version, :name) ON CONFLICT (version) DO NOTHING"
        ),
        {"version": entry.version, "name": entry.name},
    )


def pending_migrations(registry: Sequence[TenantMigration], applied: Iterable[int]) -> list[TenantMigration]:
    done = set(applied)
    return sorted((entry for entry in registry if entry.version not in done), key=lambda entry: entry.version)
