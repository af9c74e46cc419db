"""Apply, track and rebuild tenant schema migrations.

Each tenant schema is migrated independently. For a single schema, pending
ordinary migrations run in ascending version order, each applied and recorded
in its own transaction; the first failure stops that schema and propagates.
Ensure migrations are then re-run on every call and never fail the caller.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import Session, sessionmaker

from tenancy.db import access, ddl
from tenancy.db.session import session_scope
from tenancy.errors import SchemaRebuildNotAllowedError, TenantNotFoundError
from tenancy.schema_migrations import registry
from tenancy.schema_migrations.registry import TenantMigration
from tenancy.schema_migrations.versions import TENANT_MIGRATIONS


logger = logging.getLogger("tenancy.migrations")

# Table every fully migrated tenant schema has; used as a liveness probe.
BASE_TABLE = "users"

REBUILD_ALL_CONFIRMATION = "REBUILD-ALL-TENANT-SCHEMAS"


@dataclass
class MigrationSweepResult:
    success: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass(frozen=True)
class TenantSchemaStatus:
    slug: str
    schema_name: str
    schema_exists: bool
    tables_exist: bool
    is_active: bool


class MigrationRunner:
    def __init__(
        self,
        engine: Engine,
        session_factory: sessionmaker[Session],
        migrations: Sequence[TenantMigration] = TENANT_MIGRATIONS,
        *,
        allow_rebuild: bool = False,
        base_table: str = BASE_TABLE,
    ) -> None:
        self._engine = engine
        self._session_factory = session_factory
        self._migrations = tuple(migrations)
        self._allow_rebuild = allow_rebuild
        self._base_table = base_table

    @property
    def migrations(self) -> tuple[TenantMigration, ...]:
        return self._migrations

    def schema_exists(self, schema: str) -> bool:
        with self._engine.connect() as conn:
            return ddl.schema_exists(conn, schema)

    def applied_versions(self, schema: str) -> list[int]:
        with self._engine.connect() as conn:
            return registry.applied_versions(conn, schema)

    def pending(self, schema: str) -> list[TenantMigration]:
        return registry.pending_migrations(self._migrations, self.applied_versions(schema))

    def apply_to(self, schema: str) -> list[int]:
        """Bring ``schema`` up to date and return the versions recorded by this call."""
        newly_applied: list[int] = []
        with self._engine.connect() as conn:
            with conn.begin():
                registry.ensure_tracking_table(conn, schema)
            with conn.begin():
                applied = set(registry.applied_versions(conn, schema))

            for entry in registry.pending_migrations(self._migrations, applied):
                if entry.is_ensure:
                    continue
                self._apply_one(conn, schema, entry)
                applied.add(entry.version)
                newly_applied.append(entry.version)

            for entry in self._migrations:
                if not entry.is_ensure:
                    continue
                if self._apply_ensure(conn, schema, entry, recorded=entry.version in applied):
                    applied.add(entry.version)
                    newly_applied.append(entry.version)

        if newly_applied:
            logger.info("tenant_schema_migrated schema=%s applied=%s", schema, len(newly_applied))
        else:
            logger.debug("tenant_schema_up_to_date schema=%s", schema)
        return newly_applied

    def _apply_one(self, conn: Connection, schema: str, entry: TenantMigration) -> None:
        logger.info("tenant_migration_applying schema=%s version=%s name=%s", schema, entry.version, entry.name)
        try:
            with conn.begin():
                entry.apply(conn, schema)
                registry.record_migration(conn, schema, entry)
        except Exception:
            logger.exception("tenant_migration_failed schema=%s version=%s name=%s", schema, entry.version, entry.name)
            raise
        logger.info("tenant_migration_applied schema=%s version=%s name=%s", schema, entry.version, entry.name)

    def _apply_ensure(self, conn: Connection, schema: str, entry: TenantMigration, *, recorded: bool) -> bool:
        """Run an ensure migration; returns True when it was recorded by this call."""
        try:
            with conn.begin():
                entry.apply(conn, schema)
                if not recorded:
                    registry.record_migration(conn, schema, entry)
        except Exception as exc:
            logger.warning(
                "tenant_ensure_migration_failed schema=%s version=%s name=%s error=%s",
                schema,
                entry.version,
                entry.name,
                exc,
            )
            return False
        logger.debug("tenant_ensure_migration_ok schema=%s name=%s", schema, entry.name)
        return not recorded

    def _schema_for_slug(self, slug: str) -> str:
        with session_scope(self._session_factory) as session:
            tenant = access.find_tenant_by_slug(session, slug)
            if tenant is None:
                raise TenantNotFoundError(f"Tenant {slug!r} not found")
            return tenant.schema_name

    def run_for_tenant(self, slug: str) -> list[int]:
        schema = self._schema_for_slug(slug)
        if not self.schema_exists(schema):
            logger.warning("tenant_schema_missing slug=%s schema=%s", slug, schema)
            return []
        return self.apply_to(schema)

    def apply_to_all_active_tenants(self) -> MigrationSweepResult:
        with session_scope(self._session_factory) as session:
            targets = [(tenant.slug, tenant.schema_name) for tenant in access.list_active_tenants(session)]

        logger.info("tenant_migration_sweep_started tenants=%s", len(targets))
        result = MigrationSweepResult()
        for slug, schema in targets:
            try:
                self.apply_to(schema)
            except Exception as exc:
                logger.error("tenant_migration_sweep_failed slug=%s schema=%s error=%s", slug, schema, exc)
                result.failed.append(slug)
                continue
            result.success.append(slug)

        logger.info(
            "tenant_migration_sweep_finished success=%s failed=%s",
            len(result.success),
            len(result.failed),
        )
        return result

    def rebuild(self, schema: str) -> list[int]:
        """Drop ``schema`` and rebuild it from the full registry. Destroys tenant data."""
        logger.warning("tenant_schema_rebuild_started schema=%s", schema)
        with self._engine.connect() as conn:
            with conn.begin():
                if ddl.schema_exists(conn, schema):
                    ddl.drop_schema_cascade(conn, schema)
                ddl.create_schema_if_missing(conn, schema)
                registry.ensure_tracking_table(conn, schema)

            for entry in self._migrations:
                self._apply_one(conn, schema, entry)

        logger.warning("tenant_schema_rebuild_finished schema=%s migrations=%s", schema, len(self._migrations))
        return [entry.version for entry in self._migrations]

    def _check_rebuild_allowed(self) -> None:
        if not self._allow_rebuild:
            raise SchemaRebuildNotAllowedError("Schema rebuild is disabled; set ALLOW_SCHEMA_REBUILD=true")

    def rebuild_tenant_schema(self, slug: str) -> list[int]:
        self._check_rebuild_allowed()
        return self.rebuild(self._schema_for_slug(slug))

    def rebuild_all_tenant_schemas(self, *, confirm: str | None = None) -> MigrationSweepResult:
        self._check_rebuild_allowed()
        if confirm != REBUILD_ALL_CONFIRMATION:
            raise SchemaRebuildNotAllowedError(
                f"Rebuilding every tenant schema requires confirm={REBUILD_ALL_CONFIRMATION!r}"
            )

        with session_scope(self._session_factory) as session:
            targets = [(tenant.slug, tenant.schema_name) for tenant in access.list_all_tenants(session)]

        result = MigrationSweepResult()
        for slug, schema in targets:
            try:
                self.rebuild(schema)
            except Exception as exc:
                logger.error("tenant_schema_rebuild_failed slug=%s schema=%s error=%s", slug, schema, exc)
                result.failed.append(slug)
                continue
            result.success.append(slug)
        return result

    def status_report(self) -> list[TenantSchemaStatus]:
        with session_scope(self._session_factory) as session:
            tenants = [
                (tenant.slug, tenant.schema_name, tenant.is_active) for tenant in access.list_all_tenants(session)
            ]

        report: list[TenantSchemaStatus] = []
        with self._engine.connect() as conn:
            for slug, schema, is_active in tenants:
                exists = ddl.schema_exists(conn, schema)
                report.append(
                    TenantSchemaStatus(
                        slug=slug,
                        schema_name=schema,
                        schema_exists=exists,
                        tables_exist=exists and ddl.table_exists(conn, schema, self._base_table),
                        is_active=is_active,
                    )
                )
        return report
