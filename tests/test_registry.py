from __future__ import annotations

import re

import pytest

from tenancy.schema_migrations.registry import (
    MigrationKind,
    TenantMigration,
    build_registry,
    kind_for_name,
    migration,
    pending_migrations,
)
from tenancy.schema_migrations.versions import TENANT_MIGRATIONS

from conftest import FakeEngine


_CREATIVES_COLUMN_RE = re.compile(
    r'ALTER TABLE "tenant_acme"\.creatives (?P<action>DROP|ADD) COLUMN IF (?:NOT )?EXISTS (?P<column>\w+)'
)


def _noop(conn, schema):
    return None


def test_kind_derived_from_name():
    assert kind_for_name("EnsureStoryboardsTable") is MigrationKind.ENSURE
    assert kind_for_name("InitialSchema") is MigrationKind.ORDINARY


def test_decorator_builds_entry():
    @migration(10, "AddThings")
    def add_things(conn, schema):
        return None

    assert isinstance(add_things, TenantMigration)
    assert add_things.version == 10
    assert not add_things.is_ensure


def test_explicit_kind_wins_over_name():
    entry = migration(11, "RepairIndexes", kind=MigrationKind.ENSURE)(_noop)
    assert entry.is_ensure


def test_build_registry_rejects_reused_version():
    with pytest.raises(ValueError):
        build_registry([TenantMigration(1, "A", _noop), TenantMigration(1, "B", _noop)])


def test_build_registry_rejects_out_of_order_versions():
    with pytest.raises(ValueError):
        build_registry([TenantMigration(2, "A", _noop), TenantMigration(1, "B", _noop)])


def test_pending_migrations_sorted_and_filtered():
    registry = build_registry([TenantMigration(v, f"M{v}", _noop) for v in (1, 2, 3, 4)])
    assert [m.version for m in pending_migrations(registry, [3, 1])] == [2, 4]
    assert pending_migrations(registry, [1, 2, 3, 4]) == []


def test_shipped_registry_is_ordered_and_has_one_ensure_step():
    versions = [m.version for m in TENANT_MIGRATIONS]
    assert versions == sorted(set(versions))
    assert [m.name for m in TENANT_MIGRATIONS if m.is_ensure] == ["EnsureStoryboardsTable"]
    assert TENANT_MIGRATIONS[0].name == "InitialSchema"


def test_shipped_migrations_only_touch_their_schema():
    conn = FakeEngine().connect()
    for entry in TENANT_MIGRATIONS:
        entry.apply(conn, "tenant_acme")

    ddl = [sql for sql in conn.statements if not sql.startswith("SELECT EXISTS")]
    assert ddl
    for sql in ddl:
        assert '"tenant_acme".' in sql
        assert "public." not in sql


def test_initial_schema_seeds_default_roles():
    conn = FakeEngine().connect()
    TENANT_MIGRATIONS[0].apply(conn, "tenant_acme")
    seed = [sql for sql in conn.statements if sql.startswith('INSERT INTO "tenant_acme".roles')]
    assert len(seed) == 1
    for role in ("'owner'", "'admin'", "'member'"):
        assert role in seed[0]


def test_creatives_end_without_legacy_file_columns():
    conn = FakeEngine().connect()
    for entry in TENANT_MIGRATIONS:
        entry.apply(conn, "tenant_acme")

    last_action = {}
    for sql in conn.statements:
        match = _CREATIVES_COLUMN_RE.match(sql)
        if match:
            last_action[match.group("column")] = match.group("action")

    assert last_action["file_name"] == "DROP"
    assert last_action["end_duration"] == "DROP"
    assert last_action["filename"] == "ADD"
    assert last_action["campaign_count"] == "ADD"
