from __future__ import annotations

import uuid
from dataclasses import replace

import pytest
from sqlalchemy import func, select, text

from tenancy.db import access
from tenancy.db.models import Tenant
from tenancy.db.session import session_scope
from tenancy.errors import InvalidSlugError, TenantConflictError, TenantNotFoundError
from tenancy.naming import MAX_SLUG_LENGTH, quote_schema
from tenancy.schema_migrations.registry import TenantMigration, build_registry
from tenancy.schema_migrations.runner import MigrationRunner
from tenancy.services.provisioning import CreateTenantInput, ProvisioningService, resolve_slug


def _create_users(conn, schema):
    conn.execute(text(f"CREATE TABLE {quote_schema(schema)}.users (id INTEGER PRIMARY KEY)"))


def _broken(conn, schema):
    raise RuntimeError("migration exploded")


@pytest.fixture
def service_for(engine, session_factory, settings, sqlite_schemas):
    def _build(*apply_fns):
        migrations = build_registry(
            TenantMigration(100 * (i + 1), f"Step{i}", fn) for i, fn in enumerate(apply_fns or (_create_users,))
        )
        runner = MigrationRunner(engine, session_factory, migrations)
        return ProvisioningService(session_factory, engine, runner, settings)

    return _build


def _count(session_factory) -> int:
    with session_scope(session_factory) as session:
        return int(session.scalar(select(func.count(Tenant.id))))


def _input(**overrides) -> CreateTenantInput:
    values = {"company_name": "Acme", "owner_email": "owner@acme.example"}
    values.update(overrides)
    return CreateTenantInput(**values)


def test_create_tenant_provisions_schema(service_for, engine, sqlite_schemas):
    service = service_for()
    tenant = service.create_tenant(_input(firebase_tenant_id="fb-acme"))

    assert tenant.slug == "acme"
    assert tenant.schema_name == "tenant_acme"
    assert tenant.status == "pending"
    assert tenant.is_active
    assert tenant.created_at is not None
    assert sqlite_schemas == ["tenant_acme"]
    assert service.runner.applied_versions("tenant_acme") == [100]


def test_same_company_twice_gets_suffixed_slug(service_for, session_factory):
    service = service_for()
    first = service.create_tenant(_input())
    second = service.create_tenant(_input())

    assert (first.slug, second.slug) == ("acme", "acme-1")
    assert second.schema_name == "tenant_acme_1"
    assert _count(session_factory) == 2


def test_explicit_slug_conflict_writes_nothing(service_for, session_factory):
    service = service_for()
    service.create_tenant(_input())

    with pytest.raises(TenantConflictError) as exc_info:
        service.create_tenant(_input(company_name="Other", slug="ACME"))
    assert exc_info.value.code == "TENANT_SLUG_EXISTS"
    assert _count(session_factory) == 1


def test_invalid_explicit_slug(service_for, session_factory):
    service = service_for()
    with pytest.raises(InvalidSlugError):
        service.create_tenant(_input(slug="!!!"))
    with pytest.raises(InvalidSlugError):
        service.create_tenant(_input(slug="a" * (MAX_SLUG_LENGTH + 1)))
    assert _count(session_factory) == 0


def test_failed_migration_removes_catalog_row(service_for, session_factory, engine):
    service = service_for(_create_users, _broken)

    with pytest.raises(RuntimeError, match="migration exploded"):
        service.create_tenant(_input())

    assert _count(session_factory) == 0
    # The partially built schema is left in place.
    assert service.runner.schema_exists("tenant_acme")
    assert service.runner.applied_versions("tenant_acme") == [100]


def test_failed_schema_creation_removes_catalog_row(service_for, session_factory, monkeypatch):
    def refuse(conn, schema):
        raise PermissionError("no CREATE on database")

    monkeypatch.setattr("tenancy.db.ddl.create_schema_if_missing", refuse)
    service = service_for()
    with pytest.raises(PermissionError):
        service.create_tenant(_input())
    assert _count(session_factory) == 0


def test_uuid_extension_failure_is_not_fatal(service_for, monkeypatch):
    calls = []

    def unavailable(engine):
        calls.append(engine)
        return False

    monkeypatch.setattr("tenancy.db.ddl.ensure_uuid_extension", unavailable)
    tenant = service_for().create_tenant(_input())
    assert tenant.slug == "acme"
    assert len(calls) == 1


def _insert_competitor(monkeypatch, session_factory, slug):
    original = access.insert_tenant

    def racing_insert(session, tenant):
        with session_scope(session_factory) as other:
            other.add(
                Tenant(
                    slug=slug,
                    company_name="Racer",
                    schema_name=tenant.schema_name,
                    owner_email="racer@example.com",
                )
            )
        return original(session, tenant)

    monkeypatch.setattr(access, "insert_tenant", racing_insert)


def test_insert_race_on_derived_slug_returns_existing(service_for, session_factory, monkeypatch, sqlite_schemas):
    _insert_competitor(monkeypatch, session_factory, "acme")

    tenant = service_for().create_tenant(_input())

    assert tenant.slug == "acme"
    assert tenant.company_name == "Racer"
    assert _count(session_factory) == 1
    assert sqlite_schemas == []


def test_insert_race_on_explicit_slug_conflicts(service_for, session_factory, monkeypatch):
    _insert_competitor(monkeypatch, session_factory, "acme")

    with pytest.raises(TenantConflictError):
        service_for().create_tenant(_input(slug="acme"))
    assert _count(session_factory) == 1


def test_domain_only_kept_when_enforced(service_for):
    service = service_for()
    loose = service.create_tenant(_input(company_name="Loose", domain="Loose.Example"))
    strict = service.create_tenant(_input(company_name="Strict", enforce_domain=True, domain="Strict.Example"))

    assert loose.domain is None
    assert strict.domain == "strict.example"
    assert strict.enforce_domain is True


def test_default_status_follows_settings(engine, session_factory, settings, sqlite_schemas):
    runner = MigrationRunner(engine, session_factory, build_registry([TenantMigration(1, "CreateUsers", _create_users)]))
    service = ProvisioningService(session_factory, engine, runner, replace(settings, default_tenant_status="approved"))
    assert service.create_tenant(_input()).status == "approved"


def test_resolve_slug_picks_smallest_free_suffix(session_factory, add_tenant):
    add_tenant("acme")
    add_tenant("acme-2")
    with session_scope(session_factory) as session:
        assert resolve_slug(session, None, "Acme") == "acme-1"
        assert resolve_slug(session, "Fresh Name", "Acme") == "fresh-name"
        with pytest.raises(InvalidSlugError):
            resolve_slug(session, None, "!!!")


def test_resolve_slug_keeps_suffix_within_cap(session_factory, add_tenant):
    base = "a" * MAX_SLUG_LENGTH
    add_tenant(base)
    with session_scope(session_factory) as session:
        slug = resolve_slug(session, None, "A" * 80)
    assert slug.endswith("-1")
    assert len(slug) <= MAX_SLUG_LENGTH


def test_set_owner(service_for, session_factory):
    service = service_for()
    tenant = service.create_tenant(_input())
    owner_id = uuid.uuid4()

    service.set_owner(tenant.id, owner_id)
    with session_scope(session_factory) as session:
        assert access.find_tenant_by_id(session, tenant.id).owner_id == owner_id

    with pytest.raises(TenantNotFoundError):
        service.set_owner(uuid.uuid4(), owner_id)


def test_update_status_and_deactivate(service_for, session_factory):
    service = service_for()
    tenant = service.create_tenant(_input())

    assert service.update_status(tenant.id, "approved").status == "approved"
    with pytest.raises(ValueError):
        service.update_status(tenant.id, "archived")
    with pytest.raises(TenantNotFoundError):
        service.update_status(uuid.uuid4(), "approved")

    service.deactivate("acme")
    with session_scope(session_factory) as session:
        assert not access.tenant_is_active(session, "acme")
    with pytest.raises(TenantNotFoundError):
        service.deactivate("ghost")
