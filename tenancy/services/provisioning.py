from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from tenancy.config import Settings
from tenancy.db import access, ddl
from tenancy.db.models import TENANT_STATUSES, Tenant
from tenancy.db.session import session_scope
from tenancy.errors import InvalidSlugError, TenantConflictError, TenantNotFoundError
from tenancy.naming import MAX_SLUG_LENGTH, generate_slug, is_valid_slug, schema_name_for, truncate_slug
from tenancy.schema_migrations.runner import MigrationRunner


logger = logging.getLogger("tenancy.provisioning")


@dataclass(frozen=True)
class CreateTenantInput:
    company_name: str
    owner_email: str
    firebase_tenant_id: str | None = None
    owner_id: uuid.UUID | None = None
    slug: str | None = None
    description: str | None = None
    logo: str | None = None
    region: str | None = None
    default_role: str | None = None
    enforce_domain: bool = False
    domain: str | None = None


def resolve_slug(session: Session, requested: str | None, fallback_name: str) -> str:
    """Pick the slug for a new tenant.

    An explicit slug is sanitized and must be free; it is never suffixed.
    Otherwise the slug is derived from ``fallback_name`` and the smallest free
    ``-<n>`` suffix is appended. The check is advisory: the unique constraint
    on insert decides.
    """
    if requested:
        slug = generate_slug(requested)
        if not slug or not is_valid_slug(slug):
            raise InvalidSlugError("Provided slug is invalid. Use only letters, numbers, and hyphens.")
        if access.slug_exists(session, slug):
            raise TenantConflictError(f"Slug {slug} is already in use")
        return slug

    base = truncate_slug(generate_slug(fallback_name))
    if not base:
        raise InvalidSlugError(f"Cannot derive a slug from {fallback_name!r}")

    slug = base
    counter = 1
    while access.slug_exists(session, slug):
        suffix = f"-{counter}"
        slug = f"{truncate_slug(base, MAX_SLUG_LENGTH - len(suffix))}{suffix}"
        counter += 1
    return slug


class ProvisioningService:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        engine: Engine,
        runner: MigrationRunner,
        settings: Settings,
    ) -> None:
        self._session_factory = session_factory
        self._engine = engine
        self._runner = runner
        self._settings = settings

    @property
    def runner(self) -> MigrationRunner:
        return self._runner

    def create_tenant(self, data: CreateTenantInput) -> Tenant:
        with session_scope(self._session_factory) as session:
            slug = resolve_slug(session, data.slug, data.company_name)
            existing = access.find_tenant_by_slug(session, slug)
            if existing is not None:
                if data.slug:
                    raise TenantConflictError(f"Slug {slug} is already in use")
                logger.warning("tenant_already_exists slug=%s", slug)
                return existing

        schema_name = schema_name_for(slug)
        logger.info("tenant_create_started slug=%s schema=%s company=%s", slug, schema_name, data.company_name)

        tenant = self._build_tenant(data, slug, schema_name)
        try:
            with session_scope(self._session_factory) as session:
                access.insert_tenant(session, tenant)
        except IntegrityError as exc:
            return self._resolve_insert_conflict(data, slug, exc)

        ddl.ensure_uuid_extension(self._engine)
        try:
            with self._engine.begin() as conn:
                ddl.create_schema_if_missing(conn, schema_name)
            self._runner.apply_to(schema_name)
        except Exception:
            logger.exception("tenant_provisioning_failed slug=%s schema=%s", slug, schema_name)
            self._remove_catalog_row(tenant)
            raise

        logger.info("tenant_created slug=%s schema=%s tenant_id=%s", slug, schema_name, tenant.id)
        return tenant

    def _build_tenant(self, data: CreateTenantInput, slug: str, schema_name: str) -> Tenant:
        return Tenant(
            slug=slug,
            company_name=data.company_name,
            schema_name=schema_name,
            owner_email=data.owner_email,
            firebase_tenant_id=data.firebase_tenant_id or None,
            owner_id=data.owner_id,
            is_active=True,
            status=self._settings.default_tenant_status,
            description=data.description or None,
            logo=data.logo or None,
            region=data.region or None,
            default_role=data.default_role or None,
            enforce_domain=bool(data.enforce_domain),
            domain=data.domain.lower() if data.enforce_domain and data.domain else None,
        )

    def _resolve_insert_conflict(self, data: CreateTenantInput, slug: str, exc: IntegrityError) -> Tenant:
        if data.slug:
            raise TenantConflictError(f"Slug {slug} is already in use") from exc
        with session_scope(self._session_factory) as session:
            existing = access.find_tenant_by_slug(session, slug)
        if existing is None:
            raise TenantConflictError(
                f"Tenant {slug} conflicts with an existing tenant",
                code="TENANT_CONFLICT",
            ) from exc
        logger.warning("tenant_create_race_resolved slug=%s tenant_id=%s", slug, existing.id)
        return existing

    def _remove_catalog_row(self, tenant: Tenant) -> None:
        try:
            with session_scope(self._session_factory) as session:
                access.delete_tenant(session, tenant.id)
        except SQLAlchemyError:
            logger.exception("tenant_rollback_failed slug=%s tenant_id=%s", tenant.slug, tenant.id)
            return
        logger.warning("tenant_rolled_back slug=%s schema=%s", tenant.slug, tenant.schema_name)

    def set_owner(self, tenant_id: uuid.UUID, owner_id: uuid.UUID) -> None:
        with session_scope(self._session_factory) as session:
            if not access.update_tenant_owner(session, tenant_id, owner_id):
                raise TenantNotFoundError(f"Tenant with ID {tenant_id} not found")
        logger.info("tenant_owner_set tenant_id=%s owner_id=%s", tenant_id, owner_id)

    def update_status(self, tenant_id: uuid.UUID, status: str) -> Tenant:
        if status not in TENANT_STATUSES:
            raise ValueError(f"Unsupported tenant status: {status}")
        with session_scope(self._session_factory) as session:
            tenant = access.update_tenant_status(session, tenant_id, status)
            if tenant is None:
                raise TenantNotFoundError(f"Tenant with ID {tenant_id} not found")
        logger.info("tenant_status_updated tenant_id=%s status=%s", tenant_id, status)
        return tenant

    def deactivate(self, slug: str) -> None:
        with session_scope(self._session_factory) as session:
            if not access.deactivate_tenant(session, slug):
                raise TenantNotFoundError(f"Tenant {slug!r} not found")
        logger.info("tenant_deactivated slug=%s", slug)

    def list_tenants_for_user(self, user_id: uuid.UUID) -> list[Tenant]:
        with session_scope(self._session_factory) as session:
            return access.list_tenants_owned_or_member_of(session, user_id)
