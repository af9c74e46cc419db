from __future__ import annotations

import logging
import uuid
from typing import Iterable

from sqlalchemy import bindparam, delete, desc, func, select, text, update
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tenancy.db.models import Tenant, UserTenant
from tenancy.naming import quote_schema


logger = logging.getLogger("tenancy.store")

DEFAULT_MEMBER_ROLE = "member"


def parse_uuid(value: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(value)
    except (ValueError, TypeError):
        return None


def attach_member_counts(session: Session, tenants: Iterable[Tenant]) -> list[Tenant]:
    """Set ``tenant.members`` from live, non-deleted memberships."""
    rows = list(tenants)
    if not rows:
        return rows

    stmt = (
        select(UserTenant.tenant_id, func.count(UserTenant.id))
        .where(UserTenant.tenant_id.in_([tenant.id for tenant in rows]), UserTenant.deleted_at.is_(None))
        .group_by(UserTenant.tenant_id)
    )
    counts = {tenant_id: int(count) for tenant_id, count in session.execute(stmt).all()}
    for tenant in rows:
        tenant.members = counts.get(tenant.id, 0)
    return rows


def _one_with_members(session: Session, stmt) -> Tenant | None:
    tenant = session.scalar(stmt)
    if tenant is not None:
        attach_member_counts(session, [tenant])
    return tenant


def find_tenant_by_slug(session: Session, slug: str) -> Tenant | None:
    return _one_with_members(session, select(Tenant).where(Tenant.slug == slug))


def find_tenant_by_id(session: Session, tenant_id: uuid.UUID) -> Tenant | None:
    tenant = session.get(Tenant, tenant_id)
    if tenant is not None:
        attach_member_counts(session, [tenant])
    return tenant


def find_tenant_by_company_name(session: Session, company_name: str) -> Tenant | None:
    return _one_with_members(session, select(Tenant).where(Tenant.company_name == company_name))


def find_tenant_by_owner_email(session: Session, owner_email: str) -> Tenant | None:
    return _one_with_members(session, select(Tenant).where(Tenant.owner_email == owner_email))


def slug_exists(session: Session, slug: str) -> bool:
    return session.scalar(select(Tenant.id).where(Tenant.slug == slug)) is not None


def tenant_is_active(session: Session, slug: str) -> bool:
    stmt = select(Tenant.id).where(Tenant.slug == slug, Tenant.is_active.is_(True))
    return session.scalar(stmt) is not None


def list_active_tenants(session: Session) -> list[Tenant]:
    stmt = select(Tenant).where(Tenant.is_active.is_(True)).order_by(Tenant.created_at, Tenant.slug)
    return attach_member_counts(session, session.scalars(stmt).all())


def list_all_tenants(session: Session) -> list[Tenant]:
    stmt = select(Tenant).order_by(desc(Tenant.created_at), Tenant.slug)
    return attach_member_counts(session, session.scalars(stmt).all())


def get_user_role_in_tenant(session: Session, schema_name: str, user_id: uuid.UUID) -> str:
    """Effective role of ``user_id`` inside a tenant schema.

    Any lookup problem (missing schema, missing tables, bad id) degrades to
    ``member``. The query runs in a savepoint so a failed statement does not
    abort the caller's transaction.
    """
    try:
        s = quote_schema(schema_name)
        stmt = text(
            f"SELECT r.name FROM {s}.users u "
            f"JOIN {s}.user_roles ur ON u.id = ur.user_id "
            f"JOIN {s}.roles r ON ur.role_id = r.id "
            "WHERE u.id = :user_id"
        ).bindparams(bindparam("user_id", type_=UUID(as_uuid=True)))
        with session.begin_nested():
            roles = {str(name) for name in session.execute(stmt, {"user_id": user_id}).scalars()}
    except (SQLAlchemyError, ValueError) as exc:
        logger.warning("tenant_role_lookup_failed schema=%s user_id=%s error=%s", schema_name, user_id, exc)
        return DEFAULT_MEMBER_ROLE

    if "owner" in roles:
        return "owner"
    if "admin" in roles:
        return "admin"
    return DEFAULT_MEMBER_ROLE


def list_tenants_owned_or_member_of(session: Session, user_id: uuid.UUID) -> list[Tenant]:
    owned = session.scalars(
        select(Tenant).where(Tenant.owner_id == user_id).order_by(desc(Tenant.created_at))
    ).all()
    via_membership = session.scalars(
        select(Tenant)
        .join(UserTenant, UserTenant.tenant_id == Tenant.id)
        .where(UserTenant.user_id == user_id, Tenant.is_active.is_(True))
    ).all()

    merged: dict[uuid.UUID, Tenant] = {}
    for tenant in [*owned, *via_membership]:
        merged.setdefault(tenant.id, tenant)
    tenants = list(merged.values())

    attach_member_counts(session, tenants)
    for tenant in tenants:
        if tenant.owner_id == user_id:
            tenant.role = "owner"
        else:
            tenant.role = get_user_role_in_tenant(session, tenant.schema_name, user_id)
    return tenants


def insert_tenant(session: Session, tenant: Tenant) -> Tenant:
    session.add(tenant)
    session.flush()
    # Load server-side timestamps while the session is still open.
    session.refresh(tenant)
    return tenant


def update_tenant_owner(session: Session, tenant_id: uuid.UUID, owner_id: uuid.UUID) -> bool:
    result = session.execute(update(Tenant).where(Tenant.id == tenant_id).values(owner_id=owner_id))
    return result.rowcount > 0


def update_tenant_status(session: Session, tenant_id: uuid.UUID, status: str) -> Tenant | None:
    session.execute(update(Tenant).where(Tenant.id == tenant_id).values(status=status))
    tenant = session.get(Tenant, tenant_id, populate_existing=True)
    if tenant is not None:
        attach_member_counts(session, [tenant])
    return tenant


def deactivate_tenant(session: Session, slug: str) -> bool:
    result = session.execute(update(Tenant).where(Tenant.slug == slug).values(is_active=False))
    return result.rowcount > 0


def delete_tenant(session: Session, tenant_id: uuid.UUID) -> bool:
    result = session.execute(delete(Tenant).where(Tenant.id == tenant_id))
    return result.rowcount > 0
