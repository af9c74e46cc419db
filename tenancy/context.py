from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from tenancy.naming import schema_name_for

if TYPE_CHECKING:
    from tenancy.db.models import Tenant


@dataclass(frozen=True)
class TenantContext:
    """Tenant bound to one unit of work.

    Built once when the tenant is resolved and handed explicitly to whatever
    needs it; there is no process-wide "current tenant".
    """

    slug: str
    schema_name: str
    tenant_id: uuid.UUID | None = None
    firebase_tenant_id: str | None = None

    @classmethod
    def from_tenant(cls, tenant: Tenant) -> TenantContext:
        return cls(
            slug=tenant.slug,
            schema_name=schema_name_for(tenant.slug),
            tenant_id=tenant.id,
            firebase_tenant_id=tenant.firebase_tenant_id or None,
        )

    @classmethod
    def for_slug(cls, slug: str) -> TenantContext:
        return cls(slug=slug, schema_name=schema_name_for(slug))
