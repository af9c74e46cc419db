from __future__ import annotations

import logging
import uuid
from typing import Literal

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from tenancy.db.models import Tenant
from tenancy.errors import (
    InvalidSlugError,
    SchemaRebuildNotAllowedError,
    TenancyError,
    TenantConflictError,
    TenantNotFoundError,
)
from tenancy.schema_migrations.runner import MigrationRunner
from tenancy.services.provisioning import CreateTenantInput, ProvisioningService


router = APIRouter(prefix="/_admin", tags=["admin"])
logger = logging.getLogger("tenancy.admin")

_ERROR_STATUS: dict[type[TenancyError], int] = {
    TenantNotFoundError: 404,
    TenantConflictError: 409,
    InvalidSlugError: 400,
    SchemaRebuildNotAllowedError: 403,
}


class CreateTenantRequest(BaseModel):
    company_name: str = Field(min_length=1, max_length=255)
    owner_email: str = Field(min_length=3, max_length=255)
    firebase_tenant_id: str | None = Field(default=None, max_length=128)
    owner_id: uuid.UUID | None = None
    slug: str | None = Field(default=None, max_length=100)
    description: str | None = None
    logo: str | None = None
    region: str | None = Field(default=None, max_length=100)
    default_role: str | None = Field(default=None, max_length=50)
    enforce_domain: bool = False
    domain: str | None = Field(default=None, max_length=255)


class TenantResponse(BaseModel):
    id: str
    slug: str
    company_name: str
    schema_name: str
    status: str
    is_active: bool
    owner_email: str
    owner_id: str | None
    firebase_tenant_id: str | None
    members: int
    role: str | None = None


class SetOwnerRequest(BaseModel):
    owner_id: uuid.UUID


class UpdateStatusRequest(BaseModel):
    status: Literal["pending", "approved", "rejected"]


class TenantMigrationResponse(BaseModel):
    slug: str
    applied: list[int]


class MigrationSweepResponse(BaseModel):
    success: list[str]
    failed: list[str]


class SchemaStatusResponse(BaseModel):
    slug: str
    schema_name: str
    schema_exists: bool
    tables_exist: bool
    is_active: bool


def _tenant_response(tenant: Tenant) -> TenantResponse:
    return TenantResponse(
        id=str(tenant.id),
        slug=tenant.slug,
        company_name=tenant.company_name,
        schema_name=tenant.schema_name,
        status=tenant.status,
        is_active=tenant.is_active,
        owner_email=tenant.owner_email,
        owner_id=str(tenant.owner_id) if tenant.owner_id else None,
        firebase_tenant_id=tenant.firebase_tenant_id,
        members=int(tenant.members or 0),
        role=tenant.role,
    )


def _http_error(exc: TenancyError) -> HTTPException:
    status_code = _ERROR_STATUS.get(type(exc), 400)
    return HTTPException(status_code=status_code, detail=exc.to_dict())


def _provisioning(request: Request) -> ProvisioningService:
    service = getattr(request.app.state, "provisioning_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Database is not enabled")
    return service


def _runner(request: Request) -> MigrationRunner:
    runner = getattr(request.app.state, "migration_runner", None)
    if runner is None:
        raise HTTPException(status_code=503, detail="Database is not enabled")
    return runner


@router.post("/tenants", response_model=TenantResponse)
async def create_tenant_endpoint(request: Request, payload: CreateTenantRequest):
    service = _provisioning(request)
    try:
        tenant = service.create_tenant(CreateTenantInput(**payload.model_dump()))
    except TenancyError as exc:
        logger.warning("admin_create_tenant_rejected code=%s company=%s", exc.code, payload.company_name)
        raise _http_error(exc) from exc
    return _tenant_response(tenant)


@router.put("/tenants/{tenant_id}/owner")
async def set_tenant_owner(request: Request, tenant_id: uuid.UUID, payload: SetOwnerRequest) -> dict[str, str]:
    try:
        _provisioning(request).set_owner(tenant_id, payload.owner_id)
    except TenancyError as exc:
        raise _http_error(exc) from exc
    return {"status": "ok"}


@router.put("/tenants/{tenant_id}/status", response_model=TenantResponse)
async def update_tenant_status(request: Request, tenant_id: uuid.UUID, payload: UpdateStatusRequest):
    try:
        tenant = _provisioning(request).update_status(tenant_id, payload.status)
    except TenancyError as exc:
        raise _http_error(exc) from exc
    return _tenant_response(tenant)


@router.post("/tenants/{slug}/deactivate")
async def deactivate_tenant(request: Request, slug: str) -> dict[str, str]:
    try:
        _provisioning(request).deactivate(slug)
    except TenancyError as exc:
        raise _http_error(exc) from exc
    return {"status": "ok"}


@router.get("/users/{user_id}/tenants", response_model=list[TenantResponse])
async def list_user_tenants(request: Request, user_id: uuid.UUID):
    tenants = _provisioning(request).list_tenants_for_user(user_id)
    return [_tenant_response(tenant) for tenant in tenants]


@router.post("/tenants/{slug}/migrations", response_model=TenantMigrationResponse)
async def run_tenant_migrations(request: Request, slug: str):
    try:
        applied = _runner(request).run_for_tenant(slug)
    except TenancyError as exc:
        raise _http_error(exc) from exc
    return TenantMigrationResponse(slug=slug, applied=applied)


@router.post("/migrations", response_model=MigrationSweepResponse)
async def run_all_migrations(request: Request):
    result = _runner(request).apply_to_all_active_tenants()
    if result.failed:
        logger.warning("admin_migration_sweep_partial failed=%s", ",".join(result.failed))
    return MigrationSweepResponse(success=result.success, failed=result.failed)


@router.get("/migrations/status", response_model=list[SchemaStatusResponse])
async def migration_status(request: Request):
    return [
        SchemaStatusResponse(
            slug=row.slug,
            schema_name=row.schema_name,
            schema_exists=row.schema_exists,
            tables_exist=row.tables_exist,
            is_active=row.is_active,
        )
        for row in _runner(request).status_report()
    ]


@router.post("/tenants/{slug}/rebuild", response_model=TenantMigrationResponse)
async def rebuild_tenant_schema(request: Request, slug: str):
    runner = _runner(request)
    try:
        applied = runner.rebuild_tenant_schema(slug)
    except TenancyError as exc:
        raise _http_error(exc) from exc
    logger.warning("admin_tenant_schema_rebuilt slug=%s", slug)
    return TenantMigrationResponse(slug=slug, applied=applied)
