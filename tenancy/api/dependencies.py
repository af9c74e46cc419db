from __future__ import annotations

from typing import Iterator

from fastapi import HTTPException, Request

from tenancy.context import TenantContext
from tenancy.db.router import SchemaConnectionRouter


def get_tenant_context(request: Request) -> TenantContext:
    context = getattr(request.state, "tenant_context", None)
    if context is None:
        raise HTTPException(status_code=400, detail="Tenant context is not resolved")
    return context


def get_schema_router(request: Request) -> Iterator[SchemaConnectionRouter]:
    """Yield a router bound to the request's tenant; released however the request ends."""
    engine = getattr(request.app.state, "db_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Database is not enabled")
    router = SchemaConnectionRouter(engine, get_tenant_context(request))
    try:
        yield router
    finally:
        router.release()
