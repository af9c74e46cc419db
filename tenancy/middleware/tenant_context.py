from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from tenancy.config import Settings
from tenancy.context import TenantContext
from tenancy.db.access import find_tenant_by_slug
from tenancy.db.session import session_scope


logger = logging.getLogger("tenancy.middleware")

TENANT_SCOPED_PREFIX = "/_tenant"


def register_tenant_context_middleware(app: FastAPI, settings: Settings) -> None:
    @app.middleware("http")
    async def tenant_context_middleware(request: Request, call_next):
        if not request.url.path.startswith(TENANT_SCOPED_PREFIX) or request.method.upper() == "OPTIONS":
            return await call_next(request)

        slug = (request.headers.get(settings.tenant_header) or "").strip().lower()
        if not slug:
            logger.warning("tenant_context_required_missing path=%s header=%s", request.url.path, settings.tenant_header)
            return JSONResponse(
                status_code=400,
                content={
                    "error": "tenant_context_required",
                    "message": f"Missing required header: {settings.tenant_header}",
                },
            )

        session_factory = getattr(request.app.state, "db_session_factory", None)
        if session_factory is None:
            logger.error("tenant_db_misconfigured path=%s", request.url.path)
            return JSONResponse(
                status_code=500,
                content={
                    "error": "db_misconfigured",
                    "message": "Database session factory is not initialized",
                },
            )

        with session_scope(session_factory) as session:
            tenant = find_tenant_by_slug(session, slug)
            context = TenantContext.from_tenant(tenant) if tenant is not None and tenant.is_active else None

        if context is None:
            logger.warning("tenant_resolve_failed path=%s slug=%s", request.url.path, slug)
            return JSONResponse(
                status_code=404,
                content={
                    "error": "tenant_not_found",
                    "message": f"Tenant {slug} not found",
                },
            )

        request.state.tenant_context = context
        logger.debug("tenant_context_resolved slug=%s schema=%s", context.slug, context.schema_name)

        response = await call_next(request)
        response.headers[settings.tenant_header] = context.slug
        return response
