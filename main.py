from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from sqlalchemy.engine import Engine

from tenancy.api.admin import router as admin_router
from tenancy.api.tenant import router as tenant_router
from tenancy.config import Settings, load_settings
from tenancy.db.init_db import create_core_tables, setup_multitenancy
from tenancy.db.session import build_engine, build_session_factory
from tenancy.logging_setup import setup_backend_logging
from tenancy.middleware.tenant_context import register_tenant_context_middleware
from tenancy.schema_migrations.runner import MigrationRunner
from tenancy.services.provisioning import ProvisioningService


load_dotenv()

logger = logging.getLogger("tenancy")


def _request_id(request: Request) -> str:
    incoming = request.headers.get("x-request-id")
    if incoming:
        return incoming
    return uuid.uuid4().hex


def create_app(settings: Settings | None = None, engine: Engine | None = None) -> FastAPI:
    """Build the service. Run with ``uvicorn main:create_app --factory``."""
    settings = settings or load_settings()
    setup_backend_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owns_engine = engine is None
        db_engine = engine
        if db_engine is None and settings.database_url:
            db_engine = build_engine(settings)

        if db_engine is not None:
            if settings.auto_setup_multitenancy:
                setup_multitenancy(db_engine, settings)
            if settings.db_auto_create:
                create_core_tables(db_engine)
            session_factory = build_session_factory(db_engine)
            runner = MigrationRunner(db_engine, session_factory, allow_rebuild=settings.allow_schema_rebuild)
            app.state.db_engine = db_engine
            app.state.db_session_factory = session_factory
            app.state.migration_runner = runner
            app.state.provisioning_service = ProvisioningService(session_factory, db_engine, runner, settings)
        else:
            logger.warning("database_disabled reason=DATABASE_URL_missing")
            app.state.db_engine = None
            app.state.db_session_factory = None
            app.state.migration_runner = None
            app.state.provisioning_service = None

        try:
            yield
        finally:
            if owns_engine and db_engine is not None:
                db_engine.dispose()

    app = FastAPI(
        title="Tenant Schema Service",
        version="0.1.0",
        lifespan=lifespan,
    )
    if settings.admin_api_enabled:
        app.include_router(admin_router)
    app.include_router(tenant_router)

    register_tenant_context_middleware(app, settings)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        started = time.perf_counter()
        request_id = _request_id(request)
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        except Exception:
            elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
            logger.exception(
                "request_failed request_id=%s method=%s path=%s duration_ms=%s",
                request_id,
                request.method,
                request.url.path,
                elapsed_ms,
            )
            raise

        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        response.headers["x-request-id"] = request_id
        logger.info(
            "request_completed request_id=%s method=%s path=%s status=%s duration_ms=%s",
            request_id,
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )
        return response

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app
