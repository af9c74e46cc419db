from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    database_url: str | None
    db_pool_size: int
    db_max_overflow: int
    db_pool_timeout_seconds: float
    db_auto_create: bool
    app_env: str
    auto_setup_multitenancy: bool
    tenant_header: str
    default_tenant_status: str
    allow_schema_rebuild: bool
    admin_api_enabled: bool
    log_level: str
    logs_dir: str
    backend_log_file: str
    backend_log_max_bytes: int
    backend_log_backup_count: int

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


def _as_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_choice(value: str | None, allowed: set[str], default: str) -> str:
    if value is None:
        return default
    normalized = value.strip().lower()
    return normalized if normalized in allowed else default


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL") or None,
        db_pool_size=max(1, int(os.getenv("DB_POOL_SIZE", "10"))),
        db_max_overflow=max(0, int(os.getenv("DB_MAX_OVERFLOW", "10"))),
        db_pool_timeout_seconds=float(os.getenv("DB_POOL_TIMEOUT_SECONDS", "30")),
        db_auto_create=_as_bool(os.getenv("DB_AUTO_CREATE", "false")),
        app_env=_as_choice(os.getenv("APP_ENV"), {"development", "test", "production"}, "development"),
        auto_setup_multitenancy=_as_bool(os.getenv("AUTO_SETUP_MULTITENANCY"), default=True),
        tenant_header=(os.getenv("TENANT_HEADER", "x-tenant-slug").strip().lower() or "x-tenant-slug"),
        default_tenant_status=_as_choice(os.getenv("DEFAULT_TENANT_STATUS"), {"pending", "approved"}, "pending"),
        allow_schema_rebuild=_as_bool(os.getenv("ALLOW_SCHEMA_REBUILD", "false")),
        admin_api_enabled=_as_bool(os.getenv("ADMIN_API_ENABLED", "true")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        logs_dir=os.getenv("LOGS_DIR", "logs"),
        backend_log_file=os.getenv("BACKEND_LOG_FILE", "tenancy.log"),
        backend_log_max_bytes=max(1024 * 1024, int(os.getenv("BACKEND_LOG_MAX_BYTES", str(10 * 1024 * 1024)))),
        backend_log_backup_count=max(1, int(os.getenv("BACKEND_LOG_BACKUP_COUNT", "5"))),
    )
