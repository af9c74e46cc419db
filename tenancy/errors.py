from __future__ import annotations


class TenancyError(Exception):
    code = "TENANCY_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class TenantNotFoundError(TenancyError):
    code = "TENANT_NOT_FOUND"


class TenantConflictError(TenancyError):
    """Requested slug or company is already taken; nothing was written."""

    code = "TENANT_SLUG_EXISTS"


class InvalidSlugError(TenancyError):
    code = "INVALID_SLUG"


class SchemaRebuildNotAllowedError(TenancyError):
    code = "SCHEMA_REBUILD_NOT_ALLOWED"
