from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text

from tenancy.db.router import SchemaConnectionRouter
from tenancy.api.dependencies import get_schema_router


router = APIRouter(prefix="/_tenant", tags=["tenant"])


@router.get("/whoami")
async def whoami(schema_router: SchemaConnectionRouter = Depends(get_schema_router)) -> dict[str, str]:
    conn = schema_router.connection()
    current_schema = conn.execute(text("SELECT current_schema()")).scalar_one()
    context = schema_router.context
    return {
        "slug": context.slug,
        "schema_name": context.schema_name,
        "current_schema": str(current_schema),
    }
