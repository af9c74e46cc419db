"""Slug and schema-name derivation for tenants.

A tenant's schema name is a pure function of its slug, so any component that
knows the slug can address the schema without touching the catalog.
"""
from __future__ import annotations

import re

SCHEMA_PREFIX = "tenant_"

# PostgreSQL truncates identifiers at 63 bytes; keep room for the prefix and
# for "-<n>" suffixes added while searching for a free slug.
MAX_SLUG_LENGTH = 48

_SCHEMA_NAME_RE = re.compile(r"^[a-z_][a-z0-9_]{0,62}$")
_SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


def generate_slug(name: str) -> str:
    slug = name.lower().strip()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def truncate_slug(slug: str, max_length: int = MAX_SLUG_LENGTH) -> str:
    return slug[:max_length].rstrip("-")


def is_valid_slug(slug: str) -> bool:
    return bool(_SLUG_RE.match(slug)) and len(slug) <= MAX_SLUG_LENGTH


def schema_name_for(slug: str) -> str:
    return f"{SCHEMA_PREFIX}{slug.replace('-', '_')}"


def quote_schema(schema_name: str) -> str:
    """Return ``schema_name`` as a quoted SQL identifier.

    Raises ``ValueError`` for anything that is not a plain lowercase
    identifier, which keeps interpolated DDL safe.
    """
    if not _SCHEMA_NAME_RE.match(schema_name or ""):
        raise ValueError(f"Invalid schema name: {schema_name!r}")
    return f'"{schema_name}"'
