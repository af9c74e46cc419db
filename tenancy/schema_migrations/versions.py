"""Tenant schema migrations, oldest first.

Versions are millisecond timestamps. New entries go at the end with a larger
version; entries already shipped are never edited or renumbered. Statements are
PostgreSQL and address tables through the schema passed in, never through the
search path.
"""
from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.engine import Connection

from tenancy.naming import quote_schema
from tenancy.schema_migrations.registry import MigrationKind, build_registry, migration


def _run(conn: Connection, *statements: str) -> None:
    for statement in statements:
        conn.execute(text(statement))


def _constraint_exists(conn: Connection, schema: str, table: str, constraint: str) -> bool:
    stmt = text(
        "SELECT EXISTS (SELECT 1 FROM information_schema.table_constraints "
        "WHERE table_schema = :schema AND table_name = :table AND constraint_name = :constraint)"
    )
    return bool(conn.execute(stmt, {"schema": schema, "table": table, "constraint": constraint}).scalar())


@migration(1732233600000, "InitialSchema")
def initial_schema(conn: Connection, schema: str) -> None:
    s = quote_schema(schema)
    _run(
        conn,
        f"""
        CREATE TABLE {s}.roles (
          id UUID NOT NULL DEFAULT uuid_generate_v4(),
          name VARCHAR(50) NOT NULL,
          description TEXT,
          created_at TIMESTAMP NOT NULL DEFAULT now(),
          updated_at TIMESTAMP NOT NULL DEFAULT now(),
          CONSTRAINT "PK_{schema}_roles" PRIMARY KEY (id),
          CONSTRAINT "UQ_{schema}_roles_name" UNIQUE (name)
        )
        """,
        f"""
        CREATE TABLE {s}.users (
          id UUID NOT NULL DEFAULT uuid_generate_v4(),
          first_name VARCHAR(255),
          last_name VARCHAR(255),
          full_name VARCHAR(255),
          company_name VARCHAR(255) NOT NULL,
          email VARCHAR(255) NOT NULL,
          firebase_uid VARCHAR(128) NOT NULL,
          created_at TIMESTAMP NOT NULL DEFAULT now(),
          updated_at TIMESTAMP NOT NULL DEFAULT now(),
          CONSTRAINT "PK_{schema}_users" PRIMARY KEY (id),
          CONSTRAINT "UQ_{schema}_users_email" UNIQUE (email),
          CONSTRAINT "UQ_{schema}_users_firebase_uid" UNIQUE (firebase_uid)
        )
        """,
        f"""
        CREATE TABLE {s}.users_roles_roles (
          user_id UUID NOT NULL REFERENCES {s}.users(id) ON DELETE CASCADE ON UPDATE CASCADE,
          role_id UUID NOT NULL REFERENCES {s}.roles(id) ON DELETE CASCADE ON UPDATE CASCADE,
          CONSTRAINT "PK_{schema}_users_roles" PRIMARY KEY (user_id, role_id)
        )
        """,
        f"""
        CREATE TYPE {s}.invitations_type_enum AS ENUM (
          'tenant_registration', 'collaboration', 'role_assignment',
          'resource_access', 'event_participation', 'document_review'
        )
        """,
        f"CREATE TYPE {s}.invitations_status_enum AS ENUM ('pending', 'accepted', 'expired', 'revoked')",
        f"""
        CREATE TABLE {s}.invitations (
          id UUID NOT NULL DEFAULT uuid_generate_v4(),
          email VARCHAR(255) NOT NULL,
          invited_by UUID NOT NULL,
          type {s}.invitations_type_enum NOT NULL DEFAULT 'tenant_registration',
          role VARCHAR(50) NOT NULL DEFAULT 'member',
          status {s}.invitations_status_enum NOT NULL DEFAULT 'pending',
          token VARCHAR(255) NOT NULL,
          expires_at TIMESTAMP NOT NULL,
          metadata JSONB,
          created_at TIMESTAMP NOT NULL DEFAULT now(),
          updated_at TIMESTAMP NOT NULL DEFAULT now(),
          CONSTRAINT "PK_{schema}_invitations" PRIMARY KEY (id),
          CONSTRAINT "UQ_{schema}_invitations_token" UNIQUE (token)
        )
        """,
        f'CREATE INDEX "IDX_{schema}_users_roles_user_id" ON {s}.users_roles_roles (user_id)',
        f'CREATE INDEX "IDX_{schema}_users_roles_role_id" ON {s}.users_roles_roles (role_id)',
        f'CREATE INDEX "IDX_{schema}_invitations_email" ON {s}.invitations (email)',
        f'CREATE INDEX "IDX_{schema}_invitations_status" ON {s}.invitations (status)',
        f"""
        INSERT INTO {s}.roles (name, description) VALUES
          ('owner', 'Company owner with full administrative access'),
          ('admin', 'Administrator with full access'),
          ('member', 'Regular member with limited access')
        """,
    )


@migration(1763914988652, "CampaignsCreativesAndUserRoles")
def campaigns_creatives_and_user_roles(conn: Connection, schema: str) -> None:
    s = quote_schema(schema)
    _run(
        conn,
        f"ALTER TABLE {s}.roles ADD deleted_at TIMESTAMP",
        f"CREATE TYPE {s}.campaigns_goal_enum AS ENUM ('AWARENESS', 'CONVERSIONS', 'TRAFFIC', 'RETARGET', 'APP_REVENUE')",
        f"CREATE TYPE {s}.campaigns_budget_type_enum AS ENUM ('LIFETIME', 'DAILY')",
        f"""
        CREATE TYPE {s}.campaigns_status_enum AS ENUM (
          'DRAFT', 'PENDING_VERIFICATION', 'VERIFIED', 'ACTIVE', 'PAUSED', 'COMPLETED', 'REJECTED'
        )
        """,
        f"""
        CREATE TABLE {s}.campaigns (
          id UUID NOT NULL DEFAULT uuid_generate_v4(),
          created_at TIMESTAMP NOT NULL DEFAULT now(),
          updated_at TIMESTAMP NOT NULL DEFAULT now(),
          deleted_at TIMESTAMP,
          organization_id UUID NOT NULL,
          name VARCHAR(255) NOT NULL,
          goal {s}.campaigns_goal_enum NOT NULL,
          budget_type {s}.campaigns_budget_type_enum NOT NULL,
          budget_amount NUMERIC(10, 2) NOT NULL,
          start_date TIMESTAMP NOT NULL,
          end_date TIMESTAMP NOT NULL,
          status {s}.campaigns_status_enum NOT NULL DEFAULT 'DRAFT',
          published_at TIMESTAMP,
          CONSTRAINT "PK_{schema}_campaigns" PRIMARY KEY (id)
        )
        """,
        f"""
        CREATE TABLE {s}.creatives (
          id UUID NOT NULL DEFAULT uuid_generate_v4(),
          created_at TIMESTAMP NOT NULL DEFAULT now(),
          updated_at TIMESTAMP NOT NULL DEFAULT now(),
          deleted_at TIMESTAMP,
          organization_id UUID NOT NULL,
          name VARCHAR(255) NOT NULL,
          description TEXT,
          file_name VARCHAR(500) NOT NULL,
          s3_key VARCHAR(500) NOT NULL,
          s3_bucket VARCHAR(255) NOT NULL,
          file_size BIGINT NOT NULL,
          mime_type VARCHAR(100) NOT NULL,
          duration INTEGER,
          thumbnail_s3_key VARCHAR(500),
          CONSTRAINT "PK_{schema}_creatives" PRIMARY KEY (id)
        )
        """,
        f"CREATE TYPE {s}.ad_variations_bidding_strategy_enum AS ENUM ('AUTOMATIC', 'MANUAL_CPM')",
        f"""
        CREATE TABLE {s}.ad_variations (
          id UUID NOT NULL DEFAULT uuid_generate_v4(),
          created_at TIMESTAMP NOT NULL DEFAULT now(),
          updated_at TIMESTAMP NOT NULL DEFAULT now(),
          deleted_at TIMESTAMP,
          organization_id UUID NOT NULL,
          campaign_id UUID NOT NULL,
          name VARCHAR(255) NOT NULL,
          creative_id UUID,
          bidding_strategy {s}.ad_variations_bidding_strategy_enum NOT NULL DEFAULT 'AUTOMATIC',
          cpm_bid NUMERIC(10, 2),
          CONSTRAINT "PK_{schema}_ad_variations" PRIMARY KEY (id),
          CONSTRAINT "FK_{schema}_ad_variations_campaign" FOREIGN KEY (campaign_id) REFERENCES {s}.campaigns(id),
          CONSTRAINT "FK_{schema}_ad_variations_creative" FOREIGN KEY (creative_id) REFERENCES {s}.creatives(id)
        )
        """,
        f"""
        CREATE TABLE {s}.user_roles (
          id UUID NOT NULL DEFAULT uuid_generate_v4(),
          user_id UUID NOT NULL,
          role_id UUID NOT NULL,
          is_active BOOLEAN NOT NULL DEFAULT true,
          created_at TIMESTAMP NOT NULL DEFAULT now(),
          CONSTRAINT "PK_{schema}_user_roles" PRIMARY KEY (id),
          CONSTRAINT "FK_{schema}_user_roles_user" FOREIGN KEY (user_id) REFERENCES {s}.users(id),
          CONSTRAINT "FK_{schema}_user_roles_role" FOREIGN KEY (role_id) REFERENCES {s}.roles(id)
        )
        """,
    )


@migration(1763919549258, "AddOwnerIdToEntities")
def add_owner_id_to_entities(conn: Connection, schema: str) -> None:
    s = quote_schema(schema)
    statements = []
    for table in ("campaigns", "creatives", "ad_variations"):
        statements.append(f"ALTER TABLE {s}.{table} ADD owner_id UUID NOT NULL")
        statements.append(
            f'ALTER TABLE {s}.{table} ADD CONSTRAINT "FK_{schema}_{table}_owner" '
            f"FOREIGN KEY (owner_id) REFERENCES {s}.users(id)"
        )
    _run(conn, *statements)


@migration(1764438816992, "TemplateStoryboardEntities")
def template_storyboard_entities(conn: Connection, schema: str) -> None:
    s = quote_schema(schema)
    _run(
        conn,
        f"""
        CREATE TABLE {s}.templates (
          id UUID NOT NULL DEFAULT uuid_generate_v4(),
          created_at TIMESTAMP NOT NULL DEFAULT now(),
          updated_at TIMESTAMP NOT NULL DEFAULT now(),
          deleted_at TIMESTAMP,
          organization_id UUID NOT NULL,
          name VARCHAR(255) NOT NULL,
          description TEXT,
          orientation VARCHAR(50) NOT NULL,
          theme VARCHAR(100) NOT NULL,
          video_position VARCHAR(50) NOT NULL,
          brand_name VARCHAR(255) NOT NULL,
          price VARCHAR(50) NOT NULL,
          product_name VARCHAR(255) NOT NULL,
          features TEXT[] NOT NULL DEFAULT '{{}}',
          show_qr_code BOOLEAN NOT NULL DEFAULT false,
          qr_code_text VARCHAR(500),
          logo_path VARCHAR(500),
          product_image_path VARCHAR(500),
          video_path VARCHAR(500),
          template_image_path VARCHAR(500),
          owner_id UUID NOT NULL,
          CONSTRAINT "PK_{schema}_templates" PRIMARY KEY (id),
          CONSTRAINT "FK_{schema}_templates_owner" FOREIGN KEY (owner_id) REFERENCES {s}.users(id)
        )
        """,
        _storyboards_table_sql(schema),
    )
    _add_storyboards_owner_fk(conn, schema)


_STORAGE_COLUMNS = ("s3_key", "s3_bucket", "file_size", "mime_type", "duration", "thumbnail_s3_key", "end_duration")

_ASSET_COLUMNS = (
    ("orientation", "VARCHAR(50)"),
    ("theme", "VARCHAR(50)"),
    ("video_position", "VARCHAR(50)"),
    ("brand_name", "VARCHAR(255)"),
    ("price", "VARCHAR(50)"),
    ("product_name", "VARCHAR(255)"),
    ("features", "TEXT[]"),
    ("show_qr_code", "BOOLEAN NOT NULL DEFAULT false"),
    ("qr_code_text", "VARCHAR(500)"),
    ("logo_path", "VARCHAR(500)"),
    ("product_image_path", "VARCHAR(500)"),
    ("video_path", "VARCHAR(500)"),
    ("template_image_path", "VARCHAR(500)"),
    ("campaign_count", "INTEGER NOT NULL DEFAULT 0"),
)


def _reshape_creatives(conn: Connection, schema: str, dropped, added) -> None:
    s = quote_schema(schema)
    _run(
        conn,
        *(f"ALTER TABLE {s}.creatives DROP COLUMN IF EXISTS {column}" for column in dropped),
        *(f"ALTER TABLE {s}.creatives ADD COLUMN IF NOT EXISTS {column} {ddl}" for column, ddl in added),
    )


@migration(1764451387072, "CreativeEntityUpdate")
def creative_entity_update(conn: Connection, schema: str) -> None:
    # Uploaded-file metadata moves to ``filename``; storage columns go away.
    _reshape_creatives(
        conn,
        schema,
        ("file_name", *_STORAGE_COLUMNS),
        (*_ASSET_COLUMNS, ("filename", "VARCHAR(500)")),
    )


@migration(1764457409357, "CreativeAssetFields")
def creative_asset_fields(conn: Connection, schema: str) -> None:
    # Re-applies the asset columns for schemas that skipped the previous step.
    _reshape_creatives(conn, schema, _STORAGE_COLUMNS, _ASSET_COLUMNS)


def _storyboards_table_sql(schema: str) -> str:
    s = quote_schema(schema)
    return f"""
        CREATE TABLE IF NOT EXISTS {s}.storyboards (
          id UUID NOT NULL DEFAULT uuid_generate_v4(),
          created_at TIMESTAMP NOT NULL DEFAULT now(),
          updated_at TIMESTAMP NOT NULL DEFAULT now(),
          deleted_at TIMESTAMP,
          organization_id UUID NOT NULL,
          title VARCHAR(255) NOT NULL,
          duration VARCHAR(50) NOT NULL,
          scenes TEXT NOT NULL,
          scenes_data JSONB NOT NULL DEFAULT '[]',
          video_url VARCHAR(500) NOT NULL,
          owner_id UUID NOT NULL,
          CONSTRAINT "PK_{schema}_storyboards" PRIMARY KEY (id)
        )
        """


def _add_storyboards_owner_fk(conn: Connection, schema: str) -> None:
    constraint = f"FK_{schema}_storyboards_owner"
    if _constraint_exists(conn, schema, "storyboards", constraint):
        return
    s = quote_schema(schema)
    _run(
        conn,
        f'ALTER TABLE {s}.storyboards ADD CONSTRAINT "{constraint}" '
        f"FOREIGN KEY (owner_id) REFERENCES {s}.users(id)",
    )


@migration(1764600000000, "EnsureStoryboardsTable", kind=MigrationKind.ENSURE)
def ensure_storyboards_table(conn: Connection, schema: str) -> None:
    _run(conn, _storyboards_table_sql(schema))
    _add_storyboards_owner_fk(conn, schema)


TENANT_MIGRATIONS = build_registry(
    [
        initial_schema,
        campaigns_creatives_and_user_roles,
        add_owner_id_to_entities,
        template_storyboard_entities,
        creative_entity_update,
        creative_asset_fields,
        ensure_storyboards_table,
    ]
)
