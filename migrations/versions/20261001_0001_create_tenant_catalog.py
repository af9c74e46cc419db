from __future__ import annotations

from alembic import op


revision = "20261001_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS tenants (
          id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
          slug VARCHAR(100) NOT NULL,
          company_name VARCHAR(255) NOT NULL,
          schema_name VARCHAR(100) NOT NULL,
          is_active BOOLEAN NOT NULL DEFAULT true,
          status VARCHAR(32) NOT NULL DEFAULT 'pending',
          owner_email VARCHAR(255) NOT NULL,
          owner_id UUID,
          created_by VARCHAR(255),
          members_count INTEGER NOT NULL DEFAULT 0,
          description TEXT,
          logo TEXT,
          region VARCHAR(100),
          default_role VARCHAR(50),
          enforce_domain BOOLEAN NOT NULL DEFAULT false,
          domain VARCHAR(255),
          firebase_tenant_id VARCHAR(128),
          created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
          updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
          CONSTRAINT ck_tenants_status CHECK (status IN ('pending', 'approved', 'rejected'))
        )
        """
    )
    op.execute("CREATE UNIQUE INDEX IF NOT EXISTS uq_tenants_slug ON tenants(slug)")
    op.execute("CREATE UNIQUE INDEX IF NOT EXISTS uq_tenants_schema_name ON tenants(schema_name)")
    op.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS uq_tenants_firebase_tenant_id "
        "ON tenants(firebase_tenant_id) WHERE firebase_tenant_id IS NOT NULL"
    )
    op.execute("CREATE INDEX IF NOT EXISTS ix_tenants_owner_id ON tenants(owner_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_tenants_is_active ON tenants(is_active)")

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS user_tenant (
          id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
          email VARCHAR(255) NOT NULL,
          user_id UUID NOT NULL,
          tenant_id UUID NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
          created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
          updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
          deleted_at TIMESTAMPTZ,
          CONSTRAINT uq_user_tenant_user_tenant UNIQUE (user_id, tenant_id)
        )
        """
    )
    op.execute("CREATE INDEX IF NOT EXISTS ix_user_tenant_tenant_id ON user_tenant(tenant_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_user_tenant_user_id ON user_tenant(user_id)")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS user_tenant")
    op.execute("DROP TABLE IF EXISTS tenants")
