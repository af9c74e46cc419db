from __future__ import annotations

import uuid
from typing import Callable

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.dialects import postgresql
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tenancy.config import Settings
from tenancy.db import ddl
from tenancy.db.init_db import create_core_tables
from tenancy.db.models import Tenant
from tenancy.db.session import build_session_factory, session_scope
from tenancy.naming import quote_schema, schema_name_for


@pytest.fixture
def engine() -> Engine:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_core_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return build_session_factory(engine)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=None,
        db_pool_size=5,
        db_max_overflow=0,
        db_pool_timeout_seconds=5.0,
        db_auto_create=True,
        app_env="test",
        auto_setup_multitenancy=False,
        tenant_header="x-tenant-slug",
        default_tenant_status="pending",
        allow_schema_rebuild=False,
        admin_api_enabled=True,
        log_level="INFO",
        logs_dir=str(tmp_path / "logs"),
        backend_log_file="tenancy-test.log",
        backend_log_max_bytes=1024 * 1024,
        backend_log_backup_count=1,
    )


def _attach(conn: Connection, schema: str) -> None:
    if not ddl.schema_exists(conn, schema):
        conn.exec_driver_sql(f"ATTACH DATABASE ':memory:' AS {quote_schema(schema)}")


def _detach(conn: Connection, schema: str) -> None:
    if schema == "public":
        raise ValueError("Cannot drop public schema")
    conn.exec_driver_sql(f"DETACH DATABASE {quote_schema(schema)}")


@pytest.fixture
def sqlite_schemas(monkeypatch):
    """Stand in attached in-memory databases for PostgreSQL schemas."""
    created: list[str] = []

    def create_schema_if_missing(conn: Connection, schema: str) -> None:
        _attach(conn, schema)
        created.append(schema)

    monkeypatch.setattr(ddl, "create_schema_if_missing", create_schema_if_missing)
    monkeypatch.setattr(ddl, "drop_schema_cascade", _detach)
    monkeypatch.setattr(ddl, "ensure_uuid_extension", lambda engine: True)
    return created


@pytest.fixture
def make_schema(engine: Engine) -> Callable[[str], str]:
    def _make(schema: str) -> str:
        with engine.connect() as conn:
            _attach(conn, schema)
        return schema

    return _make


@pytest.fixture
def add_tenant(session_factory) -> Callable[..., Tenant]:
    def _add(slug: str, **overrides) -> Tenant:
        values = {
            "slug": slug,
            "company_name": slug.replace("-", " ").title(),
            "schema_name": schema_name_for(slug),
            "owner_email": f"owner@{slug}.example",
            "is_active": True,
            "status": "approved",
        }
        values.update(overrides)
        with session_scope(session_factory) as session:
            tenant = Tenant(**values)
            session.add(tenant)
            session.flush()
            session.refresh(tenant)
        return tenant

    return _add


def create_role_tables(engine: Engine, schema: str) -> None:
    s = quote_schema(schema)
    with engine.begin() as conn:
        conn.execute(text(f"CREATE TABLE {s}.users (id CHAR(32) PRIMARY KEY, email VARCHAR(255))"))
        conn.execute(text(f"CREATE TABLE {s}.roles (id INTEGER PRIMARY KEY, name VARCHAR(50))"))
        conn.execute(text(f"CREATE TABLE {s}.user_roles (id INTEGER PRIMARY KEY, user_id CHAR(32), role_id INTEGER)"))
        conn.execute(text(f"INSERT INTO {s}.roles (id, name) VALUES (1, 'owner'), (2, 'admin'), (3, 'member')"))


def grant_role(engine: Engine, schema: str, user_id: uuid.UUID, role_id: int) -> None:
    s = quote_schema(schema)
    with engine.begin() as conn:
        conn.execute(text(f"INSERT OR IGNORE INTO {s}.users (id, email) VALUES (:id, :email)"), {"id": user_id.hex, "email": "u@x"})
        conn.execute(text(f"INSERT INTO {s}.user_roles (user_id, role_id) VALUES (:user_id, :role_id)"), {"user_id": user_id.hex, "role_id": role_id})


class FakeResult:
    def __init__(self, value=None) -> None:
        self._value = value

    def scalar(self):
        return self._value

    def scalar_one(self):
        return self._value


class FakeConnection:
    """Records SQL and tracks check-in/out against a FakeEngine."""

    dialect = postgresql.dialect()

    def __init__(self, engine: FakeEngine) -> None:
        self._engine = engine
        self.statements: list[str] = []
        self.search_path: str | None = None
        self.closed = False
        self.invalidated = False
        self.commits = 0
        self._in_transaction = False

    def execute(self, statement, parameters=None) -> FakeResult:
        sql = " ".join(str(statement).split())
        self.statements.append(sql)
        # Autobegin, as a real Connection does.
        self._in_transaction = True
        if sql.startswith("RESET search_path"):
            if self._engine.fail_reset:
                raise OperationalError(sql, {}, Exception("server closed the connection"))
            self.search_path = None
        elif sql.startswith("SET search_path TO "):
            self.search_path = sql[len("SET search_path TO "):].strip('"')
        elif sql == "SELECT current_schema()":
            return FakeResult(self.search_path or "public")
        elif sql == "SELECT current_user":
            return FakeResult("app_user")
        return FakeResult(False)

    def in_transaction(self) -> bool:
        return self._in_transaction

    def rollback(self) -> None:
        self._in_transaction = False

    def commit(self) -> None:
        if self._in_transaction:
            self.commits += 1
        self._in_transaction = False

    def invalidate(self) -> None:
        self.invalidated = True

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._engine.checked_out -= 1


class FakeEngine:
    def __init__(self) -> None:
        self.connections: list[FakeConnection] = []
        self.checked_out = 0
        self.fail_reset = False

    def connect(self) -> FakeConnection:
        conn = FakeConnection(self)
        self.connections.append(conn)
        self.checked_out += 1
        return conn


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def role_tables(engine: Engine):
    class _RoleTables:
        def create(self, schema: str) -> None:
            create_role_tables(engine, schema)

        def grant(self, schema: str, user_id: uuid.UUID, role_id: int) -> None:
            grant_role(engine, schema, user_id, role_id)

    return _RoleTables()
