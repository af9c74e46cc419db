"""Per-unit-of-work connection bound to one tenant schema.

A router checks out at most one pooled connection, sets its search path to
the tenant schema and hands it back exactly once. Because ``search_path`` is
connection state, the path is reset before the connection returns to the
pool; if that reset fails the connection is invalidated instead, so a pooled
connection never carries another tenant's binding.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tenancy.context import TenantContext
from tenancy.db import ddl


logger = logging.getLogger("tenancy.router")


class SchemaConnectionRouter:
    def __init__(self, engine: Engine, context: TenantContext) -> None:
        self._engine = engine
        self._context = context
        self._conn: Connection | None = None
        self._session: Session | None = None

    @property
    def context(self) -> TenantContext:
        return self._context

    @property
    def is_bound(self) -> bool:
        return self._conn is not None

    def connection(self) -> Connection:
        if self._conn is None:
            conn = self._engine.connect()
            try:
                ddl.bind_search_path(conn, self._context.schema_name)
                # Commit the SET so the binding outlives caller rollbacks and
                # callers start outside a transaction.
                conn.commit()
            except Exception:
                conn.invalidate()
                conn.close()
                raise
            self._conn = conn
            logger.debug("schema_connection_acquired schema=%s", self._context.schema_name)
        return self._conn

    def session(self) -> Session:
        """ORM session sharing this router's connection; closed on release."""
        if self._session is None:
            self._session = Session(bind=self.connection(), autoflush=False, expire_on_commit=False)
        return self._session

    def rebind(self, context: TenantContext) -> None:
        if context == self._context:
            return
        self.release()
        self._context = context

    def release(self) -> None:
        conn, self._conn = self._conn, None
        session, self._session = self._session, None
        if conn is None:
            return

        schema = self._context.schema_name
        try:
            if session is not None:
                session.close()
            if conn.in_transaction():
                conn.rollback()
            ddl.reset_search_path(conn)
            conn.commit()
        except SQLAlchemyError as exc:
            logger.warning("schema_connection_reset_failed schema=%s error=%s", schema, exc)
            conn.invalidate()
        finally:
            conn.close()
        logger.debug("schema_connection_released schema=%s", schema)

    def __enter__(self) -> SchemaConnectionRouter:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


@contextmanager
def tenant_connection(engine: Engine, context: TenantContext) -> Iterator[Connection]:
    router = SchemaConnectionRouter(engine, context)
    try:
        yield router.connection()
    finally:
        router.release()
