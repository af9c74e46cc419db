from __future__ import annotations

import logging

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from tenancy.config import Settings
from tenancy.db import ddl
from tenancy.db import models  # noqa: F401
from tenancy.db.base import Base


logger = logging.getLogger("tenancy.bootstrap")


def create_core_tables(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)


def setup_multitenancy(engine: Engine, settings: Settings) -> bool:
    """Prepare database-wide helpers every tenant schema relies on.

    The uuid extension is best-effort. The helper routines are required in
    production: a failed install stops startup there and is only logged
    elsewhere. Returns whether the routines were installed.
    """
    extension_ready = ddl.ensure_uuid_extension(engine)
    try:
        with engine.begin() as conn:
            ddl.install_helper_routines(conn)
    except SQLAlchemyError as exc:
        logger.error("tenant_helper_routines_failed app_env=%s error=%s", settings.app_env, exc)
        if settings.is_production:
            raise RuntimeError("Tenant helper routines could not be installed; refusing to start in production") from exc
        return False
    logger.info("multitenancy_bootstrap_done uuid_extension=%s app_env=%s", extension_ready, settings.app_env)
    return True
