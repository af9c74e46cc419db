from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

from tenancy.config import Settings


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def setup_backend_logging(settings: Settings, console: bool = True) -> None:
    logs_dir = Path(settings.logs_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = logs_dir / settings.backend_log_file

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S")

    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.log_level, logging.INFO))

    has_file_handler = any(
        isinstance(handler, RotatingFileHandler) and getattr(handler, "baseFilename", None) == os.path.abspath(log_path)
        for handler in root.handlers
    )
    if not has_file_handler:
        file_handler = RotatingFileHandler(
            filename=log_path,
            maxBytes=settings.backend_log_max_bytes,
            backupCount=settings.backend_log_backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    if not console:
        return

    has_console_handler = any(
        isinstance(handler, logging.StreamHandler) and not isinstance(handler, RotatingFileHandler)
        for handler in root.handlers
    )
    if not has_console_handler:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)
