"""
Logging configuration built on loguru.

Processors log through ``logger.bind(processor=...)`` so every line of a refresh run
carries the processor that emitted it. Standard-library logging (SQLAlchemy, uvicorn)
is routed into the same sinks.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from loguru import logger

from insider_signals.settings import settings

_TEXT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[processor]}</cyan> | "
    "<level>{message}</level>"
)


class InterceptHandler(logging.Handler):
    """Route standard logging records through loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def configure_logging(*, level: str | None = None, fmt: str | None = None, log_file: str | None = None) -> None:
    lvl = (level or settings.log_level).upper()
    serialize = (fmt or settings.log_format).lower() == "json"
    log_format = "{message}" if serialize else _TEXT_FORMAT

    logger.remove()
    logger.configure(extra={"processor": "-"})
    logger.add(sys.stderr, format=log_format, level=lvl, serialize=serialize, backtrace=True, diagnose=False)

    path = log_file if log_file is not None else settings.log_file
    if path:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            path,
            format=log_format,
            level=lvl,
            serialize=serialize,
            rotation="100 MB",
            retention="14 days",
            compression="zip",
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
