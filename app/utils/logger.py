from __future__ import annotations

import sys

from loguru import logger

from app.core.settings import settings
from app.utils.request_context import request_id_var

_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "rid={extra[rid]} | <cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


def _attach_request_id(record) -> None:
    record["extra"].setdefault("rid", request_id_var.get() or "-")


def configure_logging(level: str = "INFO") -> None:
    """Route loguru to stderr with the current request id on every record."""
    logger.remove()
    logger.configure(patcher=_attach_request_id)
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=_FORMAT,
        backtrace=False,
        diagnose=False,
        # No writer thread under pytest so records are flushed synchronously.
        enqueue=settings.APP_ENV != "test",
        serialize=settings.LOG_JSON,
    )
