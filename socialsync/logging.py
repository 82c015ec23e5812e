"""Logging setup using Loguru.

Console output is human-readable in development and one JSON object per line
when ``settings.log_json`` is on. Either way every record carries the current
viewer and operation from context variables, and credential-looking extras
(``access_token``, ``password``, ``apikey``...) are redacted before output.

Example:
    >>> from socialsync.logging import logger, operation_context
    >>> with operation_context("feed.fetch_page"):
    ...     logger.info("Fetching page", page=0)
"""

import json
import sys
import traceback
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any

from loguru import logger as loguru_logger

from socialsync.config import settings
from socialsync.utils import redact_token

# =============================================================================
# Context Variables
# =============================================================================

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
operation_var: ContextVar[str | None] = ContextVar("operation", default=None)

SENSITIVE_KEYS = frozenset({"access_token", "refresh_token", "password", "apikey", "authorization", "token"})


# =============================================================================
# Record Processing
# =============================================================================


def redact_extra(extra: dict[str, Any]) -> dict[str, Any]:
    """Copy of ``extra`` with credential values masked."""
    return {
        key: redact_token(str(value)) if key.lower() in SENSITIVE_KEYS and value else value
        for key, value in extra.items()
    }


def serialize(record: dict[str, Any]) -> str:
    """Render a record as a single JSON line.

    Context variables are included only when set; bound extras are merged
    after redaction.
    """
    subset = {
        "time": record["time"].isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "module": record["module"],
        "function": record["function"],
        "line": record["line"],
    }

    for name, var in (("request_id", request_id_var), ("user_id", user_id_var), ("operation", operation_var)):
        if value := var.get():
            subset[name] = value

    subset.update(redact_extra(record["extra"]))

    if exc := record["exception"]:
        subset["exception"] = {
            "type": exc.type.__name__ if exc.type else None,
            "value": str(exc.value),
            "traceback": traceback.format_exception(exc.type, exc.value, exc.traceback),
        }

    return json.dumps(subset, default=str)


def _patch_record(record: dict[str, Any]) -> None:
    record["extra"] = redact_extra(record["extra"])
    record["extra"].setdefault("viewer", user_id_var.get() or "-")
    record["serialized"] = serialize(record)


def _json_format(record: dict[str, Any]) -> str:
    return "{serialized}\n"


# =============================================================================
# Logger Configuration
# =============================================================================

HUMAN_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[viewer]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)


def setup_logging(
    level: str = "INFO",
    json_logs: bool = False,
    log_file: Path | None = None,
    colorize: bool = True,
) -> Any:
    """Replace Loguru's handlers with socialsync's.

    Args:
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Emit JSON lines instead of the human-readable format
        log_file: Also write to this file, rotated and compressed
        colorize: Colour the human-readable format

    Returns:
        The patched Loguru logger
    """
    loguru_logger.remove()
    patched_logger = loguru_logger.patch(_patch_record)

    patched_logger.add(
        sys.stdout,
        level=level,
        format=_json_format if json_logs else HUMAN_FORMAT,
        colorize=False if json_logs else colorize,
    )

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        patched_logger.add(
            log_file,
            level=level,
            format=_json_format if json_logs else "{time} | {level} | {extra[viewer]} | {message}",
            rotation="50 MB",
            retention="14 days",
            compression="zip",
            enqueue=True,
        )

    return patched_logger


logger = setup_logging(
    level=settings.log_level,
    json_logs=settings.log_json,
    log_file=settings.data_dir / "socialsync.log" if settings.log_to_file else None,
    colorize=not settings.log_json,
)


# =============================================================================
# Context Helpers
# =============================================================================


def set_request_context(
    request_id: str | None = None,
    user_id: str | None = None,
    operation: str | None = None,
) -> None:
    """Set context variables for the current async context (None leaves a value as is)."""
    if request_id is not None:
        request_id_var.set(request_id)
    if user_id is not None:
        user_id_var.set(user_id)
    if operation is not None:
        operation_var.set(operation)


def clear_request_context() -> None:
    request_id_var.set(None)
    user_id_var.set(None)
    operation_var.set(None)


def get_request_context() -> dict[str, str | None]:
    return {
        "request_id": request_id_var.get(),
        "user_id": user_id_var.get(),
        "operation": operation_var.get(),
    }


@contextmanager
def operation_context(operation: str) -> Iterator[None]:
    """Label records logged inside the block with ``operation``.

    The previous label is restored on exit, so nested operations unwind.
    """
    token = operation_var.set(operation)
    try:
        yield
    finally:
        operation_var.reset(token)


__all__ = [
    "logger",
    "request_id_var",
    "user_id_var",
    "operation_var",
    "set_request_context",
    "clear_request_context",
    "get_request_context",
    "operation_context",
    "redact_extra",
    "setup_logging",
]
