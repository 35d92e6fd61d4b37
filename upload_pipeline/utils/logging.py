"""Structured JSON logging for the upload services.

Every entry is one JSON object: ``{"event": ..., **bound_context, **fields}``.
Schedulers and stores bind ``owner_id`` once and pass per-call fields such
as ``task_id``, so every line of one owner's queue can be filtered together.

Configuration:
- UPLOAD_LOG_LEVEL selects the level of loggers created here (default INFO)
- Values that are not JSON-serializable (exceptions, datetimes, enums) are
  written with ``str()``
"""

import json
import logging
import os
import sys
from typing import Any

_LINE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _configured_level() -> int:
    level = logging.getLevelName(os.getenv("UPLOAD_LOG_LEVEL", "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


class StructuredLogger:
    """Writes events as JSON through a standard library logger.

    ``bind()`` returns a child that merges extra context into each entry;
    the parent is left untouched.
    """

    def __init__(self, logger: logging.Logger, context: dict[str, Any] | None = None):
        self._logger = logger
        self._context = dict(context or {})

    def bind(self, **context: Any) -> "StructuredLogger":
        """Return a logger that adds ``context`` to every entry.

        Example:
            >>> log = get_logger(__name__).bind(owner_id="user-1")
            >>> log.info("upload_queued", task_id="upload_abc")
        """
        return StructuredLogger(self._logger, {**self._context, **context})

    def _emit(self, level: int, event: str, fields: dict[str, Any]) -> None:
        if not self._logger.isEnabledFor(level):
            return
        entry = {"event": event, **self._context, **fields}
        self._logger.log(level, json.dumps(entry, default=str))

    def debug(self, event: str, **fields: Any) -> None:
        self._emit(logging.DEBUG, event, fields)

    def info(self, event: str, **fields: Any) -> None:
        self._emit(logging.INFO, event, fields)

    def warning(self, event: str, **fields: Any) -> None:
        self._emit(logging.WARNING, event, fields)

    def error(self, event: str, **fields: Any) -> None:
        self._emit(logging.ERROR, event, fields)


def get_logger(name: str) -> StructuredLogger:
    """Return a StructuredLogger for ``name`` (typically ``__name__``).

    A stdout handler is attached the first time a module asks for its
    logger, so the services log even when nothing configured logging.
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_LINE_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(_configured_level())
    return StructuredLogger(logger)
