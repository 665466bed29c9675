"""
Observer hooks for the retrieval pipeline.

The chunker, store and service report what happened (chunk counts,
embedding fallbacks, retrieval failures, timings) to an injected observer
instead of printing. The default observer writes to the standard logging
tree; tests and callers can plug in their own to collect metrics.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

_log = logging.getLogger(__name__)


class RAGObserver(Protocol):
    def event(self, name: str, **fields: Any) -> None: ...

    def failure(self, name: str, exc: BaseException, **fields: Any) -> None: ...


def _format_fields(fields: dict[str, Any]) -> str:
    return " ".join(f"{key}={value!r}" for key, value in sorted(fields.items()))


class LoggingObserver:
    """Events at INFO, failures at WARNING with the traceback."""

    def __init__(self, logger: logging.Logger | None = None):
        self._logger = logger or _log

    def event(self, name: str, **fields: Any) -> None:
        self._logger.info("rag.%s %s", name, _format_fields(fields))

    def failure(self, name: str, exc: BaseException, **fields: Any) -> None:
        self._logger.warning("rag.%s %s error=%s", name, _format_fields(fields), exc, exc_info=exc)


class NullObserver:
    def event(self, name: str, **fields: Any) -> None:
        pass

    def failure(self, name: str, exc: BaseException, **fields: Any) -> None:
        pass


__all__ = ["RAGObserver", "LoggingObserver", "NullObserver"]
