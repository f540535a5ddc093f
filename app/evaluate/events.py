from __future__ import annotations

from typing import Any, Protocol

import structlog


class EventEmitter(Protocol):
    def info(self, event: str, **fields: Any) -> None: ...

    def warning(self, event: str, **fields: Any) -> None: ...

    def error(self, event: str, **fields: Any) -> None: ...


class StructlogEventEmitter:
    def __init__(self, logger: Any | None = None) -> None:
        self._logger = logger if logger is not None else structlog.get_logger("app.evaluate")

    def bind(self, **fields: Any) -> StructlogEventEmitter:
        return StructlogEventEmitter(self._logger.bind(**fields))

    def info(self, event: str, **fields: Any) -> None:
        self._logger.info(event, **fields)

    def warning(self, event: str, **fields: Any) -> None:
        self._logger.warning(event, **fields)

    def error(self, event: str, **fields: Any) -> None:
        self._logger.error(event, **fields)
