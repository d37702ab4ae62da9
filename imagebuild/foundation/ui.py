from __future__ import annotations

import logging
from typing import Protocol


class Ui(Protocol):
    """Sink for human-readable progress and error lines emitted by steps."""

    def say(self, text: str) -> None:
        ...

    def message(self, text: str) -> None:
        ...

    def error(self, text: str) -> None:
        ...


class LoggerUi:
    """Routes step output through a logger (console + operational log file)."""

    def __init__(self, logger: logging.Logger, *, prefix: str | None = None):
        self._logger = logger
        self._prefix = f"{prefix.strip()}: " if prefix and prefix.strip() else ""

    def say(self, text: str) -> None:
        self._logger.info("==> %s%s", self._prefix, text)

    def message(self, text: str) -> None:
        self._logger.info("    %s%s", self._prefix, text)

    def error(self, text: str) -> None:
        self._logger.error("==> %s%s", self._prefix, text)
