"""Progress reporting for multi-step operations."""

from __future__ import annotations

import logging


def _format(message: str, args: tuple) -> str:
    return message % args if args else message


class ReporterError(Exception):
    """An error that was reported, carrying the underlying cause."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is None:
            return self.message
        return f"{self.message}: {self.cause}"


class Reporter:
    """Reports steps, outcomes and warnings through a logger."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("clusternet")

    def start(self, message: str, *args) -> None:
        """Announce the start of a step."""
        self._logger.info("%s", _format(message, args))

    def end(self) -> None:
        """Mark the current step as finished."""

    def success(self, message: str, *args) -> None:
        """Report a successful outcome."""
        self._logger.info("%s", _format(message, args))

    def failure(self, message: str, *args) -> None:
        """Report a failed outcome."""
        self._logger.error("%s", _format(message, args))

    def warning(self, message: str, *args) -> None:
        """Report a warning."""
        self._logger.warning("%s", _format(message, args))

    def error(self, err: BaseException | None, message: str, *args) -> ReporterError | None:
        """Report err as a failure and return it wrapped; return None when err is None."""
        if err is None:
            return None
        text = _format(message, args)
        self.failure(f"{text}: {err}")
        return ReporterError(text, err)


class RecordingReporter(Reporter):
    """A reporter that keeps every report in lists for later inspection."""

    def __init__(self) -> None:
        super().__init__()
        self.started: list[str] = []
        self.successes: list[str] = []
        self.failures: list[str] = []
        self.warnings: list[str] = []
        self.ended = 0

    def start(self, message: str, *args) -> None:
        self.started.append(_format(message, args))

    def end(self) -> None:
        self.ended += 1

    def success(self, message: str, *args) -> None:
        self.successes.append(_format(message, args))

    def failure(self, message: str, *args) -> None:
        self.failures.append(_format(message, args))

    def warning(self, message: str, *args) -> None:
        self.warnings.append(_format(message, args))