"""Colored search logger — ANSI-colored console logging for the search pipeline.

Color scheme:
    🟡 Yellow  — Filters (structural conditions)
    🔵 Blue    — Match candidates
    🟣 Magenta — Facet augmentation
    🟢 Green   — Result page
    🟠 Cyan    — Facet statistics
    ⚪ White   — Metadata queries
    🔴 Red     — Errors
"""

import logging
import time
from contextlib import contextmanager
from typing import Any

from rdfrepo.domain.entities.query_fragment import QueryFragment

SEARCH_LOGGER_NAME = "rdfrepo.search"


class _Colors:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    MAGENTA = "\033[95m"
    CYAN = "\033[96m"
    WHITE = "\033[97m"
    GRAY = "\033[90m"


class SearchStage:
    """Search pipeline stages with colors and icons."""

    FILTERS = ("FILTERS", _Colors.YELLOW, "🔎")
    MATCHES = ("MATCHES", _Colors.BLUE, "🎯")
    FACETS = ("FACETS", _Colors.MAGENTA, "🏷️")
    PAGE = ("PAGE", _Colors.GREEN, "📄")
    STATS = ("STATS", _Colors.CYAN, "📊")
    QUERY = ("QUERY", _Colors.WHITE, "⚙️")
    ERROR = ("ERROR", _Colors.RED, "❌")


class SearchLogger:
    """Color-coded logger for search stages.

    Usage:
        log = SearchLogger()
        with log.timed_step(SearchStage.MATCHES, "Collecting match candidates"):
            await session.execute(...)
        log.statement(fragment)
    """

    def __init__(self, logger: logging.Logger | None = None):
        self._logger = logger or logging.getLogger(SEARCH_LOGGER_NAME)

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def _line(self, stage: tuple[str, str, str], message: str, details: dict[str, Any], ok: bool) -> str:
        label, color, icon = stage
        if ok:
            line = f"{color}{icon} [{label}]{_Colors.RESET} {color}{message}{_Colors.RESET}"
        else:
            line = f"{_Colors.RED}{_Colors.BOLD}{icon} [{label}]{_Colors.RESET} {_Colors.RED}{message}{_Colors.RESET}"
        if details:
            line += f" {_Colors.GRAY}(" + " | ".join(f"{k}={v}" for k, v in details.items()) + f"){_Colors.RESET}"
        return line

    def step(self, stage: tuple[str, str, str], message: str, **details: Any) -> None:
        self._logger.info(self._line(stage, message, details, ok=True))

    def step_error(self, stage: tuple[str, str, str], message: str, error: Exception | None = None) -> None:
        details = {"error": f"{type(error).__name__}: {error}"} if error is not None else {}
        self._logger.error(self._line(stage, message, details, ok=False))

    def statement(self, query: QueryFragment | str) -> None:
        """Log an SQL statement (parameters inlined) at DEBUG level."""
        if self._logger.isEnabledFor(logging.DEBUG):
            self._logger.debug(f"{_Colors.GRAY}SQL:{_Colors.RESET}\n{query}")

    def stats(self, **values: Any) -> None:
        summary = " | ".join(f"{k}: {v}" for k, v in values.items())
        self._logger.info(f"   {_Colors.GRAY}📈 {summary}{_Colors.RESET}")

    @contextmanager
    def timed_step(self, stage: tuple[str, str, str], message: str, **details: Any):
        """Log one line per stage once it finished, with its duration."""
        start = time.perf_counter()
        try:
            yield
        except Exception as exc:
            self.step_error(stage, f"{message} failed after {time.perf_counter() - start:.3f}s", error=exc)
            raise
        self.step(stage, message, **details, took=f"{time.perf_counter() - start:.3f}s")
