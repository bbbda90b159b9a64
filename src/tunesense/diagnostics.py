"""
Per-run sink for recoverable errors.

Stages never raise MalformedQueryError, MissingStatisticsError or
class-(a) policy findings out of a run; they add them here and the
report turns them into warnings.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from tunesense.exceptions import TuneSenseError

logger = logging.getLogger(__name__)


class Diagnostics:
    """Thread-safe, de-duplicating collector of recoverable errors."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: list[TuneSenseError] = []
        self._seen: set[str] = set()

    def add(self, error: TuneSenseError) -> None:
        with self._lock:
            if error.message in self._seen:
                return
            self._seen.add(error.message)
            self._items.append(error)
        logger.debug("Diagnostic recorded: %s", error.message)

    def extend(self, errors: list[TuneSenseError]) -> None:
        for error in errors:
            self.add(error)

    @property
    def items(self) -> tuple[TuneSenseError, ...]:
        with self._lock:
            return tuple(self._items)

    def messages(self) -> list[str]:
        """Messages in sorted order (stages may report concurrently)."""
        return sorted(e.message for e in self.items)

    def of_type(self, error_type: type[TuneSenseError]) -> list[TuneSenseError]:
        return [e for e in self.items if isinstance(e, error_type)]

    def to_list(self) -> list[dict[str, Any]]:
        return sorted((e.to_dict() for e in self.items), key=lambda d: d["message"])

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
