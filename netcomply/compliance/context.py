"""Evaluation context handed to rules.

Collects diagnostic entries for a run (the task log) and fixes the
evaluation instant so exemption expiry is judged consistently.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from ..common.logger import get_logger
from .exemptions import utcnow


@dataclass(frozen=True)
class LogEntry:
    level: int
    message: str


class EvaluationContext:
    """Diagnostics sink for rule evaluation."""

    def __init__(
        self,
        now: Optional[datetime] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.now = now or utcnow()
        self.logger = logger or get_logger("evaluation")
        self._entries: List[LogEntry] = []
        self._lock = threading.Lock()

    def log(self, level: int, message: str) -> None:
        with self._lock:
            self._entries.append(LogEntry(level, message))
        self.logger.log(level, message)

    def debug(self, message: str) -> None:
        self.log(logging.DEBUG, message)

    def info(self, message: str) -> None:
        self.log(logging.INFO, message)

    def warning(self, message: str) -> None:
        self.log(logging.WARNING, message)

    def error(self, message: str) -> None:
        self.log(logging.ERROR, message)

    @property
    def entries(self) -> List[LogEntry]:
        with self._lock:
            return list(self._entries)

    def messages(self, min_level: int = logging.DEBUG) -> List[str]:
        return [e.message for e in self.entries if e.level >= min_level]

    def as_text(self) -> str:
        """Render the collected entries like a task log."""
        return "\n".join(
            f"[{logging.getLevelName(e.level)}] {e.message}" for e in self.entries
        )
