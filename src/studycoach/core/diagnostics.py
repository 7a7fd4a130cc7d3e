"""Diagnostics channel for background write failures.

Fire-and-forget progress writes never fail the tutoring turn that
triggered them. Their failures are published here instead, so the web
layer can surface a notice and tests can assert on them.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Callable

import structlog

from studycoach.core.errors import ErrorKind, PersistenceError

logger = structlog.get_logger(__name__)

# How many issues recent() keeps
RECENT_LIMIT = 50


@dataclass(frozen=True)
class PersistenceIssue:
    """A classified persistence failure."""

    kind: ErrorKind
    operation: str
    path: str
    message: str
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_error(cls, error: PersistenceError) -> PersistenceIssue:
        return cls(
            kind=error.kind,
            operation=error.operation,
            path=error.path,
            message=str(error),
        )

    @property
    def denied(self) -> bool:
        return self.kind == ErrorKind.PERSISTENCE_DENIED

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "operation": self.operation,
            "path": self.path,
            "message": self.message,
            "occurred_at": self.occurred_at.isoformat(),
        }


Listener = Callable[[PersistenceIssue], None]


class DiagnosticsChannel:
    """Subscribable stream of persistence issues."""

    def __init__(self, limit: int = RECENT_LIMIT):
        self._listeners: list[Listener] = []
        self._recent: deque[PersistenceIssue] = deque(maxlen=limit)
        self._lock = RLock()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener.

        Returns:
            A callable that removes the listener again
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def emit(self, issue: PersistenceIssue) -> None:
        """Record an issue and fan it out to listeners."""
        with self._lock:
            self._recent.append(issue)
            listeners = list(self._listeners)

        logger.warning(
            "persistence_issue",
            kind=issue.kind.value,
            operation=issue.operation,
            path=issue.path,
            message=issue.message,
        )

        for listener in listeners:
            try:
                listener(issue)
            except Exception:
                logger.exception("diagnostics_listener_failed", kind=issue.kind.value)

    def recent(self) -> list[PersistenceIssue]:
        """Issues emitted so far, oldest first."""
        with self._lock:
            return list(self._recent)

    def clear(self) -> None:
        with self._lock:
            self._recent.clear()
