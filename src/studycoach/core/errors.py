"""Error taxonomy for the study orchestration engine.

Every failure surfaced to a caller carries an ErrorKind so the web and CLI
layers can decide between a retry prompt, a guidance message, or a
diagnostic-only notice.
"""

from __future__ import annotations

import sqlite3
from enum import Enum


class ErrorKind(Enum):
    """Classification of user-facing failures."""

    GENERATION_FAILED = "generation_failed"
    AUDIO_SYNTHESIS_FAILED = "audio_synthesis_failed"
    PERSISTENCE_DENIED = "persistence_denied"
    PERSISTENCE_FAILED = "persistence_failed"
    PRECONDITION_MISSING = "precondition_missing"


class StudyCoachError(Exception):
    """Base error for the study orchestration engine."""

    kind: ErrorKind = ErrorKind.GENERATION_FAILED
    retryable: bool = False


class GenerationFailedError(StudyCoachError):
    """The text generation service returned no usable output."""

    kind = ErrorKind.GENERATION_FAILED
    retryable = True


class AudioSynthesisFailedError(StudyCoachError):
    """Text succeeded but at least one audio leg failed."""

    kind = ErrorKind.AUDIO_SYNTHESIS_FAILED
    retryable = True


class PersistenceError(StudyCoachError):
    """A document store operation was rejected or errored."""

    kind = ErrorKind.PERSISTENCE_FAILED

    def __init__(self, message: str, operation: str = "", path: str = ""):
        self.operation = operation
        self.path = path
        super().__init__(message)


class PersistenceDeniedError(PersistenceError):
    """The store refused the operation (permissions, read-only database)."""

    kind = ErrorKind.PERSISTENCE_DENIED


class PersistenceFailedError(PersistenceError):
    """The store operation failed for a transient or unknown reason."""

    kind = ErrorKind.PERSISTENCE_FAILED
    retryable = True


class PreconditionMissingError(StudyCoachError):
    """An operation needs a profile or plan that does not exist yet."""

    kind = ErrorKind.PRECONDITION_MISSING


class InvalidRequestError(ValueError):
    """A request is missing required fields."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Missing required fields: {', '.join(missing)}")


class TurnInProgressError(Exception):
    """A tutoring turn was submitted while another one is still running."""

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(
            f"Conversation '{conversation_id}' already has a turn in progress"
        )


_DENIED_MARKERS = ("readonly", "read-only", "permission", "not authorized", "access denied")


def classify_persistence_error(
    exc: BaseException,
    operation: str,
    path: str,
) -> PersistenceError:
    """Map a raw storage exception onto the persistence taxonomy.

    Args:
        exc: The exception raised by the storage backend
        operation: Operation name ("get", "query", "add", "upsert")
        path: Document or collection path involved

    Returns:
        PersistenceDeniedError for permission problems, PersistenceFailedError otherwise
    """
    if isinstance(exc, PersistenceError):
        return exc

    message = str(exc)
    lowered = message.lower()

    if isinstance(exc, PermissionError):
        return PersistenceDeniedError(message, operation=operation, path=path)

    if isinstance(exc, sqlite3.DatabaseError) and any(
        marker in lowered for marker in _DENIED_MARKERS
    ):
        return PersistenceDeniedError(message, operation=operation, path=path)

    return PersistenceFailedError(message, operation=operation, path=path)
