"""Active session lookup.

Pure and deterministic: given "now" and a plan's sessions, the active
session is the nearest one whose start instant is strictly after now.
Having none is a normal state (plan exhausted), not an error.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

import structlog

from studycoach.core.models import StudySession

logger = structlog.get_logger(__name__)

# Topic sent to the tutor when no session is active
GENERAL_QUESTION_TOPIC = "General Question"


def locate_active_session(
    now: datetime,
    sessions: Iterable[StudySession],
) -> StudySession | None:
    """Find the next not-yet-started session.

    When ``now`` is timezone-aware, session wall-clock times are read in
    the same zone. Sessions with a malformed date or time are skipped.
    Ties on the start instant keep input order (stable sort).

    Args:
        now: Reference instant
        sessions: Sessions of the actionable plan

    Returns:
        The earliest session starting strictly after ``now``, or None
    """
    candidates: list[tuple[datetime, StudySession]] = []

    for session in sessions:
        try:
            starts_at = session.starts_at(now.tzinfo)
        except ValueError:
            logger.warning(
                "session_unparseable_skipped",
                session_id=session.session_id,
                date=session.date,
                time=session.time,
            )
            continue
        if starts_at > now:
            candidates.append((starts_at, session))

    if not candidates:
        return None

    candidates.sort(key=lambda pair: pair[0])
    return candidates[0][1]


def topic_for(session: StudySession | None) -> str:
    """Tutor topic for a located session (sentinel when none)."""
    if session is None:
        return GENERAL_QUESTION_TOPIC
    return session.topic
