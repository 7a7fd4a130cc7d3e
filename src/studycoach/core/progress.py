"""Progress recording and aggregation.

Recorder: turns "a tutoring turn happened while a session was active"
into an appended ProgressRecord. Writes are fire-and-forget tasks whose
failures go to the DiagnosticsChannel, never back to the turn.

Aggregator: folds raw progress documents into the dashboard figures
(monthly minutes for the current year, distinct completed sessions,
completion percentage, active days).
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any, Iterable

import structlog

from studycoach.core.diagnostics import DiagnosticsChannel, PersistenceIssue
from studycoach.core.errors import classify_persistence_error
from studycoach.core.models import ProgressRecord
from studycoach.db.repositories import LearnerRepository

logger = structlog.get_logger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

MONTH_LABELS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)

MIN_RECORDED_MINUTES = 1


# =============================================================================
# RECORDER
# =============================================================================


def elapsed_minutes(session_start: datetime, now: datetime) -> int:
    """Whole minutes between session start and now, at least 1.

    A start after ``now`` (clock skew) also yields 1.
    """
    seconds = (now - session_start).total_seconds()
    return max(MIN_RECORDED_MINUTES, int(seconds // 60))


class ProgressRecorder:
    """Appends progress records in the background.

    Each write runs in a worker thread inside its own task. The recorder
    holds a reference to every pending task so none is garbage collected
    mid-write; ``drain()`` waits for all of them.
    """

    def __init__(self, repository: LearnerRepository, channel: DiagnosticsChannel):
        self.repository = repository
        self.channel = channel
        self._pending: set[asyncio.Task] = set()

    def record(
        self,
        plan_id: str,
        session_id: str | None,
        session_start: datetime,
        now: datetime | None = None,
        profile_id: str | None = None,
    ) -> asyncio.Task | None:
        """Schedule a progress write for the active session.

        Must be called from a running event loop.

        Args:
            plan_id: Actionable plan id
            session_id: Active session id; nothing is written when None
            session_start: When the session became active in this conversation
            now: Reference instant (default: current UTC time)
            profile_id: Owning profile, looked up by the repository when omitted

        Returns:
            The scheduled task, or None when there was no active session
        """
        if session_id is None:
            return None

        if now is None:
            now = datetime.now(timezone.utc)

        record = ProgressRecord(
            study_plan_id=plan_id,
            study_session_id=session_id,
            recorded_at=now,
            duration_minutes=elapsed_minutes(session_start, now),
        )

        task = asyncio.get_running_loop().create_task(self._write(record, profile_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _write(self, record: ProgressRecord, profile_id: str | None) -> str | None:
        try:
            record_id = await asyncio.to_thread(
                self.repository.append_progress, record, profile_id
            )
        except Exception as e:
            error = classify_persistence_error(e, "add", "progress")
            self.channel.emit(PersistenceIssue.from_error(error))
            return None

        logger.info(
            "progress_recorded",
            plan_id=record.study_plan_id,
            session_id=record.study_session_id,
            duration_minutes=record.duration_minutes,
        )
        return record_id

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait until every scheduled write has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


# =============================================================================
# AGGREGATOR
# =============================================================================


@dataclass
class MonthlyMinutes:
    """Minutes studied in one calendar month."""

    month: str
    minutes: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"month": self.month, "minutes": self.minutes}


@dataclass
class ProgressSummary:
    """Dashboard figures for one plan."""

    monthly: list[MonthlyMinutes] = field(default_factory=list)
    completed_sessions: int = 0
    total_sessions: int = 0
    completion_percent: int = 0
    total_minutes: int = 0
    active_days: int = 0
    year: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "year": self.year,
            "monthly": [m.to_dict() for m in self.monthly],
            "completed_sessions": self.completed_sessions,
            "total_sessions": self.total_sessions,
            "completion_percent": self.completion_percent,
            "total_minutes": self.total_minutes,
            "active_days": self.active_days,
        }


def normalize_timestamp(value: Any) -> datetime | None:
    """Convert a stored timestamp into a UTC-aware datetime.

    Accepts datetimes (naive ones are taken as UTC), dates, ISO strings
    (``Z`` suffix, offsets or date-only), epoch seconds, and store-native
    ``{"seconds": ..., "nanoseconds": ...}`` mappings.

    Returns:
        The instant in UTC, or None when absent or unparseable
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)

    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    if isinstance(value, dict):
        seconds = value.get("seconds", value.get("_seconds"))
        if isinstance(seconds, (int, float)) and not isinstance(seconds, bool):
            return normalize_timestamp(seconds)
        return None

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return normalize_timestamp(parsed)

    return None


def normalize_duration(value: Any) -> int:
    """Convert a stored duration into whole minutes; bad values count as 0."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return 0
        minutes = int(value)
    elif isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return 0
        if not math.isfinite(parsed):
            return 0
        minutes = int(parsed)
    else:
        return 0
    return max(0, minutes)


def _record_fields(record: Any) -> dict[str, Any]:
    if isinstance(record, ProgressRecord):
        return record.to_dict()
    if isinstance(record, dict):
        return record
    return {}


def completion_percent(completed: int, total: int) -> int:
    """Completed/total as a percentage, halves rounded up; 0 for no sessions."""
    if total <= 0:
        return 0
    return int(math.floor(completed / total * 100 + 0.5))


def aggregate_progress(
    records: Iterable[Any],
    total_sessions: int,
    now: datetime | None = None,
) -> ProgressSummary:
    """Fold progress records into dashboard figures.

    Args:
        records: Raw progress documents (or ProgressRecord values)
        total_sessions: Number of sessions in the actionable plan's schedule
        now: Reference instant; its UTC year selects the monthly series

    Returns:
        ProgressSummary with twelve monthly buckets, Jan to Dec
    """
    if now is None:
        now = datetime.now(timezone.utc)
    year = normalize_timestamp(now).year

    minutes_by_month = {label: 0 for label in MONTH_LABELS}
    sessions: set[str] = set()
    days: set[date] = set()
    total_minutes = 0
    skipped = 0

    for record in records:
        data = _record_fields(record)
        recorded_at = normalize_timestamp(data.get("date"))
        if recorded_at is None:
            skipped += 1
            continue

        minutes = normalize_duration(data.get("durationMinutes", data.get("duration")))
        total_minutes += minutes
        days.add(recorded_at.date())

        session_id = data.get("studySessionId")
        if session_id:
            sessions.add(str(session_id))

        if recorded_at.year == year:
            minutes_by_month[MONTH_LABELS[recorded_at.month - 1]] += minutes

    if skipped:
        logger.warning("progress_records_skipped", skipped=skipped)

    completed = len(sessions)

    return ProgressSummary(
        monthly=[MonthlyMinutes(month=m, minutes=minutes_by_month[m]) for m in MONTH_LABELS],
        completed_sessions=completed,
        total_sessions=total_sessions,
        completion_percent=completion_percent(completed, total_sessions),
        total_minutes=total_minutes,
        active_days=len(days),
        year=year,
    )
