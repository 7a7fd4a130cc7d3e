"""Study plan generation module.

Responsibilities:
- Turn a learner profile and study preferences into a narrative plan
- Parse the generated schedule into StudySession values
- Assign fresh, globally unique session ids after generation

Session ids are never taken from the model: they are the join key used by
progress records, so they must be unique and stable from save time on.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field, fields
from datetime import date, datetime, timezone
from typing import Any

import structlog

from studycoach.core.errors import GenerationFailedError, InvalidRequestError
from studycoach.core.models import (
    StudentProfile,
    StudyPlan,
    StudySession,
    parse_session_date,
    parse_session_time,
)
from studycoach.llm.client import LLMClient, LLMError, Message
from studycoach.prompts.registry import get_prompt

logger = structlog.get_logger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

SYSTEM_PROMPT_PLANNER = (
    "You are an expert educational planner. "
    "Respond ONLY with valid JSON, without markdown or commentary."
)

# Duration used when the model gives no usable minute value
DEFAULT_SESSION_MINUTES = 30

# A number with an optional unit word: "45", "1.5 hours", "90min", "1h"
_DURATION_PART = re.compile(r"(\d+(?:[.,]\d+)?)\s*([a-z]*)", re.IGNORECASE)


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class StudyPlanRequest:
    """Learning context and preferences for a new plan.

    ``study_duration_preference`` is a free-text hint ("45 minutes",
    "about an hour"); the model turns it into concrete minute values.
    """

    subject: str
    curriculum: str
    educational_materials: str
    study_time_preference: str
    study_duration_preference: str

    def validate(self) -> None:
        """Check every field is non-empty.

        Raises:
            InvalidRequestError: Listing the empty fields
        """
        missing = [
            f.name for f in fields(self) if not str(getattr(self, f.name) or "").strip()
        ]
        if missing:
            raise InvalidRequestError(missing)


@dataclass
class GeneratedPlan:
    """Result of plan generation, not yet saved."""

    subject: str
    narrative: str
    sessions: list[StudySession] = field(default_factory=list)
    dropped_sessions: int = 0

    def to_study_plan(self, created_at: str | None = None) -> StudyPlan:
        """Wrap the generated content as a StudyPlan ready to save."""
        return StudyPlan(
            subject=self.subject,
            content=self.narrative,
            schedule=list(self.sessions),
            created_at=created_at or datetime.now(timezone.utc).isoformat(),
        )


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


def _validate_profile(profile: StudentProfile) -> None:
    missing = []
    if not profile.name.strip():
        missing.append("name")
    if profile.age <= 0:
        missing.append("age")
    for attr in ("grade_level", "country", "preferred_learning_language"):
        if not str(getattr(profile, attr) or "").strip():
            missing.append(attr)
    if missing:
        raise InvalidRequestError(missing)


def build_plan_messages(
    profile: StudentProfile,
    request: StudyPlanRequest,
    today: date,
) -> list[Message]:
    """Build the planner prompt for a profile and request."""
    user_prompt = get_prompt(
        "planner/study_plan",
        name=profile.name,
        age=profile.age,
        grade_level=profile.grade_level,
        country=profile.country,
        preferred_learning_language=profile.preferred_learning_language,
        subject=request.subject,
        curriculum=request.curriculum,
        educational_materials=request.educational_materials,
        study_time_preference=request.study_time_preference,
        study_duration_preference=request.study_duration_preference,
        today=today.isoformat(),
    )
    return [
        Message(role="system", content=SYSTEM_PROMPT_PLANNER),
        Message(role="user", content=user_prompt),
    ]


def _parse_duration_text(value: str) -> float | None:
    """Minutes from free text like "1 hour", "1.5 hours", "1 hr 30 min".

    Ranges ("45-60 minutes") take the lower bound. An hour amount may be
    followed by minutes. Unknown units give None.
    """
    parts = _DURATION_PART.findall(value)
    if not parts:
        return None

    amount, unit = parts[0]
    unit = unit.lower()
    quantity = float(amount.replace(",", "."))

    if unit.startswith("h"):
        minutes = quantity * 60
        if len(parts) > 1 and parts[1][1].lower().startswith("m"):
            minutes += float(parts[1][0].replace(",", "."))
        return minutes
    if not unit or unit.startswith("m"):
        return quantity
    return None


def _coerce_minutes(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        minutes = int(value)
    elif isinstance(value, str):
        parsed = _parse_duration_text(value)
        if parsed is None:
            return None
        minutes = int(round(parsed))
    else:
        return None
    return minutes if minutes > 0 else None


def _first(entry: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in entry and entry[key] is not None:
            return entry[key]
    return None


def parse_schedule_entry(entry: Any) -> StudySession | None:
    """Parse one generated schedule entry.

    Accepts snake_case and camelCase keys. Returns None when the entry
    lacks a topic or has a malformed date/time.
    """
    if not isinstance(entry, dict):
        return None

    topic = str(_first(entry, "topic") or "").strip()
    raw_date = str(_first(entry, "date") or "").strip()
    raw_time = str(_first(entry, "time", "start_time", "startTime") or "").strip()

    if not topic:
        return None

    try:
        day = parse_session_date(raw_date)
        start = parse_session_time(raw_time)
    except ValueError:
        return None

    minutes = _coerce_minutes(
        _first(entry, "duration", "duration_minutes", "durationMinutes")
    )

    return StudySession(
        topic=topic,
        date=day.isoformat(),
        time=start.strftime("%H:%M"),
        duration_minutes=minutes or DEFAULT_SESSION_MINUTES,
        learning_objective=str(
            _first(entry, "learning_objective", "learningObjective") or ""
        ).strip(),
        activity=str(_first(entry, "activity") or "").strip(),
    )


def assign_session_ids(sessions: list[StudySession]) -> list[StudySession]:
    """Give every session a fresh unique id, discarding any existing one."""
    for session in sessions:
        session.session_id = str(uuid.uuid4())
    return sessions


def ensure_unique_session_ids(sessions: list[StudySession]) -> list[StudySession]:
    """Give a fresh id to sessions without one or repeating an earlier id."""
    seen: set[str] = set()
    for session in sessions:
        if session.session_id and session.session_id not in seen:
            seen.add(session.session_id)
            continue
        if session.session_id:
            logger.warning("duplicate_session_id_replaced", session_id=session.session_id)
        session.session_id = str(uuid.uuid4())
        seen.add(session.session_id)
    return sessions


# =============================================================================
# MAIN FUNCTIONS
# =============================================================================


async def build_study_plan(
    profile: StudentProfile,
    request: StudyPlanRequest,
    client: LLMClient,
    today: date | None = None,
) -> GeneratedPlan:
    """Generate a study plan with a dated session schedule.

    Args:
        profile: Learner profile
        request: Subject, curriculum, materials and time preferences
        client: Text generation client
        today: Date the schedule starts from (default: today, UTC)

    Returns:
        GeneratedPlan with narrative and sessions carrying fresh ids

    Raises:
        InvalidRequestError: If profile or request fields are empty
        GenerationFailedError: If no usable plan or schedule comes back
    """
    request.validate()
    _validate_profile(profile)

    if today is None:
        today = datetime.now(timezone.utc).date()

    messages = build_plan_messages(profile, request, today)

    try:
        data = await client.chat_json(messages)
    except LLMError as e:
        logger.error("study_plan_generation_failed", error=str(e))
        raise GenerationFailedError("Failed to generate study plan.") from e

    narrative = str(_first(data, "study_plan", "studyPlan") or "").strip()
    raw_schedule = _first(data, "schedule")

    if not narrative or not isinstance(raw_schedule, list) or not raw_schedule:
        logger.error(
            "study_plan_missing_output",
            has_narrative=bool(narrative),
            has_schedule=isinstance(raw_schedule, list) and bool(raw_schedule),
        )
        raise GenerationFailedError("Failed to generate study plan.")

    sessions = []
    for entry in raw_schedule:
        session = parse_schedule_entry(entry)
        if session is not None:
            sessions.append(session)

    dropped = len(raw_schedule) - len(sessions)
    if dropped:
        logger.warning("schedule_entries_dropped", dropped=dropped, kept=len(sessions))

    if not sessions:
        raise GenerationFailedError("Generated schedule contained no valid sessions.")

    assign_session_ids(sessions)

    logger.info(
        "study_plan_generated",
        subject=request.subject,
        sessions=len(sessions),
        first_session=sessions[0].date,
    )

    return GeneratedPlan(
        subject=request.subject,
        narrative=narrative,
        sessions=sessions,
        dropped_sessions=dropped,
    )
