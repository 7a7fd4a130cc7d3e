"""Data model for profiles, plans, sessions, chat turns and progress records.

Persisted shapes use camelCase keys so documents stay compatible with
records written by the web client:

- Profile{name, age, gradeLevel, country, preferredLearningLanguage}
- Plan{subject, content, schedule:[Session], createdAt}
- Session{id, topic, date, time, durationMinutes, learningObjective, activity}
- ProgressRecord{studyPlanId, studySessionId, date, durationMinutes}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone, tzinfo
from typing import Any, Union


DATE_FORMAT = "%Y-%m-%d"
TIME_FORMAT = "%H:%M"


# =============================================================================
# PROFILE
# =============================================================================


@dataclass
class StudentProfile:
    """Identity anchor for scheduling and tutoring."""

    name: str
    age: int
    grade_level: str
    country: str
    preferred_learning_language: str
    profile_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for persistence."""
        return {
            "name": self.name,
            "age": self.age,
            "gradeLevel": self.grade_level,
            "country": self.country,
            "preferredLearningLanguage": self.preferred_learning_language,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StudentProfile:
        """Build a profile from a stored document."""
        return cls(
            name=data.get("name", ""),
            age=int(data.get("age") or 0),
            grade_level=data.get("gradeLevel", ""),
            country=data.get("country", ""),
            preferred_learning_language=data.get("preferredLearningLanguage", ""),
            profile_id=data.get("id"),
        )


# =============================================================================
# PLAN AND SESSIONS
# =============================================================================


@dataclass
class StudySession:
    """One scheduled unit of study within a plan."""

    topic: str
    date: str  # YYYY-MM-DD
    time: str  # HH:MM, 24h
    duration_minutes: int
    learning_objective: str
    activity: str
    session_id: str | None = None

    def starts_at(self, tz: tzinfo | None = None) -> datetime:
        """Absolute start instant (date + start time).

        Args:
            tz: Zone the wall-clock time belongs to. Naive when omitted.

        Raises:
            ValueError: If date or time are malformed
        """
        return datetime.combine(
            parse_session_date(self.date),
            parse_session_time(self.time),
            tzinfo=tz,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for persistence."""
        return {
            "id": self.session_id,
            "topic": self.topic,
            "date": self.date,
            "time": self.time,
            "durationMinutes": self.duration_minutes,
            "learningObjective": self.learning_objective,
            "activity": self.activity,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StudySession:
        """Build a session from a stored document.

        Older documents store the length under ``duration``.
        """
        duration = data.get("durationMinutes", data.get("duration", 0))
        return cls(
            topic=data.get("topic", ""),
            date=data.get("date", ""),
            time=data.get("time", ""),
            duration_minutes=int(duration or 0),
            learning_objective=data.get("learningObjective", ""),
            activity=data.get("activity", ""),
            session_id=data.get("id"),
        )


@dataclass
class StudyPlan:
    """A generated and saved study plan. Append-only."""

    subject: str
    content: str
    schedule: list[StudySession] = field(default_factory=list)
    created_at: str = ""
    plan_id: str | None = None

    def __post_init__(self):
        if not self.created_at:
            self.created_at = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for persistence."""
        return {
            "subject": self.subject,
            "content": self.content,
            "schedule": [s.to_dict() for s in self.schedule],
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StudyPlan:
        """Build a plan from a stored document."""
        return cls(
            subject=data.get("subject", ""),
            content=data.get("content", ""),
            schedule=[StudySession.from_dict(s) for s in data.get("schedule") or []],
            created_at=data.get("createdAt", ""),
            plan_id=data.get("id"),
        )


# =============================================================================
# CHAT TURNS (in-memory only)
# =============================================================================


@dataclass
class LearnerTurn:
    """A learner question, optionally with an attachment (data URI)."""

    question: str
    attachment: str | None = None
    attachment_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": "user",
            "question": self.question,
            "attachment_name": self.attachment_name,
        }


@dataclass
class TutorTurn:
    """A tutor answer: explanation, example and their audio renderings."""

    explanation: str
    example: str
    explanation_audio: str
    example_audio: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": "model",
            "explanation": self.explanation,
            "example": self.example,
            "explanation_audio": self.explanation_audio,
            "example_audio": self.example_audio,
        }


ChatTurn = Union[LearnerTurn, TutorTurn]


# =============================================================================
# PROGRESS
# =============================================================================


@dataclass
class ProgressRecord:
    """Evidence that time was spent on a specific session."""

    study_plan_id: str
    study_session_id: str
    recorded_at: datetime
    duration_minutes: int
    record_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for persistence."""
        return {
            "studyPlanId": self.study_plan_id,
            "studySessionId": self.study_session_id,
            "date": self.recorded_at.isoformat(),
            "durationMinutes": self.duration_minutes,
        }


def parse_session_date(value: str) -> date:
    """Parse a YYYY-MM-DD session date."""
    return datetime.strptime(value.strip(), DATE_FORMAT).date()


def parse_session_time(value: str) -> time:
    """Parse an HH:MM session start time."""
    return datetime.strptime(value.strip(), TIME_FORMAT).time()
