"""Pydantic schemas for Web API.

Serialization models for profiles, plans, conversations, dashboard and
diagnostics.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from studycoach.core.models import (
    StudentProfile,
    StudyPlan,
    StudySession,
    TutorTurn,
    parse_session_date,
    parse_session_time,
)


# =============================================================================
# HEALTH / ERRORS
# =============================================================================


class HealthResponse(BaseModel):
    """Response for health check."""

    status: str
    version: str
    timestamp: str


class ErrorResponse(BaseModel):
    """Body of every classified error response."""

    detail: str
    kind: str
    retryable: bool = False
    missing: list[str] | None = None


# =============================================================================
# PROFILE SCHEMAS
# =============================================================================


class ProfileUpdate(BaseModel):
    """Request body for creating or updating the profile.

    All fields are required on first save; later saves merge.
    """

    name: str | None = Field(default=None, min_length=1, max_length=100)
    age: int | None = Field(default=None, gt=0, lt=130)
    grade_level: str | None = Field(default=None, min_length=1, max_length=50)
    country: str | None = Field(default=None, min_length=1, max_length=100)
    preferred_learning_language: str | None = Field(default=None, min_length=1, max_length=50)

    def to_document(self) -> dict[str, Any]:
        """Persisted-shape fields for the values that were provided."""
        mapping = {
            "name": "name",
            "age": "age",
            "grade_level": "gradeLevel",
            "country": "country",
            "preferred_learning_language": "preferredLearningLanguage",
        }
        return {
            stored: getattr(self, attr)
            for attr, stored in mapping.items()
            if getattr(self, attr) is not None
        }

    def missing_fields(self) -> list[str]:
        return [name for name, value in self.model_dump().items() if value is None]


class ProfileResponse(BaseModel):
    """Response for a profile."""

    id: str | None
    name: str
    age: int
    grade_level: str
    country: str
    preferred_learning_language: str

    @classmethod
    def from_profile(cls, profile: StudentProfile) -> ProfileResponse:
        return cls(
            id=profile.profile_id,
            name=profile.name,
            age=profile.age,
            grade_level=profile.grade_level,
            country=profile.country,
            preferred_learning_language=profile.preferred_learning_language,
        )


# =============================================================================
# PLAN SCHEMAS
# =============================================================================


class PlanGenerateRequest(BaseModel):
    """Request body for generating a study plan."""

    subject: str = Field(..., min_length=1, max_length=200)
    curriculum: str = Field(..., min_length=1, max_length=200)
    educational_materials: str = Field(..., min_length=1, max_length=2000)
    study_time_preference: str = Field(..., min_length=1, max_length=200)
    study_duration_preference: str = Field(..., min_length=1, max_length=200)


class SessionSchema(BaseModel):
    """One scheduled study session."""

    id: str | None = None
    topic: str
    date: str
    time: str
    duration_minutes: int = Field(..., ge=0)
    learning_objective: str = ""
    activity: str = ""

    @classmethod
    def from_session(cls, session: StudySession) -> SessionSchema:
        return cls(
            id=session.session_id,
            topic=session.topic,
            date=session.date,
            time=session.time,
            duration_minutes=session.duration_minutes,
            learning_objective=session.learning_objective,
            activity=session.activity,
        )

    def to_session(self) -> StudySession:
        return StudySession(
            topic=self.topic,
            date=self.date,
            time=self.time,
            duration_minutes=self.duration_minutes,
            learning_objective=self.learning_objective,
            activity=self.activity,
            session_id=self.id,
        )


class SessionInput(SessionSchema):
    """A session submitted for saving. Date and time must be locatable."""

    @field_validator("date")
    @classmethod
    def validate_date(cls, v: str) -> str:
        try:
            return parse_session_date(v).isoformat()
        except ValueError:
            raise ValueError("date must be YYYY-MM-DD") from None

    @field_validator("time")
    @classmethod
    def validate_time(cls, v: str) -> str:
        try:
            return parse_session_time(v).strftime("%H:%M")
        except ValueError:
            raise ValueError("time must be HH:MM") from None


class GeneratedPlanResponse(BaseModel):
    """A generated, not yet saved, study plan."""

    subject: str
    content: str
    schedule: list[SessionSchema]
    dropped_sessions: int = 0


class PlanSaveRequest(BaseModel):
    """Request body for confirming a generated plan."""

    subject: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    schedule: list[SessionInput] = Field(..., min_length=1)


class PlanResponse(BaseModel):
    """Response for a saved plan."""

    id: str | None
    subject: str
    content: str
    schedule: list[SessionSchema]
    created_at: str

    @classmethod
    def from_plan(cls, plan: StudyPlan) -> PlanResponse:
        return cls(
            id=plan.plan_id,
            subject=plan.subject,
            content=plan.content,
            schedule=[SessionSchema.from_session(s) for s in plan.schedule],
            created_at=plan.created_at,
        )


class ActiveSessionResponse(BaseModel):
    """The session a tutoring turn would focus on right now."""

    plan_id: str | None
    topic: str
    session: SessionSchema | None = None


# =============================================================================
# CONVERSATION SCHEMAS
# =============================================================================


class TurnRequest(BaseModel):
    """Request body for a tutoring turn."""

    question: str = Field(..., min_length=1, max_length=10000)
    attachment: str | None = Field(default=None, description="File as a data URI")
    attachment_name: str | None = Field(default=None, max_length=200)


class TutorTurnSchema(BaseModel):
    """A tutor answer with audio as data URIs."""

    explanation: str
    example: str
    explanation_audio: str
    example_audio: str

    @classmethod
    def from_turn(cls, turn: TutorTurn) -> TutorTurnSchema:
        return cls(
            explanation=turn.explanation,
            example=turn.example,
            explanation_audio=turn.explanation_audio,
            example_audio=turn.example_audio,
        )


class ConversationResponse(BaseModel):
    """Response for a conversation."""

    conversation_id: str
    plan_id: str | None
    subject: str
    created_at: str
    topic: str | None = None
    active_session: SessionSchema | None = None
    session_started_at: str | None = None
    turn_in_progress: bool = False
    history: list[dict[str, Any]] = Field(default_factory=list)


class TurnResponse(BaseModel):
    """Response for a completed tutoring turn."""

    conversation_id: str
    topic: str
    turn: TutorTurnSchema
    progress_recorded: bool = False


# =============================================================================
# DASHBOARD / DIAGNOSTICS SCHEMAS
# =============================================================================


class MonthlyMinutesSchema(BaseModel):
    month: str
    minutes: int


class DashboardResponse(BaseModel):
    """Progress figures for the actionable plan."""

    plan_id: str | None
    subject: str
    year: int
    monthly: list[MonthlyMinutesSchema]
    completed_sessions: int
    total_sessions: int
    completion_percent: int
    total_minutes: int
    active_days: int


class PersistenceIssueSchema(BaseModel):
    kind: str
    operation: str
    path: str
    message: str
    occurred_at: str


class DiagnosticsResponse(BaseModel):
    """Recent background persistence failures."""

    issues: list[PersistenceIssueSchema]
    count: int
