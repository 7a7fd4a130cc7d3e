"""Study plan endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, status

from studycoach.core.models import StudyPlan
from studycoach.core.schedule_builder import (
    StudyPlanRequest,
    build_study_plan,
    ensure_unique_session_ids,
)
from studycoach.core.session_locator import locate_active_session, topic_for
from studycoach.db.repositories import LearnerRepository
from studycoach.llm.client import LLMClient
from studycoach.web.deps import get_repository, get_text_client
from studycoach.web.schemas import (
    ActiveSessionResponse,
    GeneratedPlanResponse,
    PlanGenerateRequest,
    PlanResponse,
    PlanSaveRequest,
    SessionSchema,
)

router = APIRouter(prefix="/api/plans", tags=["plans"])


@router.post("/generate", response_model=GeneratedPlanResponse)
async def generate_plan(
    request: PlanGenerateRequest,
    repository: LearnerRepository = Depends(get_repository),
    client: LLMClient = Depends(get_text_client),
) -> GeneratedPlanResponse:
    """Generate a plan for review. Nothing is saved."""
    profile = repository.require_profile()

    generated = await build_study_plan(
        profile,
        StudyPlanRequest(**request.model_dump()),
        client,
    )

    return GeneratedPlanResponse(
        subject=generated.subject,
        content=generated.narrative,
        schedule=[SessionSchema.from_session(s) for s in generated.sessions],
        dropped_sessions=generated.dropped_sessions,
    )


@router.post("", response_model=PlanResponse, status_code=status.HTTP_201_CREATED)
async def save_plan(
    request: PlanSaveRequest,
    repository: LearnerRepository = Depends(get_repository),
) -> PlanResponse:
    """Confirm a generated plan. It becomes the actionable plan."""
    sessions = [s.to_session() for s in request.schedule]
    ensure_unique_session_ids(sessions)

    plan = StudyPlan(subject=request.subject, content=request.content, schedule=sessions)
    repository.save_plan(plan)

    return PlanResponse.from_plan(plan)


@router.get("/latest", response_model=PlanResponse)
async def get_latest_plan(
    repository: LearnerRepository = Depends(get_repository),
) -> PlanResponse:
    """Get the actionable (most recent) plan."""
    return PlanResponse.from_plan(repository.require_latest_plan())


@router.get("/latest/active-session", response_model=ActiveSessionResponse)
async def get_active_session(
    now: datetime | None = None,
    repository: LearnerRepository = Depends(get_repository),
) -> ActiveSessionResponse:
    """Get the next not-yet-started session of the actionable plan."""
    plan = repository.require_latest_plan()
    session = locate_active_session(now or datetime.now(timezone.utc), plan.schedule)

    return ActiveSessionResponse(
        plan_id=plan.plan_id,
        topic=topic_for(session),
        session=SessionSchema.from_session(session) if session else None,
    )
