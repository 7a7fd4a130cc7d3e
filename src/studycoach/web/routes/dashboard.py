"""Progress dashboard endpoint."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from studycoach.core.progress import aggregate_progress
from studycoach.db.repositories import LearnerRepository
from studycoach.web.deps import get_repository
from studycoach.web.schemas import DashboardResponse, MonthlyMinutesSchema

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("", response_model=DashboardResponse)
async def get_dashboard(
    now: datetime | None = None,
    repository: LearnerRepository = Depends(get_repository),
) -> DashboardResponse:
    """Monthly minutes and completion figures for the actionable plan."""
    plan = repository.require_latest_plan()
    records = repository.list_progress(plan.plan_id)
    summary = aggregate_progress(records, len(plan.schedule), now or datetime.now(timezone.utc))

    return DashboardResponse(
        plan_id=plan.plan_id,
        subject=plan.subject,
        year=summary.year,
        monthly=[MonthlyMinutesSchema(**m.to_dict()) for m in summary.monthly],
        completed_sessions=summary.completed_sessions,
        total_sessions=summary.total_sessions,
        completion_percent=summary.completion_percent,
        total_minutes=summary.total_minutes,
        active_days=summary.active_days,
    )
