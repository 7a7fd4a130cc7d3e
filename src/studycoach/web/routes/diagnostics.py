"""Diagnostics endpoint for background persistence failures."""

from fastapi import APIRouter, Depends

from studycoach.core.diagnostics import DiagnosticsChannel
from studycoach.web.deps import get_diagnostics_channel
from studycoach.web.schemas import DiagnosticsResponse, PersistenceIssueSchema

router = APIRouter(prefix="/api/diagnostics", tags=["diagnostics"])


@router.get("/persistence", response_model=DiagnosticsResponse)
async def list_persistence_issues(
    channel: DiagnosticsChannel = Depends(get_diagnostics_channel),
) -> DiagnosticsResponse:
    """Recent progress-write failures, oldest first."""
    issues = [PersistenceIssueSchema(**issue.to_dict()) for issue in channel.recent()]
    return DiagnosticsResponse(issues=issues, count=len(issues))
