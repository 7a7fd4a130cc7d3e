"""Student profile endpoints."""

from fastapi import APIRouter, Depends, HTTPException, status

from studycoach.core.errors import InvalidRequestError
from studycoach.db.repositories import LearnerRepository
from studycoach.web.deps import get_repository
from studycoach.web.schemas import ProfileResponse, ProfileUpdate

router = APIRouter(prefix="/api/profile", tags=["profile"])


@router.get("", response_model=ProfileResponse)
async def get_profile(
    repository: LearnerRepository = Depends(get_repository),
) -> ProfileResponse:
    """Get the learner's profile."""
    profile = repository.get_profile()

    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Profile not found",
        )

    return ProfileResponse.from_profile(profile)


@router.put("", response_model=ProfileResponse)
async def save_profile(
    update: ProfileUpdate,
    repository: LearnerRepository = Depends(get_repository),
) -> ProfileResponse:
    """Create the profile, or merge the given fields into it."""
    if repository.get_profile() is None:
        missing = update.missing_fields()
        if missing:
            raise InvalidRequestError(missing)

    profile = repository.save_profile(update.to_document())
    return ProfileResponse.from_profile(profile)
