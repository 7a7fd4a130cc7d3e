"""Learner-scoped repository over the document store.

This is the only place that knows the document layout:

    users/{uid}/studentProfiles/{pid}
    users/{uid}/studentProfiles/{pid}/studyPlans/{planId}
    users/{uid}/studentProfiles/{pid}/studyPlans/{planId}/progress/{recordId}

One learner owns at most one active profile. The earliest stored profile is
authoritative and every profile write goes to it, so a second profile is
never created through this boundary.
"""

from __future__ import annotations

from typing import Any

import structlog

from studycoach.core.errors import PreconditionMissingError
from studycoach.core.models import ProgressRecord, StudentProfile, StudyPlan
from studycoach.db.document_store import DocumentStore

logger = structlog.get_logger(__name__)

PROFILE_REQUIRED_MESSAGE = "Please complete your student profile first."
PLAN_REQUIRED_MESSAGE = "Please generate and confirm a study plan first."


class LearnerRepository:
    """Reads and writes for one learner (opaque verified user id)."""

    def __init__(self, store: DocumentStore, user_id: str):
        if not user_id or "/" in user_id:
            raise ValueError(f"Invalid user id: {user_id!r}")
        self.store = store
        self.user_id = user_id

    # -------------------------------------------------------------------------
    # Paths
    # -------------------------------------------------------------------------

    @property
    def profiles_path(self) -> str:
        return f"users/{self.user_id}/studentProfiles"

    def plans_path(self, profile_id: str) -> str:
        return f"{self.profiles_path}/{profile_id}/studyPlans"

    def progress_path(self, profile_id: str, plan_id: str) -> str:
        return f"{self.plans_path(profile_id)}/{plan_id}/progress"

    # -------------------------------------------------------------------------
    # Profile
    # -------------------------------------------------------------------------

    def get_profile(self) -> StudentProfile | None:
        """Return the learner's single active profile, if any."""
        documents = self.store.query(self.profiles_path, limit=1)
        if not documents:
            return None
        return StudentProfile.from_dict(documents[0])

    def require_profile(self) -> StudentProfile:
        """Return the active profile.

        Raises:
            PreconditionMissingError: If the learner has no profile yet
        """
        profile = self.get_profile()
        if profile is None:
            raise PreconditionMissingError(PROFILE_REQUIRED_MESSAGE)
        return profile

    def save_profile(self, fields: dict[str, Any]) -> StudentProfile:
        """Create the profile or merge fields into the existing one.

        Args:
            fields: Persisted-shape fields (camelCase). Missing fields are kept.

        Returns:
            The stored profile after the merge
        """
        existing = self.get_profile()

        if existing is None:
            profile_id = self.store.add(self.profiles_path, fields)
            logger.info("profile_created", user_id=self.user_id, profile_id=profile_id)
            return StudentProfile.from_dict({**fields, "id": profile_id})

        merged = self.store.upsert(f"{self.profiles_path}/{existing.profile_id}", fields)
        return StudentProfile.from_dict(merged)

    # -------------------------------------------------------------------------
    # Plans
    # -------------------------------------------------------------------------

    def save_plan(self, plan: StudyPlan) -> str:
        """Append a confirmed plan; the newest one becomes actionable.

        Returns:
            The new plan id
        """
        profile = self.require_profile()
        plan_id = self.store.add(self.plans_path(profile.profile_id), plan.to_dict())
        plan.plan_id = plan_id

        logger.info(
            "study_plan_saved",
            user_id=self.user_id,
            plan_id=plan_id,
            sessions=len(plan.schedule),
        )
        return plan_id

    def latest_plan(self) -> StudyPlan | None:
        """Return the most recent plan by creation timestamp."""
        profile = self.get_profile()
        if profile is None:
            return None

        documents = self.store.query(
            self.plans_path(profile.profile_id),
            order_by="createdAt",
            descending=True,
            limit=1,
        )
        if not documents:
            return None
        return StudyPlan.from_dict(documents[0])

    def require_latest_plan(self) -> StudyPlan:
        """Return the actionable plan.

        Raises:
            PreconditionMissingError: If no plan has been saved yet
        """
        plan = self.latest_plan()
        if plan is None:
            raise PreconditionMissingError(PLAN_REQUIRED_MESSAGE)
        return plan

    # -------------------------------------------------------------------------
    # Progress
    # -------------------------------------------------------------------------

    def append_progress(self, record: ProgressRecord, profile_id: str | None = None) -> str:
        """Append a progress record under its plan.

        Args:
            record: Record to append
            profile_id: Owning profile; looked up when omitted

        Returns:
            The new record id
        """
        if profile_id is None:
            profile_id = self.require_profile().profile_id
        path = self.progress_path(profile_id, record.study_plan_id)
        record_id = self.store.add(path, record.to_dict())
        record.record_id = record_id
        return record_id

    def list_progress(self, plan_id: str) -> list[dict[str, Any]]:
        """Raw progress documents for a plan.

        Documents are returned as stored; timestamps may be strings or
        instants depending on the writer, and are normalized by the
        aggregator.
        """
        profile = self.get_profile()
        if profile is None:
            return []
        return self.store.query(self.progress_path(profile.profile_id, plan_id))
