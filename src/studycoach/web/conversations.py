"""Conversation management for Web API.

Holds in-memory tutoring conversations: history, the pinned active
session and the in-flight flag that keeps turns strictly sequential.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

import structlog

from studycoach.core.diagnostics import DiagnosticsChannel
from studycoach.core.errors import TurnInProgressError
from studycoach.core.models import (
    ChatTurn,
    LearnerTurn,
    StudentProfile,
    StudyPlan,
    StudySession,
    TutorTurn,
)
from studycoach.core.progress import ProgressRecorder
from studycoach.core.session_locator import locate_active_session, topic_for
from studycoach.core.tutor import TutorContext, TutorOrchestrator
from studycoach.db.repositories import LearnerRepository

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Conversation:
    """A tutoring conversation for one learner and one plan."""

    conversation_id: str
    user_id: str
    profile: StudentProfile
    plan: StudyPlan
    recorder: ProgressRecorder
    history: list[ChatTurn] = field(default_factory=list)
    created_at: str = ""

    # Pinned at the first question
    session_located: bool = False
    active_session: StudySession | None = None
    session_started_at: datetime | None = None

    in_flight: bool = False

    def __post_init__(self):
        if not self.created_at:
            self.created_at = utc_now().isoformat()

    @property
    def topic(self) -> str | None:
        if not self.session_located:
            return None
        return topic_for(self.active_session)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API response."""
        return {
            "conversation_id": self.conversation_id,
            "plan_id": self.plan.plan_id,
            "subject": self.plan.subject,
            "created_at": self.created_at,
            "topic": self.topic,
            "session_started_at": (
                self.session_started_at.isoformat() if self.session_started_at else None
            ),
            "turn_in_progress": self.in_flight,
            "history": [turn.to_dict() for turn in self.history],
        }


@dataclass
class TurnOutcome:
    """Result of a successful turn."""

    turn: TutorTurn
    topic: str
    progress_recorded: bool


class ConversationManager:
    """Manages active tutoring conversations.

    Turns within a conversation never overlap: a second submit while one
    is in flight is rejected rather than queued.
    """

    def __init__(
        self,
        orchestrator: TutorOrchestrator,
        channel: DiagnosticsChannel,
        clock: Clock = utc_now,
    ):
        self.orchestrator = orchestrator
        self.channel = channel
        self.clock = clock
        self._conversations: dict[str, Conversation] = {}

    def create_conversation(self, repository: LearnerRepository) -> Conversation:
        """Start a conversation against the learner's actionable plan.

        Raises:
            PreconditionMissingError: If there is no profile or no plan
        """
        profile = repository.require_profile()
        plan = repository.require_latest_plan()

        conversation = Conversation(
            conversation_id=str(uuid.uuid4())[:8],
            user_id=repository.user_id,
            profile=profile,
            plan=plan,
            recorder=ProgressRecorder(repository, self.channel),
        )
        self._conversations[conversation.conversation_id] = conversation

        logger.info(
            "conversation_created",
            conversation_id=conversation.conversation_id,
            user_id=repository.user_id,
            plan_id=plan.plan_id,
        )
        return conversation

    def get_conversation(self, conversation_id: str, user_id: str) -> Conversation | None:
        """Get a conversation owned by the given learner."""
        conversation = self._conversations.get(conversation_id)
        if conversation is None or conversation.user_id != user_id:
            return None
        return conversation

    def end_conversation(self, conversation_id: str, user_id: str) -> bool:
        """Forget a conversation.

        Returns:
            True if it was removed, False if not found
        """
        if self.get_conversation(conversation_id, user_id) is None:
            return False
        del self._conversations[conversation_id]
        logger.info("conversation_ended", conversation_id=conversation_id)
        return True

    def _pin_session(self, conversation: Conversation) -> None:
        if conversation.session_located:
            return
        now = self.clock()
        conversation.active_session = locate_active_session(now, conversation.plan.schedule)
        conversation.session_located = True
        if conversation.active_session is not None:
            conversation.session_started_at = now

        logger.info(
            "active_session_pinned",
            conversation_id=conversation.conversation_id,
            session_id=(
                conversation.active_session.session_id if conversation.active_session else None
            ),
        )

    async def submit_turn(
        self,
        conversation: Conversation,
        question: str,
        attachment: str | None = None,
        attachment_name: str | None = None,
    ) -> TurnOutcome:
        """Run one tutoring turn and update history.

        On failure history is left exactly as it was.

        Raises:
            TurnInProgressError: If a turn is already running
            GenerationFailedError: If text generation fails
            AudioSynthesisFailedError: If audio synthesis fails
        """
        if conversation.in_flight:
            raise TurnInProgressError(conversation.conversation_id)
        conversation.in_flight = True

        try:
            self._pin_session(conversation)
            topic = topic_for(conversation.active_session)

            context = TutorContext(
                profile=conversation.profile,
                subject=conversation.plan.subject,
                topic=topic,
                question=question,
                history=list(conversation.history),
                plan_narrative=conversation.plan.content or None,
                attachment=attachment,
                attachment_name=attachment_name,
            )

            turn = await self.orchestrator.run_turn(context)
        finally:
            conversation.in_flight = False

        conversation.history.append(
            LearnerTurn(question=question, attachment=attachment, attachment_name=attachment_name)
        )
        conversation.history.append(turn)

        progress_recorded = False
        session = conversation.active_session
        if session is not None and conversation.session_started_at is not None:
            task = conversation.recorder.record(
                plan_id=conversation.plan.plan_id,
                session_id=session.session_id,
                session_start=conversation.session_started_at,
                now=self.clock(),
                profile_id=conversation.profile.profile_id,
            )
            progress_recorded = task is not None

        return TurnOutcome(turn=turn, topic=topic, progress_recorded=progress_recorded)

    def list_conversations(self, user_id: str | None = None) -> list[Conversation]:
        return [
            c for c in self._conversations.values()
            if user_id is None or c.user_id == user_id
        ]

    async def drain(self) -> None:
        """Wait for pending progress writes of every conversation."""
        for conversation in list(self._conversations.values()):
            await conversation.recorder.drain()
