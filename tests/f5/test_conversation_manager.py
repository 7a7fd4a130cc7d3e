"""Tests for ConversationManager (F5)."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from studycoach.core.diagnostics import DiagnosticsChannel
from studycoach.core.errors import (
    AudioSynthesisFailedError,
    ErrorKind,
    GenerationFailedError,
    PersistenceDeniedError,
    PreconditionMissingError,
    TurnInProgressError,
)
from studycoach.core.models import LearnerTurn, StudentProfile, TutorTurn
from studycoach.core.session_locator import GENERAL_QUESTION_TOPIC
from studycoach.core.tutor import TutorOrchestrator
from studycoach.web.conversations import ConversationManager
from fakes import FakeSpeechClient, FakeTextClient, tutor_payload


class FakeClock:
    """Clock that advances only when told to."""

    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock(march_4th):
    return FakeClock(march_4th)


def _manager(text, speech=None, clock=None, channel=None):
    orchestrator = TutorOrchestrator(text, speech or FakeSpeechClient())
    return ConversationManager(
        orchestrator,
        channel or DiagnosticsChannel(),
        clock=clock or (lambda: datetime.now(timezone.utc)),
    )


class TestCreateConversation:
    """Tests for conversation creation."""

    def test_requires_profile(self, repository):
        manager = _manager(FakeTextClient())
        with pytest.raises(PreconditionMissingError):
            manager.create_conversation(repository)

    def test_requires_plan(self, repository, profile):
        manager = _manager(FakeTextClient())
        with pytest.raises(PreconditionMissingError):
            manager.create_conversation(repository)

    def test_created_on_latest_plan(self, repository, saved_plan):
        manager = _manager(FakeTextClient())
        conversation = manager.create_conversation(repository)
        assert conversation.plan.plan_id == saved_plan.plan_id
        assert conversation.history == []
        assert conversation.topic is None

    def test_owner_scoping(self, repository, saved_plan):
        manager = _manager(FakeTextClient())
        conversation = manager.create_conversation(repository)
        assert manager.get_conversation(conversation.conversation_id, "u1") is conversation
        assert manager.get_conversation(conversation.conversation_id, "u2") is None
        assert manager.end_conversation(conversation.conversation_id, "u2") is False
        assert manager.end_conversation(conversation.conversation_id, "u1") is True


class TestSubmitTurn:
    """Tests for submitting turns."""

    @pytest.mark.asyncio
    async def test_focused_turn_records_progress(self, repository, saved_plan, clock):
        """Ana asks at 10:00 before s1; 20 minutes later a record for s1 exists."""
        text = FakeTextClient(tutor_payload(), tutor_payload())
        manager = _manager(text, clock=clock)
        conversation = manager.create_conversation(repository)

        first = await manager.submit_turn(conversation, "What is a fraction?")
        assert first.topic == "Fractions"
        assert conversation.active_session.session_id == "s1"
        assert conversation.session_started_at == clock.now

        clock.advance(minutes=20)
        second = await manager.submit_turn(conversation, "And 1/2 + 1/3?")
        await manager.drain()

        assert first.progress_recorded and second.progress_recorded
        documents = repository.list_progress(saved_plan.plan_id)
        assert sorted(d["durationMinutes"] for d in documents) == [1, 20]
        assert {d["studySessionId"] for d in documents} == {"s1"}

    @pytest.mark.asyncio
    async def test_general_question_records_nothing(self, repository, saved_plan):
        """No session after now: general mode and no progress record."""
        later = datetime(2024, 4, 1, tzinfo=timezone.utc)
        text = FakeTextClient(tutor_payload())
        manager = _manager(text, clock=lambda: later)
        conversation = manager.create_conversation(repository)

        outcome = await manager.submit_turn(conversation, "What is pi?")
        await manager.drain()

        assert outcome.topic == GENERAL_QUESTION_TOPIC
        assert outcome.progress_recorded is False
        assert "general session" in text.calls[0][0].content
        assert repository.list_progress(saved_plan.plan_id) == []

    @pytest.mark.asyncio
    async def test_history_grows_in_order(self, repository, saved_plan, clock):
        text = FakeTextClient(tutor_payload("E1", "X1"), tutor_payload("E2", "X2"))
        manager = _manager(text, clock=clock)
        conversation = manager.create_conversation(repository)

        await manager.submit_turn(conversation, "Q1")
        await manager.submit_turn(conversation, "Q2")
        await manager.drain()

        kinds = [type(turn) for turn in conversation.history]
        assert kinds == [LearnerTurn, TutorTurn, LearnerTurn, TutorTurn]
        assert conversation.history[2].question == "Q2"
        assert "Student: Q1" in text.calls[1][1].content
        assert "Professor: E1\nX1" in text.calls[1][1].content

    @pytest.mark.asyncio
    async def test_failed_generation_leaves_history(self, repository, saved_plan, clock):
        manager = _manager(FakeTextClient(tutor_payload(), {}), clock=clock)
        conversation = manager.create_conversation(repository)
        await manager.submit_turn(conversation, "Q1")

        with pytest.raises(GenerationFailedError):
            await manager.submit_turn(conversation, "Q2")
        await manager.drain()

        assert len(conversation.history) == 2
        assert conversation.in_flight is False
        assert len(repository.list_progress(saved_plan.plan_id)) == 1

    @pytest.mark.asyncio
    async def test_failed_audio_leaves_history(self, repository, saved_plan, clock):
        speech = FakeSpeechClient(fail_on="pizza")
        manager = _manager(FakeTextClient(tutor_payload()), speech=speech, clock=clock)
        conversation = manager.create_conversation(repository)

        with pytest.raises(AudioSynthesisFailedError):
            await manager.submit_turn(conversation, "Q1")
        await manager.drain()

        assert conversation.history == []
        assert repository.list_progress(saved_plan.plan_id) == []

    @pytest.mark.asyncio
    async def test_overlapping_turn_rejected(self, repository, saved_plan, clock):
        speech = FakeSpeechClient(delay=0.05)
        manager = _manager(FakeTextClient(tutor_payload(), tutor_payload()), speech=speech, clock=clock)
        conversation = manager.create_conversation(repository)

        first = asyncio.create_task(manager.submit_turn(conversation, "Q1"))
        await asyncio.sleep(0.01)

        with pytest.raises(TurnInProgressError):
            await manager.submit_turn(conversation, "Q2")

        await first
        await manager.drain()
        assert len(conversation.history) == 2

    @pytest.mark.asyncio
    async def test_progress_failure_does_not_fail_turn(self, saved_plan, clock):
        repository = MagicMock()
        repository.user_id = "u1"
        repository.require_profile.return_value = StudentProfile(
            "Ana", 12, "7th", "Chile", "Spanish", profile_id="p1"
        )
        repository.require_latest_plan.return_value = saved_plan
        repository.append_progress.side_effect = PersistenceDeniedError("denied", "add", "x")

        channel = DiagnosticsChannel()
        manager = _manager(FakeTextClient(tutor_payload()), clock=clock, channel=channel)
        conversation = manager.create_conversation(repository)

        outcome = await manager.submit_turn(conversation, "Q1")
        await manager.drain()

        assert outcome.turn.explanation
        assert [issue.kind for issue in channel.recent()] == [ErrorKind.PERSISTENCE_DENIED]
