"""Tests for study plan generation (F2)."""

from datetime import date

import pytest

from studycoach.core.errors import GenerationFailedError, InvalidRequestError
from studycoach.core.models import StudentProfile
from studycoach.core.schedule_builder import (
    DEFAULT_SESSION_MINUTES,
    StudyPlanRequest,
    assign_session_ids,
    build_study_plan,
    ensure_unique_session_ids,
    parse_schedule_entry,
)
from studycoach.llm.client import LLMConnectionError
from fakes import FakeTextClient


@pytest.fixture
def ana():
    return StudentProfile("Ana", 12, "7th", "Chile", "Spanish", profile_id="p1")


@pytest.fixture
def request_math():
    return StudyPlanRequest(
        subject="Math",
        curriculum="National 7th grade",
        educational_materials="Textbook chapters 3-5",
        study_time_preference="weekday afternoons",
        study_duration_preference="45 minutes",
    )


def _entry(**overrides):
    entry = {
        "topic": "Fractions",
        "date": "2024-03-05",
        "time": "16:00",
        "duration": 45,
        "learning_objective": "Add fractions",
        "activity": "Worksheet",
    }
    entry.update(overrides)
    return entry


class TestStudyPlanRequest:
    """Tests for request validation."""

    def test_valid_request(self, request_math):
        request_math.validate()

    def test_empty_fields_listed(self, request_math):
        request_math.curriculum = "  "
        request_math.subject = ""
        with pytest.raises(InvalidRequestError) as exc_info:
            request_math.validate()
        assert exc_info.value.missing == ["subject", "curriculum"]


class TestParseScheduleEntry:
    """Tests for parse_schedule_entry."""

    def test_snake_case_entry(self):
        session = parse_schedule_entry(_entry())
        assert session.topic == "Fractions"
        assert session.date == "2024-03-05"
        assert session.time == "16:00"
        assert session.duration_minutes == 45
        assert session.session_id is None

    def test_camel_case_and_text_duration(self):
        session = parse_schedule_entry({
            "topic": "Decimals",
            "date": "2024-03-07",
            "time": "9:30",
            "durationMinutes": "30 minutes",
            "learningObjective": "Convert",
        })
        assert session.time == "09:30"
        assert session.duration_minutes == 30
        assert session.learning_objective == "Convert"

    @pytest.mark.parametrize("text, minutes", [
        ("1 hour", 60),
        ("1.5 hours", 90),
        ("45-60 minutes", 45),
        ("1 hr 30 min", 90),
        ("90min", 90),
        ("2h", 120),
    ])
    def test_text_duration_units(self, text, minutes):
        session = parse_schedule_entry(_entry(duration=text))
        assert session.duration_minutes == minutes

    @pytest.mark.parametrize("text", ["a while", "3 sessions", "0 minutes"])
    def test_unreadable_text_duration_uses_default(self, text):
        session = parse_schedule_entry(_entry(duration=text))
        assert session.duration_minutes == DEFAULT_SESSION_MINUTES

    def test_missing_duration_uses_default(self):
        session = parse_schedule_entry(_entry(duration=None))
        assert session.duration_minutes == DEFAULT_SESSION_MINUTES

    @pytest.mark.parametrize("bad", [
        _entry(topic=""),
        _entry(date="next Tuesday"),
        _entry(time="afternoon"),
        "not a dict",
    ])
    def test_malformed_entries(self, bad):
        assert parse_schedule_entry(bad) is None


class TestAssignSessionIds:
    """Tests for assign_session_ids."""

    def test_ids_are_unique_and_replace_existing(self):
        sessions = [parse_schedule_entry(_entry()) for _ in range(20)]
        sessions[0].session_id = "from-model"
        assign_session_ids(sessions)
        ids = [s.session_id for s in sessions]
        assert len(set(ids)) == 20
        assert "from-model" not in ids


class TestEnsureUniqueSessionIds:
    """Tests for ensure_unique_session_ids."""

    def test_keeps_first_and_replaces_repeats(self):
        sessions = [parse_schedule_entry(_entry()) for _ in range(3)]
        sessions[0].session_id = "a"
        sessions[1].session_id = "a"
        ensure_unique_session_ids(sessions)
        ids = [s.session_id for s in sessions]
        assert ids[0] == "a"
        assert all(ids) and len(set(ids)) == 3


class TestBuildStudyPlan:
    """Tests for build_study_plan."""

    @pytest.mark.asyncio
    async def test_generates_plan_with_fresh_ids(self, ana, request_math):
        client = FakeTextClient({
            "study_plan": "Week 1: fractions. Week 2: decimals.",
            "schedule": [
                _entry(id="dup"),
                _entry(id="dup", topic="Decimals", date="2024-03-07"),
            ],
        })

        plan = await build_study_plan(ana, request_math, client, today=date(2024, 3, 1))

        assert plan.subject == "Math"
        assert plan.narrative.startswith("Week 1")
        assert [s.topic for s in plan.sessions] == ["Fractions", "Decimals"]
        ids = {s.session_id for s in plan.sessions}
        assert len(ids) == 2
        assert "dup" not in ids

    @pytest.mark.asyncio
    async def test_prompt_carries_profile_and_preferences(self, ana, request_math):
        client = FakeTextClient({"study_plan": "Plan", "schedule": [_entry()]})

        await build_study_plan(ana, request_math, client, today=date(2024, 3, 1))

        user_prompt = client.calls[0][1].content
        assert "Ana" in user_prompt
        assert "Spanish" in user_prompt
        assert "weekday afternoons" in user_prompt
        assert "45 minutes" in user_prompt
        assert "2024-03-01" in user_prompt

    @pytest.mark.asyncio
    async def test_malformed_entries_dropped(self, ana, request_math):
        client = FakeTextClient({
            "study_plan": "Plan",
            "schedule": [_entry(), _entry(date="soon"), {"topic": ""}],
        })

        plan = await build_study_plan(ana, request_math, client)

        assert len(plan.sessions) == 1
        assert plan.dropped_sessions == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [
        {"schedule": [_entry()]},
        {"study_plan": "Plan", "schedule": []},
        {"study_plan": "Plan"},
        {"study_plan": "Plan", "schedule": [_entry(time="later")]},
    ])
    async def test_unusable_output_fails(self, ana, request_math, payload):
        with pytest.raises(GenerationFailedError):
            await build_study_plan(ana, request_math, FakeTextClient(payload))

    @pytest.mark.asyncio
    async def test_service_error_is_generation_failure(self, ana, request_math):
        client = FakeTextClient(LLMConnectionError("offline"))
        with pytest.raises(GenerationFailedError) as exc_info:
            await build_study_plan(ana, request_math, client)
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_invalid_request_not_sent(self, ana, request_math):
        request_math.educational_materials = ""
        client = FakeTextClient()
        with pytest.raises(InvalidRequestError):
            await build_study_plan(ana, request_math, client)
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_incomplete_profile_rejected(self, request_math):
        profile = StudentProfile("Ana", 0, "7th", "", "Spanish")
        with pytest.raises(InvalidRequestError) as exc_info:
            await build_study_plan(profile, request_math, FakeTextClient())
        assert exc_info.value.missing == ["age", "country"]

    @pytest.mark.asyncio
    async def test_to_study_plan(self, ana, request_math):
        client = FakeTextClient({"study_plan": "Plan", "schedule": [_entry()]})
        generated = await build_study_plan(ana, request_math, client)

        plan = generated.to_study_plan(created_at="2024-03-01T00:00:00+00:00")
        assert plan.content == "Plan"
        assert plan.schedule[0].session_id == generated.sessions[0].session_id
        assert plan.plan_id is None
