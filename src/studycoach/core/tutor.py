"""Tutoring orchestrator.

Drives one conversational turn in three stages:

1. Grounded text generation (one structured call: explanation + example)
2. Parallel audio synthesis of both texts (fan-out/join)
3. Aggregation into a TutorTurn

A failed stage aborts the whole turn. Text without audio is never
returned.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import time
from dataclasses import dataclass, field
from urllib.parse import unquote_to_bytes

import structlog

from studycoach.core.errors import (
    AudioSynthesisFailedError,
    GenerationFailedError,
    InvalidRequestError,
)
from studycoach.core.models import ChatTurn, LearnerTurn, StudentProfile, TutorTurn
from studycoach.core.session_locator import GENERAL_QUESTION_TOPIC
from studycoach.llm.client import LLMClient, LLMError, Message
from studycoach.llm.speech import SpeechClient
from studycoach.prompts.registry import get_prompt

logger = structlog.get_logger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

# Inlined text attachments are cut at this many characters
MAX_ATTACHMENT_CHARS = 20000

EMPTY_HISTORY = "(no previous messages)"

TEXT_MIME_PREFIXES = ("text/",)
TEXT_MIME_TYPES = ("application/json", "application/xml", "application/x-yaml")


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class Attachment:
    """A decoded data URI."""

    mime_type: str
    payload: bytes
    uri: str

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    @property
    def is_text(self) -> bool:
        return self.mime_type.startswith(TEXT_MIME_PREFIXES) or self.mime_type in TEXT_MIME_TYPES


@dataclass
class TutorContext:
    """Everything one tutoring turn is grounded on."""

    profile: StudentProfile
    subject: str
    topic: str
    question: str
    history: list[ChatTurn] = field(default_factory=list)
    plan_narrative: str | None = None
    attachment: str | None = None  # data URI
    attachment_name: str | None = None

    @property
    def is_general_question(self) -> bool:
        return self.topic == GENERAL_QUESTION_TOPIC


# =============================================================================
# PROMPT ASSEMBLY
# =============================================================================


def parse_data_uri(uri: str) -> Attachment:
    """Decode a ``data:<mime>[;base64],<payload>`` URI.

    Raises:
        InvalidRequestError: If the value is not a data URI
    """
    if not uri.startswith("data:") or "," not in uri:
        raise InvalidRequestError(["attachment"])

    header, _, body = uri[5:].partition(",")
    params = header.split(";")
    mime_type = (params[0] or "text/plain").lower()

    if "base64" in params[1:]:
        try:
            payload = base64.b64decode(body, validate=False)
        except (binascii.Error, ValueError) as e:
            raise InvalidRequestError(["attachment"]) from e
    else:
        payload = unquote_to_bytes(body)

    return Attachment(mime_type=mime_type, payload=payload, uri=uri)


def render_history(history: list[ChatTurn]) -> str:
    """Render prior turns as alternating Student/Professor lines."""
    lines = []
    for turn in history:
        if isinstance(turn, LearnerTurn):
            lines.append(f"Student: {turn.question}")
        elif isinstance(turn, TutorTurn):
            lines.append(f"Professor: {turn.explanation}\n{turn.example}")
    return "\n".join(lines) if lines else EMPTY_HISTORY


def _attachment_section(context: TutorContext, attachment: Attachment | None) -> str:
    if attachment is None:
        return ""

    name = context.attachment_name or "attachment"
    section = "\n" + get_prompt("tutor/attachment", attachment_name=name) + "\n"

    if attachment.is_text:
        text = attachment.payload.decode("utf-8", errors="replace")
        if len(text) > MAX_ATTACHMENT_CHARS:
            text = text[:MAX_ATTACHMENT_CHARS] + "\n[... truncated]"
        section += f"\nAttachment contents:\n<<<\n{text}\n>>>\n"
    elif not attachment.is_image:
        logger.warning("attachment_type_not_inlined", mime_type=attachment.mime_type)
        section += f"\n(The attached file has type {attachment.mime_type} and could not be read.)\n"

    return section


def build_tutor_messages(context: TutorContext) -> list[Message]:
    """Compose the system and user messages for one turn."""
    profile = context.profile
    mode_key = "tutor/general_mode" if context.is_general_question else "tutor/focused_mode"

    system_prompt = "\n\n".join([
        get_prompt(
            "tutor/system",
            preferred_learning_language=profile.preferred_learning_language,
        ).strip(),
        get_prompt(mode_key, topic=context.topic).strip(),
    ])

    attachment = parse_data_uri(context.attachment) if context.attachment else None

    plan_section = ""
    if context.plan_narrative:
        plan_section = (
            "\nOverall Study Plan (for broad context only):\n"
            f"{context.plan_narrative}\n"
        )

    user_prompt = get_prompt(
        "tutor/turn",
        student_name=profile.name,
        grade_level=profile.grade_level,
        country=profile.country,
        preferred_learning_language=profile.preferred_learning_language,
        subject=context.subject,
        topic=context.topic,
        plan_section=plan_section,
        attachment_section=_attachment_section(context, attachment),
        history=render_history(context.history),
        question=context.question,
    )

    images = [attachment.uri] if attachment is not None and attachment.is_image else []

    return [
        Message(role="system", content=system_prompt),
        Message(role="user", content=user_prompt, images=images),
    ]


# =============================================================================
# ORCHESTRATOR
# =============================================================================


class TutorOrchestrator:
    """Runs tutoring turns against the text and speech services."""

    def __init__(self, text_client: LLMClient, speech_client: SpeechClient):
        self.text_client = text_client
        self.speech_client = speech_client

    async def generate_text(self, context: TutorContext) -> tuple[str, str]:
        """Stage 1: explanation and example text.

        Raises:
            GenerationFailedError: If the call fails or a field is missing
        """
        messages = build_tutor_messages(context)

        try:
            data = await self.text_client.chat_json(messages)
        except LLMError as e:
            logger.error("tutor_generation_failed", error=str(e))
            raise GenerationFailedError("The tutor could not generate a response.") from e

        explanation = data.get("explanation")
        example = data.get("example")

        if not isinstance(explanation, str) or not explanation.strip():
            raise GenerationFailedError("The tutor response had no explanation.")
        if not isinstance(example, str) or not example.strip():
            raise GenerationFailedError("The tutor response had no example.")

        return explanation.strip(), example.strip()

    async def synthesize_pair(self, explanation: str, example: str) -> tuple[str, str]:
        """Stage 2: render both texts as audio concurrently.

        Raises:
            AudioSynthesisFailedError: If either leg fails or returns no audio
        """
        results = await asyncio.gather(
            self.speech_client.synthesize(explanation),
            self.speech_client.synthesize(example),
            return_exceptions=True,
        )

        for leg, result in zip(("explanation", "example"), results):
            if isinstance(result, BaseException):
                logger.error("audio_leg_failed", leg=leg, error=str(result))
                raise AudioSynthesisFailedError(
                    f"Audio synthesis failed for the {leg}."
                ) from result
            if not result:
                logger.error("audio_leg_empty", leg=leg)
                raise AudioSynthesisFailedError(f"No audio was returned for the {leg}.")

        explanation_audio, example_audio = results
        return explanation_audio, example_audio

    async def run_turn(self, context: TutorContext) -> TutorTurn:
        """Run one full turn.

        Args:
            context: Profile, topic, question, history and optional attachment

        Returns:
            TutorTurn with both texts and both audio payloads

        Raises:
            InvalidRequestError: If the question is empty or the attachment is malformed
            GenerationFailedError: If text generation fails (audio is not attempted)
            AudioSynthesisFailedError: If either audio leg fails
        """
        if not context.question.strip():
            raise InvalidRequestError(["question"])

        start_time = time.time()

        explanation, example = await self.generate_text(context)
        explanation_audio, example_audio = await self.synthesize_pair(explanation, example)

        logger.info(
            "tutor_turn_completed",
            topic=context.topic,
            general=context.is_general_question,
            history_turns=len(context.history),
            latency_ms=int((time.time() - start_time) * 1000),
        )

        return TutorTurn(
            explanation=explanation,
            example=example,
            explanation_audio=explanation_audio,
            example_audio=example_audio,
        )
