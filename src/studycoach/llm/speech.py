"""Text-to-speech client.

Renders tutor text as audio and returns it as a self-contained data URI
(``data:audio/mpeg;base64,...``) so it can be embedded directly in a response.
"""

from __future__ import annotations

import base64
import time
from dataclasses import dataclass

import structlog
from openai import AsyncOpenAI

from studycoach.config.app_config import AppConfig, load_app_config
from studycoach.llm.client import PROVIDER_DEFAULTS, LLMError, LLMResponseError

logger = structlog.get_logger(__name__)

AUDIO_MIME_TYPES: dict[str, str] = {
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "opus": "audio/ogg",
    "aac": "audio/aac",
    "flac": "audio/flac",
    "pcm": "audio/L16",
}

# OpenAI speech endpoint input limit
MAX_INPUT_CHARS = 4096

# Encoded chunks of these formats concatenate into one playable stream
JOINABLE_FORMATS = {"mp3", "aac", "pcm"}

SENTENCE_BREAKS = (". ", "! ", "? ", "\n")


@dataclass
class SpeechConfig:
    """Configuration for speech synthesis."""

    model: str = "gpt-4o-mini-tts"
    voice: str = "alloy"
    audio_format: str = "mp3"
    base_url: str | None = None
    api_key: str | None = None
    timeout: int = 120

    @classmethod
    def from_app_config(cls, config: AppConfig | None = None) -> SpeechConfig:
        """Build speech configuration from the application config."""
        if config is None:
            config = load_app_config()

        generation = config.generation
        provider_config = config.providers.get(generation.default_provider)
        defaults = PROVIDER_DEFAULTS.get(generation.default_provider, {})

        base_url = defaults.get("base_url")
        api_key = defaults.get("api_key")
        if provider_config is not None:
            base_url = provider_config.base_url or base_url
            api_key = provider_config.get_api_key() or api_key

        return cls(
            model=generation.speech_model,
            voice=generation.speech_voice,
            audio_format=generation.speech_format,
            base_url=base_url,
            api_key=api_key,
            timeout=generation.timeout,
        )


def encode_audio_data_uri(payload: bytes, audio_format: str) -> str:
    """Encode raw audio bytes as a data URI."""
    mime = AUDIO_MIME_TYPES.get(audio_format, f"audio/{audio_format}")
    encoded = base64.b64encode(payload).decode("ascii")
    return f"data:{mime};base64,{encoded}"


def split_for_speech(text: str, limit: int = MAX_INPUT_CHARS) -> list[str]:
    """Split text into chunks of at most `limit` chars.

    Cuts at the last sentence break inside the window, else at the last
    space, else hard at the limit.
    """
    chunks: list[str] = []
    remaining = text.strip()
    while len(remaining) > limit:
        window = remaining[:limit]
        cut = max(window.rfind(mark) for mark in SENTENCE_BREAKS)
        if cut <= 0:
            cut = window.rfind(" ")
        cut = cut + 1 if cut > 0 else limit
        chunk = remaining[:cut].strip()
        if chunk:
            chunks.append(chunk)
        remaining = remaining[cut:].lstrip()
    if remaining:
        chunks.append(remaining)
    return chunks


class SpeechClient:
    """Async client for the speech synthesis endpoint."""

    def __init__(self, config: SpeechConfig | None = None):
        if config is None:
            config = SpeechConfig.from_app_config()

        self.config = config
        self._client = AsyncOpenAI(
            base_url=self.config.base_url,
            api_key=self.config.api_key or "not-needed",
            timeout=self.config.timeout,
        )

    async def _synthesize_chunk(self, text: str) -> bytes:
        try:
            response = await self._client.audio.speech.create(
                model=self.config.model,
                voice=self.config.voice,
                input=text,
                response_format=self.config.audio_format,
            )
        except Exception as e:
            raise LLMError(f"Speech synthesis failed: {e}") from e

        if not response.content:
            raise LLMResponseError("Speech synthesis returned no audio")
        return response.content

    async def synthesize(self, text: str) -> str:
        """Render text as audio.

        Text over the endpoint limit is spoken in chunks and the audio is
        joined, which only works for stream formats (mp3, aac, pcm). For
        other formats long text is an error rather than clipped audio.

        Args:
            text: Text to speak

        Returns:
            Audio payload as a data URI

        Raises:
            LLMResponseError: If the text is empty or too long for the
                configured format, or no audio comes back
            LLMError: If the request itself fails
        """
        if not text.strip():
            raise LLMResponseError("Cannot synthesize empty text")

        chunks = split_for_speech(text)
        if len(chunks) > 1 and self.config.audio_format not in JOINABLE_FORMATS:
            raise LLMResponseError(
                f"Text of {len(text)} chars exceeds the {MAX_INPUT_CHARS}-char "
                f"speech limit for {self.config.audio_format} output"
            )

        start_time = time.time()

        parts = [await self._synthesize_chunk(chunk) for chunk in chunks]
        payload = b"".join(parts)

        logger.debug(
            "speech_synthesized",
            model=self.config.model,
            chars=len(text),
            chunks=len(chunks),
            audio_bytes=len(payload),
            latency_ms=int((time.time() - start_time) * 1000),
        )

        return encode_audio_data_uri(payload, self.config.audio_format)
