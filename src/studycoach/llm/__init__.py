"""Generative text and speech clients."""

from studycoach.llm.client import (
    LLMClient,
    LLMConfig,
    LLMConnectionError,
    LLMError,
    LLMResponse,
    LLMResponseError,
    Message,
)
from studycoach.llm.speech import SpeechClient, SpeechConfig

__all__ = [
    "LLMClient",
    "LLMConfig",
    "LLMConnectionError",
    "LLMError",
    "LLMResponse",
    "LLMResponseError",
    "Message",
    "SpeechClient",
    "SpeechConfig",
]
