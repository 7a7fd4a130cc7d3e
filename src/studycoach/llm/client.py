"""LLM client for OpenAI and OpenAI-compatible servers.

Provides a unified async interface for text generation, used by the
schedule builder and the tutoring orchestrator.

Supported providers:
- openai: OpenAI API
- lmstudio: Local LM Studio server (OpenAI-compatible API)
"""

from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass, field
from typing import Any, Literal

import structlog
from openai import AsyncOpenAI

from studycoach.config.app_config import AppConfig, load_app_config

logger = structlog.get_logger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

Provider = Literal["openai", "lmstudio"]

# Provider-specific defaults
PROVIDER_DEFAULTS: dict[str, dict[str, Any]] = {
    "openai": {
        "base_url": "https://api.openai.com/v1",
        "api_key_env": "OPENAI_API_KEY",
    },
    "lmstudio": {
        "base_url": "http://localhost:1234/v1",
        "api_key": "lm-studio",  # LM Studio doesn't need real API key
    },
}

# lmstudio rejects {"type": "json_object"}
PROVIDER_CAPABILITIES_DEFAULTS: dict[str, dict[str, bool]] = {
    "openai": {
        "supports_json_object": True,
    },
    "lmstudio": {
        "supports_json_object": False,
    },
}

# JSON repair prompt template
JSON_REPAIR_PROMPT = """Fix and return ONLY valid JSON from this text:
<<<
{invalid_output}
>>>

Reply ONLY with the corrected JSON, no explanations and no markdown."""

# Some models emit <think>...</think> blocks that interfere with JSON parsing
SANITIZE_PATTERNS = [
    re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE),
    re.compile(r"<analysis>.*?</analysis>", re.DOTALL | re.IGNORECASE),
    re.compile(r"<reasoning>.*?</reasoning>", re.DOTALL | re.IGNORECASE),
]


def _sanitize_for_json(text: str) -> str:
    """Remove thinking/reasoning tags before JSON parsing."""
    result = text
    for pattern in SANITIZE_PATTERNS:
        result = pattern.sub("", result)
    return result.strip()


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class LLMConfig:
    """Configuration for LLM client."""

    provider: str = "openai"
    base_url: str | None = None
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 4096
    timeout: int = 120
    max_retries: int = 1
    api_key: str | None = None
    # Capability override (from config)
    supports_json_object: bool | None = None

    @classmethod
    def from_app_config(cls, config: AppConfig | None = None) -> LLMConfig:
        """Build client configuration from the application config."""
        if config is None:
            config = load_app_config()

        generation = config.generation
        provider = generation.default_provider
        provider_config = config.providers.get(provider)
        defaults = PROVIDER_DEFAULTS.get(provider, {})

        base_url = defaults.get("base_url")
        api_key = defaults.get("api_key")
        if provider_config is not None:
            base_url = provider_config.base_url or base_url
            api_key = provider_config.get_api_key() or api_key

        return cls(
            provider=provider,
            base_url=base_url,
            model=generation.text_model,
            temperature=generation.temperature,
            timeout=generation.timeout,
            max_retries=generation.max_retries,
            api_key=api_key,
        )


@dataclass
class Message:
    """A chat message, optionally carrying image attachments as data URIs."""

    role: Literal["system", "user", "assistant"]
    content: str
    images: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API call."""
        if not self.images:
            return {"role": self.role, "content": self.content}

        parts: list[dict[str, Any]] = [{"type": "text", "text": self.content}]
        for image in self.images:
            parts.append({"type": "image_url", "image_url": {"url": image}})
        return {"role": self.role, "content": parts}


@dataclass
class LLMResponse:
    """Response from LLM."""

    content: str
    model: str
    provider: str
    usage: dict[str, int] = field(default_factory=dict)
    latency_ms: int = 0

    @property
    def total_tokens(self) -> int:
        """Get total token count."""
        return self.usage.get("total_tokens", 0)


class LLMError(Exception):
    """Error during LLM interaction."""

    pass


class LLMConnectionError(LLMError):
    """Error connecting to LLM server."""

    pass


class LLMResponseError(LLMError):
    """Error in LLM response."""

    pass


# =============================================================================
# LLM CLIENT
# =============================================================================


class LLMClient:
    """Async client for chat completions."""

    def __init__(
        self,
        config: LLMConfig | None = None,
        model: str | None = None,
    ):
        """Initialize LLM client.

        Args:
            config: LLM configuration (built from app config if not provided)
            model: Override model from config
        """
        if config is None:
            config = LLMConfig.from_app_config()

        self.config = config

        if model is not None:
            self.config.model = model

        self._client = AsyncOpenAI(
            base_url=self.config.base_url,
            api_key=self.config.api_key or "not-needed",
            timeout=self.config.timeout,
        )

        logger.info(
            "llm_client_initialized",
            provider=self.config.provider,
            model=self.config.model,
            base_url=self.config.base_url,
        )

    def _supports_json_object(self) -> bool:
        """Check if current provider supports response_format json_object."""
        if self.config.supports_json_object is not None:
            return self.config.supports_json_object

        caps = PROVIDER_CAPABILITIES_DEFAULTS.get(self.config.provider, {})
        return caps.get("supports_json_object", False)

    async def chat(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        """Send chat completion request.

        Args:
            messages: List of messages in conversation
            temperature: Override default temperature
            max_tokens: Override default max tokens
            json_mode: Request JSON response format (only if provider supports it)

        Returns:
            LLMResponse with content and metadata

        Raises:
            LLMConnectionError: If cannot connect to server
            LLMResponseError: If response is empty
        """
        if temperature is None:
            temperature = self.config.temperature
        if max_tokens is None:
            max_tokens = self.config.max_tokens

        request_kwargs: dict[str, Any] = {
            "model": self.config.model,
            "messages": [m.to_dict() for m in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        if json_mode and self._supports_json_object():
            request_kwargs["response_format"] = {"type": "json_object"}

        start_time = time.time()

        try:
            response = await self._client.chat.completions.create(**request_kwargs)
        except Exception as e:
            error_msg = str(e)
            if "Connection" in error_msg or "connect" in error_msg.lower():
                raise LLMConnectionError(
                    f"Could not connect to {self.config.provider} at {self.config.base_url}: {e}"
                ) from e
            raise LLMError(f"LLM call failed: {e}") from e

        latency_ms = int((time.time() - start_time) * 1000)

        if not response.choices:
            raise LLMResponseError("Empty response from LLM")

        content = response.choices[0].message.content or ""

        usage = {}
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        logger.debug(
            "llm_response",
            provider=self.config.provider,
            model=response.model,
            tokens=usage.get("total_tokens", 0),
            latency_ms=latency_ms,
        )

        return LLMResponse(
            content=content,
            model=response.model,
            provider=self.config.provider,
            usage=usage,
            latency_ms=latency_ms,
        )

    def _try_parse_json(self, content: str) -> dict[str, Any] | None:
        """Try to parse JSON from content, with multiple extraction strategies.

        Tries:
        1. Direct parse
        2. Extract from ```json ... ``` blocks
        3. Extract first {...} object

        Returns parsed dict or None if all strategies fail.
        """
        content = _sanitize_for_json(content)

        # 1. Direct parse
        try:
            parsed = json.loads(content)
            return parsed if isinstance(parsed, dict) else None
        except json.JSONDecodeError:
            pass

        # 2. Extract from markdown ```json ... ``` blocks
        json_match = re.search(r"```(?:json)?\s*([\s\S]*?)```", content)
        if json_match:
            try:
                parsed = json.loads(json_match.group(1).strip())
                return parsed if isinstance(parsed, dict) else None
            except json.JSONDecodeError:
                pass

        # 3. Extract first {...} object
        start = content.find("{")
        end = content.rfind("}") + 1
        if start >= 0 and end > start:
            try:
                parsed = json.loads(content[start:end])
                return parsed if isinstance(parsed, dict) else None
            except json.JSONDecodeError:
                pass

        return None

    async def chat_json(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
        max_retries: int | None = None,
    ) -> dict[str, Any]:
        """Send chat request expecting JSON response.

        Uses robust parsing with a repair retry on failure.

        Args:
            messages: List of messages
            temperature: Override temperature
            max_tokens: Override max tokens
            max_retries: Repair attempts on parse failure (default from config)

        Returns:
            Parsed JSON as dictionary

        Raises:
            LLMResponseError: If response is not valid JSON after retries
        """
        response = await self.chat(
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            json_mode=True,
        )

        parsed = self._try_parse_json(response.content)
        if parsed is not None:
            return parsed

        attempts_left = self.config.max_retries if max_retries is None else max_retries
        last_content = response.content
        while attempts_left > 0:
            attempts_left -= 1
            logger.warning(
                "json_parse_failed_retrying",
                content=last_content[:100],
                provider=self.config.provider,
            )

            repair_prompt = JSON_REPAIR_PROMPT.format(
                invalid_output=last_content[:1000]
            )
            retry_messages = messages + [
                Message(role="user", content=repair_prompt),
            ]

            retry_response = await self.chat(
                retry_messages,
                temperature=temperature,
                max_tokens=max_tokens,
                json_mode=True,
            )

            parsed = self._try_parse_json(retry_response.content)
            if parsed is not None:
                logger.info("json_parse_recovered_after_retry")
                return parsed
            last_content = retry_response.content

        raise LLMResponseError(
            f"Could not obtain valid JSON: {response.content[:200]}..."
        )
