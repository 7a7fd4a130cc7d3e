"""Tests for the text and speech clients (F1)."""

import base64
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from studycoach.llm.client import (
    LLMClient,
    LLMConfig,
    LLMError,
    LLMResponseError,
    Message,
)
from studycoach.llm.speech import (
    MAX_INPUT_CHARS,
    SpeechClient,
    SpeechConfig,
    encode_audio_data_uri,
    split_for_speech,
)


def _completion(content):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        model="test-model",
        usage=None,
    )


@pytest.fixture
def llm():
    client = LLMClient(LLMConfig(provider="openai", api_key="test-key"))
    client._client = SimpleNamespace(
        chat=SimpleNamespace(completions=SimpleNamespace(create=AsyncMock()))
    )
    return client


class TestMessage:
    """Tests for Message serialization."""

    def test_plain_message(self):
        assert Message(role="user", content="hi").to_dict() == {"role": "user", "content": "hi"}

    def test_message_with_image(self):
        data = Message(role="user", content="look", images=["data:image/png;base64,AA=="]).to_dict()
        assert data["content"][0] == {"type": "text", "text": "look"}
        assert data["content"][1]["image_url"]["url"] == "data:image/png;base64,AA=="


class TestChatJson:
    """Tests for LLMClient.chat_json."""

    @pytest.mark.asyncio
    async def test_parses_direct_json(self, llm):
        llm._client.chat.completions.create.return_value = _completion('{"a": 1}')
        assert await llm.chat_json([Message(role="user", content="x")]) == {"a": 1}

    @pytest.mark.asyncio
    async def test_parses_fenced_json_after_think_block(self, llm):
        llm._client.chat.completions.create.return_value = _completion(
            '<think>hmm</think>```json\n{"a": 2}\n```'
        )
        assert await llm.chat_json([Message(role="user", content="x")]) == {"a": 2}

    @pytest.mark.asyncio
    async def test_repairs_invalid_json_once(self, llm):
        llm._client.chat.completions.create.side_effect = [
            _completion("not json"),
            _completion('{"fixed": true}'),
        ]
        assert await llm.chat_json([Message(role="user", content="x")]) == {"fixed": True}
        assert llm._client.chat.completions.create.await_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_repair(self, llm):
        llm._client.chat.completions.create.return_value = _completion("still not json")
        with pytest.raises(LLMResponseError):
            await llm.chat_json([Message(role="user", content="x")])

    @pytest.mark.asyncio
    async def test_repair_attempts_follow_config(self, llm):
        llm.config.max_retries = 3
        llm._client.chat.completions.create.return_value = _completion("still not json")
        with pytest.raises(LLMResponseError):
            await llm.chat_json([Message(role="user", content="x")])
        assert llm._client.chat.completions.create.await_count == 4

    @pytest.mark.asyncio
    async def test_explicit_repair_attempts_override_config(self, llm):
        llm._client.chat.completions.create.return_value = _completion("still not json")
        with pytest.raises(LLMResponseError):
            await llm.chat_json([Message(role="user", content="x")], max_retries=0)
        assert llm._client.chat.completions.create.await_count == 1

    @pytest.mark.asyncio
    async def test_request_failure_is_llm_error(self, llm):
        llm._client.chat.completions.create.side_effect = RuntimeError("boom")
        with pytest.raises(LLMError):
            await llm.chat_json([Message(role="user", content="x")])

    @pytest.mark.asyncio
    async def test_json_mode_only_when_supported(self, llm):
        llm._client.chat.completions.create.return_value = _completion('{"a": 1}')
        await llm.chat_json([Message(role="user", content="x")])
        kwargs = llm._client.chat.completions.create.await_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}

        llm.config.provider = "lmstudio"
        await llm.chat_json([Message(role="user", content="x")])
        kwargs = llm._client.chat.completions.create.await_args.kwargs
        assert "response_format" not in kwargs


class TestSpeechClient:
    """Tests for SpeechClient.synthesize."""

    @pytest.fixture
    def speech(self):
        client = SpeechClient(SpeechConfig(api_key="test-key"))
        client._client = SimpleNamespace(
            audio=SimpleNamespace(speech=SimpleNamespace(create=AsyncMock()))
        )
        return client

    def test_encode_audio_data_uri(self):
        assert encode_audio_data_uri(b"abc", "mp3") == "data:audio/mpeg;base64,YWJj"

    @pytest.mark.asyncio
    async def test_returns_data_uri(self, speech):
        speech._client.audio.speech.create.return_value = SimpleNamespace(content=b"\x01\x02")
        uri = await speech.synthesize("Hola")
        assert uri.startswith("data:audio/mpeg;base64,")
        assert base64.b64decode(uri.split(",", 1)[1]) == b"\x01\x02"

    @pytest.mark.asyncio
    async def test_empty_text_rejected(self, speech):
        with pytest.raises(LLMResponseError):
            await speech.synthesize("   ")
        speech._client.audio.speech.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_audio_is_error(self, speech):
        speech._client.audio.speech.create.return_value = SimpleNamespace(content=b"")
        with pytest.raises(LLMResponseError):
            await speech.synthesize("Hola")

    @pytest.mark.asyncio
    async def test_request_failure_is_llm_error(self, speech):
        speech._client.audio.speech.create.side_effect = RuntimeError("quota")
        with pytest.raises(LLMError):
            await speech.synthesize("Hola")

    @pytest.mark.asyncio
    async def test_long_text_is_spoken_in_chunks(self, speech):
        speech._client.audio.speech.create.side_effect = [
            SimpleNamespace(content=b"\x01"),
            SimpleNamespace(content=b"\x02"),
        ]
        text = "Fractions name parts of a whole. " * 180  # about 6000 chars

        uri = await speech.synthesize(text)

        calls = speech._client.audio.speech.create.await_args_list
        assert len(calls) == 2
        spoken = [call.kwargs["input"] for call in calls]
        assert all(len(chunk) <= MAX_INPUT_CHARS for chunk in spoken)
        assert " ".join(spoken) == text.strip()
        assert base64.b64decode(uri.split(",", 1)[1]) == b"\x01\x02"

    @pytest.mark.asyncio
    async def test_long_text_rejected_for_container_formats(self):
        client = SpeechClient(SpeechConfig(api_key="test-key", audio_format="wav"))
        client._client = SimpleNamespace(
            audio=SimpleNamespace(speech=SimpleNamespace(create=AsyncMock()))
        )
        with pytest.raises(LLMResponseError):
            await client.synthesize("word " * 1000)
        client._client.audio.speech.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_chunk_fails_whole_synthesis(self, speech):
        speech._client.audio.speech.create.side_effect = [
            SimpleNamespace(content=b"\x01"),
            SimpleNamespace(content=b""),
        ]
        with pytest.raises(LLMResponseError):
            await speech.synthesize("Decimals. " * 600)


class TestSplitForSpeech:
    """Tests for split_for_speech."""

    def test_short_text_is_one_chunk(self):
        assert split_for_speech("  Hola.  ") == ["Hola."]

    def test_prefers_sentence_breaks(self):
        chunks = split_for_speech("One two. Three four five.", limit=12)
        assert chunks == ["One two.", "Three four", "five."]

    def test_hard_cut_without_spaces(self):
        assert split_for_speech("a" * 25, limit=10) == ["a" * 10, "a" * 10, "a" * 5]
