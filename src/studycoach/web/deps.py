"""Shared service instances for the Web API.

Each getter lazily builds a process-wide instance; the reset functions
exist for tests.
"""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException, status

from studycoach.config.app_config import load_app_config
from studycoach.core.diagnostics import DiagnosticsChannel
from studycoach.core.tutor import TutorOrchestrator
from studycoach.db.document_store import DocumentStore
from studycoach.db.repositories import LearnerRepository
from studycoach.llm.client import LLMClient
from studycoach.llm.speech import SpeechClient
from studycoach.web.conversations import ConversationManager

_store: DocumentStore | None = None
_text_client: LLMClient | None = None
_speech_client: SpeechClient | None = None
_channel: DiagnosticsChannel | None = None
_conversation_manager: ConversationManager | None = None


def get_store() -> DocumentStore:
    """Get the global document store."""
    global _store
    if _store is None:
        _store = DocumentStore(load_app_config().db_path)
    return _store


def get_text_client() -> LLMClient:
    """Get the global text generation client."""
    global _text_client
    if _text_client is None:
        _text_client = LLMClient()
    return _text_client


def get_speech_client() -> SpeechClient:
    """Get the global speech synthesis client."""
    global _speech_client
    if _speech_client is None:
        _speech_client = SpeechClient()
    return _speech_client


def get_diagnostics_channel() -> DiagnosticsChannel:
    """Get the global diagnostics channel."""
    global _channel
    if _channel is None:
        _channel = DiagnosticsChannel()
    return _channel


def get_conversation_manager() -> ConversationManager:
    """Get the global conversation manager."""
    global _conversation_manager
    if _conversation_manager is None:
        orchestrator = TutorOrchestrator(get_text_client(), get_speech_client())
        _conversation_manager = ConversationManager(orchestrator, get_diagnostics_channel())
    return _conversation_manager


async def drain_conversations() -> None:
    """Wait for pending progress writes, if any conversation was started."""
    if _conversation_manager is not None:
        await _conversation_manager.drain()


def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Verified learner id, supplied by the authenticating proxy."""
    if not x_user_id or "/" in x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid X-User-Id header",
        )
    return x_user_id


def get_repository(
    user_id: str = Depends(get_user_id),
    store: DocumentStore = Depends(get_store),
) -> LearnerRepository:
    """Repository scoped to the requesting learner."""
    return LearnerRepository(store, user_id)


def reset_services() -> None:
    """Drop every shared instance (for testing)."""
    global _store, _text_client, _speech_client, _channel, _conversation_manager
    _store = None
    _text_client = None
    _speech_client = None
    _channel = None
    _conversation_manager = None
