"""Tutoring conversation endpoints."""

from fastapi import APIRouter, Depends, HTTPException, status

from studycoach.db.repositories import LearnerRepository
from studycoach.web.conversations import Conversation, ConversationManager
from studycoach.web.deps import get_conversation_manager, get_repository, get_user_id
from studycoach.web.schemas import (
    ConversationResponse,
    SessionSchema,
    TurnRequest,
    TurnResponse,
    TutorTurnSchema,
)

router = APIRouter(prefix="/api/conversations", tags=["conversations"])


def _to_response(conversation: Conversation) -> ConversationResponse:
    data = conversation.to_dict()
    session = conversation.active_session
    return ConversationResponse(
        **data,
        active_session=SessionSchema.from_session(session) if session else None,
    )


def _get_or_404(
    manager: ConversationManager,
    conversation_id: str,
    user_id: str,
) -> Conversation:
    conversation = manager.get_conversation(conversation_id, user_id)
    if conversation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Conversation '{conversation_id}' not found",
        )
    return conversation


@router.post("", response_model=ConversationResponse, status_code=status.HTTP_201_CREATED)
async def start_conversation(
    repository: LearnerRepository = Depends(get_repository),
    manager: ConversationManager = Depends(get_conversation_manager),
) -> ConversationResponse:
    """Start a tutoring conversation on the actionable plan."""
    conversation = manager.create_conversation(repository)
    return _to_response(conversation)


@router.get("/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: str,
    user_id: str = Depends(get_user_id),
    manager: ConversationManager = Depends(get_conversation_manager),
) -> ConversationResponse:
    """Get conversation details and history."""
    return _to_response(_get_or_404(manager, conversation_id, user_id))


@router.delete("/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def end_conversation(
    conversation_id: str,
    user_id: str = Depends(get_user_id),
    manager: ConversationManager = Depends(get_conversation_manager),
) -> None:
    """End a conversation."""
    if not manager.end_conversation(conversation_id, user_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Conversation '{conversation_id}' not found",
        )


@router.post("/{conversation_id}/turns", response_model=TurnResponse)
async def submit_turn(
    conversation_id: str,
    request: TurnRequest,
    user_id: str = Depends(get_user_id),
    manager: ConversationManager = Depends(get_conversation_manager),
) -> TurnResponse:
    """Ask the tutor a question."""
    conversation = _get_or_404(manager, conversation_id, user_id)

    outcome = await manager.submit_turn(
        conversation,
        question=request.question,
        attachment=request.attachment,
        attachment_name=request.attachment_name,
    )

    return TurnResponse(
        conversation_id=conversation_id,
        topic=outcome.topic,
        turn=TutorTurnSchema.from_turn(outcome.turn),
        progress_recorded=outcome.progress_recorded,
    )
