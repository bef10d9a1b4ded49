"""
Conversation endpoints.
"""
from fastapi import APIRouter

from chatrelay.api.deps import CurrentUser, DbSession, Messaging
from chatrelay.schemas.common import ApiResponse
from chatrelay.schemas.conversation import ConversationData, ConversationsData, CreateConversationRequest

router = APIRouter(prefix="/conversations", tags=["Conversations"])


@router.get(
    "",
    response_model=ApiResponse[ConversationsData],
    summary="List conversations",
    description="The caller's conversations, most recent activity first, with unread counts and partner presence."
)
def list_conversations(user_id: CurrentUser, db: DbSession, messaging: Messaging) -> ApiResponse[ConversationsData]:
    return ApiResponse(data=ConversationsData(conversations=messaging.list_conversations(db, user_id)))


@router.post(
    "",
    response_model=ApiResponse[ConversationData],
    summary="Get or create conversation",
    description="Returns the single conversation between the caller and participantId, creating it if needed."
)
def get_or_create_conversation(
    body: CreateConversationRequest,
    user_id: CurrentUser,
    db: DbSession,
    messaging: Messaging,
) -> ApiResponse[ConversationData]:
    conversation = messaging.get_or_create_conversation(db, user_id, body.participant_id)
    return ApiResponse(data=ConversationData(conversation=conversation))
