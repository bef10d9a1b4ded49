"""
Message endpoints: history, send and mark-read.
"""
from typing import Annotated, Optional

from fastapi import APIRouter, Header, Path, Query

from chatrelay.api.deps import CurrentUser, DbSession, Messaging
from chatrelay.schemas.common import ApiResponse, SuccessData
from chatrelay.schemas.message import MessageData, MessagePage, SendMessageRequest

router = APIRouter(prefix="/messages", tags=["Messages"])


@router.get(
    "/{conversation_id}",
    response_model=ApiResponse[MessagePage],
    summary="List messages",
    description="One page of a conversation's messages, newest first."
)
def list_messages(
    conversation_id: Annotated[str, Path(max_length=36)],
    user_id: CurrentUser,
    db: DbSession,
    messaging: Messaging,
    page: Annotated[int, Query(ge=1, description="1-based page number")] = 1,
    limit: Annotated[int, Query(ge=1, le=100, description="Messages per page")] = 50,
) -> ApiResponse[MessagePage]:
    """
    - **page**: 1-based page (default 1)
    - **limit**: page size (1-100, default 50)

    Only participants may read a conversation.
    """
    return ApiResponse(data=messaging.list_messages(db, user_id, conversation_id, page, limit))


@router.post(
    "",
    status_code=201,
    response_model=ApiResponse[MessageData],
    summary="Send message",
    description="Store a message and push it to the participants' live connections."
)
def send_message(
    body: SendMessageRequest,
    user_id: CurrentUser,
    db: DbSession,
    messaging: Messaging,
    session_id: Annotated[Optional[str], Header(alias="X-Session-Id", max_length=64)] = None,
) -> ApiResponse[MessageData]:
    """
    The optional ``X-Session-Id`` header names the caller's own realtime
    session so the echo to the sender's other sessions skips it.
    """
    message = messaging.send(db, user_id, body.conversation_id, body.content, body.type, origin_session=session_id)
    return ApiResponse(data=MessageData(message=message))


@router.put(
    "/{conversation_id}/read",
    response_model=ApiResponse[SuccessData],
    summary="Mark conversation read",
)
def mark_read(
    conversation_id: Annotated[str, Path(max_length=36)],
    user_id: CurrentUser,
    db: DbSession,
    messaging: Messaging,
) -> ApiResponse[SuccessData]:
    messaging.mark_read(db, user_id, conversation_id)
    return ApiResponse(data=SuccessData())
