"""
User directory endpoints.
"""
from typing import Annotated, Optional

from fastapi import APIRouter, Query

from chatrelay.api.deps import CurrentUser, DbSession, Messaging
from chatrelay.schemas.common import ApiResponse
from chatrelay.schemas.user import UsersData
from chatrelay.services import store

router = APIRouter(prefix="/users", tags=["Users"])

MIN_QUERY_LENGTH = 2


@router.get(
    "",
    response_model=ApiResponse[UsersData],
    summary="List users",
    description="Every registered user except the caller, with presence."
)
def list_users(user_id: CurrentUser, db: DbSession, messaging: Messaging) -> ApiResponse[UsersData]:
    users = store.list_users(db, user_id)
    return ApiResponse(data=UsersData(users=[messaging.user_view(u) for u in users]))


@router.get(
    "/search",
    response_model=ApiResponse[UsersData],
    summary="Search users",
    description="Substring search on username and display name. Queries shorter than 2 characters return nothing."
)
def search_users(
    user_id: CurrentUser,
    db: DbSession,
    messaging: Messaging,
    q: Annotated[Optional[str], Query(max_length=64, description="Search text")] = None,
) -> ApiResponse[UsersData]:
    query = (q or "").strip()
    if len(query) < MIN_QUERY_LENGTH:
        return ApiResponse(data=UsersData(users=[]))

    users = store.search_users(db, user_id, query)
    return ApiResponse(data=UsersData(users=[messaging.user_view(u) for u in users]))
