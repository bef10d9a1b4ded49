"""
Registration, login and current-user endpoints.
"""
from fastapi import APIRouter

from chatrelay.api.deps import CurrentUser, DbSession, Messaging, Verifier
from chatrelay.core.errors import NotFound, Unauthenticated
from chatrelay.core.logging import get_logger
from chatrelay.core.security import hash_password, verify_password
from chatrelay.schemas.common import ApiResponse
from chatrelay.schemas.user import AuthData, LoginRequest, RegisterRequest, UserData
from chatrelay.services import store

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.post(
    "/register",
    status_code=201,
    response_model=ApiResponse[AuthData],
    summary="Register",
    description="Create an account and return a bearer token for it."
)
def register(
    body: RegisterRequest,
    db: DbSession,
    messaging: Messaging,
    verifier: Verifier,
) -> ApiResponse[AuthData]:
    user = store.create_user(db, body.username, hash_password(body.password), body.display_name)
    token = verifier.issue(user.id)
    return ApiResponse(data=AuthData(token=token, user=messaging.user_view(user)))


@router.post(
    "/login",
    response_model=ApiResponse[AuthData],
    summary="Log in",
    description="Exchange username and password for a bearer token."
)
def login(
    body: LoginRequest,
    db: DbSession,
    messaging: Messaging,
    verifier: Verifier,
) -> ApiResponse[AuthData]:
    user = store.find_user_by_username(db, body.username)
    if user is None or not verify_password(body.password, user.password_hash):
        logger.info("Login failed", extra={"extra_data": {"username": body.username.lower()}})
        raise Unauthenticated("Invalid credentials")

    token = verifier.issue(user.id)
    logger.info("Login succeeded", extra={"extra_data": {"user_id": user.id}})
    return ApiResponse(data=AuthData(token=token, user=messaging.user_view(user)))


@router.get(
    "/me",
    response_model=ApiResponse[UserData],
    summary="Current user",
)
def me(user_id: CurrentUser, db: DbSession, messaging: Messaging) -> ApiResponse[UserData]:
    user = store.get_user(db, user_id)
    if user is None:
        raise NotFound("User not found")
    return ApiResponse(data=UserData(user=messaging.user_view(user)))
