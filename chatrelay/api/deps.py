"""
Shared FastAPI dependencies.
"""
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from chatrelay.core.database import get_db
from chatrelay.core.security import IdentityVerifier, get_current_user_id
from chatrelay.services.messaging import MessagingService


def get_messaging(request: Request) -> MessagingService:
    return request.app.state.messaging


def get_verifier(request: Request) -> IdentityVerifier:
    return request.app.state.verifier


CurrentUser = Annotated[str, Depends(get_current_user_id)]
DbSession = Annotated[Session, Depends(get_db)]
Messaging = Annotated[MessagingService, Depends(get_messaging)]
Verifier = Annotated[IdentityVerifier, Depends(get_verifier)]
