"""
Realtime gateway: authenticated WebSocket sessions, presence and frame relay.

Lifecycle of a connection: the ``token`` query parameter is verified on
connect (failure accepts, then closes with 1008 without registering), the
accepted connection is registered in the presence registry, inbound frames
are handled one at a time in arrival order, and on close the connection is
deregistered. A bad or failing frame is logged and skipped; it never ends
the session.
"""
import asyncio
import json
from contextlib import suppress
from typing import Annotated, Optional

from fastapi import APIRouter, Query, WebSocket, status
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from chatrelay.api import metrics
from chatrelay.core.config import get_settings
from chatrelay.core.errors import Unauthenticated
from chatrelay.core.logging import get_logger
from chatrelay.schemas.message import InboundFrame
from chatrelay.services.presence import Connection

logger = get_logger(__name__)

router = APIRouter(tags=["Realtime"])

SIGNAL_TYPES = frozenset({
    "call_offer",
    "call_answer",
    "ice_candidate",
    "call_reject",
    "call_end",
    "call_busy",
})
TYPING = "typing"


def parse_frame(raw: str) -> Optional[InboundFrame]:
    """Decode an inbound frame, or None if it is not a valid tagged object."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Ignoring non-JSON realtime frame: {e}")
        return None

    if not isinstance(data, dict):
        logger.warning("Ignoring realtime frame that is not an object")
        return None

    try:
        return InboundFrame.model_validate(data)
    except ValidationError as e:
        logger.warning(
            "Ignoring malformed realtime frame",
            extra={"extra_data": {"errors": e.error_count(), "type": data.get("type")}}
        )
        return None


def relay_signal(websocket: WebSocket, connection: Connection, frame: InboundFrame) -> None:
    """Forward a signaling frame verbatim; the sender is the authenticated user."""
    if not frame.to:
        logger.warning(
            "Ignoring signaling frame without target",
            extra={"extra_data": {"type": frame.type, "user_id": connection.user_id}}
        )
        metrics.record_frame(frame.type, "ignored")
        return

    outbound = {
        "type": frame.type,
        "from": connection.user_id,
        "to": frame.to,
        "payload": frame.payload,
    }
    delivered = websocket.app.state.relay.relay(frame.to, outbound)
    metrics.record_frame(frame.type, "delivered" if delivered else "dropped")
    logger.info(
        f"Relayed {frame.type}",
        extra={"extra_data": {"from": connection.user_id, "to": frame.to, "sessions": delivered}}
    )


async def relay_typing(websocket: WebSocket, connection: Connection, frame: InboundFrame) -> None:
    """Forward a typing indicator to ``to`` or to the conversation partner."""
    target = frame.to
    if target is None and frame.conversation_id:
        target = await run_in_threadpool(
            websocket.app.state.messaging.typing_target, connection.user_id, frame.conversation_id
        )
    if target is None:
        logger.debug(
            "Ignoring typing frame without resolvable target",
            extra={"extra_data": {"user_id": connection.user_id, "conversation_id": frame.conversation_id}}
        )
        metrics.record_frame(TYPING, "ignored")
        return

    outbound = {
        "type": TYPING,
        "userId": connection.user_id,
        "conversationId": frame.conversation_id,
        "isTyping": frame.is_typing,
    }
    delivered = websocket.app.state.relay.relay(target, outbound)
    metrics.record_frame(TYPING, "delivered" if delivered else "dropped")


async def handle_frame(websocket: WebSocket, connection: Connection, raw: str) -> None:
    frame = parse_frame(raw)
    if frame is None:
        metrics.record_frame("malformed", "ignored")
        return

    try:
        if frame.type in SIGNAL_TYPES:
            relay_signal(websocket, connection, frame)
        elif frame.type == TYPING:
            await relay_typing(websocket, connection, frame)
        else:
            logger.info(
                f"Unknown realtime frame type: {frame.type}",
                extra={"extra_data": {"user_id": connection.user_id}}
            )
            metrics.record_frame("unknown", "ignored")
    except Exception:
        # One failed frame never ends the session
        logger.exception(
            "Realtime frame handling failed",
            extra={"extra_data": {"type": frame.type, "user_id": connection.user_id, "session_id": connection.session_id}}
        )
        metrics.record_frame(frame.type, "failed")


@router.websocket("/ws")
@router.websocket("/")
async def realtime_gateway(
    websocket: WebSocket,
    token: Annotated[Optional[str], Query()] = None,
    session: Annotated[Optional[str], Query(max_length=64)] = None,
):
    """
    One realtime session: ``?token=<bearer>`` and optionally
    ``&session=<id>`` naming the session for send de-duplication.
    """
    state = websocket.app.state
    try:
        user_id = state.verifier.verify(token)
    except Unauthenticated as e:
        logger.info("Rejected realtime connection", extra={"extra_data": {"reason": e.message}})
        metrics.record_connection("rejected")
        # Accept first so clients see a 1008 close frame, not an HTTP 403
        await websocket.accept()
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid token")
        return

    await websocket.accept()
    connection = Connection(
        websocket,
        user_id,
        session_id=session,
        queue_size=get_settings().ws_outbound_queue_size,
    )
    writer = asyncio.create_task(connection.run_writer())
    state.presence.register(connection)
    metrics.record_connection("opened")
    logger.info(
        "Realtime connection opened",
        extra={
            "extra_data": {
                "user_id": user_id,
                "session_id": connection.session_id,
                "sessions": len(state.presence.connections_for(user_id)),
            }
        }
    )

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None and message.get("bytes") is not None:
                raw = message["bytes"].decode("utf-8", errors="replace")
            if raw is not None:
                await handle_frame(websocket, connection, raw)
    finally:
        went_offline = state.presence.deregister(connection)
        connection.close()
        writer.cancel()
        with suppress(asyncio.CancelledError):
            await writer
        logger.info(
            "Realtime connection closed",
            extra={"extra_data": {"user_id": user_id, "session_id": connection.session_id, "offline": went_offline}}
        )
