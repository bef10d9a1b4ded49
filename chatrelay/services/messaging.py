"""
Conversation and message service.

Orchestrates the durable store and the presence registry: every read is
enriched with live presence, every send is pushed to the participants'
connections after the store write succeeds.
"""
import asyncio
from contextlib import suppress
from typing import List, Optional

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from chatrelay.core.database import get_db_context
from chatrelay.core.errors import Forbidden
from chatrelay.core.logging import get_logger
from chatrelay.models.conversation import Conversation
from chatrelay.models.message import Message, MessageStatus, MessageType
from chatrelay.models.user import User
from chatrelay.schemas.conversation import ConversationOut
from chatrelay.schemas.message import MessageOut, MessagePage
from chatrelay.schemas.user import UserOut
from chatrelay.services import store
from chatrelay.services.presence import PresenceRegistry
from chatrelay.services.relay import Relay

logger = get_logger(__name__)


class MessagingService:
    """Send/read/list operations with their realtime side effects."""

    def __init__(self, registry: PresenceRegistry, relay: Relay):
        self.registry = registry
        self.relay = relay

    # Views

    def user_view(self, user: User) -> UserOut:
        return UserOut(
            id=user.id,
            username=user.username,
            display_name=user.display_name,
            avatar=user.avatar,
            online=self.registry.is_online(user.id),
        )

    def conversation_view(self, conversation: Conversation, partner: Optional[User], viewer_id: str,
                          unread_count: int = 0) -> ConversationOut:
        partner_id = conversation.other_participant(viewer_id)
        return ConversationOut(
            id=conversation.id,
            participant_id=partner_id,
            participant_name=partner.display_name if partner else "",
            participant_avatar=partner.avatar if partner else None,
            last_message=conversation.last_message or "",
            last_message_time=conversation.last_message_time or 0,
            unread_count=unread_count,
            is_online=self.registry.is_online(partner_id),
        )

    @staticmethod
    def message_view(message: Message, sender_name: str) -> MessageOut:
        return MessageOut(
            id=message.id,
            conversation_id=message.conversation_id,
            sender_id=message.sender_id,
            sender_name=sender_name,
            content=message.content,
            type=message.type,
            status=message.status,
            timestamp=message.timestamp,
        )

    # Conversations

    def get_or_create_conversation(self, db: Session, user_id: str, participant_id: str) -> ConversationOut:
        conversation = store.get_or_create_conversation(db, user_id, participant_id)
        partner = store.get_user(db, participant_id)
        unread = store.unread_count(db, conversation.id, user_id)
        return self.conversation_view(conversation, partner, user_id, unread)

    def list_conversations(self, db: Session, user_id: str) -> List[ConversationOut]:
        return [
            self.conversation_view(row.conversation, row.partner, user_id, row.unread_count)
            for row in store.list_conversations(db, user_id)
        ]

    def typing_target(self, user_id: str, conversation_id: str) -> Optional[str]:
        """The other participant of a conversation, or None if the user is not in it."""
        with get_db_context() as db:
            try:
                conversation = store.get_participant_conversation(db, conversation_id, user_id)
            except Forbidden:
                return None
            return conversation.other_participant(user_id)

    # Messages

    def list_messages(self, db: Session, user_id: str, conversation_id: str,
                      page: int = 1, limit: int = 50) -> MessagePage:
        messages, has_more = store.list_messages(db, conversation_id, user_id, page, limit)
        names = store.display_names(db, {m.sender_id for m in messages})
        return MessagePage(
            messages=[self.message_view(m, names.get(m.sender_id, "")) for m in messages],
            has_more=has_more,
            page=page,
        )

    def send(
        self,
        db: Session,
        sender_id: str,
        conversation_id: str,
        content: str,
        msg_type: MessageType = MessageType.TEXT,
        origin_session: Optional[str] = None,
    ) -> MessageOut:
        """
        Store a message and push it live.

        The message counts as sent once it is stored; push failures are
        logged only. The recipient gets it on every session, the sender on
        every session except ``origin_session``.
        """
        conversation = store.get_participant_conversation(db, conversation_id, sender_id)
        message = store.insert_message(db, conversation.id, sender_id, content, msg_type, MessageStatus.SENT)

        sender = store.get_user(db, sender_id)
        out = self.message_view(message, sender.display_name if sender else "")

        logger.info(
            "Message stored",
            extra={
                "extra_data": {
                    "message_id": message.id,
                    "conversation_id": conversation.id,
                    "sender_id": sender_id,
                }
            }
        )

        self._broadcast_new_message(out, conversation.other_participant(sender_id), origin_session)
        return out

    def _broadcast_new_message(self, message: MessageOut, recipient_id: str, origin_session: Optional[str]) -> None:
        frame = {"type": "new_message", "data": message.model_dump(by_alias=True, mode="json")}
        try:
            delivered = self.relay.deliver(recipient_id, frame)
            echoed = self.relay.deliver(message.sender_id, frame, exclude_session=origin_session)
        except Exception:
            logger.exception(
                "new_message broadcast failed",
                extra={"extra_data": {"message_id": message.id}}
            )
            return
        logger.debug(
            "new_message broadcast",
            extra={"extra_data": {"message_id": message.id, "recipient_sessions": delivered, "sender_sessions": echoed}}
        )

    def mark_read(self, db: Session, user_id: str, conversation_id: str) -> int:
        return store.upsert_read_cursor(db, conversation_id, user_id)

    # Presence

    def broadcast_presence(self, user_id: str, online: bool) -> int:
        """Send ``user_status`` to the user's conversation partners only."""
        with get_db_context() as db:
            partners = store.partner_ids(db, user_id)

        frame = {"type": "user_status", "userId": user_id, "online": online}
        return sum(self.relay.deliver(partner, frame) for partner in partners)


class PresenceBroadcaster:
    """
    Single worker that turns registry transitions into ``user_status`` frames.

    Transitions are queued in the order the registry reports them and handled
    one at a time, so a user's online/offline events never overtake each
    other. Partner lookups run in the threadpool.
    """

    def __init__(self, service: MessagingService):
        self._service = service
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._task = self._loop.create_task(self._run())

    async def stop(self) -> None:
        task, self._task = self._task, None
        self._loop = None
        if task is not None:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    def notify(self, user_id: str, online: bool) -> None:
        """Registry listener; safe to call from any thread."""
        loop = self._loop
        if loop is None:
            logger.debug(
                "Presence broadcaster not running, transition not announced",
                extra={"extra_data": {"user_id": user_id, "online": online}}
            )
            return
        try:
            loop.call_soon_threadsafe(self._queue.put_nowait, (user_id, online))
        except RuntimeError:
            logger.debug("Presence transition after event loop shutdown", extra={"extra_data": {"user_id": user_id}})

    async def _run(self) -> None:
        while True:
            user_id, online = await self._queue.get()
            try:
                delivered = await run_in_threadpool(self._service.broadcast_presence, user_id, online)
            except Exception:
                logger.exception(
                    "Presence broadcast failed",
                    extra={"extra_data": {"user_id": user_id, "online": online}}
                )
                continue
            logger.debug(
                "Presence broadcast",
                extra={"extra_data": {"user_id": user_id, "online": online, "sessions": delivered}}
            )
