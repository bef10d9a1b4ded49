"""
Durable store: users, conversations, messages and read cursors.

Each function takes a Session and commits its own unit of work, so callers
get atomic operations without managing transactions themselves.
"""
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple, Union

from sqlalchemy import case, func, or_, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from chatrelay.core.errors import Conflict, Forbidden, Malformed, NotFound, StoreUnavailable
from chatrelay.core.logging import get_logger
from chatrelay.models.conversation import Conversation, canonical_pair
from chatrelay.models.message import Message, MessageStatus, MessageType
from chatrelay.models.read_cursor import ReadCursor
from chatrelay.models.user import User, now_ms

logger = get_logger(__name__)

SEARCH_LIMIT = 20
LIKE_ESCAPE = "\\"


class ConversationRow(NamedTuple):
    conversation: Conversation
    partner: Optional[User]
    unread_count: int


def _commit(db: Session) -> None:
    try:
        db.commit()
    except OperationalError as e:
        db.rollback()
        logger.error(f"Store write failed: {e}")
        raise StoreUnavailable() from e


def normalize_username(username: str) -> str:
    return username.strip().lower()


# Users

def create_user(db: Session, username: str, password_hash: str, display_name: str) -> User:
    """Insert a user; duplicate usernames (any case) raise Conflict."""
    normalized = normalize_username(username)
    if find_user_by_username(db, normalized) is not None:
        raise Conflict("Username already taken")

    user = User(username=normalized, password_hash=password_hash, display_name=display_name)
    db.add(user)
    try:
        _commit(db)
    except IntegrityError:
        # Another registration won the unique index
        db.rollback()
        raise Conflict("Username already taken")

    logger.info("User created", extra={"extra_data": {"user_id": user.id, "username": normalized}})
    return user


def find_user_by_username(db: Session, username: str) -> Optional[User]:
    return db.query(User).filter(User.username == normalize_username(username)).first()


def get_user(db: Session, user_id: str) -> Optional[User]:
    return db.get(User, user_id)


def list_users(db: Session, exclude_id: str) -> List[User]:
    """Every user except ``exclude_id``."""
    return (
        db.query(User)
        .filter(User.id != exclude_id)
        .order_by(User.display_name.asc(), User.username.asc())
        .all()
    )


def _escape_like(text: str) -> str:
    """Make ``%`` and ``_`` in user input match literally."""
    return (
        text.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def search_users(db: Session, exclude_id: str, query: str, limit: int = SEARCH_LIMIT) -> List[User]:
    """Case-insensitive substring match on username or display name."""
    pattern = f"%{_escape_like(query)}%"
    return (
        db.query(User)
        .filter(
            User.id != exclude_id,
            or_(
                User.username.ilike(pattern, escape=LIKE_ESCAPE),
                User.display_name.ilike(pattern, escape=LIKE_ESCAPE),
            ),
        )
        .order_by(User.username.asc())
        .limit(limit)
        .all()
    )


def display_names(db: Session, user_ids: Iterable[str]) -> Dict[str, str]:
    ids = set(user_ids)
    if not ids:
        return {}
    rows = db.query(User.id, User.display_name).filter(User.id.in_(ids)).all()
    return {user_id: name for user_id, name in rows}


# Conversations

def _find_pair(db: Session, first: str, second: str) -> Optional[Conversation]:
    return (
        db.query(Conversation)
        .filter(
            Conversation.participant_a_id == first,
            Conversation.participant_b_id == second,
        )
        .first()
    )


def get_or_create_conversation(db: Session, user_a: str, user_b: str) -> Conversation:
    """
    Return the single conversation for an unordered pair, creating it on first contact.

    Concurrent first contact is resolved by the unique constraint on the
    canonical pair: the losing insert rolls back and reads the winner's row.
    """
    if user_a == user_b:
        raise Malformed("Cannot start a conversation with yourself")

    first, second = canonical_pair(user_a, user_b)
    known = db.query(func.count(User.id)).filter(User.id.in_((first, second))).scalar()
    if known != 2:
        raise NotFound("User not found")

    conversation = _find_pair(db, first, second)
    if conversation is not None:
        return conversation

    conversation = Conversation(participant_a_id=first, participant_b_id=second)
    db.add(conversation)
    try:
        _commit(db)
    except IntegrityError:
        db.rollback()
        conversation = _find_pair(db, first, second)
        if conversation is None:
            raise
        logger.debug(
            "Conversation insert lost race, using existing row",
            extra={"extra_data": {"conversation_id": conversation.id}}
        )
        return conversation

    logger.info(
        "Conversation created",
        extra={"extra_data": {"conversation_id": conversation.id, "participants": [first, second]}}
    )
    return conversation


def get_participant_conversation(db: Session, conversation_id: str, user_id: str) -> Conversation:
    """Load a conversation the user takes part in; anything else is Forbidden."""
    conversation = db.get(Conversation, conversation_id)
    if conversation is None or not conversation.has_participant(user_id):
        raise Forbidden()
    return conversation


def partner_ids(db: Session, user_id: str) -> List[str]:
    """Users that share a conversation with ``user_id``."""
    rows = (
        db.query(Conversation.participant_a_id, Conversation.participant_b_id)
        .filter(or_(Conversation.participant_a_id == user_id, Conversation.participant_b_id == user_id))
        .all()
    )
    return [second if first == user_id else first for first, second in rows]


def unread_count(db: Session, conversation_id: str, user_id: str) -> int:
    """Messages from the other participant newer than the user's read cursor."""
    cursor = (
        db.query(ReadCursor.last_read_time)
        .filter(ReadCursor.conversation_id == conversation_id, ReadCursor.user_id == user_id)
        .scalar()
    ) or 0
    return (
        db.query(func.count(Message.id))
        .filter(
            Message.conversation_id == conversation_id,
            Message.sender_id != user_id,
            Message.timestamp > cursor,
        )
        .scalar()
    ) or 0


def list_conversations(db: Session, user_id: str) -> List[ConversationRow]:
    """Conversations of ``user_id``, most recent activity first."""
    conversations = (
        db.query(Conversation)
        .filter(or_(Conversation.participant_a_id == user_id, Conversation.participant_b_id == user_id))
        .order_by(Conversation.last_message_time.desc(), Conversation.created_at.desc())
        .all()
    )

    other_ids = {c.other_participant(user_id) for c in conversations}
    partners = {}
    if other_ids:
        partners = {u.id: u for u in db.query(User).filter(User.id.in_(other_ids))}

    return [
        ConversationRow(
            conversation=c,
            partner=partners.get(c.other_participant(user_id)),
            unread_count=unread_count(db, c.id, user_id),
        )
        for c in conversations
    ]


# Messages

def insert_message(
    db: Session,
    conversation_id: str,
    sender_id: str,
    content: str,
    msg_type: Union[MessageType, str] = MessageType.TEXT,
    status: Union[MessageStatus, str] = MessageStatus.SENT,
    timestamp: Optional[int] = None,
) -> Message:
    """
    Insert a message and update the conversation summary in one transaction.

    The conversation row is updated first, which takes its write lock and
    serializes concurrent inserts. The assigned timestamp is
    ``max(requested, last_message_time + 1)`` so timestamps are strictly
    increasing in insertion order within a conversation.
    """
    requested = timestamp if timestamp is not None else now_ms()

    result = db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(
            last_message=content,
            last_message_time=case(
                (Conversation.last_message_time >= requested, Conversation.last_message_time + 1),
                else_=requested,
            ),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        raise NotFound("Conversation not found")

    conversation = db.get(Conversation, conversation_id, populate_existing=True)

    message = Message(
        conversation_id=conversation_id,
        sender_id=sender_id,
        content=content,
        type=MessageType(msg_type).value,
        status=MessageStatus(status).value,
        timestamp=conversation.last_message_time,
    )
    db.add(message)
    _commit(db)
    return message


def update_message_status(db: Session, message_id: str, status: Union[MessageStatus, str]) -> Message:
    message = db.get(Message, message_id)
    if message is None:
        raise NotFound("Message not found")
    message.status = MessageStatus(status).value
    _commit(db)
    return message


def list_messages(
    db: Session,
    conversation_id: str,
    user_id: str,
    page: int = 1,
    limit: int = 50,
) -> Tuple[List[Message], bool]:
    """
    One page of a conversation, newest first.

    Returns:
        (messages, has_more) where has_more is true when later pages exist

    Raises:
        Forbidden: if ``user_id`` is not a participant
    """
    get_participant_conversation(db, conversation_id, user_id)

    offset = (page - 1) * limit
    total = (
        db.query(func.count(Message.id))
        .filter(Message.conversation_id == conversation_id)
        .scalar()
    ) or 0
    messages = (
        db.query(Message)
        .filter(Message.conversation_id == conversation_id)
        .order_by(Message.timestamp.desc(), Message.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return messages, offset + len(messages) < total


def upsert_read_cursor(
    db: Session,
    conversation_id: str,
    user_id: str,
    timestamp: Optional[int] = None,
) -> int:
    """
    Advance the user's read cursor and mark the partner's messages READ.

    Both changes commit together. The cursor never moves backwards and is at
    least the conversation's latest message time, so the unread count is zero
    right after this call.

    Returns:
        Number of messages whose status flipped to READ
    """
    get_participant_conversation(db, conversation_id, user_id)

    marked = db.execute(
        update(Message)
        .where(
            Message.conversation_id == conversation_id,
            Message.sender_id != user_id,
            Message.status != MessageStatus.READ.value,
        )
        .values(status=MessageStatus.READ.value)
        .execution_options(synchronize_session=False)
    ).rowcount

    latest = (
        db.query(Conversation.last_message_time)
        .filter(Conversation.id == conversation_id)
        .scalar()
    ) or 0
    stamp = max(timestamp if timestamp is not None else now_ms(), latest)

    cursor = db.get(ReadCursor, (conversation_id, user_id))
    if cursor is None:
        db.add(ReadCursor(conversation_id=conversation_id, user_id=user_id, last_read_time=stamp))
    else:
        cursor.last_read_time = max(cursor.last_read_time or 0, stamp)

    try:
        _commit(db)
    except IntegrityError:
        # A concurrent first mark-read inserted the cursor; retry as an update
        db.rollback()
        return upsert_read_cursor(db, conversation_id, user_id, timestamp)

    logger.debug(
        "Conversation marked read",
        extra={"extra_data": {"conversation_id": conversation_id, "user_id": user_id, "marked": marked}}
    )
    return marked
