"""
Presence registry: which users are online, and through which connections.

A user may hold several live connections (devices, tabs). The registry maps
user id -> set of Connection push handles and is the only shared mutable
state in the process. Every read and write goes through the lock; readers
get snapshots they can iterate without holding it.
"""
import asyncio
import threading
import uuid
from typing import Callable, Dict, FrozenSet, List, Optional, Set

from chatrelay.core.logging import get_logger

logger = get_logger(__name__)

PresenceListener = Callable[[str, bool], None]


class Connection:
    """
    Push handle for one live realtime session.

    Frames are queued on a bounded outbox and written by ``run_writer`` on
    the connection's event loop. ``push`` may be called from any thread and
    never blocks; a full outbox drops the frame for this connection only.
    """

    def __init__(self, websocket, user_id: str, session_id: Optional[str] = None, queue_size: int = 256):
        self.websocket = websocket
        self.user_id = user_id
        self.session_id = session_id or str(uuid.uuid4())
        self.dropped = 0
        self._loop = asyncio.get_running_loop()
        self._outbox: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._closed = False

    def push(self, text: str) -> None:
        """Queue a serialized frame for delivery."""
        try:
            self._loop.call_soon_threadsafe(self._enqueue, text)
        except RuntimeError:
            # Loop already closed: the connection is gone
            logger.debug("Push after event loop shutdown", extra={"extra_data": {"session_id": self.session_id}})

    def _enqueue(self, text: str) -> None:
        if self._closed:
            return
        try:
            self._outbox.put_nowait(text)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Outbound queue full, dropping frame",
                extra={"extra_data": {"user_id": self.user_id, "session_id": self.session_id, "dropped": self.dropped}}
            )

    async def run_writer(self) -> None:
        """Drain the outbox onto the socket until cancelled or the transport fails."""
        while True:
            text = await self._outbox.get()
            try:
                await self.websocket.send_text(text)
            except Exception as e:
                logger.info(
                    "Realtime send failed, stopping writer",
                    extra={"extra_data": {"user_id": self.user_id, "session_id": self.session_id, "error": str(e)}}
                )
                self._closed = True
                return

    def close(self) -> None:
        """Stop accepting frames; anything still queued is discarded."""
        self._closed = True

    def __repr__(self) -> str:
        return f"<Connection(user_id={self.user_id}, session_id={self.session_id})>"


class PresenceRegistry:
    """Process-wide user -> live connections mapping."""

    def __init__(self):
        self._lock = threading.Lock()
        self._connections: Dict[str, Set[Connection]] = {}
        self._listeners: List[PresenceListener] = []

    def add_listener(self, listener: PresenceListener) -> None:
        """
        Subscribe to online/offline transitions.

        Listeners run while the registry lock is held, so they see transitions
        in order; they must hand off work instead of doing it inline.
        """
        with self._lock:
            self._listeners.append(listener)

    def register(self, connection: Connection) -> bool:
        """Add a connection. Returns True if the user just came online."""
        with self._lock:
            sessions = self._connections.setdefault(connection.user_id, set())
            came_online = not sessions
            sessions.add(connection)
            if came_online:
                self._notify(connection.user_id, True)
        return came_online

    def deregister(self, connection: Connection) -> bool:
        """Remove a connection. Returns True if the user just went offline."""
        with self._lock:
            sessions = self._connections.get(connection.user_id)
            if not sessions or connection not in sessions:
                return False
            sessions.discard(connection)
            went_offline = not sessions
            if went_offline:
                del self._connections[connection.user_id]
                self._notify(connection.user_id, False)
        return went_offline

    def connections_for(self, user_id: str) -> FrozenSet[Connection]:
        with self._lock:
            return frozenset(self._connections.get(user_id, ()))

    def is_online(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._connections

    def online_count(self) -> int:
        with self._lock:
            return len(self._connections)

    def connection_count(self) -> int:
        with self._lock:
            return sum(len(sessions) for sessions in self._connections.values())

    def _notify(self, user_id: str, online: bool) -> None:
        for listener in self._listeners:
            try:
                listener(user_id, online)
            except Exception:
                logger.exception(
                    "Presence listener failed",
                    extra={"extra_data": {"user_id": user_id, "online": online}}
                )
