"""
Fan-out of frames to a user's live connections.
"""
import json
from typing import Any, Dict, Optional

from chatrelay.core.logging import get_logger
from chatrelay.services.presence import PresenceRegistry

logger = get_logger(__name__)


class Relay:
    """
    Routes frames to every live connection of an addressed user.

    Delivery is fire-and-forget: an offline target means the frame is
    dropped. Payload values are serialized as given and never inspected.
    """

    def __init__(self, registry: PresenceRegistry):
        self._registry = registry

    def relay(self, target_user: str, frame: Dict[str, Any]) -> int:
        """Push ``frame`` to all of ``target_user``'s sessions; returns how many."""
        return self.deliver(target_user, frame)

    def deliver(self, user_id: str, frame: Dict[str, Any], exclude_session: Optional[str] = None) -> int:
        """Like ``relay`` but optionally skipping one session of the user."""
        targets = [
            connection
            for connection in self._registry.connections_for(user_id)
            if exclude_session is None or connection.session_id != exclude_session
        ]
        if not targets:
            logger.debug(
                "No live connections, frame dropped",
                extra={"extra_data": {"user_id": user_id, "type": frame.get("type")}}
            )
            return 0

        text = json.dumps(frame, separators=(",", ":"))
        for connection in targets:
            connection.push(text)
        return len(targets)
