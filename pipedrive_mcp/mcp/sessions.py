"""
Session registry for SSE clients.

Each open event stream owns one session: the send side of the memory stream
that feeds its MCP server session. Message POSTs find their stream here.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from uuid import uuid4

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """One connected SSE client."""
    session_id: str
    channel: Any
    created_at: float = field(default_factory=time.time)


class SessionRegistry:
    """
    In-memory mapping from session id to open channel.

    All mutations happen on the event loop thread, so no lock is needed.
    Identifiers are random UUIDs and are never handed out twice within the
    lifetime of the registry.
    """

    def __init__(self):
        """Initialize an empty registry."""
        self._sessions: Dict[str, Session] = {}

    def register(self, channel: Any) -> str:
        """
        Create a session for a newly opened stream.

        Args:
            channel: Object messages for this session are sent to

        Returns:
            The new session id
        """
        session_id = uuid4().hex
        while session_id in self._sessions:
            session_id = uuid4().hex
        self._sessions[session_id] = Session(session_id=session_id, channel=channel)
        logger.debug("Registered session %s (%d active)", session_id, len(self._sessions))
        return session_id

    def lookup(self, session_id: str) -> Optional[Session]:
        """Return the session, or None when the id is unknown."""
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> bool:
        """
        Forget a session.

        Returns:
            True if the session existed, False if it was already gone
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        logger.debug(
            "Removed session %s after %.1fs (%d active)",
            session_id,
            time.time() - session.created_at,
            len(self._sessions),
        )
        return True

    def session_ids(self) -> List[str]:
        return list(self._sessions.keys())

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions
