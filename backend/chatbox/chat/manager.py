"""Chat manager: the long-lived service that owns the real-time core.

This module wires together the pieces every WebSocket session shares:
    - PresenceRegistry: user id -> live connection
    - TypingTracker: recipient -> senders currently typing
    - FanoutRouter: persistence-first message routing and room broadcasts

Connection-handling code never touches the underlying maps; it goes through
the registry, tracker and router contracts.

Lifecycle:
    The FastAPI lifespan handler creates one ChatManager at start-up
    (``set_chat_manager``) and calls ``shutdown()`` when the server stops.
    ``get_chat_manager()`` builds one lazily from config when no lifespan ran
    (scripts, bare TestClient usage).

Thread Safety:
    Designed for a single asyncio event loop.  Each shared structure has its
    own asyncio.Lock; store calls run on worker threads.

Scaling:
    Presence is per process.  Running several workers needs an external
    presence store, which this module does not provide.
"""
import logging
from typing import Optional, Set

from fastapi import WebSocket

from chatbox.auth.dependencies import get_token_service
from chatbox.auth.service import TokenService
from chatbox.config import AppConfig, get_config
from chatbox.store import ChatStore, get_store

from .connection import Connection
from .fanout import FanoutRouter
from .presence import PresenceRegistry
from .session import ConnectionSession
from .typing_state import TypingTracker

logger = logging.getLogger(__name__)


class ChatManager:
    """Owns presence, typing state, the fanout router and live sessions."""

    def __init__(
        self,
        store: ChatStore,
        tokens: TokenService,
        config: Optional[AppConfig] = None,
    ) -> None:
        self.config = config or get_config()
        self.store = store
        self.tokens = tokens
        self.presence = PresenceRegistry()
        self.typing = TypingTracker()
        self.router = FanoutRouter(
            presence=self.presence,
            typing=self.typing,
            store=store,
            persist_timeout=self.config.database.persist_timeout_seconds,
        )
        self._sessions: Set[ConnectionSession] = set()
        self._shut_down = False

    @property
    def accepting(self) -> bool:
        """False once ``shutdown()`` has run; no new sessions are opened."""
        return not self._shut_down

    async def start(self) -> None:
        self._shut_down = False
        logger.info(
            "[Manager] Started (persist_timeout=%.1fs)",
            self.config.database.persist_timeout_seconds,
        )

    async def shutdown(self) -> None:
        """Close every live session and drop all in-memory state."""
        self._shut_down = True
        sessions = list(self._sessions)
        for session in sessions:
            try:
                await session.connection.websocket.close(code=1001)
            except Exception as exc:
                logger.debug("[Manager] Close failed for %r: %s", session.connection, exc)
            await session.close()
        await self.presence.clear()
        await self.typing.clear()
        await self.router.clear_rooms()
        logger.info("[Manager] Shut down (%d session(s) closed)", len(sessions))

    def open_session(self, websocket: WebSocket) -> ConnectionSession:
        """Wrap an accepted WebSocket in a new session.

        Raises:
            RuntimeError: The manager has been shut down.
        """
        if self._shut_down:
            raise RuntimeError("ChatManager is shut down")
        session = ConnectionSession(Connection(websocket), self)
        self._sessions.add(session)
        return session

    def session_for(self, connection: Connection) -> Optional[ConnectionSession]:
        """Return the live session that owns *connection*, if any."""
        for session in self._sessions:
            if session.connection is connection:
                return session
        return None

    def discard_session(self, session: ConnectionSession) -> None:
        self._sessions.discard(session)

    @property
    def session_count(self) -> int:
        return len(self._sessions)


_manager: Optional[ChatManager] = None


def get_chat_manager() -> ChatManager:
    """Return the process-wide ChatManager, creating it from config if needed."""
    global _manager
    if _manager is None:
        config = get_config()
        _manager = ChatManager(
            store=get_store(),
            tokens=get_token_service(),
            config=config,
        )
    return _manager


def set_chat_manager(manager: Optional[ChatManager]) -> None:
    global _manager
    _manager = manager
