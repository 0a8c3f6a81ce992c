"""Connection handles: one per live WebSocket.

A ``Connection`` is the opaque handle stored in the presence registry and in
room subscriptions.  Handles compare by identity, so a reconnect always
produces a handle distinct from the one it replaces.
"""
import asyncio
import logging
import uuid
from typing import Any, Dict

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from chatbox.errors import DeliveryFailure

logger = logging.getLogger(__name__)

_DISCONNECT_MESSAGES = (
    "websocket is not connected",
    "cannot call receive once a disconnect message has been received",
    "cannot call \"send\" once a close message has been sent",
)


def is_expected_disconnect(exc: BaseException) -> bool:
    """Return True when the exception represents normal transport teardown."""
    if isinstance(exc, WebSocketDisconnect):
        return True
    if isinstance(exc, (ConnectionResetError, BrokenPipeError, EOFError)):
        return True
    if isinstance(exc, RuntimeError):
        message = str(exc).strip().lower()
        return any(fragment in message for fragment in _DISCONNECT_MESSAGES)
    return False


class Connection:
    """Handle for one physical WebSocket.

    Attributes:
        id: Random identifier used in logs only.
        websocket: The underlying socket.
    """

    __slots__ = ("id", "websocket", "_send_lock", "_closed")

    def __init__(self, websocket: WebSocket) -> None:
        self.id = uuid.uuid4().hex[:12]
        self.websocket = websocket
        # Other sessions deliver into this socket concurrently
        self._send_lock = asyncio.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed or self.websocket.application_state == WebSocketState.DISCONNECTED

    def mark_closed(self) -> None:
        self._closed = True

    async def send(self, event: Dict[str, Any]) -> None:
        """Send one JSON event.

        Raises:
            DeliveryFailure: The socket is closed or the write failed.
        """
        if self.closed:
            raise DeliveryFailure(f"Connection {self.id} is closed")
        try:
            async with self._send_lock:
                await self.websocket.send_json(event)
        except Exception as exc:
            raise DeliveryFailure(f"Send to connection {self.id} failed: {exc}") from exc

    async def safe_send(self, event: Dict[str, Any]) -> bool:
        """Send one JSON event, logging instead of raising.

        Returns:
            True if successful, False if the connection failed.
        """
        try:
            await self.send(event)
            return True
        except DeliveryFailure as exc:
            logger.warning("[WS] %s (event=%s)", exc, event.get("type"))
            return False

    def __repr__(self) -> str:
        return f"Connection({self.id})"
