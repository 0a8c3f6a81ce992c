"""Connection session: the lifecycle of one WebSocket.

State machine:
    CONNECTED   socket open, no identity bound
    REGISTERED  identity bound in the presence registry
    CLOSED      terminal; cleanup has run

Inbound frames are handled one at a time, in arrival order: the receive loop
awaits each handler (including its store call and fanout) before reading the
next frame.

Cleanup on close runs exactly once, whether the close was clean or caused by
an error:
    1. presence ``unregister(connection)`` (no-op for a stale handle)
    2. typing cleanup for the bound user, notifying affected recipients
    3. removal from every room subscription
"""
import json
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional

import anyio
from fastapi import WebSocketDisconnect

from chatbox.errors import AuthFailure, ChatError, InvalidPayload, NotRegistered

from .connection import Connection, is_expected_disconnect
from .events import (
    ClientEvent,
    DirectMessagePayload,
    RegisterPayload,
    RoomMessagePayload,
    RoomPayload,
    ServerEvent,
    TypingPayload,
    error_event,
    event,
    parse_payload,
)

if TYPE_CHECKING:
    from .manager import ChatManager

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    CONNECTED = "connected"
    REGISTERED = "registered"
    CLOSED = "closed"


class ConnectionSession:
    """Owns one connection's registration and dispatches its events."""

    def __init__(self, connection: Connection, manager: "ChatManager") -> None:
        self.connection = connection
        self.manager = manager
        self.state = SessionState.CONNECTED
        self.user_id: Optional[str] = None

        self._handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[None]]] = {
            ClientEvent.REGISTER.value: self._on_register,
            ClientEvent.JOIN_ROOM.value: self._on_join_room,
            ClientEvent.LEAVE_ROOM.value: self._on_leave_room,
            ClientEvent.SEND_MESSAGE.value: self._on_send_message,
            ClientEvent.SEND_ROOM_MESSAGE.value: self._on_send_room_message,
            ClientEvent.TYPING.value: self._on_typing,
            ClientEvent.STOP_TYPING.value: self._on_stop_typing,
        }

    @property
    def router(self):
        return self.manager.router

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def run(self) -> None:
        """Receive and handle frames until the transport closes."""
        logger.info("[WS] Session opened on %r", self.connection)
        try:
            while True:
                raw = await self._receive()
                try:
                    data = json.loads(raw)
                except (TypeError, ValueError):
                    await self.connection.safe_send(
                        error_event("Invalid message format: expected JSON", InvalidPayload.code)
                    )
                    continue
                await self.handle(data)
        except Exception as exc:
            if is_expected_disconnect(exc):
                logger.info("[WS] %r disconnected (user=%s)", self.connection, self.user_id)
            else:
                logger.exception("[WS] Session on %r failed", self.connection)
        finally:
            # Cleanup must finish even when the server cancels this task
            with anyio.CancelScope(shield=True):
                await self.close()

    async def _receive(self) -> str:
        message = await self.connection.websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(message.get("code", 1000))
        if message.get("text") is not None:
            return message["text"]
        if message.get("bytes") is not None:
            return message["bytes"].decode("utf-8", errors="replace")
        return ""

    async def handle(self, data: Any) -> None:
        """Dispatch one decoded frame; domain errors go back as ``error_message``."""
        if not isinstance(data, dict):
            await self.connection.safe_send(
                error_event("Invalid message format: expected an object", InvalidPayload.code)
            )
            return

        kind = data.get("type")
        handler = self._handlers.get(kind) if isinstance(kind, str) else None
        if handler is None:
            await self.connection.safe_send(
                error_event(f"Unknown event type: {kind}", "unknown_event")
            )
            return

        logger.debug("[WS] %r received type=%s", self.connection, kind)
        try:
            await handler(data)
        except ChatError as exc:
            logger.info("[WS] %s on %r: %s", exc.code, self.connection, exc.message)
            await self.connection.safe_send(error_event(exc.message, exc.code))
        except Exception:
            logger.exception("[WS] Unhandled error for type=%s on %r", kind, self.connection)
            await self.connection.safe_send(error_event("Internal Server Error", "internal_error"))

    async def close(self) -> None:
        """Run cleanup exactly once."""
        if self.state == SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        self.connection.mark_closed()

        try:
            await self.manager.presence.unregister(self.connection)
        except Exception:
            logger.exception("[WS] Presence cleanup failed for %r", self.connection)

        if self.user_id is not None:
            try:
                await self.router.clear_typing_for_sender(self.user_id)
            except Exception:
                logger.exception("[WS] Typing cleanup failed for %s", self.user_id)

        try:
            await self.router.leave_all_rooms(self.connection)
        except Exception:
            logger.exception("[WS] Room cleanup failed for %r", self.connection)

        self.manager.discard_session(self)
        logger.info("[WS] Session closed on %r (user=%s)", self.connection, self.user_id)

    # =========================================================================
    # Identity
    # =========================================================================

    async def _on_register(self, data: Dict[str, Any]) -> None:
        payload = parse_payload(RegisterPayload, data)

        if self.manager.config.chat.require_register_token:
            if not payload.token:
                raise AuthFailure("Token required to register")
            if self.manager.tokens.verify(payload.token) != payload.userId:
                raise AuthFailure("Token does not match userId")

        if self.user_id is not None and self.user_id != payload.userId:
            # One handle never serves two identities
            await self._release_identity()

        superseded = await self.manager.presence.register(payload.userId, self.connection)
        self.user_id = payload.userId
        self.state = SessionState.REGISTERED

        if superseded is not None:
            previous = self.manager.session_for(superseded)
            if previous is not None:
                await previous.demote()
            await superseded.safe_send(error_event(
                "Signed in from another connection", "superseded"
            ))
        await self.connection.safe_send(event(ServerEvent.REGISTERED, userId=self.user_id))

    async def _release_identity(self) -> None:
        old_user = self.user_id
        await self.manager.presence.unregister(self.connection)
        await self.router.clear_typing_for_sender(old_user)
        self.user_id = None
        self.state = SessionState.CONNECTED
        logger.info("[WS] %r released identity %s", self.connection, old_user)

    async def demote(self) -> None:
        """Drop the identity a newer connection has taken over.

        The presence entry already belongs to the newer connection; this
        session neither acts as the user nor runs their typing cleanup, and
        its room subscriptions are dropped.
        """
        if self.state != SessionState.REGISTERED:
            return
        logger.info("[WS] %r superseded for %s", self.connection, self.user_id)
        self.user_id = None
        self.state = SessionState.CONNECTED
        await self.router.leave_all_rooms(self.connection)

    def _require_identity(self, claimed_sender: Optional[str] = None) -> str:
        """Return the bound user id.

        Raises:
            NotRegistered: No identity bound yet.
            AuthFailure: *claimed_sender* differs from the bound identity.
        """
        if self.state != SessionState.REGISTERED or self.user_id is None:
            raise NotRegistered("Register before sending events")
        if claimed_sender is not None and claimed_sender != self.user_id:
            raise AuthFailure("senderId does not match the registered identity")
        return self.user_id

    def _validate_body(self, body: str) -> str:
        if not body or not body.strip():
            raise InvalidPayload("Invalid message format: message is required")
        limit = self.manager.config.chat.max_message_length
        if len(body) > limit:
            raise InvalidPayload(f"Message exceeds {limit} characters")
        return body

    # =========================================================================
    # Rooms
    # =========================================================================

    async def _on_join_room(self, data: Dict[str, Any]) -> None:
        self._require_identity()
        payload = parse_payload(RoomPayload, data)
        await self.router.join_room(self.connection, payload.roomId)
        await self.connection.safe_send(event(ServerEvent.ROOM_JOINED, roomId=payload.roomId))

    async def _on_leave_room(self, data: Dict[str, Any]) -> None:
        self._require_identity()
        payload = parse_payload(RoomPayload, data)
        await self.router.leave_room(self.connection, payload.roomId)
        await self.connection.safe_send(event(ServerEvent.ROOM_LEFT, roomId=payload.roomId))

    # =========================================================================
    # Messages
    # =========================================================================

    async def _on_send_message(self, data: Dict[str, Any]) -> None:
        payload = parse_payload(DirectMessagePayload, data)
        sender_id = self._require_identity(payload.senderId)
        body = self._validate_body(payload.message)
        await self.router.send_direct_message(sender_id, payload.receiverId, body, self.connection)

    async def _on_send_room_message(self, data: Dict[str, Any]) -> None:
        payload = parse_payload(RoomMessagePayload, data)
        sender_id = self._require_identity(payload.senderId)
        body = self._validate_body(payload.message)
        await self.router.send_room_message(sender_id, payload.roomId, body, self.connection)

    # =========================================================================
    # Typing
    # =========================================================================

    async def _on_typing(self, data: Dict[str, Any]) -> None:
        payload = parse_payload(TypingPayload, data)
        sender_id = self._require_identity(payload.senderId)
        await self.router.route_typing(sender_id, payload.receiverId)

    async def _on_stop_typing(self, data: Dict[str, Any]) -> None:
        payload = parse_payload(TypingPayload, data)
        sender_id = self._require_identity(payload.senderId)
        await self.router.route_stop_typing(sender_id, payload.receiverId)
