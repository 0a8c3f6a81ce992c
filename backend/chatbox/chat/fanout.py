"""Fanout router: decides who receives an outbound event and delivers it.

Rules enforced here:
    - Messages are persisted before any delivery is attempted.  A store error
      or timeout raises PersistenceFailure and nothing is sent.
    - Delivery to a stale connection is logged and swallowed; it never undoes
      the stored record.
    - A room broadcast sends one identical payload to every subscriber,
      including the sender's own connection.
    - Typing events go only to the recipient's live connection, if any.

Broadcasting uses asyncio.gather() for concurrent delivery; connections that
fail during a room broadcast are dropped from that room.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, TypeVar

from chatbox.errors import ChatError, DeliveryFailure, NotFound, PersistenceFailure, UnknownSender
from chatbox.store import ChatStore, DirectMessage, RoomMessage, run_in_store

from .connection import Connection
from .events import ServerEvent, error_event, event
from .presence import PresenceRegistry, Present
from .typing_state import TypingTracker

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FanoutRouter:
    """Single authority for routing messages, room broadcasts and typing events."""

    def __init__(
        self,
        presence: PresenceRegistry,
        typing: TypingTracker,
        store: ChatStore,
        persist_timeout: float = 5.0,
    ) -> None:
        self.presence = presence
        self.typing = typing
        self.store = store
        self.persist_timeout = persist_timeout

        # room_id -> subscribed connections
        self._rooms: Dict[str, Set[Connection]] = {}
        self._rooms_lock = asyncio.Lock()

    # =========================================================================
    # Direct messages
    # =========================================================================

    async def send_direct_message(
        self,
        sender_id: str,
        receiver_id: str,
        body: str,
        sender_connection: Optional[Connection] = None,
    ) -> DirectMessage:
        """Persist a direct message, deliver it, and acknowledge the sender.

        Args:
            sender_id: Registered identity of the sender.
            receiver_id: Target user.
            body: Message text.
            sender_connection: Where ``message_sent`` goes; omitted for
                server-originated messages.

        Returns:
            The stored DirectMessage.

        Raises:
            PersistenceFailure: The message could not be stored; nothing was sent.
        """
        message = DirectMessage(senderId=sender_id, receiverId=receiver_id, message=body)
        await self._store_call(self.store.insert_direct_message, message)

        delivered = True
        lookup = await self.presence.lookup(receiver_id)
        if isinstance(lookup, Present):
            delivered = await lookup.connection.safe_send(
                event(ServerEvent.RECEIVE_MESSAGE, **message.model_dump())
            )
            if not delivered:
                logger.warning(
                    "[Fanout] DM %s stored but delivery to %s failed", message.id, receiver_id
                )
        else:
            logger.debug("[Fanout] %s offline; DM %s stored only", receiver_id, message.id)

        if sender_connection is not None:
            await sender_connection.safe_send(event(
                ServerEvent.MESSAGE_SENT,
                id=message.id,
                receiverId=message.receiverId,
                message=message.message,
                timestamp=message.timestamp,
            ))
            if not delivered:
                await sender_connection.safe_send(error_event(
                    f"Message {message.id} was saved but could not be delivered",
                    DeliveryFailure.code,
                ))
        return message

    # =========================================================================
    # Room messages
    # =========================================================================

    async def send_room_message(
        self,
        sender_id: str,
        room_id: str,
        body: str,
        sender_connection: Optional[Connection] = None,
    ) -> RoomMessage:
        """Attribute, persist and broadcast a room message.

        Raises:
            UnknownSender: *sender_id* does not resolve to a stored user.
            NotFound: The room does not exist.
            PersistenceFailure: The message could not be stored; nothing was sent.
        """
        sender = await self._store_call(self.store.get_user, sender_id)
        if sender is None:
            raise UnknownSender(f"Unknown sender {sender_id}")
        room = await self._store_call(self.store.get_room, room_id)
        if room is None:
            raise NotFound("Room not found")

        message = RoomMessage(
            roomId=room_id,
            senderId=sender_id,
            senderDisplayName=sender.username,
            message=body,
        )
        await self._store_call(self.store.insert_room_message, message)

        subscribers = await self.room_subscribers(room_id)
        failed = await self.broadcast(
            room_id, event(ServerEvent.ROOM_MESSAGE, **message.model_dump()), subscribers
        )

        if sender_connection is not None:
            if sender_connection not in subscribers:
                await sender_connection.safe_send(
                    event(ServerEvent.ROOM_MESSAGE_SENT, **message.model_dump())
                )
            if failed and sender_connection not in failed:
                await sender_connection.safe_send(error_event(
                    f"Message {message.id} was saved but {len(failed)} subscriber(s) could not be reached",
                    DeliveryFailure.code,
                ))
        logger.info(
            "[Fanout] Room message %s in %s delivered to %d subscriber(s)",
            message.id, room_id, len(subscribers),
        )
        return message

    async def broadcast(
        self,
        room_id: str,
        payload: Dict[str, Any],
        connections: Optional[Iterable[Connection]] = None,
    ) -> List[Connection]:
        """Send *payload* to every connection subscribed to *room_id* concurrently.

        Returns:
            The connections that could not be reached; they are dropped from the room.
        """
        targets = list(connections) if connections is not None else list(await self.room_subscribers(room_id))
        if not targets:
            return []

        results = await asyncio.gather(
            *[conn.safe_send(payload) for conn in targets],
            return_exceptions=True,
        )

        failed = [conn for conn, ok in zip(targets, results) if ok is not True]
        if failed:
            async with self._rooms_lock:
                subscribers = self._rooms.get(room_id)
                if subscribers is not None:
                    subscribers.difference_update(failed)
                    if not subscribers:
                        del self._rooms[room_id]
            logger.warning("[Fanout] Dropped %d dead connection(s) from room %s", len(failed), room_id)
        return failed

    # =========================================================================
    # Room subscriptions
    # =========================================================================

    async def join_room(self, connection: Connection, room_id: str) -> None:
        """Subscribe *connection* to *room_id* broadcasts.

        Raises:
            NotFound: The room does not exist.
        """
        room = await self._store_call(self.store.get_room, room_id)
        if room is None:
            raise NotFound("Room not found")
        async with self._rooms_lock:
            self._rooms.setdefault(room_id, set()).add(connection)
        logger.info("[Fanout] %r joined room %s", connection, room_id)

    async def leave_room(self, connection: Connection, room_id: str) -> bool:
        async with self._rooms_lock:
            subscribers = self._rooms.get(room_id)
            if subscribers is None or connection not in subscribers:
                return False
            subscribers.discard(connection)
            if not subscribers:
                del self._rooms[room_id]
        return True

    async def leave_all_rooms(self, connection: Connection) -> List[str]:
        left: List[str] = []
        async with self._rooms_lock:
            for room_id in list(self._rooms):
                subscribers = self._rooms[room_id]
                if connection in subscribers:
                    subscribers.discard(connection)
                    left.append(room_id)
                    if not subscribers:
                        del self._rooms[room_id]
        return left

    async def room_subscribers(self, room_id: str) -> Set[Connection]:
        async with self._rooms_lock:
            return set(self._rooms.get(room_id, ()))

    async def clear_rooms(self) -> None:
        async with self._rooms_lock:
            self._rooms.clear()

    # =========================================================================
    # Typing indicators
    # =========================================================================

    async def route_typing(self, sender_id: str, recipient_id: str) -> bool:
        """Record that *sender_id* is typing and tell the recipient if online.

        Returns:
            True if a ``user_typing`` event was delivered.
        """
        await self.typing.set_typing(sender_id, recipient_id)
        return await self._notify(recipient_id, event(ServerEvent.USER_TYPING, senderId=sender_id))

    async def route_stop_typing(self, sender_id: str, recipient_id: str) -> bool:
        await self.typing.clear_typing(sender_id, recipient_id)
        return await self._notify(
            recipient_id, event(ServerEvent.USER_STOPPED_TYPING, senderId=sender_id)
        )

    async def clear_typing_for_sender(self, sender_id: str) -> List[str]:
        """Drop every typing entry of *sender_id* and notify the affected recipients."""
        recipients = await self.typing.clear_all_for_sender(sender_id)
        for recipient_id in recipients:
            await self._notify(
                recipient_id, event(ServerEvent.USER_STOPPED_TYPING, senderId=sender_id)
            )
        return recipients

    # =========================================================================
    # Internal
    # =========================================================================

    async def _notify(self, user_id: str, payload: Dict[str, Any]) -> bool:
        lookup = await self.presence.lookup(user_id)
        if not isinstance(lookup, Present):
            return False
        return await lookup.connection.safe_send(payload)

    async def _store_call(self, func: Callable[..., T], *args: Any) -> T:
        """Run a store call with the persistence timeout.

        Raises:
            PersistenceFailure: Timeout or any unexpected store error.
        """
        try:
            return await run_in_store(func, *args, timeout=self.persist_timeout)
        except ChatError:
            raise
        except Exception as exc:
            logger.exception("[Fanout] Store call %s failed", getattr(func, "__name__", func))
            raise PersistenceFailure("Message store unavailable") from exc
