"""Chat router providing the WebSocket endpoint and direct-message history.

This module provides:
    - WebSocket /ws: Real-time messaging, typing indicators and room broadcasts
    - GET /messages/{receiver_id}: Direct-message history with one user

Protocol Message Types (client -> server):
    - register: Bind a user id to this connection
    - join_room / leave_room: Room broadcast subscriptions
    - send_message: Direct message
    - send_room_message: Room message
    - typing / stop_typing: Typing indicator

Server -> client: registered, room_joined, room_left, receive_message,
message_sent, room_message, room_message_sent, user_typing,
user_stopped_typing, error_message.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, WebSocket

from chatbox.auth.dependencies import current_user_id
from chatbox.store import ChatStore, get_store

from .manager import get_chat_manager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


@router.get("/messages/{receiver_id}")
def get_direct_messages(
    receiver_id: str,
    user_id: str = Depends(current_user_id),
    store: ChatStore = Depends(get_store),
) -> List[dict]:
    """Return the conversation between the caller and *receiver_id*, oldest first.

    Args:
        receiver_id: The other participant.
        user_id: Caller, from the bearer token.

    Returns:
        List of DirectMessage objects.
    """
    messages = store.list_direct_messages(user_id, receiver_id)
    return [m.model_dump() for m in messages]


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for one client.

    Protocol Flow:
        1. Client connects (state: connected)
        2. Client sends {type: "register", userId}
           -> Server sends {type: "registered", userId}
        3. Client sends {type: "send_message", receiverId, message}
           -> Receiver gets {type: "receive_message", id, senderId, receiverId, message, timestamp}
           -> Sender gets {type: "message_sent", id, receiverId, message, timestamp}
        4. Client sends {type: "join_room", roomId} then {type: "send_room_message", roomId, message}
           -> Every subscriber, sender included, gets {type: "room_message", ...}
        5. On disconnect: presence, typing state and room subscriptions are cleaned up
    """
    manager = get_chat_manager()
    if not manager.accepting:
        logger.info("[WS] Refusing connection: server is shutting down")
        await websocket.close(code=1001)
        return
    await websocket.accept()
    session = manager.open_session(websocket)
    logger.info(
        "[WS] Connection accepted (%r). %d live session(s)",
        session.connection, manager.session_count,
    )
    await session.run()
