"""Rooms router - dashboard, room creation and room history.

Endpoints (all require a bearer token):
    GET  /dashboard               - Public rooms plus every other user with presence
    POST /createroom              - Create a room
    GET  /room-messages/{room_id} - Room history, oldest first
"""
import logging
from typing import List

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from chatbox.auth.dependencies import current_user_id
from chatbox.chat.manager import get_chat_manager
from chatbox.config import get_config
from chatbox.errors import InvalidPayload, NotFound
from chatbox.store import ChatStore, PresenceStatus, UserSummary, get_store, run_in_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["rooms"])


class CreateRoomRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)


@router.get("/dashboard")
async def dashboard(
    user_id: str = Depends(current_user_id),
    store: ChatStore = Depends(get_store),
) -> dict:
    """Rooms and users for the caller's landing page.

    ``status`` on each user comes from the live presence registry, not from
    anything stored.

    Returns:
        ``{publicRooms: Room[], users: UserSummary[]}``, caller excluded.
    """
    timeout = get_config().database.persist_timeout_seconds
    rooms = await run_in_store(store.list_rooms, timeout=timeout)
    users = await run_in_store(store.list_users, user_id, timeout=timeout)
    online = set(await get_chat_manager().presence.online_user_ids())

    summaries = [
        UserSummary(
            id=u.id,
            username=u.username,
            avatarUrl=u.avatarUrl,
            status=PresenceStatus.ONLINE if u.id in online else PresenceStatus.OFFLINE,
        ).model_dump(mode="json")
        for u in users
    ]
    return {
        "publicRooms": [r.model_dump() for r in rooms],
        "users": summaries,
    }


@router.post("/createroom", status_code=201)
def create_room(
    request: CreateRoomRequest,
    user_id: str = Depends(current_user_id),
    store: ChatStore = Depends(get_store),
) -> JSONResponse:
    """Create a public room.

    Returns:
        201 ``{roomId, message}``; 400 if the name is taken.
    """
    name = request.name.strip()
    if not name:
        raise InvalidPayload("Room name is required")
    room = store.create_room(name, user_id)
    logger.info("[Rooms] %s created room %s (%s)", user_id, room.name, room.id)
    return JSONResponse({"roomId": room.id, "message": "Room created!"}, status_code=201)


@router.get("/room-messages/{room_id}")
def get_room_messages(
    room_id: str,
    user_id: str = Depends(current_user_id),
    store: ChatStore = Depends(get_store),
) -> List[dict]:
    """Return a room's history with sender display names, oldest first.

    Raises:
        NotFound: Unknown room (404).
    """
    if store.get_room(room_id) is None:
        raise NotFound("Room not found")
    return [m.model_dump() for m in store.list_room_messages(room_id)]
