"""WebSocket event names and inbound payload schemas.

Every frame is a JSON object with a ``type`` field; the remaining fields are
the payload.  ``senderId`` is accepted on inbound events for compatibility
with older clients but is checked against the registered identity.
"""
from enum import Enum
from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError

from chatbox.errors import InvalidPayload


class ClientEvent(str, Enum):
    """Events a client may send."""
    REGISTER = "register"
    JOIN_ROOM = "join_room"
    LEAVE_ROOM = "leave_room"
    SEND_MESSAGE = "send_message"
    SEND_ROOM_MESSAGE = "send_room_message"
    TYPING = "typing"
    STOP_TYPING = "stop_typing"


class ServerEvent(str, Enum):
    """Events the server emits."""
    REGISTERED = "registered"
    ROOM_JOINED = "room_joined"
    ROOM_LEFT = "room_left"
    RECEIVE_MESSAGE = "receive_message"
    MESSAGE_SENT = "message_sent"
    ROOM_MESSAGE = "room_message"
    ROOM_MESSAGE_SENT = "room_message_sent"
    USER_TYPING = "user_typing"
    USER_STOPPED_TYPING = "user_stopped_typing"
    ERROR_MESSAGE = "error_message"


class RegisterPayload(BaseModel):
    userId: str = Field(..., min_length=1)
    token: Optional[str] = None


class RoomPayload(BaseModel):
    roomId: str = Field(..., min_length=1)


class DirectMessagePayload(BaseModel):
    receiverId: str = Field(..., min_length=1)
    message: str
    senderId: Optional[str] = None


class RoomMessagePayload(BaseModel):
    roomId: str = Field(..., min_length=1)
    message: str
    senderId: Optional[str] = None


class TypingPayload(BaseModel):
    receiverId: str = Field(..., min_length=1)
    senderId: Optional[str] = None


P = TypeVar("P", bound=BaseModel)


def parse_payload(model: Type[P], data: Dict[str, Any]) -> P:
    """Validate an inbound frame against *model*.

    Raises:
        InvalidPayload: With the first validation problem as the message.
    """
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ())) or "payload"
        raise InvalidPayload(f"Invalid {location}: {first.get('msg', 'invalid value')}") from exc


def event(kind: ServerEvent, **fields: Any) -> Dict[str, Any]:
    return {"type": kind.value, **fields}


def error_event(error: str, code: str = "error") -> Dict[str, Any]:
    return event(ServerEvent.ERROR_MESSAGE, error=error, code=code)
