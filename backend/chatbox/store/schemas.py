"""Pydantic schemas for persisted chat records.

Field names are camelCase because these models are serialised straight onto
the wire (HTTP responses and WebSocket events).

These schemas are used by:
    - ChatStore: DuckDB storage layer
    - FanoutRouter: message creation and event payloads
    - HTTP routers: dashboard and history endpoints
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def make_timestamp(now: Optional[datetime] = None) -> str:
    """Format *now* (default: current local time) as ``YYYY-MM-DD HH:MM:SS``.

    Fixed width, so plain string comparison orders timestamps. Resolution is
    one second; messages within the same second are ordered by the store's
    sequence number instead.
    """
    return (now or datetime.now()).strftime(TIMESTAMP_FORMAT)


def new_id() -> str:
    return str(uuid.uuid4())


class PresenceStatus(str, Enum):
    ONLINE = "Online"
    OFFLINE = "Offline"


class User(BaseModel):
    """A registered account. ``passwordHash`` never leaves the server."""
    id: str = Field(default_factory=new_id)
    username: str
    passwordHash: str
    avatarUrl: str = ""
    createdAt: str = Field(default_factory=make_timestamp)


class UserSummary(BaseModel):
    """Public view of a user as listed on the dashboard."""
    id: str
    username: str
    avatarUrl: str = ""
    status: PresenceStatus = PresenceStatus.OFFLINE


class Room(BaseModel):
    """A named broadcast group.

    Attributes:
        id: Unique room identifier (UUID).
        name: Unique human-readable name.
        createdAt: Creation time, ``YYYY-MM-DD HH:MM:SS``.
        createdBy: User id of the creator.
    """
    id: str = Field(default_factory=new_id)
    name: str
    createdAt: str = Field(default_factory=make_timestamp)
    createdBy: str


class DirectMessage(BaseModel):
    """A one-to-one message. Immutable once created."""
    id: str = Field(default_factory=new_id)
    senderId: str
    receiverId: str
    message: str
    timestamp: str = Field(default_factory=make_timestamp)

    model_config = {"frozen": True}


class RoomMessage(BaseModel):
    """A message broadcast to a room, with the sender's display name attached."""
    id: str = Field(default_factory=new_id)
    roomId: str
    senderId: str
    senderDisplayName: str
    message: str
    timestamp: str = Field(default_factory=make_timestamp)

    model_config = {"frozen": True}
