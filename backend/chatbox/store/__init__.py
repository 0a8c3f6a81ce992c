"""Persistent store for users, rooms, direct messages and room messages.

Services:
    - ChatStore: DuckDB-backed singleton store.
    - run_in_store: run a blocking store call off the event loop with a timeout.
"""
from .schemas import DirectMessage, PresenceStatus, Room, RoomMessage, User, UserSummary, make_timestamp
from .service import ChatStore, get_store, run_in_store

__all__ = [
    "ChatStore",
    "DirectMessage",
    "PresenceStatus",
    "Room",
    "RoomMessage",
    "User",
    "UserSummary",
    "get_store",
    "make_timestamp",
    "run_in_store",
]
