"""Presence registry: logical user id -> at most one live connection.

The registry is the only place that knows whether a user is online.  Lookups
return an explicit ``Present``/``Absent`` result rather than a nullable
handle.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from .connection import Connection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Present:
    connection: Connection


@dataclass(frozen=True)
class Absent:
    pass


ABSENT = Absent()

Lookup = Union[Present, Absent]


class PresenceRegistry:
    """In-memory user -> connection map guarded by one asyncio lock.

    A secondary index (connection -> user id) makes ``unregister`` O(1) and
    lets it check that the stored handle is still the one being removed.
    """

    def __init__(self) -> None:
        self._by_user: Dict[str, Connection] = {}
        self._by_connection: Dict[Connection, str] = {}
        self._lock = asyncio.Lock()

    async def register(self, user_id: str, connection: Connection) -> Optional[Connection]:
        """Bind *user_id* to *connection*; the last register wins.

        Returns:
            The connection that was superseded, if any.
        """
        async with self._lock:
            # A handle carries one identity at a time
            old_user = self._by_connection.get(connection)
            if old_user is not None and old_user != user_id and self._by_user.get(old_user) is connection:
                del self._by_user[old_user]
            previous = self._by_user.get(user_id)
            if previous is not None and previous is not connection:
                self._by_connection.pop(previous, None)
            self._by_user[user_id] = connection
            self._by_connection[connection] = user_id
        if previous is not None and previous is not connection:
            logger.info(
                "[Presence] %s re-registered: %r supersedes %r", user_id, connection, previous
            )
        else:
            logger.info("[Presence] %s registered on %r", user_id, connection)
        return previous if previous is not connection else None

    async def lookup(self, user_id: str) -> Lookup:
        async with self._lock:
            connection = self._by_user.get(user_id)
        return Present(connection) if connection is not None else ABSENT

    async def unregister(self, connection: Connection) -> Optional[str]:
        """Remove the entry bound to *connection*, if it is still current.

        A stale handle (its user has since registered a newer connection)
        removes nothing.

        Returns:
            The user id that went offline, or None.
        """
        async with self._lock:
            user_id = self._by_connection.pop(connection, None)
            if user_id is None:
                return None
            if self._by_user.get(user_id) is not connection:
                return None
            del self._by_user[user_id]
        logger.info("[Presence] %s went offline (%r)", user_id, connection)
        return user_id

    async def is_online(self, user_id: str) -> bool:
        return isinstance(await self.lookup(user_id), Present)

    async def online_user_ids(self) -> List[str]:
        async with self._lock:
            return list(self._by_user)

    async def clear(self) -> None:
        async with self._lock:
            self._by_user.clear()
            self._by_connection.clear()

    def __len__(self) -> int:
        return len(self._by_user)
