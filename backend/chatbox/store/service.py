"""DuckDB-backed persistent store for users, rooms and messages.

The service implements the singleton pattern so one database connection
exists per process.  Every query runs on its own cursor (a duplicate
connection onto the same database), which lets calls from different worker
threads proceed without a shared lock.

Database Schema:
    users:          id, username (unique), password_hash, avatar_url, created_at
    rooms:          id, name (unique), created_at, created_by
    messages:       id, seq, sender_id, receiver_id, content, timestamp
    room_messages:  id, seq, room_id, sender_id, content, timestamp

``seq`` comes from a shared sequence and orders history within one second.

Usage:
    store = ChatStore.get_instance()
    user = store.create_user("alice", password_hash, avatar_url)
    await run_in_store(store.insert_direct_message, message, timeout=5.0)
"""
import asyncio
import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator, List, Optional, TypeVar

import duckdb

from chatbox.config import get_config
from chatbox.errors import Conflict, PersistenceFailure

from .schemas import DirectMessage, Room, RoomMessage, User

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SCHEMA = [
    "CREATE SEQUENCE IF NOT EXISTS message_seq START 1",
    """
    CREATE TABLE IF NOT EXISTS users (
        id            VARCHAR PRIMARY KEY,
        username      VARCHAR NOT NULL UNIQUE,
        password_hash VARCHAR NOT NULL,
        avatar_url    VARCHAR NOT NULL DEFAULT '',
        created_at    VARCHAR NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS rooms (
        id         VARCHAR PRIMARY KEY,
        name       VARCHAR NOT NULL UNIQUE,
        created_at VARCHAR NOT NULL,
        created_by VARCHAR NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id          VARCHAR PRIMARY KEY,
        seq         BIGINT NOT NULL DEFAULT nextval('message_seq'),
        sender_id   VARCHAR NOT NULL,
        receiver_id VARCHAR NOT NULL,
        content     VARCHAR NOT NULL,
        timestamp   VARCHAR NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS room_messages (
        id        VARCHAR PRIMARY KEY,
        seq       BIGINT NOT NULL DEFAULT nextval('message_seq'),
        room_id   VARCHAR NOT NULL,
        sender_id VARCHAR NOT NULL,
        content   VARCHAR NOT NULL,
        timestamp VARCHAR NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_pair ON messages(sender_id, receiver_id)",
    "CREATE INDEX IF NOT EXISTS idx_room_messages_room ON room_messages(room_id)",
]


class ChatStore:
    """Singleton store for all durable chat records.

    Attributes:
        _instance: Singleton instance of the store.
        _db_path: Path to the DuckDB database file.
    """

    _instance: Optional["ChatStore"] = None
    _db_path: str = "chatbox.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        """Open (or create) the database and its schema.

        Args:
            db_path: Path to DuckDB file, or ``:memory:``.
        """
        if db_path:
            self._db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialize_db()
        logger.info("[Store] Initialized with db=%s", self._db_path)

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "ChatStore":
        """Get or create the singleton instance.

        Args:
            db_path: Optional database path (only used on first call).
        """
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Close the connection and clear the instance (for testing)."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        conn = self._get_connection()
        for statement in _SCHEMA:
            conn.execute(statement)

    @contextmanager
    def _cursor(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """Yield a private cursor; storage errors become PersistenceFailure."""
        cursor = self._get_connection().cursor()
        try:
            yield cursor
        except duckdb.ConstraintException:
            raise
        except duckdb.Error as exc:
            logger.error("[Store] Query failed: %s", exc)
            raise PersistenceFailure(f"Store unavailable: {exc}") from exc
        finally:
            cursor.close()

    # -----------------------------------------------------------------------
    # Users
    # -----------------------------------------------------------------------

    def create_user(self, username: str, password_hash: str, avatar_url: str = "") -> User:
        """Insert a new user.

        Raises:
            Conflict: If the username is taken.
        """
        user = User(username=username, passwordHash=password_hash, avatarUrl=avatar_url)
        try:
            with self._cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO users (id, username, password_hash, avatar_url, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    [user.id, user.username, user.passwordHash, user.avatarUrl, user.createdAt],
                )
        except duckdb.ConstraintException as exc:
            raise Conflict("User already exists.") from exc
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self._cursor() as cur:
            row = cur.execute(
                "SELECT id, username, password_hash, avatar_url, created_at FROM users WHERE id = ?",
                [user_id],
            ).fetchone()
        return self._row_to_user(row) if row else None

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._cursor() as cur:
            row = cur.execute(
                "SELECT id, username, password_hash, avatar_url, created_at FROM users WHERE username = ?",
                [username],
            ).fetchone()
        return self._row_to_user(row) if row else None

    def list_users(self, exclude_user_id: Optional[str] = None) -> List[User]:
        """List users ordered by username, optionally leaving one out."""
        with self._cursor() as cur:
            if exclude_user_id:
                rows = cur.execute(
                    """
                    SELECT id, username, password_hash, avatar_url, created_at
                    FROM users
                    WHERE id != ?
                    ORDER BY username ASC
                    """,
                    [exclude_user_id],
                ).fetchall()
            else:
                rows = cur.execute(
                    """
                    SELECT id, username, password_hash, avatar_url, created_at
                    FROM users
                    ORDER BY username ASC
                    """
                ).fetchall()
        return [self._row_to_user(r) for r in rows]

    # -----------------------------------------------------------------------
    # Rooms
    # -----------------------------------------------------------------------

    def create_room(self, name: str, created_by: str) -> Room:
        """Insert a new room.

        Raises:
            Conflict: If the room name is taken.
        """
        room = Room(name=name, createdBy=created_by)
        try:
            with self._cursor() as cur:
                cur.execute(
                    "INSERT INTO rooms (id, name, created_at, created_by) VALUES (?, ?, ?, ?)",
                    [room.id, room.name, room.createdAt, room.createdBy],
                )
        except duckdb.ConstraintException as exc:
            raise Conflict("Room already exists") from exc
        return room

    def get_room(self, room_id: str) -> Optional[Room]:
        with self._cursor() as cur:
            row = cur.execute(
                "SELECT id, name, created_at, created_by FROM rooms WHERE id = ?",
                [room_id],
            ).fetchone()
        return self._row_to_room(row) if row else None

    def list_rooms(self) -> List[Room]:
        with self._cursor() as cur:
            rows = cur.execute(
                "SELECT id, name, created_at, created_by FROM rooms ORDER BY created_at ASC, name ASC"
            ).fetchall()
        return [self._row_to_room(r) for r in rows]

    # -----------------------------------------------------------------------
    # Messages
    # -----------------------------------------------------------------------

    def insert_direct_message(self, message: DirectMessage) -> DirectMessage:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO messages (id, sender_id, receiver_id, content, timestamp)
                VALUES (?, ?, ?, ?, ?)
                """,
                [message.id, message.senderId, message.receiverId, message.message, message.timestamp],
            )
        return message

    def get_direct_message(self, message_id: str) -> Optional[DirectMessage]:
        with self._cursor() as cur:
            row = cur.execute(
                "SELECT id, sender_id, receiver_id, content, timestamp FROM messages WHERE id = ?",
                [message_id],
            ).fetchone()
        return self._row_to_direct_message(row) if row else None

    def list_direct_messages(self, user_id: str, other_id: str) -> List[DirectMessage]:
        """Messages exchanged between two users, oldest first."""
        with self._cursor() as cur:
            rows = cur.execute(
                """
                SELECT id, sender_id, receiver_id, content, timestamp
                FROM messages
                WHERE (sender_id = ? AND receiver_id = ?)
                   OR (sender_id = ? AND receiver_id = ?)
                ORDER BY seq ASC
                """,
                [user_id, other_id, other_id, user_id],
            ).fetchall()
        return [self._row_to_direct_message(r) for r in rows]

    def insert_room_message(self, message: RoomMessage) -> RoomMessage:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO room_messages (id, room_id, sender_id, content, timestamp)
                VALUES (?, ?, ?, ?, ?)
                """,
                [message.id, message.roomId, message.senderId, message.message, message.timestamp],
            )
        return message

    def list_room_messages(self, room_id: str) -> List[RoomMessage]:
        """Room history with the sender's current username joined in, oldest first."""
        with self._cursor() as cur:
            rows = cur.execute(
                """
                SELECT m.id, m.room_id, m.sender_id, COALESCE(u.username, ''), m.content, m.timestamp
                FROM room_messages m
                LEFT JOIN users u ON u.id = m.sender_id
                WHERE m.room_id = ?
                ORDER BY m.seq ASC
                """,
                [room_id],
            ).fetchall()
        return [
            RoomMessage(
                id=r[0], roomId=r[1], senderId=r[2],
                senderDisplayName=r[3], message=r[4], timestamp=r[5],
            )
            for r in rows
        ]

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    @staticmethod
    def _row_to_user(row) -> User:
        return User(id=row[0], username=row[1], passwordHash=row[2], avatarUrl=row[3], createdAt=row[4])

    @staticmethod
    def _row_to_room(row) -> Room:
        return Room(id=row[0], name=row[1], createdAt=row[2], createdBy=row[3])

    @staticmethod
    def _row_to_direct_message(row) -> DirectMessage:
        return DirectMessage(id=row[0], senderId=row[1], receiverId=row[2], message=row[3], timestamp=row[4])


async def run_in_store(func: Callable[..., T], *args: Any, timeout: float) -> T:
    """Run a blocking store call on a worker thread with a deadline.

    Other connections keep being served while the call is outstanding.

    Raises:
        PersistenceFailure: If the call times out or the store fails.
        Conflict: Passed through from the store.
    """
    try:
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=timeout)
    except asyncio.TimeoutError as exc:
        logger.error("[Store] %s timed out after %.1fs", getattr(func, "__name__", func), timeout)
        raise PersistenceFailure(f"Store call timed out after {timeout:g}s") from exc


def get_store() -> ChatStore:
    """FastAPI dependency: the process-wide store at the configured path."""
    return ChatStore.get_instance(get_config().database.path)
