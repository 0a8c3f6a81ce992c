"""Typing-state tracker: which senders are currently typing to which recipient.

Ephemeral and never persisted.  Empty sets are dropped so the map only holds
recipients with at least one active typist.
"""
import asyncio
import logging
from typing import Dict, FrozenSet, List, Set

logger = logging.getLogger(__name__)


class TypingTracker:
    """recipient id -> set of sender ids, guarded by one asyncio lock."""

    def __init__(self) -> None:
        self._typing: Dict[str, Set[str]] = {}
        self._lock = asyncio.Lock()

    async def set_typing(self, sender_id: str, recipient_id: str) -> None:
        async with self._lock:
            self._typing.setdefault(recipient_id, set()).add(sender_id)

    async def clear_typing(self, sender_id: str, recipient_id: str) -> None:
        """Remove *sender_id* from *recipient_id*'s set; no-op if absent."""
        async with self._lock:
            senders = self._typing.get(recipient_id)
            if senders is None:
                return
            senders.discard(sender_id)
            if not senders:
                del self._typing[recipient_id]

    async def clear_all_for_sender(self, sender_id: str) -> List[str]:
        """Remove *sender_id* everywhere.

        Returns:
            The recipients that had *sender_id* in their set, so the caller
            can tell them the sender stopped typing.
        """
        affected: List[str] = []
        async with self._lock:
            for recipient_id in list(self._typing):
                senders = self._typing[recipient_id]
                if sender_id in senders:
                    senders.discard(sender_id)
                    affected.append(recipient_id)
                    if not senders:
                        del self._typing[recipient_id]
        if affected:
            logger.debug("[Typing] Cleared %s for %d recipient(s)", sender_id, len(affected))
        return affected

    async def typing_senders(self, recipient_id: str) -> FrozenSet[str]:
        async with self._lock:
            return frozenset(self._typing.get(recipient_id, ()))

    async def clear(self) -> None:
        async with self._lock:
            self._typing.clear()

    def __len__(self) -> int:
        return len(self._typing)
