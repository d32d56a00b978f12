# api/session_manager.py
"""
Manages conversation sessions in process memory.

Each client identifier maps to at most one Conversation. Sessions are
created lazily on the first message from a client, removed on an explicit
delete, and evicted after a period of inactivity. Nothing survives a
restart.
"""
import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional

from config import settings
from core.llm.duckchat_service import Conversation, DuckChatService
from core.llm.exceptions import TurnInProgress
from core.llm.factory import get_duckchat_service
from core.llm.models import resolve_model

logger = logging.getLogger(__name__)


class _KeyedLocks:
    """asyncio locks keyed by client id, dropped once nobody holds or waits on them."""

    def __init__(self):
        self._entries: Dict[str, List] = {}  # key -> [lock, holders + waiters]

    @asynccontextmanager
    async def hold(self, key: str, wait: bool = True) -> AsyncIterator[None]:
        entry = self._entries.setdefault(key, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            lock = entry[0]
            if not wait and lock.locked():
                raise TurnInProgress(key)
            async with lock:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._entries[key]

    def busy(self, key: str) -> bool:
        return key in self._entries


class SessionRegistry:
    """
    The single authority for creating, looking up and deleting conversations.

    All access happens on the event loop. Creation is serialized per client
    identifier so that concurrent first messages negotiate exactly one
    session; turns are serialized per client identifier through turn_lock().
    """

    def __init__(
        self,
        service: Optional[DuckChatService] = None,
        idle_ttl_seconds: Optional[int] = None,
        reject_concurrent_turns: Optional[bool] = None,
    ):
        self._service = service
        self.idle_ttl_seconds = (
            idle_ttl_seconds if idle_ttl_seconds is not None else settings.session_idle_ttl_seconds
        )
        self.reject_concurrent_turns = (
            reject_concurrent_turns if reject_concurrent_turns is not None
            else settings.reject_concurrent_turns
        )
        self._sessions: Dict[str, Conversation] = {}
        self._creation_locks = _KeyedLocks()
        self._turn_locks = _KeyedLocks()

    @property
    def service(self) -> DuckChatService:
        if self._service is None:
            self._service = get_duckchat_service()
        return self._service

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, client_id: str) -> bool:
        return client_id in self._sessions

    def get(self, client_id: str) -> Optional[Conversation]:
        return self._sessions.get(client_id)

    async def get_or_create(self, client_id: str, model_alias: str) -> Conversation:
        """
        Returns the client's conversation, negotiating a new one if none exists.

        An existing conversation keeps the model it was created with,
        whatever alias is passed. Nothing is stored when negotiation fails.

        Raises:
            InvalidModel: the alias is unknown and a conversation has to be created.
            UpstreamUnavailable, NetworkError: token negotiation failed.
        """
        conversation = self._sessions.get(client_id)
        if conversation is not None:
            return conversation

        model = resolve_model(model_alias)
        async with self._creation_locks.hold(client_id):
            # Another request may have created it while we waited.
            conversation = self._sessions.get(client_id)
            if conversation is not None:
                return conversation

            conversation = await self.service.open_conversation(model)
            self._sessions[client_id] = conversation
            logger.info(f"Created chat session for client '{client_id}' with model '{model}'.")
            return conversation

    def delete(self, client_id: str) -> bool:
        """Removes the client's conversation. Returns True if one existed."""
        conversation = self._sessions.pop(client_id, None)
        if conversation is None:
            return False
        logger.info(f"Deleted chat session for client '{client_id}'.")
        return True

    def turn_lock(self, client_id: str):
        """
        Async context manager serializing turns for one client.

        A second turn waits for the first, or fails with TurnInProgress when
        the registry is configured to reject concurrent turns.
        """
        return self._turn_locks.hold(client_id, wait=not self.reject_concurrent_turns)

    def evict_idle(self, now: Optional[float] = None) -> int:
        """Drops sessions idle for longer than the TTL that have no turn in flight."""
        if self.idle_ttl_seconds <= 0:
            return 0
        now = time.monotonic() if now is None else now
        expired = [
            client_id for client_id, conversation in self._sessions.items()
            if now - conversation.last_used_at > self.idle_ttl_seconds
            and not self._turn_locks.busy(client_id)
        ]
        for client_id in expired:
            del self._sessions[client_id]
        if expired:
            logger.info(f"Evicted {len(expired)} idle chat session(s).")
        return len(expired)


async def run_idle_sweeper(registry: SessionRegistry, interval_seconds: float) -> None:
    """Periodically evicts idle sessions until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        registry.evict_idle()


# A single, process-wide registry
_registry_instance: Optional[SessionRegistry] = None


def get_session_registry() -> SessionRegistry:
    global _registry_instance
    if _registry_instance is None:
        _registry_instance = SessionRegistry()
    return _registry_instance
