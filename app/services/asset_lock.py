"""
Keyed mutual exclusion for shared template resources.

Only needed when regenerations share one on-disk template directory;
isolated per-request workspaces never contend for a key.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator

from app.core.errors import AssetRetrievalError

logger = logging.getLogger(__name__)


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    refs: int = 0


class AssetLockManager:
    """One asyncio.Lock per resource key, created on demand and dropped when idle.

    Waiters queue on the lock instead of polling, and a waiter that exceeds
    `timeout` gives up with AssetRetrievalError.
    """

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout
        self._entries: dict[str, _LockEntry] = {}

    def is_locked(self, key: str) -> bool:
        entry = self._entries.get(key)
        return bool(entry and entry.lock.locked())

    def __len__(self) -> int:
        return len(self._entries)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        entry = self._entries.setdefault(key, _LockEntry())
        entry.refs += 1
        try:
            try:
                await asyncio.wait_for(entry.lock.acquire(), timeout=self.timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Timed out after {self.timeout}s waiting for asset lock {key}")
                raise AssetRetrievalError("Template assets are busy, try again later")
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            entry.refs -= 1
            if entry.refs == 0 and self._entries.get(key) is entry:
                del self._entries[key]
