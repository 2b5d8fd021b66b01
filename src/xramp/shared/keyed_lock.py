"""
Keyed Lock - Per-Transaction Mutual Exclusion

One asyncio.Lock per key (transaction id), created on first use and dropped
once nobody holds or waits for it. Different keys never block each other.

Files that USE this module:
- xramp.application.state_machine (serializes transitions per transaction)
- xramp.application.reconciler (serializes dedup bookkeeping per transaction)
- tests.test_keyed_lock (unit tests)
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class KeyedLock:
    """Map of lazily created asyncio locks with reference counting."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
