"""
Per-key asyncio locks.

Ledger appends are serialized per representative and commission/payout
mutations per collaborator. Unrelated keys never wait on each other.
This only covers a single process; the database row lock and the ledger
sequence constraint cover multiple workers.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Hashable, Tuple


class KeyedLock:
    """Registry of asyncio.Lock objects, one per key, released when unused."""

    def __init__(self):
        self._locks: Dict[Hashable, Tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def acquire(self, key: Hashable):
        lock, waiters = self._locks.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[key] = (lock, waiters + 1)
        try:
            async with lock:
                yield
        finally:
            lock, waiters = self._locks[key]
            if waiters <= 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, waiters - 1)

    def is_locked(self, key: Hashable) -> bool:
        entry = self._locks.get(key)
        return bool(entry and entry[0].locked())

    def __len__(self) -> int:
        return len(self._locks)


# Process-wide registries
representative_locks = KeyedLock()
collaborator_locks = KeyedLock()


