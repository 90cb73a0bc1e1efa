"""
Per-name asyncio locks for the pool cache and the schema cache.

A name's lock exists only while some coroutine holds or waits on it, so the
map does not grow with every connection ever seen.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Set


class NamedLocks:
    """One asyncio.Lock per name, created on demand and dropped when idle."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._locks

    def __len__(self) -> int:
        return len(self._locks)

    def names(self) -> Set[str]:
        return set(self._locks)

    @asynccontextmanager
    async def hold(self, name: str):
        """Hold the lock for a name; different names never wait on each other."""
        lock = self._locks.setdefault(name, asyncio.Lock())
        self._users[name] = self._users.get(name, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[name] -= 1
            if not self._users[name]:
                del self._users[name]
                del self._locks[name]
