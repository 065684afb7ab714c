from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class _KeyedLock:
    __slots__ = ("holders", "lock")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.holders = 0


class KeyedLocks:
    """One :class:`asyncio.Lock` per key, held only while in use.

    Serialises work on the same provider, assignment or appointment while
    letting unrelated keys proceed concurrently.  An entry is dropped when
    its last holder or waiter leaves, so the table stays as small as the
    set of keys currently being worked on.

    Usage::

        async with locks(appointment_id):
            ...
    """

    __slots__ = ("_locks",)

    def __init__(self) -> None:
        self._locks: dict[str, _KeyedLock] = {}

    @asynccontextmanager
    async def __call__(self, key: str) -> AsyncIterator[None]:
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _KeyedLock()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
