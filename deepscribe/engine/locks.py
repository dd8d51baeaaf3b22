from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator


class StoryLockRegistry:
    """One asyncio.Lock per story id, dropped once nobody holds or waits on it.

    All read-modify-write sequences on a story run under its lock so chapter
    numbering and credential changes are serialized per story while different
    stories proceed concurrently.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, story_id: str) -> AsyncGenerator[None, None]:
        lock = self._locks.get(story_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[story_id] = lock
        self._holders[story_id] = self._holders.get(story_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._holders[story_id] - 1
            if remaining:
                self._holders[story_id] = remaining
            else:
                del self._holders[story_id]
                del self._locks[story_id]

    def is_locked(self, story_id: str) -> bool:
        lock = self._locks.get(story_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
