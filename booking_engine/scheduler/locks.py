from __future__ import annotations

import asyncio
from collections import Counter
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, Tuple

LockKey = Tuple[str, ...]


def teacher_key(teacher_id: str, start: datetime) -> LockKey:
    # Day granularity: overlapping slots with different starts share a key
    return ("teacher", teacher_id, start.date().isoformat())


def session_key(session_id: str) -> LockKey:
    return ("session", session_id)


def student_key(student_id: str) -> LockKey:
    return ("student", student_id)


class KeyedLock:
    """Per-key mutex. Keys are taken in sorted order so holders never deadlock."""

    def __init__(self) -> None:
        self._locks: Dict[LockKey, asyncio.Lock] = {}
        self._refs: Counter = Counter()

    def _release_ref(self, key: LockKey) -> None:
        self._refs[key] -= 1
        if self._refs[key] <= 0:
            del self._refs[key]
            self._locks.pop(key, None)

    def locked(self, key: LockKey) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, *keys: LockKey) -> AsyncIterator[None]:
        acquired: list[LockKey] = []
        try:
            for key in sorted(set(keys)):
                lock = self._locks.setdefault(key, asyncio.Lock())
                self._refs[key] += 1
                try:
                    await lock.acquire()
                except BaseException:
                    self._release_ref(key)
                    raise
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
                self._release_ref(key)
