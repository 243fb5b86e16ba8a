"""In-process code store for single-instance deployments and tests."""

import asyncio
import copy
import time
from typing import Any, Callable

from codeconnect.store.base import CodeStore


class MemoryCodeStore(CodeStore):
    """Dict-backed store with TTL.

    Every operation runs under one asyncio.Lock with no await inside the
    critical section, so conditional updates are atomic within the process.
    Expired keys are dropped lazily on access.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        """Initialize empty store.

        Args:
            clock: Time source, injectable for tests.
        """
        self._clock = clock
        self._data: dict[str, tuple[dict[str, Any], float]] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> dict[str, Any] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, deadline = entry
        if self._clock() >= deadline:
            del self._data[key]
            return None
        return value

    async def set_if_absent(self, key: str, value: dict[str, Any], ttl: int) -> bool:
        async with self._lock:
            if self._live(key) is not None:
                return False
            self._data[key] = (copy.deepcopy(value), self._clock() + ttl)
            return True

    async def get(self, key: str) -> dict[str, Any] | None:
        async with self._lock:
            value = self._live(key)
            return copy.deepcopy(value) if value is not None else None

    async def compare_and_swap(
        self,
        key: str,
        expected: dict[str, Any],
        changes: dict[str, Any],
    ) -> bool:
        async with self._lock:
            current = self._live(key)
            if current is None:
                return False
            if any(current.get(field) != value for field, value in expected.items()):
                return False
            current.update(copy.deepcopy(changes))
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._data.pop(key, None) is not None

    async def keys(self) -> list[str]:
        async with self._lock:
            return [key for key in list(self._data) if self._live(key) is not None]

    def __len__(self) -> int:
        return len(self._data)
