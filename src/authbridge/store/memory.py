from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

import anyio

from authbridge.store.base import BaseStore


@dataclass
class _Entry:
    value: str
    expires_at: float | None


class MemoryStore(BaseStore):
    """Process-local store. Suitable for tests and single-process deployments.

    Expiry is measured on a monotonic clock, which can be replaced to drive
    expiry from tests.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: dict[str, _Entry] = {}
        self._lock = anyio.Lock()

    def _live(self, key: str) -> _Entry | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> str | None:
        entry = self._live(key)
        return entry.value if entry else None

    async def set(self, key: str, value: str, ttl: float | None = None) -> None:
        expires_at = self._clock() + ttl if ttl is not None else None
        self._data[key] = _Entry(value, expires_at)

    async def delete(self, *keys: str) -> int:
        count = 0
        for key in keys:
            if self._live(key) is not None:
                del self._data[key]
                count += 1
        return count

    async def pop(self, key: str) -> str | None:
        async with self._lock:
            entry = self._live(key)
            if entry is None:
                return None
            del self._data[key]
            return entry.value

    def __len__(self) -> int:
        return sum(1 for key in list(self._data) if self._live(key) is not None)
