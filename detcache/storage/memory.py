"""
In-Memory Backend for development and testing.

Behaves like a remote store with no latency: a dict guarded by an
asyncio lock. Failures and delays can be injected to exercise the
router's fan-out policies.
"""

from __future__ import annotations

import asyncio
from typing import Dict, Optional

from detcache.core.errors import BackendError
from detcache.core.types import BackendKind, ContentHash, Err, Ok, Result
from detcache.storage.protocols import CacheBackend


class InMemoryBackend(CacheBackend):
    """
    Dict-backed cache backend.

    Example:
        backend = InMemoryBackend("mem")
        await backend.put(h, b"value")
        assert (await backend.get(h)).unwrap() == b"value"

    Attributes:
        fail_gets: Every get returns a BackendError.
        fail_puts: Every put returns a BackendError.
        delay_seconds: Sleep before answering (both operations).
    """

    __slots__ = (
        "_objects",
        "_lock",
        "fail_gets",
        "fail_puts",
        "delay_seconds",
        "get_calls",
        "put_calls",
    )

    def __init__(
        self,
        name: str,
        fail_gets: bool = False,
        fail_puts: bool = False,
        delay_seconds: float = 0.0,
    ) -> None:
        super().__init__(name)
        self._objects: Dict[str, bytes] = {}
        self._lock = asyncio.Lock()
        self.fail_gets = fail_gets
        self.fail_puts = fail_puts
        self.delay_seconds = delay_seconds
        self.get_calls = 0
        self.put_calls = 0

    @property
    def kind(self) -> BackendKind:
        # Stands in for a remote store.
        return BackendKind.OBJECT_STORE

    async def get(self, content_hash: ContentHash) -> Result[Optional[bytes], BackendError]:
        self.get_calls += 1
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.fail_gets:
            return Err(BackendError.remote_failed(
                self.name, "get", f"memory://{content_hash}",
            ))
        async with self._lock:
            return Ok(self._objects.get(content_hash.hex))

    async def put(self, content_hash: ContentHash, value: bytes) -> Result[None, BackendError]:
        self.put_calls += 1
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.fail_puts:
            return Err(BackendError.remote_failed(
                self.name, "put", f"memory://{content_hash}",
            ))
        async with self._lock:
            self._objects[content_hash.hex] = bytes(value)
        return Ok(None)

    def contains(self, content_hash: ContentHash) -> bool:
        """Direct inspection, bypassing the async interface."""
        return content_hash.hex in self._objects

    def peek(self, content_hash: ContentHash) -> Optional[bytes]:
        return self._objects.get(content_hash.hex)

    @property
    def size(self) -> int:
        return len(self._objects)
