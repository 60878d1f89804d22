"""
Backend Interface: Pluggable Storage for the Cache Router

Every backend translates a ContentHash into its own location via the
shared path scheme and performs exactly one I/O operation per call.

Contract:
    get -> Ok(bytes)      value found
           Ok(None)       benign miss (key absent)
           Err(BackendError)  hard failure, distinct from a miss
    put -> Ok(None)       value durably stored
           Err(BackendError)

Backends never raise for expected failures; the router still guards
against a backend that does.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from detcache.core.errors import BackendError
from detcache.core.types import BackendKind, ContentHash, Result


class CacheBackend(ABC):
    """Abstract storage backend interface."""

    __slots__ = ("_name",)

    def __init__(self, name: str) -> None:
        self._name = name

    @property
    def name(self) -> str:
        """Configured backend name, used in logs and reports."""
        return self._name

    @property
    @abstractmethod
    def kind(self) -> BackendKind:
        """Backend kind, for diagnostics."""

    @abstractmethod
    async def get(self, content_hash: ContentHash) -> Result[Optional[bytes], BackendError]:
        """Retrieve the value stored under ``content_hash``."""

    @abstractmethod
    async def put(self, content_hash: ContentHash, value: bytes) -> Result[None, BackendError]:
        """Store ``value`` under ``content_hash``, replacing any existing value."""

    async def close(self) -> None:
        """Release connections. Safe to call multiple times."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self._name!r})"
