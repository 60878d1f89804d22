"""
Storage Module: Pluggable Cache Backends
========================================

Provides:
- The CacheBackend interface every backend implements
- Filesystem backend (atomic local writes)
- S3-compatible object-store backend
- In-memory backend for development/testing
- Factory turning a BackendDescriptor into a live backend

Design Principles:
-----------------
1. **Backend Agnostic**: Same interface for every kind
2. **Closed Dispatch**: descriptor kinds are a fixed union, matched exhaustively
3. **Result Monad**: No exceptions for control flow

Example:
    >>> from detcache.core.config import FilesystemDescriptor
    >>> backend = create_backend(FilesystemDescriptor("local", Path("/tmp/c")))
"""

from __future__ import annotations

from typing import Any, assert_never

from detcache.core.config import (
    BackendDescriptor,
    FilesystemDescriptor,
    ObjectStoreDescriptor,
)
from detcache.storage.filesystem import FilesystemBackend
from detcache.storage.memory import InMemoryBackend
from detcache.storage.paths import filesystem_path, object_key, shard_segments
from detcache.storage.protocols import CacheBackend
from detcache.storage.s3_store import S3Backend, S3Metrics


def create_backend(descriptor: BackendDescriptor, session: Any = None) -> CacheBackend:
    """
    Instantiate the backend a descriptor describes.

    Args:
        descriptor: Validated descriptor from the backend registry.
        session: Optional aioboto3-compatible session shared by object-store
            backends.
    """
    match descriptor:
        case FilesystemDescriptor():
            return FilesystemBackend(descriptor.name, descriptor.cache_dir)
        case ObjectStoreDescriptor():
            return S3Backend.from_descriptor(descriptor, session=session)
        case _:
            assert_never(descriptor)


__all__ = [
    "CacheBackend",
    "FilesystemBackend",
    "S3Backend",
    "S3Metrics",
    "InMemoryBackend",
    "create_backend",
    "filesystem_path",
    "object_key",
    "shard_segments",
]
