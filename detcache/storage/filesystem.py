"""
Filesystem Backend: Durable Local Storage with Atomic Writes

Objects stored at: {cache_dir}/detcache/kv-cache/{aa}/{bb}/{rest}

Write protocol:
1. create the parent directory chain (idempotent)
2. write to {final}.tmp-{uuid} in the same directory
3. flush + fsync the temp file
4. os.replace() the temp file onto the final path

A reader therefore sees either no file or a complete one. A crash between
steps 3 and 4 leaves an orphaned temp file next to the final path; this
backend never cleans those up.

Blocking calls run in the default thread pool so sibling backends in a
fan-out are not stalled behind disk I/O.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional
from uuid import uuid4

from detcache.core.errors import BackendError
from detcache.core.types import BackendKind, ContentHash, Err, Ok, Result
from detcache.storage.paths import filesystem_path, temp_path
from detcache.storage.protocols import CacheBackend

logger = logging.getLogger(__name__)


class FilesystemBackend(CacheBackend):
    """
    Local filesystem storage backend.

    Concurrent writers of the same key each use their own temp file; the
    last rename wins. There is no conflict detection.
    """

    __slots__ = ("_cache_dir",)

    def __init__(self, name: str, cache_dir: Path) -> None:
        super().__init__(name)
        self._cache_dir = cache_dir

    @property
    def kind(self) -> BackendKind:
        return BackendKind.FILESYSTEM

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    def path_for(self, content_hash: ContentHash) -> Path:
        """Final on-disk location for ``content_hash``."""
        return filesystem_path(self._cache_dir, content_hash)

    async def get(self, content_hash: ContentHash) -> Result[Optional[bytes], BackendError]:
        """Read the value; a missing file is a miss, anything else an error."""
        path = self.path_for(content_hash)
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            logger.debug("FS cache %s: miss for %s", self.name, content_hash)
            return Ok(None)
        except OSError as e:
            return Err(BackendError.io_failed(self.name, "read", str(path), e))

        logger.debug("FS cache %s: hit for %s (%d bytes)", self.name, content_hash, len(data))
        return Ok(data)

    async def put(self, content_hash: ContentHash, value: bytes) -> Result[None, BackendError]:
        """Atomically store ``value``; see module docstring for the protocol."""
        path = self.path_for(content_hash)
        result = await asyncio.to_thread(self._write_atomic, path, value)
        if result.is_ok():
            logger.debug("FS cache %s: stored %s (%d bytes)", self.name, content_hash, len(value))
        return result

    def _write_atomic(self, final_path: Path, value: bytes) -> Result[None, BackendError]:
        parent = final_path.parent
        try:
            parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            return Err(BackendError.io_failed(self.name, "create_dir", str(parent), e))

        tmp = temp_path(final_path, uuid4().hex)
        try:
            fh = open(tmp, "xb")
        except OSError as e:
            return Err(BackendError.io_failed(self.name, "create_temp", str(tmp), e))

        with fh:
            try:
                fh.write(value)
            except OSError as e:
                return Err(BackendError.io_failed(self.name, "write", str(tmp), e))
            try:
                fh.flush()
                os.fsync(fh.fileno())
            except OSError as e:
                return Err(BackendError.io_failed(self.name, "sync", str(tmp), e))

        try:
            os.replace(tmp, final_path)
        except OSError as e:
            return Err(BackendError.io_failed(self.name, "rename", str(final_path), e))

        return Ok(None)

    def __repr__(self) -> str:
        return f"FilesystemBackend(name={self.name!r}, cache_dir={str(self._cache_dir)!r})"
