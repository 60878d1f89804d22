"""
Streaming SHA-256 for cache keys.

Values handed to the cache may be larger than is comfortable to hold
twice in memory, so keys are computed over fixed-size chunks.
"""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import BinaryIO, Iterable

from detcache.core import constants as C
from detcache.core.types import ContentHash


def hash_chunks(chunks: Iterable[bytes]) -> ContentHash:
    """Hash an iterable of byte chunks as one contiguous value."""
    digest = hashlib.sha256()
    for chunk in chunks:
        digest.update(chunk)
    return ContentHash(hex=digest.hexdigest())


def iter_chunks(stream: BinaryIO, chunk_size: int = C.HASH_CHUNK_BYTES) -> Iterable[bytes]:
    """Yield ``chunk_size`` reads from ``stream`` until EOF."""
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be > 0, got {chunk_size}")
    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            return
        yield chunk


def hash_stream(stream: BinaryIO, chunk_size: int = C.HASH_CHUNK_BYTES) -> ContentHash:
    """
    SHA-256 of everything remaining in a binary stream.

    Example:
        with open("artifact.tar", "rb") as fh:
            key = hash_stream(fh)
    """
    return hash_chunks(iter_chunks(stream, chunk_size))


def hash_file(path: Path, chunk_size: int = C.HASH_CHUNK_BYTES) -> ContentHash:
    with open(path, "rb") as fh:
        return hash_stream(fh, chunk_size)
