"""
Content-Addressed Path Scheme

Maps a hash to its storage location. Shared by every backend so that a
value's location is predictable independent of where it is stored:

    filesystem:   <root>/detcache/kv-cache/<aa>/<bb>/<rest>
    object store: <prefix>/<aa>/<bb>/<rest>      (prefix omitted when empty)

where ``aa`` and ``bb`` are the first two hex byte pairs and ``rest`` the
remaining 60 characters.
"""

from __future__ import annotations

from pathlib import Path

from detcache.core import constants as C
from detcache.core.types import ContentHash


def shard_segments(content_hash: ContentHash) -> tuple[str, str, str]:
    """The three path segments shared by every backend kind."""
    return content_hash.shard()


def filesystem_path(root: Path, content_hash: ContentHash) -> Path:
    """Final on-disk location of a value under a filesystem cache root."""
    first, second, rest = shard_segments(content_hash)
    return root / C.FS_NAMESPACE / C.FS_KV_SEGMENT / first / second / rest


def temp_path(final_path: Path, token: str) -> Path:
    """Sibling temp file used for an atomic write of ``final_path``."""
    return final_path.with_name(f"{final_path.name}{C.TEMP_SUFFIX_PREFIX}{token}")


def object_key(prefix: str, content_hash: ContentHash) -> str:
    """Object key of a value in a bucket, honouring an optional prefix."""
    first, second, rest = shard_segments(content_hash)
    segments = [first, second, rest]
    cleaned = prefix.strip("/")
    if cleaned:
        segments.insert(0, cleaned)
    return "/".join(segments)
