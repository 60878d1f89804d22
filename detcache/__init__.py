"""
detcache: Content-Addressed Key/Value Cache

Stores opaque byte values under the SHA-256 hash of their content across
one or more pluggable backends:
- Filesystem: atomic temp-file + rename writes under a sharded directory tree
- Object storage: S3-compatible buckets via aioboto3
- Cache router: GET races every backend, PUT joins them under a policy
- Two-tier: fast primary in front of a secondary set, with promotion
"""

__version__ = "1.0.0"

# =============================================================================
# PUBLIC API EXPORTS
# =============================================================================
from detcache.core.types import (
    Result,
    Ok,
    Err,
    ContentHash,
    PutPolicy,
    BackendKind,
    BackendOutcome,
    OutcomeKind,
)
from detcache.core.errors import (
    DetCacheError,
    BackendError,
    AggregateFailure,
    InvalidInput,
    ConfigurationError,
)
from detcache.core.config import DetCacheConfig, RouterConfig, CacheSet
from detcache.storage import (
    CacheBackend,
    FilesystemBackend,
    S3Backend,
    InMemoryBackend,
    create_backend,
)
from detcache.router import (
    CacheRouter,
    TieredCache,
    GetReport,
    PutReport,
    build_cache,
)
from detcache.hashing import hash_stream, hash_file

__all__ = [
    # Version
    "__version__",
    # Core types
    "Result",
    "Ok",
    "Err",
    "ContentHash",
    "PutPolicy",
    "BackendKind",
    "BackendOutcome",
    "OutcomeKind",
    # Errors
    "DetCacheError",
    "BackendError",
    "AggregateFailure",
    "InvalidInput",
    "ConfigurationError",
    # Configuration
    "DetCacheConfig",
    "RouterConfig",
    "CacheSet",
    # Backends
    "CacheBackend",
    "FilesystemBackend",
    "S3Backend",
    "InMemoryBackend",
    "create_backend",
    # Router
    "CacheRouter",
    "TieredCache",
    "GetReport",
    "PutReport",
    "build_cache",
    # Hashing
    "hash_stream",
    "hash_file",
]
