"""
Core module: Type definitions, error hierarchy, and configuration.

This module provides the foundational abstractions for the cache:
- Result/Either monads for zero-exception control flow
- Validated SHA-256 keys and write policies
- Backend registry loaded from TOML or the environment
"""

from detcache.core.types import (
    Result,
    Ok,
    Err,
    Timestamp,
    ContentHash,
    BackendKind,
    PutPolicy,
    OutcomeKind,
    BackendOutcome,
)
from detcache.core.errors import (
    ErrorCode,
    DetCacheError,
    BackendError,
    AggregateFailure,
    InvalidInput,
    ConfigurationError,
)
from detcache.core.config import (
    BackendDescriptor,
    FilesystemDescriptor,
    ObjectStoreDescriptor,
    CacheSet,
    RouterConfig,
    DetCacheConfig,
)

__all__ = [
    "Result",
    "Ok",
    "Err",
    "Timestamp",
    "ContentHash",
    "BackendKind",
    "PutPolicy",
    "OutcomeKind",
    "BackendOutcome",
    "ErrorCode",
    "DetCacheError",
    "BackendError",
    "AggregateFailure",
    "InvalidInput",
    "ConfigurationError",
    "BackendDescriptor",
    "FilesystemDescriptor",
    "ObjectStoreDescriptor",
    "CacheSet",
    "RouterConfig",
    "DetCacheConfig",
]
