"""
Core Type Definitions for the Content-Addressed Cache

Implements Result/Either monads for zero-exception control flow, plus the
value types shared by every backend and by the cache router.

Design Principles:
- Never use null for errors (use Result); Optional means "no value"
- Enforce exhaustive pattern matching for all variants
- Hash keys are validated once, at the edge, then trusted

Complexity: O(1) for all type operations except hashing (O(n))
"""

from __future__ import annotations

import hashlib
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    Generic,
    Literal,
    Optional,
    TypeVar,
    Union,
)

from detcache.core import constants as C

# =============================================================================
# TYPE VARIABLES FOR GENERIC CONTAINERS
# =============================================================================
T = TypeVar("T")  # Success type
E = TypeVar("E")  # Error type


# =============================================================================
# RESULT MONAD: ZERO-EXCEPTION CONTROL FLOW
# =============================================================================
@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """
    Success variant of Result monad.

    Immutable container for successful computation results.
    A successful cache lookup that found nothing is ``Ok(None)``.
    """

    value: T

    def is_ok(self) -> Literal[True]:
        return True

    def is_err(self) -> Literal[False]:
        return False

    def unwrap(self) -> T:
        """
        Extract value. Safe to call after is_ok() check.

        Returns:
            T: The wrapped success value
        """
        return self.value

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """
    Failure variant of Result monad.

    Carries full error context for exhaustive handling.
    """

    error: E

    def is_ok(self) -> Literal[False]:
        return False

    def is_err(self) -> Literal[True]:
        return True

    def unwrap(self) -> Any:
        """
        Attempting to unwrap an error is a programming error.

        Raises:
            RuntimeError: Always, with error context
        """
        raise RuntimeError(f"Called unwrap() on Err: {self.error}")

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


# Union type for pattern matching
Result = Union[Ok[T], Err[E]]


# =============================================================================
# TIMESTAMP WITH NANOSECOND PRECISION
# =============================================================================
@dataclass(frozen=True, slots=True, order=True)
class Timestamp:
    """
    Nanoseconds since Unix epoch.

    Attached to every error so log lines from concurrent backend
    tasks can be ordered after the fact.
    """

    nanos: int

    @classmethod
    def now(cls) -> Timestamp:
        return cls(nanos=time.time_ns())

    def __repr__(self) -> str:
        return f"Timestamp({self.nanos}ns)"


# =============================================================================
# CONTENT-ADDRESSABLE HASH
# =============================================================================
_HEX_DIGEST = re.compile(r"[0-9a-f]{64}")


@dataclass(frozen=True, slots=True)
class ContentHash:
    """
    SHA-256 content hash used as the sole cache key.

    The canonical form is the 64-character lowercase hex string. The cache
    never checks that stored bytes actually hash to this value; callers are
    trusted to supply the right key.

    Invariant: ``len(hex) == 64`` and every character is in ``[0-9a-f]``.
    """

    hex: str

    def __post_init__(self) -> None:
        if _HEX_DIGEST.fullmatch(self.hex) is None:
            raise ValueError(
                f"SHA-256 hash must be 64 lowercase hex characters, got {self.hex!r}"
            )

    @classmethod
    def compute(cls, data: bytes) -> ContentHash:
        """
        Compute SHA-256 hash of data.

        Complexity: O(n) where n is len(data)
        """
        return cls(hex=hashlib.sha256(data).hexdigest())

    @classmethod
    def from_hex(cls, hex_str: str) -> Result[ContentHash, str]:
        """
        Parse a hash supplied by a caller.

        Uppercase digits are rejected rather than normalised: two spellings
        of the same digest would otherwise map to one key on a
        case-insensitive filesystem and to two keys in a bucket.

        Returns:
            Ok[ContentHash]: Valid hash
            Err[str]: Reason the input was rejected
        """
        if not isinstance(hex_str, str):
            return Err(f"expected a string, got {type(hex_str).__name__}")
        if len(hex_str) != C.HASH_HEX_LENGTH:
            return Err(f"expected 64 characters, got {len(hex_str)}")
        if _HEX_DIGEST.fullmatch(hex_str) is None:
            return Err("expected only lowercase hexadecimal characters [0-9a-f]")
        return Ok(cls(hex=hex_str))

    def shard(self) -> tuple[str, str, str]:
        """
        Split into (first byte, second byte, remaining 60 characters).

        Bounds directory fan-out to 256 x 256 shards.
        """
        return self.hex[0:2], self.hex[2:4], self.hex[4:]

    def __str__(self) -> str:
        return self.hex


# =============================================================================
# BACKEND KINDS AND POLICIES
# =============================================================================
class BackendKind(Enum):
    """Closed set of storage backend kinds a descriptor can name."""

    FILESYSTEM = "filesystem"
    OBJECT_STORE = "object-store"

    @classmethod
    def parse(cls, value: str) -> Optional[BackendKind]:
        """Resolve a configured ``type`` string, accepting short aliases."""
        return _KIND_ALIASES.get(value.strip().lower())


_KIND_ALIASES: dict[str, BackendKind] = {
    "filesystem": BackendKind.FILESYSTEM,
    "fs": BackendKind.FILESYSTEM,
    "object-store": BackendKind.OBJECT_STORE,
    "object_store": BackendKind.OBJECT_STORE,
    "s3": BackendKind.OBJECT_STORE,
}


class PutPolicy(Enum):
    """
    Success policy for write fan-out.

    ANY: the write succeeds if at least one backend stored the value.
    ALL: the write succeeds only if every backend stored the value.
    """

    ANY = "any"
    ALL = "all"

    def is_satisfied(self, succeeded: int, attempted: int) -> bool:
        if attempted == 0:
            return True
        if self is PutPolicy.ALL:
            return succeeded == attempted
        return succeeded > 0


class OutcomeKind(Enum):
    """What a single backend reported for one operation."""

    HIT = "hit"
    MISS = "miss"
    STORED = "stored"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class BackendOutcome:
    """
    Per-backend result of one fan-out operation.

    Attributes:
        backend: Configured backend name.
        kind: Hit, miss, stored, error or cancelled.
        latency_ms: Wall time of the backend call.
        message: Error text when ``kind`` is ERROR.
    """

    backend: str
    kind: OutcomeKind
    latency_ms: float = 0.0
    message: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.kind is OutcomeKind.ERROR
