"""
Error Hierarchy for the Content-Addressed Cache

Design Principles:
- Errors are values: operations return Result[T, DetCacheError subclass]
- A missing key is not an error (Ok(None)), so it never appears here
- Every error carries a code, a message and the context needed to log it

Taxonomy:
- BackendError: one backend failed (I/O, network, auth, timeout)
- AggregateFailure: a write fan-out did not meet its success policy
- InvalidInput: a malformed hash reached the cache
- ConfigurationError: backend registry could not be built (fatal at start-up)

Usage:
    result = await router.put(key, value)
    match result:
        case Ok(report):
            for warning in report.warnings:
                log.warning(warning)
        case Err(AggregateFailure() as failure):
            log.error(failure.message)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Sequence
from uuid import uuid4

from detcache.core.types import Timestamp


# =============================================================================
# ERROR CODE ENUMERATION
# =============================================================================
class ErrorCode(Enum):
    """
    Unique error codes for programmatic error handling.

    Codes are grouped by subsystem:
    - 1xxx: Backend errors
    - 2xxx: Router errors
    - 3xxx: Input errors
    - 4xxx: Configuration errors
    """

    # Backend errors (1xxx)
    BACKEND_IO_FAILED = 1001
    BACKEND_REMOTE_FAILED = 1002
    BACKEND_TIMEOUT = 1003
    BACKEND_UNEXPECTED = 1004

    # Router errors (2xxx)
    AGGREGATE_FAILURE = 2001

    # Input errors (3xxx)
    INVALID_HASH = 3001

    # Configuration errors (4xxx)
    CONFIG_UNREADABLE = 4001
    CONFIG_MALFORMED = 4002
    CONFIG_NO_CACHE_DIR = 4003


# =============================================================================
# BASE ERROR CLASS
# =============================================================================
@dataclass
class DetCacheError(Exception):
    """
    Base class for all cache errors.

    Provides common infrastructure for error handling:
    - Unique error ID to correlate a log line with a returned error
    - Error code for programmatic handling
    - Timestamp for ordering errors from concurrent backends
    - Cause for root cause analysis
    """

    code: ErrorCode
    message: str
    error_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: Timestamp = field(default_factory=Timestamp.now)
    cause: Optional[BaseException] = None
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize error to dictionary for structured log output."""
        return {
            "error_id": self.error_id,
            "code": self.code.name,
            "code_value": self.code.value,
            "message": self.message,
            "timestamp_nanos": self.timestamp.nanos,
            "context": self.context,
        }

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"code={self.code.name}, "
            f"message={self.message!r}, "
            f"error_id={self.error_id!r})"
        )


# =============================================================================
# BACKEND ERRORS
# =============================================================================
@dataclass
class BackendError(DetCacheError):
    """
    A single backend failed to serve a GET or PUT.

    Never fatal: the router logs it with the backend name and either
    keeps waiting on siblings (GET) or folds it into the write report (PUT).
    """

    backend: str = ""

    @classmethod
    def io_failed(
        cls,
        backend: str,
        step: str,
        path: str,
        cause: Optional[BaseException] = None,
    ) -> BackendError:
        """Local filesystem operation failed at a named step."""
        detail = f": {cause}" if cause is not None else ""
        return cls(
            code=ErrorCode.BACKEND_IO_FAILED,
            message=f"{step} failed for {path}{detail}",
            cause=cause,
            context={"step": step, "path": path},
            backend=backend,
        )

    @classmethod
    def remote_failed(
        cls,
        backend: str,
        operation: str,
        location: str,
        cause: Optional[BaseException] = None,
    ) -> BackendError:
        """Remote object store request failed (network, auth, permission)."""
        detail = f": {cause}" if cause is not None else ""
        return cls(
            code=ErrorCode.BACKEND_REMOTE_FAILED,
            message=f"{operation} {location} failed{detail}",
            cause=cause,
            context={"operation": operation, "location": location},
            backend=backend,
        )

    @classmethod
    def timeout(
        cls,
        backend: str,
        operation: str,
        timeout_seconds: float,
    ) -> BackendError:
        """Backend call exceeded the router's per-backend timeout."""
        return cls(
            code=ErrorCode.BACKEND_TIMEOUT,
            message=f"{operation} timed out after {timeout_seconds}s",
            context={"operation": operation, "timeout_seconds": timeout_seconds},
            backend=backend,
        )

    @classmethod
    def unexpected(
        cls,
        backend: str,
        operation: str,
        cause: BaseException,
    ) -> BackendError:
        """Backend raised instead of returning a Result."""
        return cls(
            code=ErrorCode.BACKEND_UNEXPECTED,
            message=f"{operation} raised {type(cause).__name__}: {cause}",
            cause=cause,
            context={"operation": operation},
            backend=backend,
        )

    def describe(self) -> str:
        """``<backend>: <message>`` as used in aggregated write reports."""
        return f"{self.backend}: {self.message}"


# =============================================================================
# ROUTER ERRORS
# =============================================================================
@dataclass
class AggregateFailure(DetCacheError):
    """A write fan-out did not satisfy its success policy."""

    failures: tuple[BackendError, ...] = ()

    @classmethod
    def from_failures(
        cls,
        failures: Sequence[BackendError],
        attempted: int,
        policy: str,
    ) -> AggregateFailure:
        joined = "; ".join(f.describe() for f in failures)
        return cls(
            code=ErrorCode.AGGREGATE_FAILURE,
            message=(
                f"{len(failures)} of {attempted} backends failed "
                f"(policy={policy}): {joined}"
            ),
            context={
                "attempted": attempted,
                "failed": [f.backend for f in failures],
                "policy": policy,
            },
            failures=tuple(failures),
        )

    @property
    def backends(self) -> list[str]:
        return [f.backend for f in self.failures]


# =============================================================================
# INPUT ERRORS
# =============================================================================
@dataclass
class InvalidInput(DetCacheError):
    """Malformed key rejected before any backend is contacted."""

    @classmethod
    def malformed_hash(cls, value: Any, reason: str) -> InvalidInput:
        shown = str(value)
        if len(shown) > 80:
            shown = shown[:77] + "..."
        return cls(
            code=ErrorCode.INVALID_HASH,
            message=f"Invalid SHA-256 key {shown!r}: {reason}",
            context={"value": shown, "reason": reason},
        )


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================
@dataclass
class ConfigurationError(DetCacheError):
    """Backend registry could not be built; fatal at start-up."""

    @classmethod
    def unreadable(cls, path: str, cause: BaseException) -> ConfigurationError:
        return cls(
            code=ErrorCode.CONFIG_UNREADABLE,
            message=f"Failed to read config file {path}: {cause}",
            cause=cause,
            context={"path": path},
        )

    @classmethod
    def malformed(
        cls,
        where: str,
        reason: str,
        cause: Optional[BaseException] = None,
    ) -> ConfigurationError:
        return cls(
            code=ErrorCode.CONFIG_MALFORMED,
            message=f"Invalid configuration at {where}: {reason}",
            cause=cause,
            context={"where": where, "reason": reason},
        )

    @classmethod
    def no_cache_dir(cls) -> ConfigurationError:
        return cls(
            code=ErrorCode.CONFIG_NO_CACHE_DIR,
            message="Cannot determine a cache directory: neither XDG_CACHE_HOME nor HOME is set",
        )
