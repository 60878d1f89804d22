"""
Cache Router: Concurrent Fan-Out Across Backends

Turns one logical GET or PUT into one asyncio task per configured backend
and reconciles the results.

GET (race):
    The first backend to return a value wins; the remaining tasks are
    cancelled. Misses and errors keep the race going. If every backend
    misses or fails the result is "no value" (Ok(None)); the returned
    GetReport still says which backends missed and which failed.

PUT (join):
    Every backend is awaited. PutPolicy.ANY succeeds when at least one
    backend stored the value, PutPolicy.ALL only when all did. Failures on
    a successful write come back as warnings; there is no rollback.

Two-tier (TieredCache):
    A fast primary backend in front of a secondary router. A secondary hit
    is promoted into the primary before it is returned; a failed promotion
    is logged, never surfaced. Writes go to both tiers and fail only if
    both tiers fail.

Concurrency Model:
------------------
- One task per backend per call; no shared mutable state between them
- Suspension points are exactly the backend I/O calls
- Optional per-backend timeout via asyncio.wait_for
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar, Union

from detcache.core import constants as C
from detcache.core.config import CacheSet, DetCacheConfig, RouterConfig
from detcache.core.errors import (
    AggregateFailure,
    BackendError,
    DetCacheError,
    InvalidInput,
)
from detcache.core.types import (
    BackendOutcome,
    ContentHash,
    Err,
    Ok,
    OutcomeKind,
    PutPolicy,
    Result,
)
from detcache.observability.metrics import MetricsCollector
from detcache.storage import CacheBackend, create_backend

logger = logging.getLogger(__name__)

T = TypeVar("T")

KeyLike = Union[str, ContentHash]


# =============================================================================
# REPORTS
# =============================================================================
@dataclass(frozen=True, slots=True)
class GetReport:
    """
    Outcome of a read fan-out.

    Attributes:
        value: The value found, or None.
        source: Name of the backend that supplied the value.
        outcomes: Per-backend outcomes observed before the call returned.
        promoted: True if a two-tier read copied the value into the primary.
    """
    value: Optional[bytes]
    source: Optional[str] = None
    outcomes: tuple[BackendOutcome, ...] = ()
    promoted: bool = False

    @property
    def hit(self) -> bool:
        return self.value is not None

    @property
    def all_failed(self) -> bool:
        """Every consulted backend errored (as opposed to missing)."""
        return bool(self.outcomes) and all(o.failed for o in self.outcomes)

    @property
    def errors(self) -> list[BackendOutcome]:
        return [o for o in self.outcomes if o.failed]


@dataclass(frozen=True, slots=True)
class PutReport:
    """
    Outcome of a write fan-out that met its policy.

    ``warnings`` holds ``"<backend>: <message>"`` for each backend that
    failed while the write as a whole still succeeded.
    """
    outcomes: tuple[BackendOutcome, ...] = ()
    failures: tuple[BackendError, ...] = field(default=(), repr=False)

    @property
    def warnings(self) -> list[str]:
        return [f.describe() for f in self.failures]

    @property
    def detail(self) -> str:
        return "; ".join(self.warnings)

    @property
    def stored_in(self) -> list[str]:
        return [o.backend for o in self.outcomes if o.kind is OutcomeKind.STORED]

    @property
    def attempted(self) -> int:
        return len(self.outcomes)


def parse_key(key: KeyLike) -> Result[ContentHash, InvalidInput]:
    """Validate a caller-supplied key before any backend sees it."""
    if isinstance(key, ContentHash):
        return Ok(key)
    parsed = ContentHash.from_hex(key)
    if parsed.is_err():
        return Err(InvalidInput.malformed_hash(key, parsed.error))
    return Ok(parsed.unwrap())


# =============================================================================
# BACKEND CALL INSTRUMENTATION
# =============================================================================
class _Instruments:
    """Per-call metrics shared by CacheRouter and TieredCache."""

    __slots__ = ("operations", "latency", "promotions")

    def __init__(self, collector: MetricsCollector) -> None:
        self.operations = collector.counter(
            C.METRIC_BACKEND_OPERATIONS,
            ["backend", "operation", "outcome"],
            "Backend calls by outcome",
        )
        self.latency = collector.histogram(
            C.METRIC_BACKEND_LATENCY,
            ["backend", "operation"],
            "Backend call latency",
        )
        self.promotions = collector.counter(
            C.METRIC_PROMOTIONS,
            ["backend", "outcome"],
            "Secondary hits copied into the primary tier",
        )

    def record(self, outcome: BackendOutcome, operation: str) -> None:
        self.operations.inc(
            backend=outcome.backend, operation=operation, outcome=outcome.kind.value,
        )
        if outcome.kind is not OutcomeKind.CANCELLED:
            self.latency.observe(
                outcome.latency_ms / 1000, backend=outcome.backend, operation=operation,
            )


async def _invoke(
    backend: CacheBackend,
    operation: str,
    call: Callable[[], Awaitable[Result[T, BackendError]]],
    timeout_seconds: Optional[float],
) -> tuple[Result[T, BackendError], float]:
    """
    Run one backend call, converting timeouts and stray exceptions to Err.

    Returns the result and its latency in milliseconds. Cancellation is
    not intercepted.
    """
    start = time.perf_counter()
    try:
        if timeout_seconds is None:
            result = await call()
        else:
            try:
                result = await asyncio.wait_for(call(), timeout=timeout_seconds)
            except asyncio.TimeoutError:
                result = Err(BackendError.timeout(backend.name, operation, timeout_seconds))
    except Exception as e:
        logger.exception("Cache %s raised during %s", backend.name, operation)
        result = Err(BackendError.unexpected(backend.name, operation, e))
    return result, (time.perf_counter() - start) * 1000


# =============================================================================
# CACHE ROUTER
# =============================================================================
class CacheRouter:
    """
    Fans GET/PUT out to a set of uniquely named backends.

    Usage:
        router = CacheRouter([local, shared], policy=PutPolicy.ANY)
        async with router:
            await router.put(key, value)
            result = await router.get(key)
    """

    __slots__ = ("_backends", "_policy", "_timeout", "_instruments")

    def __init__(
        self,
        backends: Sequence[CacheBackend],
        policy: PutPolicy = PutPolicy.ANY,
        timeout_seconds: Optional[float] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        names = [b.name for b in backends]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate backend names: {duplicates}")
        if timeout_seconds is not None and not (math.isfinite(timeout_seconds) and timeout_seconds > 0):
            raise ValueError(f"timeout_seconds must be a finite number > 0, got {timeout_seconds}")

        self._backends: tuple[CacheBackend, ...] = tuple(backends)
        self._policy = policy
        self._timeout = timeout_seconds
        self._instruments = _Instruments(metrics or MetricsCollector.get_instance())

    @classmethod
    def from_cache_set(
        cls,
        caches: CacheSet,
        config: Optional[RouterConfig] = None,
        session: Any = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> CacheRouter:
        """Instantiate one backend per descriptor."""
        config = config or RouterConfig()
        return cls(
            [create_backend(descriptor, session=session) for descriptor in caches.values()],
            policy=config.put_policy,
            timeout_seconds=config.timeout_seconds,
            metrics=metrics,
        )

    @property
    def backends(self) -> tuple[CacheBackend, ...]:
        return self._backends

    @property
    def policy(self) -> PutPolicy:
        return self._policy

    # -------------------------------------------------------------------------
    # GET
    # -------------------------------------------------------------------------

    async def get(self, key: KeyLike) -> Result[Optional[bytes], InvalidInput]:
        """
        Retrieve a value from whichever backend answers first.

        Returns:
            Ok(bytes) on hit, Ok(None) if no backend had it (or all failed),
            Err(InvalidInput) for a malformed key.
        """
        report = await self.lookup(key)
        if report.is_err():
            return report
        return Ok(report.unwrap().value)

    async def lookup(self, key: KeyLike) -> Result[GetReport, InvalidInput]:
        """Like ``get`` but returns the per-backend outcomes as well."""
        parsed = parse_key(key)
        if parsed.is_err():
            return parsed
        return Ok(await self.fan_out_get(parsed.unwrap()))

    async def fan_out_get(self, content_hash: ContentHash) -> GetReport:
        """Race every backend for ``content_hash``; cancel the losers."""
        if not self._backends:
            return GetReport(value=None)

        tasks: dict[asyncio.Task, CacheBackend] = {}
        for backend in self._backends:
            logger.debug("Trying cache %s for %s", backend.name, content_hash)
            task = asyncio.create_task(
                _invoke(backend, "get", lambda b=backend: b.get(content_hash), self._timeout),
                name=f"detcache-get-{backend.name}",
            )
            tasks[task] = backend

        outcomes: list[BackendOutcome] = []
        pending: set[asyncio.Task] = set(tasks)
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)

                winner: Optional[tuple[str, bytes]] = None
                for task in done:
                    backend = tasks[task]
                    result, latency_ms = task.result()
                    outcome = self._read_outcome(backend, content_hash, result, latency_ms)
                    outcomes.append(outcome)
                    if winner is None and outcome.kind is OutcomeKind.HIT:
                        winner = (backend.name, result.unwrap())

                if winner is not None:
                    for task in pending:
                        outcome = BackendOutcome(tasks[task].name, OutcomeKind.CANCELLED)
                        self._instruments.record(outcome, "get")
                        outcomes.append(outcome)
                    return GetReport(value=winner[1], source=winner[0], outcomes=tuple(outcomes))
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        return GetReport(value=None, outcomes=tuple(outcomes))

    def _read_outcome(
        self,
        backend: CacheBackend,
        content_hash: ContentHash,
        result: Result[Optional[bytes], BackendError],
        latency_ms: float,
    ) -> BackendOutcome:
        if result.is_err():
            logger.warning("Error from cache %s: %s", backend.name, result.error.message)
            outcome = BackendOutcome(
                backend.name, OutcomeKind.ERROR, latency_ms, result.error.message,
            )
        elif result.unwrap() is None:
            logger.debug("Cache %s has no value for %s", backend.name, content_hash)
            outcome = BackendOutcome(backend.name, OutcomeKind.MISS, latency_ms)
        else:
            logger.debug("Cache %s hit for %s", backend.name, content_hash)
            outcome = BackendOutcome(backend.name, OutcomeKind.HIT, latency_ms)
        self._instruments.record(outcome, "get")
        return outcome

    # -------------------------------------------------------------------------
    # PUT
    # -------------------------------------------------------------------------

    async def put(self, key: KeyLike, value: bytes) -> Result[PutReport, DetCacheError]:
        """
        Store a value in every backend and apply the success policy.

        Returns:
            Ok(PutReport) when the policy is met (warnings list any failures),
            Err(AggregateFailure) when it is not,
            Err(InvalidInput) for a malformed key.
        """
        parsed = parse_key(key)
        if parsed.is_err():
            return parsed

        report = await self.fan_out_put(parsed.unwrap(), value)
        if not self._policy.is_satisfied(len(report.stored_in), report.attempted):
            return Err(AggregateFailure.from_failures(
                report.failures, report.attempted, self._policy.value,
            ))
        return Ok(report)

    async def fan_out_put(self, content_hash: ContentHash, value: bytes) -> PutReport:
        """Write to every backend and wait for all of them; no policy applied."""
        if not self._backends:
            return PutReport()

        calls = []
        for backend in self._backends:
            logger.debug("Storing %s in cache %s", content_hash, backend.name)
            calls.append(_invoke(
                backend, "put", lambda b=backend: b.put(content_hash, value), self._timeout,
            ))
        results = await asyncio.gather(*calls)

        outcomes: list[BackendOutcome] = []
        failures: list[BackendError] = []
        for backend, (result, latency_ms) in zip(self._backends, results):
            if result.is_err():
                logger.warning(
                    "Failed to put %s into cache %s: %s",
                    content_hash, backend.name, result.error.message,
                )
                failures.append(result.error)
                outcome = BackendOutcome(
                    backend.name, OutcomeKind.ERROR, latency_ms, result.error.message,
                )
            else:
                outcome = BackendOutcome(backend.name, OutcomeKind.STORED, latency_ms)
            self._instruments.record(outcome, "put")
            outcomes.append(outcome)

        return PutReport(outcomes=tuple(outcomes), failures=tuple(failures))

    # -------------------------------------------------------------------------
    # LIFECYCLE
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Close every backend's connections."""
        for backend in self._backends:
            await backend.close()

    async def __aenter__(self) -> CacheRouter:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        names = [b.name for b in self._backends]
        return f"CacheRouter(backends={names!r}, policy={self._policy.value})"


# =============================================================================
# TWO-TIER CACHE
# =============================================================================
class TieredCache:
    """
    Fast primary backend in front of a secondary fan-out set.

    Reads consult the primary first and only then the secondary router; a
    secondary hit is written back into the primary (promotion). Writes go
    to both tiers concurrently and fail only if both tiers fail.
    """

    __slots__ = ("_primary", "_primary_router", "_secondary", "_instruments")

    def __init__(
        self,
        primary: CacheBackend,
        secondary: CacheRouter,
        timeout_seconds: Optional[float] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        if any(b.name == primary.name for b in secondary.backends):
            raise ValueError(f"primary {primary.name!r} is also a secondary backend")
        collector = metrics or MetricsCollector.get_instance()
        self._primary = primary
        self._primary_router = CacheRouter(
            [primary], policy=PutPolicy.ALL, timeout_seconds=timeout_seconds, metrics=collector,
        )
        self._secondary = secondary
        self._instruments = _Instruments(collector)

    @property
    def primary(self) -> CacheBackend:
        return self._primary

    @property
    def secondary(self) -> CacheRouter:
        return self._secondary

    @property
    def backends(self) -> tuple[CacheBackend, ...]:
        return (self._primary,) + self._secondary.backends

    async def get(self, key: KeyLike) -> Result[Optional[bytes], InvalidInput]:
        report = await self.lookup(key)
        if report.is_err():
            return report
        return Ok(report.unwrap().value)

    async def lookup(self, key: KeyLike) -> Result[GetReport, InvalidInput]:
        parsed = parse_key(key)
        if parsed.is_err():
            return parsed
        content_hash = parsed.unwrap()

        # A primary error is already logged by the router; treat it as a miss.
        first = await self._primary_router.fan_out_get(content_hash)
        if first.hit:
            return Ok(first)

        second = await self._secondary.fan_out_get(content_hash)
        outcomes = first.outcomes + second.outcomes
        if not second.hit:
            return Ok(GetReport(value=None, outcomes=outcomes))

        value = second.value
        assert value is not None
        promoted = await self._promote(content_hash, value, second.source)
        return Ok(GetReport(
            value=value, source=second.source, outcomes=outcomes, promoted=promoted,
        ))

    async def _promote(
        self,
        content_hash: ContentHash,
        value: bytes,
        source: Optional[str],
    ) -> bool:
        """Best-effort copy of a secondary hit into the primary."""
        report = await self._primary_router.fan_out_put(content_hash, value)
        if report.failures:
            logger.warning(
                "Failed to promote %s from %s into %s: %s",
                content_hash, source, self._primary.name, report.detail,
            )
            self._instruments.promotions.inc(backend=self._primary.name, outcome="error")
            return False
        logger.info("Promoted %s from %s into %s", content_hash, source, self._primary.name)
        self._instruments.promotions.inc(backend=self._primary.name, outcome="stored")
        return True

    async def put(self, key: KeyLike, value: bytes) -> Result[PutReport, DetCacheError]:
        """
        Write to both tiers; fail only if both tiers fail.

        The secondary tier counts as failed when its own put policy is not met.
        """
        parsed = parse_key(key)
        if parsed.is_err():
            return parsed
        content_hash = parsed.unwrap()

        primary_report, secondary_report = await asyncio.gather(
            self._primary_router.fan_out_put(content_hash, value),
            self._secondary.fan_out_put(content_hash, value),
        )
        primary_ok = not primary_report.failures
        secondary_ok = bool(self._secondary.backends) and self._secondary.policy.is_satisfied(
            len(secondary_report.stored_in), secondary_report.attempted,
        )

        outcomes = primary_report.outcomes + secondary_report.outcomes
        failures = primary_report.failures + secondary_report.failures
        if not (primary_ok or secondary_ok):
            return Err(AggregateFailure.from_failures(failures, len(outcomes), "tiered"))
        return Ok(PutReport(outcomes=outcomes, failures=failures))

    async def close(self) -> None:
        await self._primary.close()
        await self._secondary.close()

    async def __aenter__(self) -> TieredCache:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"TieredCache(primary={self._primary.name!r}, secondary={self._secondary!r})"


Cache = Union[CacheRouter, TieredCache]


def build_cache(
    config: DetCacheConfig,
    session: Any = None,
    metrics: Optional[MetricsCollector] = None,
) -> Cache:
    """
    Build the cache topology a configuration describes.

    Without ``router.primary`` every cache joins one flat fan-out set;
    with it, the named cache becomes the primary tier and the rest form
    the secondary router.
    """
    router_config = config.router
    primary_name = router_config.primary
    if primary_name is None:
        return CacheRouter.from_cache_set(config.caches, router_config, session, metrics)

    primary = create_backend(config.caches[primary_name], session=session)
    secondary = CacheRouter.from_cache_set(
        config.caches.without(primary_name), router_config, session, metrics,
    )
    return TieredCache(
        primary, secondary, timeout_seconds=router_config.timeout_seconds, metrics=metrics,
    )
