"""
Configuration Management: Backend Registry

Resolves a TOML file (or the environment) into typed, immutable backend
descriptors that the cache router fans out to.

Design:
- Immutable after validation (frozen dataclasses)
- Fail-fast on invalid configuration, before any router exists
- Defaulting happens here (filesystem root), never in the backends

Example file:

    [router]
    put_policy = "any"
    primary = "local"

    [caches.local]
    type = "filesystem"

    [caches.shared]
    type = "object-store"
    bucket = "build-cache"
    region = "eu-west-1"
    prefix_key = "detcache"
"""

from __future__ import annotations

import math
import os
import tomllib
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

from detcache.core import constants as C
from detcache.core.errors import ConfigurationError
from detcache.core.types import BackendKind, Err, Ok, PutPolicy, Result


# =============================================================================
# BACKEND DESCRIPTORS
# =============================================================================
@dataclass(frozen=True, slots=True)
class FilesystemDescriptor:
    """Local directory cache rooted at ``cache_dir``."""

    name: str
    cache_dir: Path

    @property
    def kind(self) -> BackendKind:
        return BackendKind.FILESYSTEM


@dataclass(frozen=True, slots=True)
class ObjectStoreDescriptor:
    """
    S3-compatible bucket cache.

    Attributes:
        name: Unique backend name (diagnostics only).
        bucket: Bucket name (required).
        region: Region name (required).
        profile: Credential profile from the shared AWS config, if any.
        prefix_key: Key prefix prepended to every object key.
        endpoint_url: Custom endpoint for MinIO/R2 (None for AWS).
    """

    name: str
    bucket: str
    region: str
    profile: Optional[str] = None
    prefix_key: str = ""
    endpoint_url: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.bucket:
            raise ValueError("bucket must be a non-empty string")
        if not self.region:
            raise ValueError("region must be a non-empty string")

    @property
    def kind(self) -> BackendKind:
        return BackendKind.OBJECT_STORE


BackendDescriptor = Union[FilesystemDescriptor, ObjectStoreDescriptor]


# =============================================================================
# CACHE SET
# =============================================================================
class CacheSet(Mapping[str, BackendDescriptor]):
    """
    Insertion-ordered, uniquely named mapping of backend name -> descriptor.

    Read-only after construction. Order carries no meaning for the router,
    which dispatches to every member concurrently.
    """

    __slots__ = ("_descriptors",)

    def __init__(self, descriptors: Iterable[BackendDescriptor] = ()) -> None:
        entries: dict[str, BackendDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.name in entries:
                raise ValueError(f"duplicate cache name {descriptor.name!r}")
            entries[descriptor.name] = descriptor
        self._descriptors = entries

    def __getitem__(self, name: str) -> BackendDescriptor:
        return self._descriptors[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._descriptors)

    def __len__(self) -> int:
        return len(self._descriptors)

    def without(self, name: str) -> CacheSet:
        """Copy of this set minus one member."""
        return CacheSet(d for n, d in self._descriptors.items() if n != name)

    def __repr__(self) -> str:
        return f"CacheSet({list(self._descriptors)!r})"


# =============================================================================
# ROUTER CONFIGURATION
# =============================================================================
@dataclass(frozen=True, slots=True)
class RouterConfig:
    """
    Fan-out policy.

    Attributes:
        put_policy: ANY (default) or ALL backends must store a write.
        timeout_seconds: Per-backend call timeout; None waits forever.
        primary: Name of the fast tier; enables the two-tier topology.
    """

    put_policy: PutPolicy = PutPolicy.ANY
    timeout_seconds: Optional[float] = None
    primary: Optional[str] = None

    def __post_init__(self) -> None:
        if self.timeout_seconds is not None and not (
            math.isfinite(self.timeout_seconds) and self.timeout_seconds > 0
        ):
            raise ValueError(
                f"timeout_seconds must be a finite number > 0, got {self.timeout_seconds}"
            )


# =============================================================================
# DEFAULTS
# =============================================================================
def default_cache_dir(
    environ: Optional[Mapping[str, str]] = None,
) -> Result[Path, ConfigurationError]:
    """``$XDG_CACHE_HOME``, else ``$HOME/.cache``."""
    env = os.environ if environ is None else environ
    xdg = env.get("XDG_CACHE_HOME")
    if xdg:
        return Ok(Path(xdg))
    home = env.get("HOME")
    if home:
        return Ok(Path(home) / ".cache")
    return Err(ConfigurationError.no_cache_dir())


# =============================================================================
# ROOT CONFIGURATION
# =============================================================================
_FS_KEYS = frozenset({"type", "cache_dir"})
_S3_KEYS = frozenset({"type", "bucket", "region", "profile", "prefix_key", "endpoint_url"})
_ROUTER_KEYS = frozenset({"put_policy", "timeout_seconds", "primary"})


@dataclass(frozen=True)
class DetCacheConfig:
    """Root configuration: the cache set plus router policy."""

    caches: CacheSet = field(default_factory=CacheSet)
    router: RouterConfig = field(default_factory=RouterConfig)

    @classmethod
    def default(
        cls,
        cache_dir: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> Result[DetCacheConfig, ConfigurationError]:
        """Single filesystem cache under the default root."""
        if cache_dir is None:
            root = default_cache_dir(environ)
            if root.is_err():
                return root
            cache_dir = root.unwrap()
        descriptor = FilesystemDescriptor(name=C.DEFAULT_CACHE_NAME, cache_dir=cache_dir)
        return Ok(cls(caches=CacheSet([descriptor])))

    @classmethod
    def load(
        cls,
        config_path: Optional[Path] = None,
        cache_dir: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> Result[DetCacheConfig, ConfigurationError]:
        """
        Resolve configuration the way the CLI does.

        An explicit path wins, then ``$DETCACHE_CONFIG``, then the default
        single-filesystem configuration. ``cache_dir`` replaces the default
        root for filesystem caches that do not set one.
        """
        if config_path is not None:
            return cls.from_file(config_path, cache_dir=cache_dir, environ=environ)
        return cls.from_env(cache_dir=cache_dir, environ=environ)

    @classmethod
    def from_env(
        cls,
        cache_dir: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> Result[DetCacheConfig, ConfigurationError]:
        """
        Load the file named by ``DETCACHE_CONFIG``, or fall back to defaults.
        """
        env = os.environ if environ is None else environ
        path = env.get(C.CONFIG_ENV_VAR)
        if path:
            return cls.from_file(Path(path), cache_dir=cache_dir, environ=env)
        return cls.default(cache_dir=cache_dir, environ=env)

    @classmethod
    def from_file(
        cls,
        path: Path,
        cache_dir: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> Result[DetCacheConfig, ConfigurationError]:
        """Parse a TOML configuration file."""
        try:
            with open(path, "rb") as fh:
                data = tomllib.load(fh)
        except OSError as e:
            return Err(ConfigurationError.unreadable(str(path), e))
        except tomllib.TOMLDecodeError as e:
            return Err(ConfigurationError.malformed(str(path), f"not valid TOML: {e}", cause=e))
        return cls.from_mapping(data, cache_dir=cache_dir, environ=environ)

    @classmethod
    def from_mapping(
        cls,
        data: Mapping[str, Any],
        cache_dir: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> Result[DetCacheConfig, ConfigurationError]:
        """
        Build configuration from an already-parsed document.

        Unknown keys are rejected so that typos fail at start-up instead of
        silently producing a different cache topology.
        """
        unknown = set(data) - {"caches", "router"}
        if unknown:
            return Err(ConfigurationError.malformed(
                "<root>", f"unknown sections {sorted(unknown)}",
            ))

        router_result = _parse_router(data.get("router", {}))
        if router_result.is_err():
            return router_result
        router = router_result.unwrap()

        caches_table = data.get("caches", {})
        if not isinstance(caches_table, Mapping):
            return Err(ConfigurationError.malformed("caches", "must be a table"))

        default_root: Optional[Path] = cache_dir
        descriptors: list[BackendDescriptor] = []
        for name, entry in caches_table.items():
            where = f"caches.{name}"
            if not isinstance(entry, Mapping):
                return Err(ConfigurationError.malformed(where, "must be a table"))

            kind_value = entry.get("type")
            if not isinstance(kind_value, str):
                return Err(ConfigurationError.malformed(where, "missing string field 'type'"))
            kind = BackendKind.parse(kind_value)
            if kind is None:
                return Err(ConfigurationError.malformed(
                    where, f"unknown cache type {kind_value!r}",
                ))

            if kind is BackendKind.FILESYSTEM and entry.get("cache_dir") is None and default_root is None:
                root = default_cache_dir(environ)
                if root.is_err():
                    return root
                default_root = root.unwrap()

            parsed = _parse_cache(name, kind, entry, default_root)
            if parsed.is_err():
                return parsed
            descriptors.append(parsed.unwrap())

        caches = CacheSet(descriptors)
        if router.primary is not None and router.primary not in caches:
            return Err(ConfigurationError.malformed(
                "router.primary", f"names unknown cache {router.primary!r}",
            ))

        return Ok(cls(caches=caches, router=router))


# =============================================================================
# PARSING HELPERS
# =============================================================================
def _parse_router(table: Any) -> Result[RouterConfig, ConfigurationError]:
    if not isinstance(table, Mapping):
        return Err(ConfigurationError.malformed("router", "must be a table"))

    unknown = set(table) - _ROUTER_KEYS
    if unknown:
        return Err(ConfigurationError.malformed("router", f"unknown keys {sorted(unknown)}"))

    policy_value = table.get("put_policy", PutPolicy.ANY.value)
    try:
        policy = PutPolicy(str(policy_value).lower())
    except ValueError:
        return Err(ConfigurationError.malformed(
            "router.put_policy", f"expected 'any' or 'all', got {policy_value!r}",
        ))

    timeout = table.get("timeout_seconds")
    if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, (int, float))):
        return Err(ConfigurationError.malformed("router.timeout_seconds", "must be a number"))

    primary = table.get("primary")
    if primary is not None and not isinstance(primary, str):
        return Err(ConfigurationError.malformed("router.primary", "must be a string"))

    try:
        return Ok(RouterConfig(
            put_policy=policy,
            timeout_seconds=float(timeout) if timeout is not None else None,
            primary=primary,
        ))
    except ValueError as e:
        return Err(ConfigurationError.malformed("router", str(e), cause=e))


def _optional_str(entry: Mapping[str, Any], key: str, where: str) -> Result[Optional[str], ConfigurationError]:
    value = entry.get(key)
    if value is None or isinstance(value, str):
        return Ok(value)
    return Err(ConfigurationError.malformed(f"{where}.{key}", "must be a string"))


def _parse_cache(
    name: str,
    kind: BackendKind,
    entry: Mapping[str, Any],
    default_root: Optional[Path],
) -> Result[BackendDescriptor, ConfigurationError]:
    where = f"caches.{name}"
    allowed = _FS_KEYS if kind is BackendKind.FILESYSTEM else _S3_KEYS
    unknown = set(entry) - allowed
    if unknown:
        return Err(ConfigurationError.malformed(
            where, f"unknown keys {sorted(unknown)} for type {kind.value!r}",
        ))

    fields: dict[str, Optional[str]] = {}
    for key in allowed - {"type"}:
        value = _optional_str(entry, key, where)
        if value.is_err():
            return value
        fields[key] = value.unwrap()

    if kind is BackendKind.FILESYSTEM:
        cache_dir = fields["cache_dir"]
        root = Path(cache_dir).expanduser() if cache_dir else default_root
        if root is None:
            return Err(ConfigurationError.no_cache_dir())
        return Ok(FilesystemDescriptor(name=name, cache_dir=root))

    for required in ("bucket", "region"):
        if not fields[required]:
            return Err(ConfigurationError.malformed(
                where, f"missing required field {required!r}",
            ))
    try:
        return Ok(ObjectStoreDescriptor(
            name=name,
            bucket=fields["bucket"] or "",
            region=fields["region"] or "",
            profile=fields["profile"],
            prefix_key=fields["prefix_key"] or "",
            endpoint_url=fields["endpoint_url"],
        ))
    except ValueError as e:
        return Err(ConfigurationError.malformed(where, str(e), cause=e))
