"""
S3-Compatible Object-Storage Backend
====================================

Remote blob storage for cache values on AWS S3, MinIO, Cloudflare R2 and
other S3-compatible services.

Design Principles:
------------------
1. **Same Layout**: keys follow the shared path scheme under an optional prefix
2. **Whole Values**: one put_object per value, fully buffered (no multipart)
3. **No Retries**: the SDK is told not to retry; a failed call is reported once
4. **Result Monad**: No exceptions for control flow

Error Mapping:
--------------
| Response                          | Outcome              |
|-----------------------------------|----------------------|
| 200 on get_object                 | Ok(bytes)            |
| NoSuchKey / 404 / NotFound        | Ok(None) (miss)      |
| anything else (auth, network ...) | Err(BackendError)    |

Memory Model:
-------------
Values are held entirely in memory on both paths, so usable value size is
bounded by available memory and by S3's single-PUT object size limit.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, TYPE_CHECKING

import aioboto3
from botocore.config import Config
from botocore.exceptions import ClientError

from detcache.core.config import ObjectStoreDescriptor
from detcache.core.errors import BackendError
from detcache.core.types import BackendKind, ContentHash, Err, Ok, Result
from detcache.storage.paths import object_key
from detcache.storage.protocols import CacheBackend

if TYPE_CHECKING:
    from types_aiobotocore_s3 import S3Client

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

# Error codes S3-compatible services use for an absent key
NOT_FOUND_CODES = frozenset({"NoSuchKey", "404", "NotFound"})

CONNECT_TIMEOUT_SECONDS: int = 10
READ_TIMEOUT_SECONDS: int = 60


# =============================================================================
# METRICS COLLECTOR
# =============================================================================

@dataclass(slots=True)
class S3Metrics:
    """
    Nanosecond-precision transfer metrics for one bucket backend.
    """
    get_count: int = 0
    miss_count: int = 0
    put_count: int = 0

    bytes_uploaded: int = 0
    bytes_downloaded: int = 0

    put_latency_sum_ns: int = 0
    get_latency_sum_ns: int = 0

    error_count: int = 0

    def record_upload(self, size_bytes: int, latency_ns: int) -> None:
        self.put_count += 1
        self.bytes_uploaded += size_bytes
        self.put_latency_sum_ns += latency_ns

    def record_download(self, size_bytes: int, latency_ns: int) -> None:
        self.get_count += 1
        self.bytes_downloaded += size_bytes
        self.get_latency_sum_ns += latency_ns


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


# =============================================================================
# S3 BACKEND
# =============================================================================

class S3Backend(CacheBackend):
    """
    Cache backend storing each value as one S3 object.

    The client is opened lazily on first use and shared by every call on
    this backend; aiobotocore clients are safe for concurrent requests.

    Example:
        >>> backend = S3Backend("shared", bucket="build-cache", region="eu-west-1")
        >>> await backend.put(content_hash, b"...")
        >>> await backend.close()
    """

    __slots__ = (
        "_bucket",
        "_region",
        "_profile",
        "_prefix_key",
        "_endpoint_url",
        "_session",
        "_client_cm",
        "_client",
        "_client_lock",
        "_metrics",
    )

    def __init__(
        self,
        name: str,
        bucket: str,
        region: str,
        profile: Optional[str] = None,
        prefix_key: str = "",
        endpoint_url: Optional[str] = None,
        session: Any = None,
    ) -> None:
        """
        Args:
            name: Configured backend name.
            bucket: Bucket holding the cache objects.
            region: Bucket region.
            profile: Shared-credentials profile; None uses the default chain.
            prefix_key: Prefix prepended to every object key.
            endpoint_url: Custom endpoint for MinIO/R2.
            session: Pre-built aioboto3-compatible session (tests, embedding).
        """
        super().__init__(name)
        self._bucket = bucket
        self._region = region
        self._profile = profile
        self._prefix_key = prefix_key
        self._endpoint_url = endpoint_url
        self._session = session
        self._client_cm: Any = None
        self._client: Optional["S3Client"] = None
        self._client_lock = asyncio.Lock()
        self._metrics = S3Metrics()

    @classmethod
    def from_descriptor(
        cls,
        descriptor: ObjectStoreDescriptor,
        session: Any = None,
    ) -> S3Backend:
        return cls(
            name=descriptor.name,
            bucket=descriptor.bucket,
            region=descriptor.region,
            profile=descriptor.profile,
            prefix_key=descriptor.prefix_key,
            endpoint_url=descriptor.endpoint_url,
            session=session,
        )

    @property
    def kind(self) -> BackendKind:
        return BackendKind.OBJECT_STORE

    @property
    def bucket(self) -> str:
        return self._bucket

    @property
    def metrics(self) -> S3Metrics:
        return self._metrics

    def key_for(self, content_hash: ContentHash) -> str:
        """Object key for ``content_hash`` under this backend's prefix."""
        return object_key(self._prefix_key, content_hash)

    def _location(self, key: str) -> str:
        return f"s3://{self._bucket}/{key}"

    # -------------------------------------------------------------------------
    # CONNECTION MANAGEMENT
    # -------------------------------------------------------------------------

    async def _get_client(self) -> "S3Client":
        """Open the S3 client on first use."""
        async with self._client_lock:
            if self._client is None:
                if self._session is None:
                    self._session = aioboto3.Session(profile_name=self._profile)

                client_kwargs: Dict[str, Any] = {
                    "region_name": self._region,
                    "config": Config(
                        connect_timeout=CONNECT_TIMEOUT_SECONDS,
                        read_timeout=READ_TIMEOUT_SECONDS,
                        retries={"max_attempts": 0},
                    ),
                }
                if self._endpoint_url:
                    client_kwargs["endpoint_url"] = self._endpoint_url

                # Only an entered context is kept; close() must never exit one
                # whose __aenter__ failed (e.g. a malformed endpoint_url).
                client_cm = self._session.client("s3", **client_kwargs)
                client = await client_cm.__aenter__()
                self._client_cm = client_cm
                self._client = client
            return self._client

    async def close(self) -> None:
        """
        Close S3 client and release resources.

        Safe to call multiple times.
        """
        async with self._client_lock:
            if self._client_cm is not None:
                await self._client_cm.__aexit__(None, None, None)
            self._client_cm = None
            self._client = None

    # -------------------------------------------------------------------------
    # CORE OPERATIONS
    # -------------------------------------------------------------------------

    async def get(self, content_hash: ContentHash) -> Result[Optional[bytes], BackendError]:
        """
        Download the value for ``content_hash``.

        Returns:
            Ok(bytes) on hit, Ok(None) if the key does not exist,
            Err(BackendError) for any other failure.
        """
        key = self.key_for(content_hash)
        location = self._location(key)
        logger.debug(
            "Fetching from S3: bucket=%s, region=%s, key=%s",
            self._bucket, self._region, key,
        )

        start_ns = time.perf_counter_ns()
        try:
            client = await self._get_client()
            response = await client.get_object(Bucket=self._bucket, Key=key)
            async with response["Body"] as stream:
                data = await stream.read()
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                self._metrics.miss_count += 1
                logger.debug("S3 cache %s: miss for %s", self.name, location)
                return Ok(None)
            self._metrics.error_count += 1
            return Err(BackendError.remote_failed(self.name, "get_object", location, e))
        except Exception as e:
            # Network, credential and endpoint failures surface as assorted
            # botocore/aiohttp exception types.
            self._metrics.error_count += 1
            return Err(BackendError.remote_failed(self.name, "get_object", location, e))

        self._metrics.record_download(len(data), time.perf_counter_ns() - start_ns)
        logger.debug("S3 cache %s: retrieved %s (%d bytes)", self.name, location, len(data))
        return Ok(data)

    async def put(self, content_hash: ContentHash, value: bytes) -> Result[None, BackendError]:
        """Upload ``value`` in a single request."""
        key = self.key_for(content_hash)
        location = self._location(key)
        logger.debug(
            "Storing to S3: bucket=%s, region=%s, key=%s, value_length=%d",
            self._bucket, self._region, key, len(value),
        )

        start_ns = time.perf_counter_ns()
        try:
            client = await self._get_client()
            await client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=value,
                ContentType="application/octet-stream",
            )
        except Exception as e:
            self._metrics.error_count += 1
            return Err(BackendError.remote_failed(self.name, "put_object", location, e))

        self._metrics.record_upload(len(value), time.perf_counter_ns() - start_ns)
        logger.debug("S3 cache %s: stored %s", self.name, location)
        return Ok(None)

    def __repr__(self) -> str:
        return f"S3Backend(name={self.name!r}, bucket={self._bucket!r}, prefix={self._prefix_key!r})"


__all__ = [
    "S3Backend",
    "S3Metrics",
    "NOT_FOUND_CODES",
]
