"""
Shared fixtures: content keys, a fresh metrics registry, and an in-process
stand-in for an aioboto3 session that raises real botocore errors.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import pytest
from botocore.exceptions import ClientError

from detcache.core.types import ContentHash
from detcache.observability.metrics import MetricsCollector


# =============================================================================
# FAKE AIOBOTO3 SESSION
# =============================================================================
def client_error(code: str, operation: str = "GetObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeBody:
    """Streaming body as returned in get_object's response."""

    def __init__(self, data: bytes) -> None:
        self._data = data

    async def __aenter__(self) -> FakeBody:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None

    async def read(self) -> bytes:
        return self._data


class FakeS3Client:
    """Dict-backed S3 client; ``fail_with`` makes every call raise."""

    def __init__(self) -> None:
        self.objects: Dict[Tuple[str, str], bytes] = {}
        self.calls: List[Tuple[str, str, str]] = []
        self.fail_with: Optional[BaseException] = None

    async def get_object(self, Bucket: str, Key: str) -> Dict[str, Any]:
        self.calls.append(("get_object", Bucket, Key))
        if self.fail_with is not None:
            raise self.fail_with
        if (Bucket, Key) not in self.objects:
            raise client_error("NoSuchKey")
        return {"Body": FakeBody(self.objects[(Bucket, Key)])}

    async def put_object(
        self,
        Bucket: str,
        Key: str,
        Body: bytes,
        ContentType: Optional[str] = None,
    ) -> Dict[str, Any]:
        self.calls.append(("put_object", Bucket, Key))
        if self.fail_with is not None:
            raise self.fail_with
        self.objects[(Bucket, Key)] = bytes(Body)
        return {"ETag": '"fake"'}


class _FakeClientContext:
    """Like aiobotocore's creator context, exiting it unentered raises."""

    def __init__(self, session: FakeSession) -> None:
        self._session = session
        self._entered = False

    async def __aenter__(self) -> FakeS3Client:
        if self._session.open_error is not None:
            raise self._session.open_error
        self._entered = True
        self._session.opened += 1
        return self._session.s3

    async def __aexit__(self, *exc: Any) -> None:
        if not self._entered:
            raise AttributeError("'NoneType' object has no attribute '__aexit__'")
        self._session.closed += 1


class FakeSession:
    """
    Records how clients were requested and how often they were opened.

    ``open_error`` makes client creation fail, as botocore does for a
    malformed endpoint_url.
    """

    def __init__(self) -> None:
        self.s3 = FakeS3Client()
        self.client_requests: List[Tuple[str, Dict[str, Any]]] = []
        self.opened = 0
        self.closed = 0
        self.open_error: Optional[BaseException] = None

    def client(self, service_name: str, **kwargs: Any) -> _FakeClientContext:
        self.client_requests.append((service_name, kwargs))
        return _FakeClientContext(self)


# =============================================================================
# FIXTURES
# =============================================================================
@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def metrics() -> MetricsCollector:
    """Isolated registry so counts do not leak between tests."""
    return MetricsCollector()


@pytest.fixture
def key() -> ContentHash:
    return ContentHash.compute(b"hello world")


@pytest.fixture
def other_key() -> ContentHash:
    return ContentHash.compute(b"something else")


@pytest.fixture(autouse=True)
def restore_root_logger():
    """The CLI reconfigures the root logger; put it back afterwards."""
    root = logging.getLogger()
    level = root.level
    handlers = list(root.handlers)
    yield
    root.setLevel(level)
    root.handlers[:] = handlers
