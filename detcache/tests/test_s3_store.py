"""
Unit Tests: S3 Backend

Runs against the in-process fake session from conftest, which raises
genuine botocore ClientErrors.
"""

import pytest

from detcache.core.config import ObjectStoreDescriptor
from detcache.core.errors import ErrorCode
from detcache.core.types import BackendKind
from detcache.storage import create_backend
from detcache.storage.s3_store import S3Backend

from detcache.tests.conftest import client_error


@pytest.fixture
def backend(fake_session):
    return S3Backend(
        "shared",
        bucket="build-cache",
        region="eu-west-1",
        prefix_key="ci",
        session=fake_session,
    )


class TestS3RoundTrip:
    """Tests for get/put against the fake client."""

    @pytest.mark.asyncio
    async def test_miss_is_not_an_error(self, backend, key):
        result = await backend.get(key)
        assert result.is_ok()
        assert result.unwrap() is None
        assert backend.metrics.miss_count == 1

    @pytest.mark.asyncio
    async def test_put_then_get(self, backend, fake_session, key):
        assert (await backend.put(key, b"payload")).is_ok()

        object_key = f"ci/{key.hex[:2]}/{key.hex[2:4]}/{key.hex[4:]}"
        assert fake_session.s3.objects[("build-cache", object_key)] == b"payload"
        assert (await backend.get(key)).unwrap() == b"payload"

        assert backend.metrics.put_count == 1
        assert backend.metrics.get_count == 1
        assert backend.metrics.bytes_uploaded == len(b"payload")

    @pytest.mark.asyncio
    async def test_no_prefix(self, fake_session, key):
        backend = S3Backend("shared", bucket="b", region="r", session=fake_session)
        await backend.put(key, b"x")
        assert ("b", backend.key_for(key)) in fake_session.s3.objects
        assert backend.key_for(key) == f"{key.hex[:2]}/{key.hex[2:4]}/{key.hex[4:]}"

    def test_kind(self, backend):
        assert backend.kind is BackendKind.OBJECT_STORE


class TestS3Errors:
    """Remote failures become BackendErrors carrying the backend name."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["NoSuchKey", "404", "NotFound"])
    async def test_not_found_codes(self, backend, fake_session, key, code):
        fake_session.s3.fail_with = client_error(code)
        assert (await backend.get(key)).unwrap() is None

    @pytest.mark.asyncio
    async def test_access_denied_on_get(self, backend, fake_session, key):
        fake_session.s3.fail_with = client_error("AccessDenied")

        result = await backend.get(key)

        assert result.is_err()
        assert result.error.code is ErrorCode.BACKEND_REMOTE_FAILED
        assert result.error.backend == "shared"
        assert "s3://build-cache/ci/" in result.error.message
        assert backend.metrics.error_count == 1

    @pytest.mark.asyncio
    async def test_network_failure_on_put(self, backend, fake_session, key):
        fake_session.s3.fail_with = ConnectionError("connection reset")

        result = await backend.put(key, b"v")

        assert result.is_err()
        assert "connection reset" in result.error.message

    @pytest.mark.asyncio
    async def test_put_failure_with_client_error(self, backend, fake_session, key):
        fake_session.s3.fail_with = client_error("NoSuchBucket", "PutObject")
        assert (await backend.put(key, b"v")).is_err()


class TestS3Client:
    """Tests for client lifecycle and configuration."""

    @pytest.mark.asyncio
    async def test_client_opened_once(self, backend, fake_session, key):
        await backend.get(key)
        await backend.put(key, b"v")
        await backend.get(key)
        assert fake_session.opened == 1

    @pytest.mark.asyncio
    async def test_client_configuration(self, fake_session, key):
        backend = S3Backend(
            "minio",
            bucket="b",
            region="us-east-1",
            endpoint_url="http://localhost:9000",
            session=fake_session,
        )
        await backend.get(key)

        service, kwargs = fake_session.client_requests[0]
        assert service == "s3"
        assert kwargs["region_name"] == "us-east-1"
        assert kwargs["endpoint_url"] == "http://localhost:9000"
        assert kwargs["config"].retries == {"max_attempts": 0}

    @pytest.mark.asyncio
    async def test_endpoint_omitted_for_aws(self, backend, fake_session, key):
        await backend.get(key)
        _, kwargs = fake_session.client_requests[0]
        assert "endpoint_url" not in kwargs

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, backend, fake_session, key):
        await backend.get(key)
        await backend.close()
        await backend.close()
        assert fake_session.closed == 1

    @pytest.mark.asyncio
    async def test_reopens_after_close(self, backend, fake_session, key):
        await backend.get(key)
        await backend.close()
        await backend.get(key)
        assert fake_session.opened == 2

    def test_from_descriptor(self, fake_session):
        descriptor = ObjectStoreDescriptor(
            name="shared", bucket="b", region="r", profile="ci", prefix_key="p",
        )
        backend = S3Backend.from_descriptor(descriptor, session=fake_session)
        assert backend.name == "shared"
        assert backend.bucket == "b"

    @pytest.mark.asyncio
    async def test_create_backend_uses_shared_session(self, fake_session, key):
        descriptor = ObjectStoreDescriptor(name="shared", bucket="b", region="r", prefix_key="p")

        backend = create_backend(descriptor, session=fake_session)
        await backend.put(key, b"v")

        assert isinstance(backend, S3Backend)
        assert backend.kind is BackendKind.OBJECT_STORE
        assert fake_session.s3.objects[("b", backend.key_for(key))] == b"v"


class TestS3ClientCreationFailure:
    """A client that cannot be created is an error, and close stays safe."""

    @pytest.mark.asyncio
    async def test_get_and_put_return_errors(self, backend, fake_session, key):
        fake_session.open_error = ValueError("Invalid endpoint: localhost:9000")

        get_result = await backend.get(key)
        put_result = await backend.put(key, b"v")

        assert get_result.error.code is ErrorCode.BACKEND_REMOTE_FAILED
        assert "Invalid endpoint" in put_result.error.message

    @pytest.mark.asyncio
    async def test_close_after_failed_creation(self, backend, fake_session, key):
        fake_session.open_error = ValueError("Invalid endpoint: localhost:9000")
        await backend.put(key, b"v")

        await backend.close()

        assert fake_session.opened == 0
        assert fake_session.closed == 0

    @pytest.mark.asyncio
    async def test_later_call_opens_a_fresh_client(self, backend, fake_session, key):
        fake_session.open_error = ValueError("Invalid endpoint: localhost:9000")
        await backend.get(key)
        fake_session.open_error = None

        assert (await backend.put(key, b"v")).is_ok()
        await backend.close()

        assert fake_session.opened == 1
        assert fake_session.closed == 1
