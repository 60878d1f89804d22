"""
Unit Tests: Filesystem Backend

Tests:
    - Round trip, miss and overwrite
    - Atomic write: a failed rename never exposes a partial value
    - Step-named errors
"""

import asyncio

import pytest

from detcache.core.errors import ErrorCode
from detcache.core.types import BackendKind
from detcache.storage.filesystem import FilesystemBackend


@pytest.fixture
def backend(tmp_path):
    return FilesystemBackend("local", tmp_path)


class TestFilesystemRoundTrip:
    """Tests for basic get/put."""

    @pytest.mark.asyncio
    async def test_miss_before_write(self, backend, key):
        result = await backend.get(key)
        assert result.is_ok()
        assert result.unwrap() is None

    @pytest.mark.asyncio
    async def test_put_then_get(self, backend, key, tmp_path):
        assert (await backend.put(key, b"hello world")).is_ok()

        assert (await backend.get(key)).unwrap() == b"hello world"
        expected = tmp_path / "detcache" / "kv-cache" / key.hex[:2] / key.hex[2:4] / key.hex[4:]
        assert backend.path_for(key) == expected
        assert expected.read_bytes() == b"hello world"

    @pytest.mark.asyncio
    async def test_overwrite(self, backend, key):
        await backend.put(key, b"first")
        await backend.put(key, b"second")
        assert (await backend.get(key)).unwrap() == b"second"

    @pytest.mark.asyncio
    async def test_empty_value(self, backend, key):
        await backend.put(key, b"")
        assert (await backend.get(key)).unwrap() == b""

    @pytest.mark.asyncio
    async def test_no_temp_files_left_on_success(self, backend, key):
        await backend.put(key, b"v")
        leftovers = list(backend.path_for(key).parent.glob("*.tmp-*"))
        assert leftovers == []

    @pytest.mark.asyncio
    async def test_concurrent_puts_last_rename_wins(self, backend, key):
        results = await asyncio.gather(
            backend.put(key, b"a" * 1000),
            backend.put(key, b"b" * 1000),
        )
        assert all(r.is_ok() for r in results)
        assert (await backend.get(key)).unwrap() in (b"a" * 1000, b"b" * 1000)

    def test_kind(self, backend):
        assert backend.kind is BackendKind.FILESYSTEM


class TestFilesystemAtomicity:
    """A failure between temp write and rename leaves the final path untouched."""

    @pytest.mark.asyncio
    async def test_failed_rename_leaves_no_value(self, backend, key, monkeypatch):
        def fail_replace(src, dst):
            raise OSError("rename refused")

        monkeypatch.setattr("detcache.storage.filesystem.os.replace", fail_replace)

        result = await backend.put(key, b"partial?")

        assert result.is_err()
        assert result.error.context["step"] == "rename"
        assert result.error.backend == "local"
        assert not backend.path_for(key).exists()
        assert (await backend.get(key)).unwrap() is None

    @pytest.mark.asyncio
    async def test_failed_rename_keeps_previous_value(self, backend, key, monkeypatch):
        await backend.put(key, b"old")

        def fail_replace(src, dst):
            raise OSError("rename refused")

        monkeypatch.setattr("detcache.storage.filesystem.os.replace", fail_replace)
        await backend.put(key, b"new")

        assert backend.path_for(key).read_bytes() == b"old"
        # The orphaned temp file is left where it was written.
        assert len(list(backend.path_for(key).parent.glob("*.tmp-*"))) == 1


class TestFilesystemErrors:
    """Hard failures are errors, distinct from misses."""

    @pytest.mark.asyncio
    async def test_unreadable_entry_is_error(self, backend, key):
        backend.path_for(key).mkdir(parents=True)

        result = await backend.get(key)

        assert result.is_err()
        assert result.error.code is ErrorCode.BACKEND_IO_FAILED
        assert result.error.context["step"] == "read"

    @pytest.mark.asyncio
    async def test_directory_creation_failure(self, tmp_path, key):
        blocker = tmp_path / "not-a-dir"
        blocker.write_bytes(b"")
        backend = FilesystemBackend("local", blocker)

        result = await backend.put(key, b"v")

        assert result.is_err()
        assert result.error.context["step"] == "create_dir"
        assert "local" in result.error.describe()

    @pytest.mark.asyncio
    async def test_missing_parent_of_root_is_a_miss(self, tmp_path, key):
        backend = FilesystemBackend("local", tmp_path / "does" / "not" / "exist")
        assert (await backend.get(key)).unwrap() is None
