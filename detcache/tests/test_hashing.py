"""
Unit Tests: Streaming Hashing
"""

import hashlib
import io

import pytest

from detcache.hashing import hash_chunks, hash_file, hash_stream, iter_chunks


class TestHashStream:
    """Chunked hashing equals one-shot hashing."""

    def test_larger_than_one_chunk(self):
        data = bytes(range(256)) * 1000
        assert hash_stream(io.BytesIO(data)).hex == hashlib.sha256(data).hexdigest()

    def test_small_chunks(self):
        data = b"abcdefghij"
        assert hash_stream(io.BytesIO(data), chunk_size=3).hex == hashlib.sha256(data).hexdigest()

    def test_empty_stream(self):
        assert hash_stream(io.BytesIO(b"")).hex == hashlib.sha256(b"").hexdigest()

    def test_hash_chunks(self):
        assert hash_chunks([b"ab", b"c"]) == hash_chunks([b"abc"])

    def test_iter_chunks_sizes(self):
        assert list(iter_chunks(io.BytesIO(b"abcde"), 2)) == [b"ab", b"cd", b"e"]

    def test_invalid_chunk_size(self):
        with pytest.raises(ValueError):
            list(iter_chunks(io.BytesIO(b"x"), 0))

    def test_hash_file(self, tmp_path):
        path = tmp_path / "blob"
        path.write_bytes(b"file contents")
        assert hash_file(path).hex == hashlib.sha256(b"file contents").hexdigest()
