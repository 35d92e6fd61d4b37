"""
Unit tests for upload_pipeline/utils/codec.py.

Tests verify:
- Chunked decode matches a one-shot decode across chunk boundaries
- Whitespace tolerance, including whitespace straddling chunk boundaries
- Peak memory stays below a full copy of the input
- DecodeError on malformed input
- Event loop yields during long decodes
- Parameter validation
"""

import asyncio
import base64
import tracemalloc

import pytest

from upload_pipeline.exceptions import DecodeError
from upload_pipeline.utils.codec import decode_base64, encode_base64


class TestDecodeBase64:
    """Tests for decode_base64."""

    @pytest.mark.asyncio
    async def test_decodes_simple_value(self):
        """Short input decodes in a single chunk."""
        assert await decode_base64("aGVsbG8=") == b"hello"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("size", [0, 1, 8191, 8192, 8193, 50_000])
    async def test_matches_one_shot_decode(self, size):
        """Chunk boundaries never corrupt the output."""
        data = bytes(range(256)) * (size // 256) + bytes(range(size % 256))
        encoded = base64.b64encode(data).decode()

        assert await decode_base64(encoded, chunk_size=1024) == data

    @pytest.mark.asyncio
    async def test_ignores_line_breaks(self):
        """MIME-style wrapped base64 decodes correctly."""
        encoded = base64.encodebytes(b"x" * 300).decode()
        assert "\n" in encoded

        assert await decode_base64(encoded, chunk_size=8) == b"x" * 300

    @pytest.mark.asyncio
    async def test_whitespace_across_chunk_boundaries(self):
        """Breaks that shift quanta across chunks still decode exactly."""
        data = bytes(range(256)) * 4
        encoded = base64.b64encode(data).decode()
        wrapped = "\n ".join(encoded[i : i + 3] for i in range(0, len(encoded), 3))

        assert await decode_base64(wrapped, chunk_size=4) == data

    @pytest.mark.asyncio
    async def test_input_is_not_copied_before_decoding(self):
        """Peak allocation stays under two copies of the encoded text.

        GIVEN: A 4MB base64 string without whitespace
        WHEN: It is decoded with default chunking
        THEN: Traced peak memory is below 2x the input length
        """
        encoded = encode_base64(b"v" * (3 * 1024 * 1024))

        tracemalloc.start()
        try:
            decoded = await decode_base64(encoded)
            _, peak = tracemalloc.get_traced_memory()
        finally:
            tracemalloc.stop()

        assert len(decoded) == 3 * 1024 * 1024
        assert peak < 2 * len(encoded)

    @pytest.mark.asyncio
    async def test_invalid_characters_raise_decode_error(self):
        """Non-base64 characters are rejected."""
        with pytest.raises(DecodeError, match="base64 decode error"):
            await decode_base64("aGVs*G8=")

    @pytest.mark.asyncio
    async def test_truncated_input_raises_decode_error(self):
        """Bad padding is rejected."""
        with pytest.raises(DecodeError):
            await decode_base64("aGVsbG8")

    @pytest.mark.asyncio
    async def test_yields_to_event_loop(self):
        """Other coroutines run while a large decode is in progress.

        GIVEN: A decode spanning many chunks
        WHEN: A concurrent coroutine counts loop iterations
        THEN: The counter advances before the decode returns
        """
        encoded = encode_base64(b"a" * 30_000)
        ticks = 0
        done = asyncio.Event()

        async def count_ticks():
            nonlocal ticks
            while not done.is_set():
                ticks += 1
                await asyncio.sleep(0)

        counter = asyncio.create_task(count_ticks())
        await decode_base64(encoded, chunk_size=4, yield_every=100)
        done.set()
        await counter

        assert ticks > 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("chunk_size", [0, -4, 6])
    async def test_rejects_invalid_chunk_size(self, chunk_size):
        """chunk_size must be a positive multiple of 4."""
        with pytest.raises(ValueError, match="chunk_size"):
            await decode_base64("aGVsbG8=", chunk_size=chunk_size)

    @pytest.mark.asyncio
    async def test_rejects_invalid_yield_every(self):
        with pytest.raises(ValueError, match="yield_every"):
            await decode_base64("aGVsbG8=", yield_every=0)


def test_encode_base64_is_ascii_text():
    assert encode_base64(b"hello") == "aGVsbG8="
