"""Unit tests for the zstd compression stage."""

import os

import pytest

from cryptkeep.core.exceptions import DecompressionError
from cryptkeep.security.compression import CompressionStage, MIN_LEVEL, MAX_LEVEL, DEFAULT_LEVEL


@pytest.mark.parametrize("level", [MIN_LEVEL, 1, DEFAULT_LEVEL, 9, MAX_LEVEL])
def test_roundtrip_across_levels(level):
    stage = CompressionStage()
    data = b"the quick brown fox " * 500 + os.urandom(512)

    packed = stage.compress(data, level)
    assert stage.decompress(packed, len(data)) == data


def test_compressible_input_shrinks():
    stage = CompressionStage()
    data = b"a" * 100_000
    assert len(stage.compress(data)) < len(data) // 10


def test_empty_input():
    stage = CompressionStage()
    assert stage.decompress(stage.compress(b""), 0) == b""


def test_garbage_raises_decompression_error():
    with pytest.raises(DecompressionError):
        CompressionStage().decompress(b"definitely not a zstd frame")


def test_length_mismatch_raises_decompression_error():
    stage = CompressionStage()
    packed = stage.compress(b"x" * 1000)

    with pytest.raises(DecompressionError, match="promised"):
        stage.decompress(packed, 999)


def test_truncated_frame_is_caught():
    stage = CompressionStage()
    data = os.urandom(4096)
    packed = stage.compress(data)

    with pytest.raises(DecompressionError):
        stage.decompress(packed[: len(packed) // 2], len(data))


def test_expected_length_is_optional():
    stage = CompressionStage()
    assert stage.decompress(stage.compress(b"abc")) == b"abc"
