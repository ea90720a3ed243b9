"""Zstandard compression applied before sealing and after opening.

Level range is [MIN_LEVEL, MAX_LEVEL]; low is fast with larger output, high is
slow with smaller output. Levels are clamped by the configuration layer.
"""
import zstandard as zstd

from cryptkeep.core.exceptions import DecompressionError


MIN_LEVEL = -7
MAX_LEVEL = 22
DEFAULT_LEVEL = 3


class CompressionStage:
    def compress(self, data: bytes, level: int = DEFAULT_LEVEL) -> bytes:
        return zstd.ZstdCompressor(level=level).compress(data)

    def decompress(self, data: bytes, expected_length: int = None) -> bytes:
        """Inflate ``data``; a corrupt stream or a short result raises DecompressionError."""
        try:
            out = zstd.ZstdDecompressor().decompressobj().decompress(data)
        except zstd.ZstdError as e:
            raise DecompressionError(f"corrupt compressed stream: {e}") from e
        if expected_length is not None and len(out) != expected_length:
            raise DecompressionError(
                f"decompressed {len(out)} bytes, header promised {expected_length}"
            )
        return out
