"""Self-describing container format for one encrypted file.

Layout (binary, all big-endian):
- 4 bytes: magic b'CRPT'
- 1 byte: version (1)
- 1 byte: flags (bit 0 = payload compressed, other bits reserved, must be 0)
- 12 bytes: nonce
- 2 bytes: len_filename (unsigned short), then UTF-8 filename
- 2 bytes: len_extension (unsigned short), then UTF-8 extension
- 8 bytes: plaintext length after decompression
- 8 bytes: ciphertext length (including the 16-byte tag)

Trailer: ciphertext + tag, exactly ``ciphertext length`` bytes.

Everything up to the trailer is bound as associated data when sealing, so a
header edit fails authentication. Length fields are checked against the buffer
before any decryption is attempted.
"""
from __future__ import annotations

import struct
from dataclasses import dataclass
from pathlib import Path

from cryptkeep.core.exceptions import FormatError


MAGIC = b"CRPT"
VERSION = 1
NONCE_SIZE = 12
TAG_SIZE = 16

FLAG_COMPRESSED = 0x01
KNOWN_FLAGS = FLAG_COMPRESSED

_PREFIX = struct.Struct(">4sBB12s")
_SHORT = struct.Struct(">H")
_LENGTHS = struct.Struct(">QQ")

# smallest possible header: empty filename and extension
MIN_HEADER_SIZE = _PREFIX.size + 2 * _SHORT.size + _LENGTHS.size


@dataclass(frozen=True)
class ContainerHeader:
    nonce: bytes
    filename: str
    extension: str
    plain_length: int
    cipher_length: int
    compressed: bool = True

    @property
    def display_name(self) -> str:
        return f"{self.filename}{self.extension}"

    @property
    def flags(self) -> int:
        return FLAG_COMPRESSED if self.compressed else 0


class ContainerCodec:
    """Serialize and parse containers."""

    def header_bytes(self, header: ContainerHeader) -> bytes:
        if len(header.nonce) != NONCE_SIZE:
            raise ValueError(f"nonce must be {NONCE_SIZE} bytes")
        name = header.filename.encode("utf-8")
        ext = header.extension.encode("utf-8")
        if len(name) > 0xFFFF or len(ext) > 0xFFFF:
            raise ValueError("filename or extension too long for container header")

        out = bytearray()
        out += _PREFIX.pack(MAGIC, VERSION, header.flags, header.nonce)
        out += _SHORT.pack(len(name))
        out += name
        out += _SHORT.pack(len(ext))
        out += ext
        out += _LENGTHS.pack(header.plain_length, header.cipher_length)
        return bytes(out)

    def write(self, header: ContainerHeader, ciphertext: bytes) -> bytes:
        if header.cipher_length != len(ciphertext):
            raise ValueError(
                f"header says {header.cipher_length} ciphertext bytes, got {len(ciphertext)}"
            )
        return self.header_bytes(header) + ciphertext

    def read(self, data: bytes) -> tuple[ContainerHeader, bytes]:
        header, offset = self._parse_header(data)
        remaining = len(data) - offset
        if header.cipher_length != remaining:
            raise FormatError(
                f"ciphertext length {header.cipher_length} does not match remaining {remaining} bytes"
            )
        return header, bytes(data[offset:])

    def read_header(self, path) -> tuple[ContainerHeader, int]:
        """Parse just the header of a container file.

        Returns the header and the header size. The trailer length is still
        checked against the file size so truncated files are rejected.
        """
        path = Path(path)
        size = path.stat().st_size
        with open(path, "rb") as f:
            head = f.read(MIN_HEADER_SIZE)
            if len(head) < MIN_HEADER_SIZE:
                raise FormatError("container too short")
            # filename and extension lengths decide how much more to read
            (name_len,) = _SHORT.unpack_from(head, _PREFIX.size)
            f.seek(0)
            head = f.read(MIN_HEADER_SIZE + name_len + 0xFFFF)
        header, offset = self._parse_header(head)
        if header.cipher_length != size - offset:
            raise FormatError(
                f"ciphertext length {header.cipher_length} does not match remaining {size - offset} bytes"
            )
        return header, offset

    def _parse_header(self, data: bytes) -> tuple[ContainerHeader, int]:
        if len(data) < MIN_HEADER_SIZE:
            raise FormatError("container too short")

        magic, version, flags, nonce = _PREFIX.unpack_from(data, 0)
        if magic != MAGIC:
            raise FormatError("not a container (magic mismatch)")
        if version != VERSION:
            raise FormatError(f"unsupported container version {version}")
        if flags & ~KNOWN_FLAGS:
            raise FormatError(f"unknown flag bits set: {flags:#04x}")
        offset = _PREFIX.size

        name, offset = self._read_string(data, offset, "filename")
        ext, offset = self._read_string(data, offset, "extension")

        if len(data) - offset < _LENGTHS.size:
            raise FormatError("truncated header lengths")
        plain_length, cipher_length = _LENGTHS.unpack_from(data, offset)
        offset += _LENGTHS.size

        if cipher_length < TAG_SIZE:
            raise FormatError("ciphertext shorter than authentication tag")

        header = ContainerHeader(
            nonce=nonce,
            filename=name,
            extension=ext,
            plain_length=plain_length,
            cipher_length=cipher_length,
            compressed=bool(flags & FLAG_COMPRESSED),
        )
        return header, offset

    @staticmethod
    def _read_string(data: bytes, offset: int, label: str) -> tuple[str, int]:
        if len(data) - offset < _SHORT.size:
            raise FormatError(f"truncated {label} length")
        (length,) = _SHORT.unpack_from(data, offset)
        offset += _SHORT.size
        if len(data) - offset < length:
            raise FormatError(f"{label} length {length} overruns container")
        raw = bytes(data[offset:offset + length])
        try:
            value = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise FormatError(f"{label} is not valid UTF-8") from e
        return value, offset + length
