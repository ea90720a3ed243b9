"""Security primitives for cryptkeep.

This package provides:
- the container wire format (header + sealed trailer)
- ChaCha20-Poly1305 sealing with per-payload random nonces
- zstd compression applied before sealing
- Argon2id derivation of the container key from a passphrase
"""

from .container import ContainerCodec, ContainerHeader, MAGIC, VERSION, NONCE_SIZE, TAG_SIZE
from .crypto import CryptoEngine, KEY_SIZE, generate_key, generate_nonce
from .compression import CompressionStage, MIN_LEVEL, MAX_LEVEL, DEFAULT_LEVEL
from .kdf import KdfParams, generate_salt, derive_key
from .keys import unlock, key_meta_path

__all__ = [
    "ContainerCodec",
    "ContainerHeader",
    "MAGIC",
    "VERSION",
    "NONCE_SIZE",
    "TAG_SIZE",
    "CryptoEngine",
    "KEY_SIZE",
    "generate_key",
    "generate_nonce",
    "CompressionStage",
    "MIN_LEVEL",
    "MAX_LEVEL",
    "DEFAULT_LEVEL",
    "KdfParams",
    "generate_salt",
    "derive_key",
    "unlock",
    "key_meta_path",
]
