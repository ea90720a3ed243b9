"""Authenticated encryption of a single payload.

ChaCha20-Poly1305 with a 256-bit key and a fresh 96-bit random nonce per
sealed payload. The caller passes the encoded container header as associated
data, so the tag covers the header as well as the ciphertext.
"""
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305

from cryptkeep.core.exceptions import AuthenticationError
from .container import NONCE_SIZE


KEY_SIZE = 32


def generate_key() -> bytes:
    return ChaCha20Poly1305.generate_key()


def generate_nonce() -> bytes:
    # never derived from content or a counter; the keeper ledger rejects repeats
    return os.urandom(NONCE_SIZE)


def _check(key: bytes, nonce: bytes) -> None:
    if len(key) != KEY_SIZE:
        raise ValueError(f"key must be {KEY_SIZE} bytes")
    if len(nonce) != NONCE_SIZE:
        raise ValueError(f"nonce must be {NONCE_SIZE} bytes")


class CryptoEngine:
    """Seal and open payloads; stateless apart from the algorithm choice."""

    def seal(self, key: bytes, nonce: bytes, plaintext: bytes, associated_data: bytes = None) -> bytes:
        _check(key, nonce)
        return ChaCha20Poly1305(key).encrypt(nonce, plaintext, associated_data)

    def open(self, key: bytes, nonce: bytes, ciphertext: bytes, associated_data: bytes = None) -> bytes:
        """Return the plaintext or raise AuthenticationError.

        Wrong key and tampered data are reported the same way.
        """
        _check(key, nonce)
        try:
            return ChaCha20Poly1305(key).decrypt(nonce, ciphertext, associated_data)
        except InvalidTag:
            raise AuthenticationError("authentication failed: wrong key or tampered container") from None
