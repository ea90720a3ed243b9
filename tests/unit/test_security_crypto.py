import os

import pytest

from cryptkeep.core.exceptions import AuthenticationError
from cryptkeep.security.container import ContainerCodec, ContainerHeader, TAG_SIZE
from cryptkeep.security.crypto import CryptoEngine, KEY_SIZE, generate_key, generate_nonce


def _sealed_container(key, plaintext=b"attack at dawn" * 20):
    codec = ContainerCodec()
    nonce = generate_nonce()
    header = ContainerHeader(
        nonce=nonce,
        filename="orders",
        extension=".txt",
        plain_length=len(plaintext),
        cipher_length=len(plaintext) + TAG_SIZE,
        compressed=False,
    )
    sealed = CryptoEngine().seal(key, nonce, plaintext, codec.header_bytes(header))
    return codec.write(header, sealed)


def _open_container(key, blob):
    codec = ContainerCodec()
    header, sealed = codec.read(blob)
    return CryptoEngine().open(key, header.nonce, sealed, codec.header_bytes(header))


def test_seal_open_roundtrip():
    key = generate_key()
    nonce = generate_nonce()
    engine = CryptoEngine()

    sealed = engine.seal(key, nonce, b"hello world", b"aad")
    assert len(sealed) == len(b"hello world") + TAG_SIZE
    assert engine.open(key, nonce, sealed, b"aad") == b"hello world"


def test_open_with_wrong_key_fails():
    engine = CryptoEngine()
    nonce = generate_nonce()
    sealed = engine.seal(generate_key(), nonce, b"secret")

    with pytest.raises(AuthenticationError):
        engine.open(generate_key(), nonce, sealed)


def test_open_with_changed_associated_data_fails():
    key = generate_key()
    nonce = generate_nonce()
    engine = CryptoEngine()
    sealed = engine.seal(key, nonce, b"secret", b"header-v1")

    with pytest.raises(AuthenticationError):
        engine.open(key, nonce, sealed, b"header-v2")


def test_bad_key_or_nonce_size_rejected():
    engine = CryptoEngine()
    with pytest.raises(ValueError):
        engine.seal(b"\x00" * 16, generate_nonce(), b"x")
    with pytest.raises(ValueError):
        engine.seal(generate_key(), b"\x00" * 8, b"x")


def test_generated_material_sizes():
    assert len(generate_key()) == KEY_SIZE
    nonces = {generate_nonce() for _ in range(1000)}
    assert len(nonces) == 1000


def test_container_roundtrip():
    key = generate_key()
    blob = _sealed_container(key, b"payload")
    assert _open_container(key, blob) == b"payload"


@pytest.mark.parametrize("offset", [6, 11, 17], ids=["nonce-first", "nonce-mid", "nonce-last"])
def test_single_byte_tamper_in_nonce_fails(offset):
    key = generate_key()
    blob = bytearray(_sealed_container(key))
    blob[offset] ^= 0x01

    with pytest.raises(AuthenticationError):
        _open_container(key, bytes(blob))


@pytest.mark.parametrize("from_end", [1, TAG_SIZE, TAG_SIZE + 1, 40])
def test_single_byte_tamper_in_trailer_fails(from_end):
    key = generate_key()
    blob = bytearray(_sealed_container(key))
    blob[-from_end] ^= 0x80

    with pytest.raises(AuthenticationError):
        _open_container(key, bytes(blob))


def test_header_tamper_fails_authentication():
    key = generate_key()
    blob = bytearray(_sealed_container(key))
    # first character of the filename; still valid UTF-8 and same length
    blob[20] = ord("X")

    with pytest.raises(AuthenticationError):
        _open_container(key, bytes(blob))


def test_wrong_key_on_container_fails():
    blob = _sealed_container(generate_key())
    with pytest.raises(AuthenticationError):
        _open_container(os.urandom(KEY_SIZE), blob)
