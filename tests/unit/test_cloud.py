"""Unit tests for the cloud hand-off seam."""

from pathlib import Path
from unittest import mock

import pytest

from cryptkeep.core.cloud import CloudAdapter, LocalFolderAdapter, fetch, publish
from cryptkeep.core.exceptions import IoError, NotFoundError
from cryptkeep.core.keeper import MetadataStore
from cryptkeep.database.connection import DatabaseConnection
from cryptkeep.security.container import ContainerCodec, ContainerHeader, TAG_SIZE
from cryptkeep.security.crypto import generate_nonce


@pytest.fixture
def store(tmp_path):
    keeper = MetadataStore(DatabaseConnection(tmp_path / "keeper.db"), crypt_root=tmp_path / "crypt")
    try:
        yield keeper
    finally:
        keeper.close()


@pytest.fixture
def remote(tmp_path):
    return LocalFolderAdapter(tmp_path / "remote")


def adopt(store, name):
    """Write a structurally valid container and let the keeper adopt it."""
    header = ContainerHeader(
        nonce=generate_nonce(),
        filename=Path(name).stem,
        extension=".bin",
        plain_length=3,
        cipher_length=3 + TAG_SIZE,
        compressed=False,
    )
    path = store.crypt_root / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(ContainerCodec().write(header, b"\x00" * header.cipher_length))
    return store.import_container(path)


def test_local_adapter_satisfies_protocol(remote):
    assert isinstance(remote, CloudAdapter)


def test_local_adapter_never_overwrites(remote, tmp_path):
    src = tmp_path / "a.crypt"
    src.write_bytes(b"one")
    first = remote.upload(src)
    src.write_bytes(b"two")
    second = remote.upload(src)

    assert first == "a.crypt"
    assert second == "a-2.crypt"
    assert remote.list() == ["a-2.crypt", "a.crypt"]
    assert remote.list("missing") == []


def test_publish_records_remote_id_and_keeps_local(store, remote):
    entry = adopt(store, "a.crypt")
    published = publish(store, remote, [entry])

    assert published[0].remote_id == "a.crypt"
    assert store.get(entry.crypt_path).remote_id == "a.crypt"
    assert Path(entry.crypt_path).exists()


def test_publish_without_retain_local_deletes_container(store, remote):
    entry = adopt(store, "b.crypt")
    publish(store, remote, [entry], retain_local=False)

    assert not Path(entry.crypt_path).exists()
    # tracked remotely, so not reported as missing
    listing = store.list()
    assert listing.missing == []
    assert store.get(entry.crypt_path).remote_id == "b.crypt"


def test_publish_wraps_upload_errors(store):
    entry = adopt(store, "c.crypt")
    adapter = mock.Mock()
    adapter.upload.side_effect = PermissionError("denied")

    with pytest.raises(IoError):
        publish(store, adapter, [entry])
    assert store.get(entry.crypt_path).remote_id is None


def test_fetch_restores_container(store, remote):
    entry = adopt(store, "d.crypt")
    original = Path(entry.crypt_path).read_bytes()
    publish(store, remote, [entry], retain_local=False)

    path = fetch(store, remote, store.get(entry.crypt_path))
    assert path.read_bytes() == original


def test_fetch_requires_remote_id(store, remote):
    entry = adopt(store, "e.crypt")
    with pytest.raises(NotFoundError):
        fetch(store, remote, entry)


def test_fetch_rejects_foreign_container(store, remote):
    mine = adopt(store, "f.crypt")
    other = adopt(store, "g.crypt")
    publish(store, remote, [other])
    mine.remote_id = other.remote_id
    os_path = Path(mine.crypt_path)
    os_path.unlink()

    with pytest.raises(IoError):
        fetch(store, remote, mine)
    assert not os_path.exists()
