"""
Hand-off point between the keeper and remote storage.

Adapters only ever see sealed container files: the core uploads what the
encryption pipeline wrote and expects container bytes back on download.
Provider specifics (auth, APIs) live in the adapter, not here.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Protocol, runtime_checkable
import logging
import os
import shutil

from .exceptions import IoError, NotFoundError
from .keeper import MetadataStore
from .models import CryptEntry, utcnow, CONTAINER_SUFFIX


logger = logging.getLogger(__name__)


@runtime_checkable
class CloudAdapter(Protocol):
    def upload(self, local_container_path: Path) -> str: ...

    def download(self, remote_identifier: str, destination: Path) -> Path: ...

    def list(self, remote_folder: str = "") -> List[str]: ...


class LocalFolderAdapter:
    """A directory standing in for remote storage, e.g. a desktop sync folder."""

    def __init__(self, root):
        self.root = Path(root).expanduser()
        self.root.mkdir(parents=True, exist_ok=True)

    def upload(self, local_container_path: Path) -> str:
        src = Path(local_container_path)
        dest = self.root / src.name
        n = 2
        while dest.exists():
            dest = self.root / f"{src.stem}-{n}{src.suffix}"
            n += 1
        shutil.copy2(src, dest)
        return dest.relative_to(self.root).as_posix()

    def download(self, remote_identifier: str, destination: Path) -> Path:
        src = self.root / remote_identifier
        if not src.is_file():
            raise NotFoundError(f"No remote object {remote_identifier!r}")
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src, destination)
        return destination

    def list(self, remote_folder: str = "") -> List[str]:
        base = self.root / remote_folder
        if not base.is_dir():
            return []
        return sorted(
            p.relative_to(self.root).as_posix()
            for p in base.rglob(f"*{CONTAINER_SUFFIX}")
            if p.is_file()
        )


def publish(
    keeper: MetadataStore,
    adapter: CloudAdapter,
    entries: Iterable[CryptEntry],
    retain_local: bool = True,
) -> List[CryptEntry]:
    """Upload containers and record their remote ids.

    With ``retain_local`` false the local container is deleted after a
    successful upload; the entry stays, pointing at the remote copy.
    """
    published = []
    for entry in entries:
        path = Path(entry.crypt_path)
        try:
            remote_id = adapter.upload(path)
        except OSError as e:
            raise IoError(f"Upload of {path} failed: {e}") from e
        entry.remote_id = remote_id
        entry.modified_at = utcnow()
        keeper.update(entry)
        if not retain_local:
            try:
                os.remove(path)
            except OSError as e:
                logger.warning("uploaded %s but could not remove local copy: %s", path, e)
        logger.info("published %s as %s", path, remote_id)
        published.append(entry)
    return published


def fetch(keeper: MetadataStore, adapter: CloudAdapter, entry: CryptEntry) -> Path:
    """Bring a published container back to its crypt_path."""
    if not entry.remote_id:
        raise NotFoundError(f"{entry.crypt_path} was never published")
    try:
        path = adapter.download(entry.remote_id, Path(entry.crypt_path))
    except OSError as e:
        raise IoError(f"Download of {entry.remote_id} failed: {e}") from e
    # the downloaded bytes must parse as the container we recorded
    header, _ = keeper.codec.read_header(path)
    if header.nonce != entry.nonce:
        path.unlink(missing_ok=True)
        raise IoError(f"{entry.remote_id} is not the container recorded for {entry.crypt_path}")
    return path
