"""
Encryption and decryption pipelines.

Per file the work is independent (own buffers, own nonce), so a batch fans
out over a bounded thread pool while the traversal is still being produced.
Keeper writes are serialized inside :class:`MetadataStore`. A failure on one
file is logged and reported in the :class:`BatchResult`; the batch goes on.

Cancellation is cooperative: setting the ``cancel`` event stops new files
from being queued, files already handed to a worker run to completion.
"""

from __future__ import annotations

from collections import deque
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional, Union
import logging
import os
import threading

from .chooser import Chooser, DecryptResolver
from .config import CryptContext
from .exceptions import (
    CryptError,
    FormatError,
    IntegrityCheckFailedError,
    IoError,
    KeeperCorruptError,
    NotFoundError,
)
from .hashing import calculate_sha256_bytes
from .keeper import MetadataStore
from .models import (
    Aborted,
    BatchResult,
    CandidateKind,
    CryptEntry,
    FileOutcome,
    OutcomeStatus,
    ResolvedTarget,
    TraversalItem,
    CONTAINER_SUFFIX,
    utcnow,
)
from .traversal import TraversalEngine
from ..security.compression import CompressionStage
from ..security.container import ContainerCodec, ContainerHeader, TAG_SIZE
from ..security.crypto import CryptoEngine, generate_nonce
from ..security.keys import key_meta_path


logger = logging.getLogger(__name__)

DECRYPTED_TAG = "decrypted"
NONCE_ATTEMPTS = 8


def collision_candidates(path: Path, tag: str) -> Iterator[Path]:
    """``path``, then ``stem-tag.ext``, then ``stem-tag-2.ext``, ``stem-tag-3.ext`` ..."""
    yield path
    stem, ext = _split_name(path.name)
    yield path.with_name(f"{stem}-{tag}{ext}")
    n = 2
    while True:
        yield path.with_name(f"{stem}-{tag}-{n}{ext}")
        n += 1


def _split_name(name: str) -> tuple[str, str]:
    p = Path(name)
    return p.stem, p.suffix


def _keeper_files(database_path) -> list[str]:
    db = str(database_path)
    return [db, db + "-wal", db + "-shm", db + "-journal", str(key_meta_path(database_path))]


def write_exclusive(path: Path, data: bytes, tag: str, skip: Callable[[Path], bool] = None) -> Path:
    """Write ``data`` to the first free name derived from ``path``; never overwrites."""
    path.parent.mkdir(parents=True, exist_ok=True)
    for candidate in collision_candidates(path, tag):
        if skip is not None and skip(candidate):
            continue
        try:
            f = open(candidate, "xb")
        except FileExistsError:
            continue
        try:
            with f:
                f.write(data)
        except BaseException:
            # a half written file is worse than none
            candidate.unlink(missing_ok=True)
            raise
        return candidate
    raise AssertionError("unreachable")


class _BatchRunner:
    """Shared fan-out over a bounded worker pool with per-item failure capture."""

    def __init__(self, context: CryptContext, keeper: MetadataStore):
        self.context = context
        self.config = context.config
        self.keeper = keeper
        self.codec = ContainerCodec()
        self.engine = CryptoEngine()
        self.compression = CompressionStage()

    def _guarded(self, label: str, work: Callable[[], FileOutcome]) -> FileOutcome:
        try:
            return work()
        except KeeperCorruptError:
            # not a per-file problem; the whole batch stops
            raise
        except CryptError as e:
            logger.error("%s: %s failed: %s", label, e.kind, e)
            return FileOutcome(path=label, status=OutcomeStatus.FAILED, error=str(e), error_kind=e.kind)
        except OSError as e:
            logger.error("%s: io failed: %s", label, e)
            return FileOutcome(path=label, status=OutcomeStatus.FAILED, error=str(e), error_kind=IoError.kind)

    def _run(self, jobs: Iterable[tuple[str, Callable[[], FileOutcome]]], cancel: Optional[threading.Event]) -> BatchResult:
        result = BatchResult()
        workers = self.config.workers
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="cryptkeep") as pool:
            pending = deque()
            for label, work in jobs:
                if cancel is not None and cancel.is_set():
                    result.cancelled = True
                    logger.info("cancel requested; not queuing further files")
                    break
                pending.append(pool.submit(self._guarded, label, work))
                # bounded backlog keeps traversal lazy and cancellation prompt
                while len(pending) >= workers * 2:
                    result.outcomes.append(pending.popleft().result())
            while pending:
                result.outcomes.append(pending.popleft().result())
        logger.info("batch done: %d ok, %d failed", len(result.succeeded), len(result.failed))
        return result


class EncryptionPipeline(_BatchRunner):
    """compress -> seal -> write container -> record entry."""

    def __init__(self, context: CryptContext, keeper: MetadataStore, traversal: Optional[TraversalEngine] = None):
        super().__init__(context, keeper)
        self.traversal = traversal or TraversalEngine(
            exclude=[self.config.crypt_root, *_keeper_files(self.config.database_path)]
        )

    def _fresh_nonce(self) -> bytes:
        for _ in range(NONCE_ATTEMPTS):
            nonce = generate_nonce()
            if self.keeper.reserve_nonce(nonce):
                return nonce
            logger.warning("random nonce already issued by this store, drawing again")
        raise CryptError("could not obtain an unused nonce")

    def encrypt_file(self, path, relative: Optional[Path] = None, output: Optional[str] = None) -> CryptEntry:
        """Encrypt one file into the crypt root and record it. Raises on failure."""
        src = Path(path).expanduser().resolve()
        if src.name.endswith(CONTAINER_SUFFIX):
            raise FormatError(f"{src} is already a container")
        try:
            data = src.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError(f"Source file not found: {src}") from e
        except OSError as e:
            raise IoError(f"Cannot read {src}: {e}") from e

        digest = calculate_sha256_bytes(data)
        filename, extension = _split_name(src.name)

        if self.config.compress:
            payload = self.compression.compress(data, self.config.compression_level)
        else:
            payload = data

        nonce = self._fresh_nonce()
        header = ContainerHeader(
            nonce=nonce,
            filename=filename,
            extension=extension,
            plain_length=len(data),
            cipher_length=len(payload) + TAG_SIZE,
            compressed=self.config.compress,
        )
        sealed = self.engine.seal(self.context.key, nonce, payload, self.codec.header_bytes(header))
        blob = self.codec.write(header, sealed)

        target_dir = self.config.crypt_root
        if output:
            target_dir = target_dir / output
        rel_parent = (relative or Path(src.name)).parent
        target_dir = target_dir / rel_parent
        tag = extension.lstrip(".") or "file"

        try:
            crypt_path = write_exclusive(
                target_dir / f"{filename}{CONTAINER_SUFFIX}",
                blob,
                tag,
                skip=lambda p: self.keeper.get(p) is not None,
            )
        except OSError as e:
            raise IoError(f"Cannot write container for {src}: {e}") from e

        entry = CryptEntry(
            crypt_path=crypt_path,
            display_name=header.display_name,
            nonce=nonce,
            original_path=src,
            content_digest=digest,
            compressed=header.compressed,
            size_plain=len(data),
            size_container=len(blob),
        )
        try:
            self.keeper.record(entry)
        except BaseException:
            crypt_path.unlink(missing_ok=True)
            raise
        logger.info("encrypted %s -> %s", src, crypt_path)
        return entry

    def encrypt_path(self, path, output: Optional[str] = None, cancel: Optional[threading.Event] = None) -> BatchResult:
        """Encrypt a file or every eligible file under a directory."""
        items = self.traversal.walk(path, self.config.ignore, self.config.include_hidden)
        return self._run(self._jobs(items, output), cancel)

    def _jobs(self, items: Iterable[TraversalItem], output):
        for item in items:
            yield str(item.path), self._job(item, output)

    def _job(self, item: TraversalItem, output):
        def work():
            entry = self.encrypt_file(item.path, relative=item.relative, output=output)
            return FileOutcome(
                path=str(item.path),
                status=OutcomeStatus.OK,
                entry=entry,
                output_path=entry.crypt_path,
            )
        return work


class DecryptionPipeline(_BatchRunner):
    """read container -> open -> decompress -> collision-safe write -> update keeper."""

    def __init__(self, context: CryptContext, keeper: MetadataStore, resolver: Optional[DecryptResolver] = None):
        super().__init__(context, keeper)
        self.resolver = resolver or DecryptResolver(keeper)

    def open_container(self, entry: CryptEntry) -> bytes:
        """Authenticate and recover the plaintext of one container."""
        try:
            data = Path(entry.crypt_path).read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError(f"Container missing on disk: {entry.crypt_path}") from e
        except OSError as e:
            raise IoError(f"Cannot read {entry.crypt_path}: {e}") from e

        header, sealed = self.codec.read(data)
        payload = self.engine.open(self.context.key, header.nonce, sealed, self.codec.header_bytes(header))
        # authentic, but possibly another container moved into this path
        if header.nonce != entry.nonce:
            raise FormatError(f"{entry.crypt_path} is not the container the keeper recorded")

        if header.compressed:
            plain = self.compression.decompress(payload, header.plain_length)
        else:
            plain = payload
            if len(plain) != header.plain_length:
                raise IntegrityCheckFailedError(
                    f"{entry.crypt_path}: {len(plain)} bytes, header promised {header.plain_length}"
                )

        digest = calculate_sha256_bytes(plain)
        if entry.content_digest and digest != entry.content_digest:
            raise IntegrityCheckFailedError(
                f"digest mismatch for {entry.crypt_path}: keeper {entry.content_digest}, got {digest}"
            )
        return plain

    def _destination(self, entry: CryptEntry, output: Optional[str]) -> Path:
        if output:
            out = Path(output).expanduser()
            if out.is_dir() or str(output).endswith(("/", os.sep)):
                return out / entry.display_name
            return out
        if entry.original_path:
            return Path(entry.original_path)
        return self.config.decrypted_root / entry.display_name

    def decrypt_entry(self, entry: CryptEntry, output: Optional[str] = None) -> Path:
        """Decrypt one entry; raises the specific CryptError kind on failure."""
        plain = self.open_container(entry)
        try:
            written = write_exclusive(self._destination(entry, output), plain, DECRYPTED_TAG)
        except OSError as e:
            raise IoError(f"Cannot write decrypted {entry.display_name}: {e}") from e

        if self.config.retain_containers:
            # keep the user's original location; collisions only rename the copy
            if entry.original_path is None:
                entry.original_path = str(written)
            entry.modified_at = utcnow()
            if entry.content_digest is None:
                entry.content_digest = calculate_sha256_bytes(plain)
            self.keeper.update(entry)
        else:
            try:
                os.remove(entry.crypt_path)
            except OSError as e:
                logger.warning("decrypted %s but could not delete container: %s", entry.crypt_path, e)
            self.keeper.remove(entry.crypt_path)
        logger.info("decrypted %s -> %s", entry.crypt_path, written)
        return written

    def decrypt_target(
        self,
        target: ResolvedTarget,
        output: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> BatchResult:
        jobs = ((e.crypt_path, self._job(e, output)) for e in target.entries)
        return self._run(jobs, cancel)

    def _job(self, entry: CryptEntry, output):
        def work():
            written = self.decrypt_entry(entry, output)
            return FileOutcome(
                path=entry.crypt_path,
                status=OutcomeStatus.OK,
                entry=entry,
                output_path=str(written),
            )
        return work

    def decrypt(
        self,
        query: str,
        choose: Optional[Chooser] = None,
        output: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Union[BatchResult, Aborted]:
        """Resolve ``query`` through the chooser and decrypt what it names.

        Returns ``Aborted`` untouched when the user picks 0; no file is read.
        A single file raises its specific CryptError; a folder is a batch.
        """
        target = self.resolver.resolve(query, choose)
        if isinstance(target, Aborted):
            logger.info("decrypt of %r aborted by user", query)
            return target
        if target.kind is CandidateKind.FILE:
            outcome = self._job(target.entries[0], output)()
            return BatchResult(outcomes=[outcome])
        return self.decrypt_target(target, output=output, cancel=cancel)
