"""
Keeper: the durable record of which containers exist and where they came from.

Backed by SQLite. Every mutating call runs as one ``BEGIN IMMEDIATE``
transaction under the connection's writer lock, so a record/remove is either
fully visible or not at all, and worker threads sealing in parallel never
interleave their writes. Reads go through per-thread connections and see the
last committed state.

Nonces are tracked in a ledger that ``purge`` leaves alone: a nonce handed out
once is refused forever by :meth:`MetadataStore.reserve_nonce`.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple
import json
import logging
import os
import sqlite3

from .exceptions import DuplicateEntryError, FormatError, IoError, KeeperCorruptError, NotFoundError
from .models import CryptEntry, KeeperListing, utcnow, CONTAINER_SUFFIX
from ..database.connection import DatabaseConnection
from ..database.models import CryptEntryModel, NonceLedgerModel
from ..security.container import ContainerCodec


logger = logging.getLogger(__name__)

EXPORT_FORMAT = "cryptkeep-export"
EXPORT_VERSION = 1


class MetadataStore:
    """Single source of truth for what is encrypted."""

    def __init__(
        self,
        db: DatabaseConnection,
        crypt_root: Optional[Path | str] = None,
        codec: Optional[ContainerCodec] = None,
        initialize: bool = True,
    ):
        self.db = db
        self.crypt_root = Path(crypt_root).resolve() if crypt_root else None
        self.codec = codec or ContainerCodec()
        self.entries = CryptEntryModel(db)
        self.ledger = NonceLedgerModel(db)
        # initialize=False lets an operator open an unreadable store just to purge it
        if initialize:
            self.db.initialize()

    @classmethod
    def from_config(cls, config) -> "MetadataStore":
        return cls(DatabaseConnection(config.database_path), crypt_root=config.crypt_root)

    def close(self):
        self.db.close()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _write(self):
        return self.db.get_transaction_context()

    def reserve_nonce(self, nonce: bytes) -> bool:
        """Claim a nonce for a new container; False if the store has seen it before."""
        try:
            with self._write() as cur:
                return self.ledger.reserve(cur, nonce)
        except sqlite3.DatabaseError as e:
            raise KeeperCorruptError(self.db.db_path, e) from e

    def record(self, entry: CryptEntry) -> CryptEntry:
        """Insert a new entry; DuplicateEntryError if crypt_path or nonce is already live."""
        try:
            with self._write() as cur:
                self.ledger.reserve(cur, entry.nonce)
                self.entries.insert(cur, entry)
        except sqlite3.IntegrityError as e:
            if self.entries.get(entry.crypt_path) is not None:
                raise DuplicateEntryError(f"Already tracking {entry.crypt_path}") from e
            raise DuplicateEntryError(
                f"Nonce of {entry.crypt_path} is already used by a live entry"
            ) from e
        except sqlite3.DatabaseError as e:
            raise KeeperCorruptError(self.db.db_path, e) from e
        logger.debug("recorded %s", entry.crypt_path)
        return entry

    def update(self, entry: CryptEntry, old_crypt_path: Optional[str] = None) -> CryptEntry:
        """Rewrite an existing entry (optionally one that moved on disk)."""
        try:
            with self._write() as cur:
                touched = self.entries.update(cur, entry, old_crypt_path)
        except sqlite3.IntegrityError as e:
            raise DuplicateEntryError(f"Already tracking {entry.crypt_path}") from e
        except sqlite3.DatabaseError as e:
            raise KeeperCorruptError(self.db.db_path, e) from e
        if not touched:
            raise NotFoundError(f"No entry for {old_crypt_path or entry.crypt_path}")
        return entry

    def remove(self, crypt_path) -> None:
        """Delete a single entry; the container file is left alone."""
        crypt_path = str(crypt_path)
        try:
            with self._write() as cur:
                touched = self.entries.delete(cur, crypt_path)
        except sqlite3.DatabaseError as e:
            raise KeeperCorruptError(self.db.db_path, e) from e
        if not touched:
            raise NotFoundError(f"No entry for {crypt_path}")
        logger.debug("removed %s", crypt_path)

    def purge(self) -> int:
        """Drop every entry. Container files on disk are not touched.

        An unreadable database is replaced by a fresh one, which is the
        recovery path KeeperCorruptError points at. Returns the number of
        entries dropped (0 when the store had to be recreated).
        """
        try:
            with self._write() as cur:
                cur.execute("DELETE FROM crypt_entries")
                dropped = cur.rowcount
        except (sqlite3.DatabaseError, KeeperCorruptError) as e:
            logger.warning("keeper at %s unreadable (%s); recreating", self.db.db_path, e)
            self._recreate()
            return 0
        logger.info("purged %d entries from %s", dropped, self.db.db_path)
        return dropped

    def _recreate(self):
        self.db.close()
        for suffix in ("", "-wal", "-shm", "-journal"):
            p = Path(str(self.db.db_path) + suffix)
            if p.exists():
                p.unlink()
        self.db.initialize()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, crypt_path) -> Optional[CryptEntry]:
        return self.entries.get(str(crypt_path))

    def all(self) -> List[CryptEntry]:
        return self.entries.list_all()

    def find(self, query: str) -> List[CryptEntry]:
        """Entries whose crypt_path or original_path matches ``query``.

        A query matches on exact path, path prefix, exact file name, the file
        name without its extension, or the display name. Name comparisons are
        case-insensitive; path comparisons follow the platform.
        """
        query = (query or "").strip()
        if not query:
            return []

        as_path = self._absolute_query(query)
        name = query.casefold()
        out = []
        for entry in self.all():
            if self._matches(entry, as_path, name):
                out.append(entry)
        return out

    def _absolute_query(self, query: str) -> Optional[str]:
        if os.path.isabs(query):
            return os.path.normcase(os.path.normpath(query))
        if self.crypt_root and (os.sep in query or (os.altsep and os.altsep in query)):
            return os.path.normcase(os.path.normpath(str(self.crypt_root / query)))
        return None

    @staticmethod
    def _matches(entry: CryptEntry, as_path: Optional[str], name: str) -> bool:
        for path in (entry.crypt_path, entry.original_path):
            if not path:
                continue
            if as_path is not None:
                norm = os.path.normcase(path)
                if norm == as_path or norm.startswith(as_path.rstrip(os.sep) + os.sep):
                    return True
            p = Path(path)
            if p.name.casefold() == name or p.stem.casefold() == name:
                return True
        return entry.display_name.casefold() == name

    def folders(self, entries: Optional[List[CryptEntry]] = None) -> List[str]:
        """Distinct virtual folders derived from container paths, sorted."""
        found = set()
        for entry in entries if entries is not None else self.all():
            parent = Path(entry.crypt_path).parent
            while True:
                if self.crypt_root is not None:
                    if parent == self.crypt_root or self.crypt_root not in parent.parents:
                        break
                elif parent == parent.parent:
                    break
                found.add(str(parent))
                parent = parent.parent
        return sorted(found)

    def list(self) -> KeeperListing:
        """All entries plus virtual folders; missing container files are reported, not fatal."""
        files = self.all()
        missing = [
            e for e in files
            if not os.path.exists(e.crypt_path) and not e.remote_id
        ]
        if missing:
            logger.info("%d keeper entries point at missing containers", len(missing))
        return KeeperListing(files=files, folders=self.folders(files), missing=missing)

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------

    def import_container(self, path) -> CryptEntry:
        """Adopt an existing container by reading its header; nothing is decrypted."""
        path = Path(path).expanduser().resolve()
        try:
            header, _ = self.codec.read_header(path)
            size = path.stat().st_size
        except FileNotFoundError as e:
            raise NotFoundError(f"Container not found: {path}") from e
        except OSError as e:
            raise IoError(f"Cannot read {path}: {e}") from e

        ts = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        entry = CryptEntry(
            crypt_path=path,
            display_name=header.display_name,
            nonce=header.nonce,
            original_path=None,
            content_digest=None,
            compressed=header.compressed,
            size_plain=header.plain_length,
            size_container=size,
            created_at=ts,
            modified_at=ts,
        )
        self.record(entry)
        logger.info("imported %s", path)
        return entry

    def import_tree(self, root) -> Tuple[List[CryptEntry], List[Tuple[str, str]]]:
        """Adopt every container under ``root``; returns (imported, [(path, reason)])."""
        imported, failed = [], []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames.sort()
            for name in sorted(filenames):
                if not name.endswith(CONTAINER_SUFFIX):
                    continue
                p = os.path.join(dirpath, name)
                if self.get(Path(p).resolve()) is not None:
                    continue
                try:
                    imported.append(self.import_container(p))
                except (FormatError, DuplicateEntryError, IoError, NotFoundError) as e:
                    logger.warning("could not import %s: %s", p, e)
                    failed.append((p, str(e)))
        return imported, failed

    def export(self, path) -> int:
        """Write every entry to a JSON document at ``path``; returns the entry count."""
        entries = self.all()
        doc = {
            "format": EXPORT_FORMAT,
            "version": EXPORT_VERSION,
            "exported_at": utcnow().isoformat(),
            "entries": [e.to_dict() for e in entries],
        }
        path = Path(path).expanduser()
        tmp = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(doc, f, ensure_ascii=False, indent=2)
            os.replace(tmp, path)
        except OSError as e:
            raise IoError(f"Cannot write export {path}: {e}") from e
        logger.info("exported %d entries to %s", len(entries), path)
        return len(entries)

    def restore(self, path) -> Tuple[int, int]:
        """Load an export; entries already tracked are skipped. Returns (restored, skipped)."""
        try:
            with open(Path(path).expanduser(), "r", encoding="utf-8") as f:
                doc = json.load(f)
        except FileNotFoundError as e:
            raise NotFoundError(f"Export not found: {path}") from e
        except (OSError, ValueError) as e:
            raise IoError(f"Cannot read export {path}: {e}") from e

        if doc.get("format") != EXPORT_FORMAT:
            raise FormatError(f"{path} is not a keeper export")

        restored = skipped = 0
        for raw in doc.get("entries", []):
            try:
                self.record(CryptEntry.from_dict(raw))
                restored += 1
            except DuplicateEntryError:
                skipped += 1
            except (KeyError, ValueError) as e:
                logger.error("malformed export entry %r: %s", raw.get("crypt_path"), e)
                skipped += 1
        return restored, skipped
