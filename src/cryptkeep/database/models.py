"""ORM-style helpers for keeper tables."""

import sqlite3

from .connection import DatabaseConnection
from ..core.models import CryptEntry


ENTRY_COLUMNS = (
    "crypt_path",
    "original_path",
    "display_name",
    "nonce",
    "content_digest",
    "compressed",
    "size_plain",
    "size_container",
    "created_at",
    "modified_at",
    "remote_id",
)


def entry_to_row(entry):
    """Tuple of column values in ENTRY_COLUMNS order."""
    return (
        entry.crypt_path,
        entry.original_path,
        entry.display_name,
        sqlite3.Binary(entry.nonce),
        entry.content_digest,
        1 if entry.compressed else 0,
        entry.size_plain,
        entry.size_container,
        entry.created_at.isoformat(),
        entry.modified_at.isoformat(),
        entry.remote_id,
    )


def row_to_entry(row):
    """Convert a crypt_entries row dict to a CryptEntry."""
    data = dict(row)
    data["nonce"] = bytes(data["nonce"])
    return CryptEntry.from_dict(data)


class BaseModel:
    """Base class for DB models."""

    __slots__ = ("db",)

    def __init__(self, db: DatabaseConnection):
        """Initialize with a DatabaseConnection."""
        self.db = db


class CryptEntryModel(BaseModel):
    """DB model for crypt_entries.

    ``insert``/``update``/``delete`` take an open transaction cursor so the
    keeper can group a ledger write and an entry write atomically.
    """

    INSERT = (
        f"INSERT INTO crypt_entries ({', '.join(ENTRY_COLUMNS)}) "
        f"VALUES ({', '.join('?' * len(ENTRY_COLUMNS))})"
    )

    def insert(self, cursor, entry):
        cursor.execute(self.INSERT, entry_to_row(entry))

    def update(self, cursor, entry, old_crypt_path=None):
        """Rewrite every column of the entry; returns rows touched."""
        query = f"""
            UPDATE crypt_entries SET
                {', '.join(f'{c} = ?' for c in ENTRY_COLUMNS)}
            WHERE crypt_path = ?
        """
        cursor.execute(query, entry_to_row(entry) + (old_crypt_path or entry.crypt_path,))
        return cursor.rowcount

    def delete(self, cursor, crypt_path):
        cursor.execute("DELETE FROM crypt_entries WHERE crypt_path = ?", (crypt_path,))
        return cursor.rowcount

    def get(self, crypt_path):
        """Get entry by container path."""
        row = self.db.fetch_one("SELECT * FROM crypt_entries WHERE crypt_path = ?", (crypt_path,))
        return row_to_entry(row) if row else None

    def get_by_nonce(self, nonce):
        row = self.db.fetch_one(
            "SELECT * FROM crypt_entries WHERE nonce = ?", (sqlite3.Binary(nonce),)
        )
        return row_to_entry(row) if row else None

    def list_all(self):
        """List all entries, most recently modified first."""
        rows = self.db.fetch_all(
            "SELECT * FROM crypt_entries ORDER BY modified_at DESC, crypt_path"
        )
        return [row_to_entry(r) for r in rows]

    def count(self):
        row = self.db.fetch_one("SELECT COUNT(*) AS n FROM crypt_entries")
        return row["n"] if row else 0


class NonceLedgerModel(BaseModel):
    """DB model for the nonce ledger."""

    def reserve(self, cursor, nonce):
        """Insert a nonce; False if it was seen before."""
        cursor.execute(
            "INSERT OR IGNORE INTO nonce_ledger (nonce) VALUES (?)", (sqlite3.Binary(nonce),)
        )
        return cursor.rowcount == 1

    def contains(self, nonce):
        row = self.db.fetch_one(
            "SELECT 1 AS hit FROM nonce_ledger WHERE nonce = ?", (sqlite3.Binary(nonce),)
        )
        return row is not None

    def count(self):
        row = self.db.fetch_one("SELECT COUNT(*) AS n FROM nonce_ledger")
        return row["n"] if row else 0
