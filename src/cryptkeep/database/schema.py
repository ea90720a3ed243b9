"""SQLite schema definitions for the keeper."""

SCHEMA_VERSION = 1

CREATE_TABLES = [
    # One row per live container, keyed by where the container sits on disk
    """
    CREATE TABLE IF NOT EXISTS crypt_entries (
        crypt_path TEXT PRIMARY KEY,
        original_path TEXT,
        display_name TEXT NOT NULL,
        nonce BLOB NOT NULL UNIQUE,
        content_digest TEXT,
        compressed INTEGER NOT NULL DEFAULT 1,
        size_plain INTEGER NOT NULL DEFAULT 0,
        size_container INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        modified_at TEXT NOT NULL,
        remote_id TEXT
    )
    """,
    # Every nonce ever issued or adopted under this store; survives purge
    """
    CREATE TABLE IF NOT EXISTS nonce_ledger (
        nonce BLOB PRIMARY KEY,
        issued_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY,
        applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
]

CREATE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_entries_original_path ON crypt_entries(original_path)",
    "CREATE INDEX IF NOT EXISTS idx_entries_display_name ON crypt_entries(display_name)",
    "CREATE INDEX IF NOT EXISTS idx_entries_modified_at ON crypt_entries(modified_at)",
]

TABLES = ("crypt_entries", "nonce_ledger", "schema_version")

_STAMP_VERSION = f"INSERT OR IGNORE INTO schema_version (version) VALUES ({SCHEMA_VERSION})"


def get_init_schema():
    """Ordered statements that create the keeper and stamp its version; safe to rerun."""
    return [*CREATE_TABLES, *CREATE_INDEXES, _STAMP_VERSION]


def get_drop_schema():
    # tests only; indexes go with their tables
    return [f"DROP TABLE IF EXISTS {table}" for table in TABLES]
