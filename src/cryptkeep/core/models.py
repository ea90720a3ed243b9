"""
Base data models for keeper entries, traversal and decrypt resolution
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional, List, Dict, Any, FrozenSet
import os


CONTAINER_SUFFIX = ".crypt"
HIDDEN_MARKER = "."


def utcnow():
    return datetime.now(timezone.utc)


def _parse_ts(value):
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


class CryptEntry:
    """One produced container and the original file it came from."""

    __slots__ = (
        "original_path",
        "crypt_path",
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

    def __init__(
        self,
        crypt_path,
        display_name,
        nonce,
        original_path=None,
        content_digest=None,
        compressed=True,
        size_plain=0,
        size_container=0,
        created_at=None,
        modified_at=None,
        remote_id=None,
    ):
        self.crypt_path = str(crypt_path)
        self.original_path = str(original_path) if original_path is not None else None
        self.display_name = display_name
        self.nonce = bytes(nonce)
        self.content_digest = content_digest
        self.compressed = bool(compressed)
        self.size_plain = int(size_plain)
        self.size_container = int(size_container)
        self.created_at = _parse_ts(created_at) or utcnow()
        self.modified_at = _parse_ts(modified_at) or self.created_at
        self.remote_id = remote_id

    @property
    def name(self):
        """File name of the container on disk."""
        return Path(self.crypt_path).name

    def to_dict(self):
        """Convert entry to a JSON friendly dict."""
        return {
            "original_path": self.original_path,
            "crypt_path": self.crypt_path,
            "display_name": self.display_name,
            "nonce": self.nonce.hex(),
            "content_digest": self.content_digest,
            "compressed": self.compressed,
            "size_plain": self.size_plain,
            "size_container": self.size_container,
            "created_at": self.created_at.isoformat(),
            "modified_at": self.modified_at.isoformat(),
            "remote_id": self.remote_id,
        }

    @classmethod
    def from_dict(cls, data):
        """Create an entry from a dict produced by to_dict or a database row."""
        nonce = data["nonce"]
        if isinstance(nonce, str):
            nonce = bytes.fromhex(nonce)
        return cls(
            crypt_path=data["crypt_path"],
            display_name=data.get("display_name", ""),
            nonce=nonce,
            original_path=data.get("original_path"),
            content_digest=data.get("content_digest"),
            compressed=bool(data.get("compressed", True)),
            size_plain=data.get("size_plain", 0),
            size_container=data.get("size_container", 0),
            created_at=data.get("created_at"),
            modified_at=data.get("modified_at"),
            remote_id=data.get("remote_id"),
        )

    def __repr__(self):
        return f"CryptEntry(crypt_path={self.crypt_path!r}, display_name={self.display_name!r})"

    def __eq__(self, other):
        if not isinstance(other, CryptEntry):
            return NotImplemented
        return self.crypt_path == other.crypt_path

    def __hash__(self):
        return hash(self.crypt_path)


@dataclass(frozen=True)
class IgnoreList:
    """Directory names and file extensions excluded from traversal."""

    directories: FrozenSet[str] = frozenset()
    extensions: FrozenSet[str] = frozenset()

    def __post_init__(self):
        object.__setattr__(self, "directories", frozenset(self._norm(d) for d in self.directories))
        object.__setattr__(
            self, "extensions", frozenset(self._norm(e.lstrip(".")) for e in self.extensions)
        )

    @staticmethod
    def _norm(name: str) -> str:
        # Windows filesystems are case-insensitive, POSIX ones are not
        return os.path.normcase(name)

    def ignores_directory(self, name: str) -> bool:
        return self._norm(name) in self.directories

    def ignores_file(self, name: str) -> bool:
        suffix = Path(name).suffix
        if not suffix:
            return False
        return self._norm(suffix[1:]) in self.extensions


@dataclass(frozen=True)
class TraversalItem:
    """A file to process: canonical path, hidden flag and its path relative to the walk root."""

    path: Path
    hidden: bool = False
    relative: Optional[Path] = None


class OutcomeStatus(Enum):
    OK = "ok"
    FAILED = "failed"


@dataclass
class FileOutcome:
    """Result of processing one file in a batch."""

    path: str
    status: OutcomeStatus
    entry: Optional[CryptEntry] = None
    output_path: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.OK


@dataclass
class BatchResult:
    """Itemized outcome of a batch operation."""

    outcomes: List[FileOutcome] = field(default_factory=list)
    cancelled: bool = False

    @property
    def succeeded(self) -> List[FileOutcome]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failed(self) -> List[FileOutcome]:
        return [o for o in self.outcomes if not o.ok]

    def summary(self) -> str:
        lines = [f"{len(self.succeeded)} succeeded, {len(self.failed)} failed"]
        if self.cancelled:
            lines[0] += " (cancelled)"
        for o in self.failed:
            lines.append(f"  {o.path}: [{o.error_kind}] {o.error}")
        return "\n".join(lines)


class CandidateKind(Enum):
    FILE = "file"
    FOLDER = "folder"


@dataclass(frozen=True)
class Candidate:
    index: int
    kind: CandidateKind
    path: str
    entry: Optional[CryptEntry] = None
    modified_at: Optional[datetime] = None


@dataclass
class CandidateList:
    query: str
    files: List[Candidate] = field(default_factory=list)
    folders: List[Candidate] = field(default_factory=list)

    @property
    def all(self) -> List[Candidate]:
        return self.files + self.folders

    def __len__(self):
        return len(self.files) + len(self.folders)


@dataclass
class ResolvedTarget:
    """Concrete containers to decrypt; a folder selection carries several."""

    kind: CandidateKind
    path: str
    entries: List[CryptEntry] = field(default_factory=list)


class Aborted:
    """Returned when the user picks 0 in the chooser."""

    def __repr__(self):
        return "Aborted()"

    def __eq__(self, other):
        return isinstance(other, Aborted)

    def __hash__(self):
        return hash(Aborted)


@dataclass
class KeeperListing:
    files: List[CryptEntry] = field(default_factory=list)
    folders: List[str] = field(default_factory=list)
    missing: List[CryptEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "files": [e.to_dict() for e in self.files],
            "folders": list(self.folders),
            "missing": [e.crypt_path for e in self.missing],
        }
