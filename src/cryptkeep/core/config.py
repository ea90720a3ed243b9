"""Configuration snapshot and runtime context handed to the keeper and pipelines."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping, Optional
import logging
import os

from .models import IgnoreList
from ..security.compression import MIN_LEVEL, MAX_LEVEL, DEFAULT_LEVEL
from ..security.crypto import KEY_SIZE
from ..security.kdf import KdfParams
from ..security.keys import unlock, key_meta_path


logger = logging.getLogger(__name__)

DEFAULT_IGNORE = IgnoreList(directories=frozenset({"target", "__pycache__", ".git"}))


def clamp_level(level: Optional[int]) -> Optional[int]:
    """Clamp a compression level into the supported range; None disables compression."""
    if level is None:
        return None
    level = int(level)
    clamped = max(MIN_LEVEL, min(MAX_LEVEL, level))
    if clamped != level:
        logger.warning("compression level %s out of range, using %s", level, clamped)
    return clamped


def _default_workers() -> int:
    return max(1, min(4, os.cpu_count() or 1))


@dataclass(frozen=True)
class CryptConfig:
    """Read-only inputs for one invocation; the core never writes these back."""

    crypt_root: Path
    database_path: Path
    retain_local: bool = True
    retain_containers: bool = True
    compression_level: Optional[int] = DEFAULT_LEVEL
    ignore: IgnoreList = DEFAULT_IGNORE
    include_hidden: bool = False
    workers: int = field(default_factory=_default_workers)

    def __post_init__(self):
        object.__setattr__(self, "crypt_root", Path(self.crypt_root).expanduser().resolve())
        object.__setattr__(self, "database_path", Path(self.database_path).expanduser())
        object.__setattr__(self, "compression_level", clamp_level(self.compression_level))
        if self.workers < 1:
            raise ValueError("workers must be >= 1")

    @property
    def compress(self) -> bool:
        return self.compression_level is not None

    @property
    def decrypted_root(self) -> Path:
        # where containers with no known original location are restored
        return self.crypt_root / "decrypted"

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "CryptConfig":
        """Build a config from loosely typed values (e.g. a parsed TOML file)."""
        ignore_raw = raw.get("ignore") or {}
        if isinstance(ignore_raw, IgnoreList):
            ignore = ignore_raw
        else:
            ignore = IgnoreList(
                directories=frozenset(ignore_raw.get("directories", DEFAULT_IGNORE.directories)),
                extensions=frozenset(ignore_raw.get("extensions", ())),
            )

        crypt_root = Path(raw.get("crypt_root") or Path.home() / "crypt").expanduser()
        database_path = raw.get("database_path") or crypt_root / ".cryptkeep" / "keeper.db"

        kwargs = dict(
            crypt_root=crypt_root,
            database_path=database_path,
            retain_local=bool(raw.get("retain_local", True)),
            retain_containers=bool(raw.get("retain_containers", True)),
            compression_level=raw.get("compression_level", DEFAULT_LEVEL),
            ignore=ignore,
            include_hidden=bool(raw.get("include_hidden", False)),
        )
        if raw.get("workers") is not None:
            kwargs["workers"] = int(raw["workers"])
        return cls(**kwargs)

    def with_overrides(self, **changes) -> "CryptConfig":
        return replace(self, **changes)


@dataclass(frozen=True)
class CryptContext:
    """Config plus key material, passed explicitly instead of living in globals."""

    config: CryptConfig
    key: bytes = field(repr=False)

    def __post_init__(self):
        if len(self.key) != KEY_SIZE:
            raise ValueError(f"key must be {KEY_SIZE} bytes")


def build_context(
    config: CryptConfig,
    password: str | bytes,
    kdf_params: Optional[KdfParams] = None,
) -> CryptContext:
    """
    Derive the container key for ``config``'s store and return a context.

    The first call for a store persists the KDF salt and a sentinel next to the
    keeper database; later calls verify the passphrase against it and raise
    ``InvalidKeyError`` on a mismatch.
    """
    config.crypt_root.mkdir(parents=True, exist_ok=True)
    key = unlock(password, key_meta_path(config.database_path), kdf_params)
    return CryptContext(config=config, key=key)
