import logging
from pathlib import Path

import pytest

from cryptkeep.core.config import (
    DEFAULT_IGNORE,
    CryptConfig,
    CryptContext,
    build_context,
    clamp_level,
)
from cryptkeep.core.exceptions import InvalidKeyError
from cryptkeep.core.models import IgnoreList
from cryptkeep.security.kdf import KdfParams

FAST = KdfParams(time_cost=1, memory_cost=8192)


def test_clamp_level(caplog):
    assert clamp_level(None) is None
    assert clamp_level(5) == 5
    with caplog.at_level(logging.WARNING, logger="cryptkeep.core.config"):
        assert clamp_level(40) == 22
        assert clamp_level(-100) == -7
    assert "out of range" in caplog.text


def test_config_normalizes_inputs(tmp_path):
    config = CryptConfig(crypt_root=tmp_path / "crypt", database_path=tmp_path / "k.db", compression_level=99)
    assert config.crypt_root.is_absolute()
    assert config.compression_level == 22
    assert config.compress
    assert config.decrypted_root == config.crypt_root / "decrypted"


def test_config_without_compression(tmp_path):
    config = CryptConfig(crypt_root=tmp_path, database_path=tmp_path / "k.db", compression_level=None)
    assert not config.compress


def test_config_rejects_zero_workers(tmp_path):
    with pytest.raises(ValueError):
        CryptConfig(crypt_root=tmp_path, database_path=tmp_path / "k.db", workers=0)


def test_from_mapping_defaults(tmp_path):
    config = CryptConfig.from_mapping({"crypt_root": str(tmp_path / "vault")})

    assert config.crypt_root == (tmp_path / "vault").resolve()
    assert config.database_path == tmp_path / "vault" / ".cryptkeep" / "keeper.db"
    assert config.retain_local is True
    assert config.retain_containers is True
    assert config.compression_level == 3
    assert config.ignore == DEFAULT_IGNORE
    assert config.include_hidden is False
    assert config.workers >= 1


def test_from_mapping_reads_ignore_and_flags(tmp_path):
    config = CryptConfig.from_mapping(
        {
            "crypt_root": str(tmp_path),
            "database_path": str(tmp_path / "db" / "k.db"),
            "retain_local": False,
            "compression_level": None,
            "ignore": {"directories": ["node_modules"], "extensions": ["iso"]},
            "include_hidden": True,
            "workers": "2",
        }
    )
    assert config.retain_local is False
    assert not config.compress
    assert config.ignore.ignores_directory("node_modules")
    assert not config.ignore.ignores_directory("target")
    assert config.ignore.ignores_file("disk.iso")
    assert config.include_hidden
    assert config.workers == 2


def test_with_overrides_revalidates(tmp_path):
    config = CryptConfig(crypt_root=tmp_path, database_path=tmp_path / "k.db")
    other = config.with_overrides(compression_level=-50, ignore=IgnoreList())
    assert other.compression_level == -7
    assert config.compression_level == 3


def test_context_requires_full_key(tmp_path):
    config = CryptConfig(crypt_root=tmp_path, database_path=tmp_path / "k.db")
    with pytest.raises(ValueError):
        CryptContext(config=config, key=b"short")
    assert "key=" not in repr(CryptContext(config=config, key=b"\x00" * 32))


def test_build_context_derives_and_verifies(tmp_path):
    config = CryptConfig(crypt_root=tmp_path / "crypt", database_path=tmp_path / "meta" / "k.db")
    ctx = build_context(config, "hunter2", FAST)

    assert len(ctx.key) == 32
    assert config.crypt_root.is_dir()
    assert Path(str(config.database_path) + ".key.json").exists()
    assert build_context(config, "hunter2").key == ctx.key

    with pytest.raises(InvalidKeyError):
        build_context(config, "hunter3")
