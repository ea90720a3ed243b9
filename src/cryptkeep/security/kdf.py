import os
from dataclasses import dataclass, asdict
from typing import Dict

from argon2.low_level import Type, hash_secret_raw


@dataclass(frozen=True)
class KdfParams:
    time_cost: int = 3
    memory_cost: int = 65536
    parallelism: int = 1
    key_len: int = 32


def generate_salt(length: int = 16) -> bytes:
    """Return a cryptographically secure random salt."""
    return os.urandom(length)


def derive_key(password, salt: bytes, params: KdfParams = KdfParams()) -> bytes:
    """
    Derive the 256-bit container key from a passphrase using Argon2id.
    """
    if isinstance(password, str):
        password = password.encode("utf-8")

    return hash_secret_raw(
        secret=password,
        salt=salt,
        time_cost=params.time_cost,
        memory_cost=params.memory_cost,
        parallelism=params.parallelism,
        hash_len=params.key_len,
        type=Type.ID,
    )


def params_to_dict(salt: bytes, params: KdfParams) -> Dict:
    out = {"algo": "argon2id", "salt": salt.hex()}
    out.update(asdict(params))
    return out


def params_from_dict(meta: Dict) -> tuple[bytes, KdfParams]:
    salt = bytes.fromhex(meta["salt"])
    params = KdfParams(
        time_cost=int(meta.get("time_cost", 3)),
        memory_cost=int(meta.get("memory_cost", 65536)),
        parallelism=int(meta.get("parallelism", 1)),
        key_len=int(meta.get("key_len", 32)),
    )
    return salt, params
