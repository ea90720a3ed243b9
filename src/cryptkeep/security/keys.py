"""
Passphrase to container key, with persisted KDF parameters.

The key itself is never written to disk. Next to the keeper database we keep a
small JSON file holding the Argon2id salt, the KDF parameters and a MAC
sentinel computed with the derived key. On later runs the sentinel tells a
mistyped passphrase apart from a real one before any container is touched;
otherwise a wrong passphrase would only surface as AuthenticationError on
every decrypt.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import hashlib
import hmac
import json

from cryptkeep.core.exceptions import InvalidKeyError
from .kdf import KdfParams, derive_key, generate_salt, params_from_dict, params_to_dict


SENTINEL_LABEL = b"cryptkeep-container-key"


def key_meta_path(database_path: Path | str) -> Path:
    """Where the KDF metadata for a given keeper database lives."""
    p = Path(database_path)
    return p.with_name(p.name + ".key.json")


def _sentinel(key: bytes) -> bytes:
    return hmac.new(key, SENTINEL_LABEL, hashlib.sha256).digest()


def unlock(password: str | bytes, meta_path: Path | str, params: Optional[KdfParams] = None) -> bytes:
    """
    Return the container key for ``password``.

    First-time use:
    - generate a random salt
    - derive the key with Argon2id (:mod:`cryptkeep.security.kdf`)
    - persist salt, parameters and sentinel in ``meta_path``

    Later calls:
    - reload salt and parameters
    - re-derive the key
    - verify the sentinel; raise ``InvalidKeyError`` if it does not match
    """
    meta_path = Path(meta_path)

    if meta_path.exists():
        with open(meta_path, "r", encoding="utf-8") as f:
            meta = json.load(f)
        salt, stored = params_from_dict(meta)
        key = derive_key(password, salt, stored)

        expected = bytes.fromhex(meta.get("sentinel", ""))
        if not hmac.compare_digest(_sentinel(key), expected):
            raise InvalidKeyError("passphrase does not match the key material for this store")
        return key

    params = params or KdfParams()
    salt = generate_salt()
    key = derive_key(password, salt, params)

    meta = params_to_dict(salt, params)
    meta["sentinel"] = _sentinel(key).hex()

    meta_path.parent.mkdir(parents=True, exist_ok=True)
    with open(meta_path, "w", encoding="utf-8") as f:
        json.dump(meta, f)
    return key
