"""
Exceptions for cryptkeep
Everything derives from CryptError so batch operations have one thing to catch
"""


class CryptError(Exception):
    # general container for errors
    kind = "error"


class FormatError(CryptError):
    # raised when a container is malformed or not ours (checked before decryption)
    kind = "format"


class AuthenticationError(CryptError):
    # raised when the AEAD tag does not verify: wrong key or tampered data
    kind = "authentication"


class DecompressionError(CryptError):
    # raised when an authenticated payload does not decompress cleanly
    kind = "decompression"


class IntegrityCheckFailedError(CryptError):
    # raised on a plaintext digest mismatch after decryption
    kind = "integrity"


class DuplicateEntryError(CryptError):
    # raised when the keeper already tracks a crypt_path or nonce
    kind = "duplicate"


class NotFoundError(CryptError):
    # raised when a query or path matches nothing
    kind = "not-found"


class IoError(CryptError):
    # raised on filesystem level failures
    kind = "io"


class KeeperCorruptError(CryptError):
    # raised when the keeper database cannot be read at all
    kind = "keeper-corrupt"

    def __init__(self, db_path, cause=None):
        self.db_path = db_path
        self.cause = cause
        super().__init__(
            f"Keeper database at {db_path} is unreadable ({cause}). "
            "Run purge to reset it, then import_container or restore to rebuild."
        )


class InvalidSelectionError(CryptError):
    # raised when a chooser index is out of range
    kind = "selection"


class InvalidKeyError(CryptError):
    # raised when a passphrase does not match the stored key sentinel
    kind = "key"
