# Credential Engine - Error Taxonomy
#
# Every failure the engine can report carries a short ``kind`` label so the
# facade can hand callers a structured result they can branch on.

from typing import Optional


class CredentialError(Exception):
    """Base class for all credential engine errors."""

    kind = "internal"

    def __init__(self, message: str, credential_key: Optional[str] = None):
        self.credential_key = credential_key
        super().__init__(message)


class ValidationError(CredentialError):
    """Empty or malformed input to a public call."""

    kind = "validation"


class EncryptionError(CredentialError):
    """Cipher-layer failure while encrypting (empty plaintext or passphrase)."""

    kind = "encryption"


class DecryptionError(EncryptionError):
    """
    Decryption failed.

    Raised for missing or malformed envelope fields and for authentication
    tag mismatches. A wrong passphrase and a tampered ciphertext are
    indistinguishable here.
    """

    kind = "decryption"


class StorageCorruptionError(CredentialError):
    """The on-disk record does not parse or fails structural checks."""

    kind = "corruption"


class NotFoundError(CredentialError):
    """The named credential is not in the record."""

    kind = "not_found"


class IntegrityError(CredentialError):
    """The record violates the encryption-consistency or uniqueness invariants."""

    kind = "integrity"


class StorageIOError(CredentialError):
    """Filesystem access failed (permission denied, missing parent, ...)."""

    kind = "io"

    def __init__(self,
                 message: str,
                 path: Optional[str] = None,
                 orig_exc: Optional[BaseException] = None):
        self.path = path
        self.orig_exc = orig_exc

        full_msg = message
        if path:
            full_msg += f" (path: {path})"
        if orig_exc:
            full_msg += f": {orig_exc}"
        super().__init__(full_msg)


__all__ = [
    "CredentialError",
    "ValidationError",
    "EncryptionError",
    "DecryptionError",
    "StorageCorruptionError",
    "NotFoundError",
    "IntegrityError",
    "StorageIOError",
]
