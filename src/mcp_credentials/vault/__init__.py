# Vault Module - Credential Encryption and Storage
#
# AES-256-GCM value encryption with PBKDF2 key derivation, and the JSON
# credential record with its bounded audit trail.

from .models import (
    AuditAction,
    AuditEntry,
    EncryptionEnvelope,
    StorageRecord,
    StoredCredential,
)
from .encryption import (
    EncryptionService,
    PassphraseStrength,
    generate_secure_passphrase,
    score_passphrase,
    verify_passphrase,
)
from .storage import StorageManager, resolve_storage_path

__all__ = [
    "AuditAction",
    "AuditEntry",
    "EncryptionEnvelope",
    "StorageRecord",
    "StoredCredential",
    "EncryptionService",
    "PassphraseStrength",
    "generate_secure_passphrase",
    "score_passphrase",
    "verify_passphrase",
    "StorageManager",
    "resolve_storage_path",
]
