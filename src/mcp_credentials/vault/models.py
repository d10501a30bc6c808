"""Credential record data model.

The on-disk document is JSON with camelCase keys::

    {
      "version": "1.0.0",
      "credentials": {"<name>": {"name", "value", "encrypted", "storedAt",
                                 "lastAccessed", "accessCount"}},
      "metadata": {"createdAt", "lastModified", "encryptionEnabled",
                   "storageMethod"},
      "auditLog": [{"timestamp", "action", "credentialKey", "success",
                    "error"?, "metadata"?}]
    }

Dataclasses here use snake_case and convert at the ``to_dict`` /
``from_dict`` boundary. ``from_dict`` raises StorageCorruptionError on any
structural problem so a damaged file is never mistaken for an empty one.
"""

import json
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

from ..errors import DecryptionError, StorageCorruptionError

RECORD_VERSION = "1.0.0"
MAX_AUDIT_ENTRIES = 1000


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class AuditAction(str, Enum):
    """Operations recorded in a record's audit trail."""

    STORE = "store"
    RETRIEVE = "retrieve"
    VALIDATE = "validate"
    DELETE = "delete"


# ── Encryption Envelope ─────────────────────────────────────────────


@dataclass(frozen=True)
class EncryptionEnvelope:
    """Output of one encryption call. Binary fields are hex-encoded."""

    ciphertext: str
    iv: str
    salt: str
    auth_tag: str
    algorithm: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "ciphertext": self.ciphertext,
            "iv": self.iv,
            "salt": self.salt,
            "authTag": self.auth_tag,
            "algorithm": self.algorithm,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: Any) -> "EncryptionEnvelope":
        """Parse an envelope. Raises DecryptionError on missing/non-string fields."""
        if not isinstance(data, dict):
            raise DecryptionError("Invalid envelope: expected an object")

        fields = {}
        for key, attr in (
            ("ciphertext", "ciphertext"),
            ("iv", "iv"),
            ("salt", "salt"),
            ("authTag", "auth_tag"),
            ("algorithm", "algorithm"),
        ):
            value = data.get(key)
            if not isinstance(value, str) or not value:
                raise DecryptionError(f"Invalid envelope: missing required field '{key}'")
            fields[attr] = value
        return cls(**fields)

    @classmethod
    def from_json(cls, raw: str) -> "EncryptionEnvelope":
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise DecryptionError(f"Invalid envelope: not JSON ({e})") from None
        return cls.from_dict(data)


# ── Stored Credential ───────────────────────────────────────────────


@dataclass
class StoredCredential:
    """One secret. ``payload`` is the raw value or a JSON envelope."""

    name: str
    payload: str
    encrypted: bool
    stored_at: str = ""
    last_accessed: str = ""
    access_count: int = 0

    def __post_init__(self):
        if not self.stored_at:
            self.stored_at = utc_now()
        if not self.last_accessed:
            self.last_accessed = self.stored_at

    def mark_accessed(self) -> None:
        self.access_count += 1
        self.last_accessed = utc_now()

    def envelope(self) -> EncryptionEnvelope:
        return EncryptionEnvelope.from_json(self.payload)

    def metadata(self) -> Dict[str, Any]:
        """Listing view. Never includes the payload."""
        return {
            "name": self.name,
            "encrypted": self.encrypted,
            "storedAt": self.stored_at,
            "lastAccessed": self.last_accessed,
            "accessCount": self.access_count,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.metadata()
        data["value"] = self.payload
        return data

    @classmethod
    def from_dict(cls, name: str, data: Any) -> "StoredCredential":
        if not isinstance(data, dict):
            raise StorageCorruptionError(f"Credential entry '{name}' is not an object")
        payload = data.get("value")
        encrypted = data.get("encrypted")
        access_count = data.get("accessCount", 0)
        if not isinstance(payload, str):
            raise StorageCorruptionError(f"Credential entry '{name}' has no value")
        if not isinstance(encrypted, bool):
            raise StorageCorruptionError(f"Credential entry '{name}' has no encrypted flag")
        if isinstance(access_count, bool) or not isinstance(access_count, int) or access_count < 0:
            raise StorageCorruptionError(f"Credential entry '{name}' has an invalid access count")
        return cls(
            name=data.get("name", name),
            payload=payload,
            encrypted=encrypted,
            stored_at=str(data.get("storedAt") or ""),
            last_accessed=str(data.get("lastAccessed") or ""),
            access_count=access_count,
        )


# ── Audit Entry ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class AuditEntry:
    """Immutable record of one attempted operation."""

    action: AuditAction
    credential_key: str
    success: bool
    error: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "timestamp": self.timestamp,
            "action": self.action.value,
            "credentialKey": self.credential_key,
            "success": self.success,
        }
        if self.error:
            data["error"] = self.error
        if self.metadata:
            data["metadata"] = self.metadata
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "AuditEntry":
        if not isinstance(data, dict):
            raise StorageCorruptionError("Audit entry is not an object")
        try:
            action = AuditAction(data.get("action"))
        except ValueError:
            raise StorageCorruptionError(
                f"Audit entry has unknown action {data.get('action')!r}"
            ) from None
        return cls(
            action=action,
            credential_key=str(data.get("credentialKey", "")),
            success=bool(data.get("success", False)),
            error=data.get("error"),
            metadata=data.get("metadata"),
            timestamp=str(data.get("timestamp") or utc_now()),
        )


# ── Storage Record ──────────────────────────────────────────────────


def _audit_buffer(entries=()) -> Deque[AuditEntry]:
    return deque(entries, maxlen=MAX_AUDIT_ENTRIES)


@dataclass
class RecordMetadata:
    created_at: str
    last_modified: str
    encryption_enabled: bool
    storage_method: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "createdAt": self.created_at,
            "lastModified": self.last_modified,
            "encryptionEnabled": self.encryption_enabled,
            "storageMethod": self.storage_method,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "RecordMetadata":
        if not isinstance(data, dict):
            raise StorageCorruptionError("Record metadata is not an object")
        encryption_enabled = data.get("encryptionEnabled")
        if not isinstance(encryption_enabled, bool):
            raise StorageCorruptionError("Record metadata has no encryptionEnabled flag")
        now = utc_now()
        return cls(
            created_at=str(data.get("createdAt") or now),
            last_modified=str(data.get("lastModified") or now),
            encryption_enabled=encryption_enabled,
            storage_method=str(data.get("storageMethod", "")),
        )


@dataclass
class StorageRecord:
    """The whole persisted document."""

    metadata: RecordMetadata
    version: str = RECORD_VERSION
    credentials: Dict[str, StoredCredential] = field(default_factory=dict)
    # Ring buffer: appending past the cap evicts the oldest entry
    audit_log: Deque[AuditEntry] = field(default_factory=_audit_buffer)

    @classmethod
    def create(cls, storage_method: str, encryption_enabled: bool) -> "StorageRecord":
        now = utc_now()
        return cls(
            metadata=RecordMetadata(
                created_at=now,
                last_modified=now,
                encryption_enabled=encryption_enabled,
                storage_method=storage_method,
            )
        )

    def append_audit(self, entry: AuditEntry) -> None:
        self.audit_log.append(entry)

    def touch(self) -> None:
        self.metadata.last_modified = utc_now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "credentials": {name: cred.to_dict() for name, cred in self.credentials.items()},
            "metadata": self.metadata.to_dict(),
            "auditLog": [entry.to_dict() for entry in self.audit_log],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "StorageRecord":
        if not isinstance(data, dict):
            raise StorageCorruptionError("Invalid storage file format: expected an object")
        version = data.get("version")
        credentials = data.get("credentials")
        metadata = data.get("metadata")
        if not version or not isinstance(credentials, dict) or metadata is None:
            raise StorageCorruptionError(
                "Invalid storage file format: missing version, credentials or metadata"
            )

        audit_raw = data.get("auditLog", [])
        if not isinstance(audit_raw, list):
            raise StorageCorruptionError("Invalid storage file format: auditLog is not a list")

        return cls(
            version=str(version),
            credentials={
                name: StoredCredential.from_dict(name, entry)
                for name, entry in credentials.items()
            },
            metadata=RecordMetadata.from_dict(metadata),
            audit_log=_audit_buffer(AuditEntry.from_dict(e) for e in audit_raw),
        )

    def credential_metadata(self) -> List[Dict[str, Any]]:
        return [cred.metadata() for cred in self.credentials.values()]
