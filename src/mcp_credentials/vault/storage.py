# Credential Engine - Storage Manager
#
# JSON credential record on disk, per-value AES-256-GCM encryption and an
# optional second, file-wide envelope. Every operation loads the full record,
# mutates it in memory, appends an audit entry and saves the full record.
#
# Security:
# - Directory created 0700, record file set 0600 after every save
# - Atomic writes (temp file + os.replace), readers never see partial records
# - One writer per storage path inside the process (path-keyed RLock)
# - Secret values never reach the logs, only credential names

import json
import logging
import os
import re
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from ..config import (
    DEFAULT_STORAGE_DIR,
    DEFAULT_STORAGE_FILE,
    StorageConfig,
    default_config,
)
from ..core.audit_log import AuditLogger, EventSeverity, EventType, get_audit_logger
from ..errors import (
    CredentialError,
    DecryptionError,
    EncryptionError,
    IntegrityError,
    NotFoundError,
    StorageCorruptionError,
    StorageIOError,
    ValidationError,
)
from .encryption import EncryptionService
from .models import AuditAction, AuditEntry, EncryptionEnvelope, StorageRecord, StoredCredential

logger = logging.getLogger(__name__)

DIR_MODE = 0o700
FILE_MODE = 0o600

# ── Per-path write locks ────────────────────────────────────────────

_path_locks: Dict[str, threading.RLock] = {}
_path_locks_guard = threading.Lock()


def get_path_lock(path: Path) -> threading.RLock:
    """Return the process-wide lock serializing writers of ``path``."""
    key = os.path.normcase(os.path.abspath(path))
    with _path_locks_guard:
        lock = _path_locks.get(key)
        if lock is None:
            lock = threading.RLock()
            _path_locks[key] = lock
        return lock


def resolve_storage_path(config: StorageConfig) -> Path:
    """Absolute record path for ``config``, expanding a leading ``~``."""
    location = config.location or str(DEFAULT_STORAGE_DIR / DEFAULT_STORAGE_FILE)
    return Path(os.path.abspath(os.path.expanduser(location)))


def env_var_name(credential_key: str) -> str:
    """``github-token`` -> ``GITHUB_TOKEN``."""
    return re.sub(r"[^A-Za-z0-9_]", "_", credential_key).upper()


class StorageManager:
    """
    Owns the credential record at one storage path.

    Public methods raise the engine's CredentialError subclasses; the
    CredentialManager facade turns them into structured results.

    Args:
        config: Storage configuration (default: encrypted-config preset)
        passphrase: Encryption passphrase (encrypted-config only)
        event_logger: Security event logger (default: global AuditLogger)
    """

    def __init__(
        self,
        config: Optional[StorageConfig] = None,
        passphrase: Optional[str] = None,
        event_logger: Optional[AuditLogger] = None,
    ):
        self.config = (config or default_config()).validate()
        self.storage_path = resolve_storage_path(self.config)
        self._lock = get_path_lock(self.storage_path)
        self._event_logger = event_logger
        self._passphrase: Optional[str] = None

        self._cipher: Optional[EncryptionService] = None
        if self.config.method.supports_encryption:
            self._cipher = EncryptionService(
                iterations=self.config.iterations,
                salt_length=self.config.salt_length,
            )

        if passphrase:
            self.set_encryption_key(passphrase)

    # ── Properties ──────────────────────────────────────────────────

    @property
    def events(self) -> AuditLogger:
        if self._event_logger is None:
            self._event_logger = get_audit_logger()
        return self._event_logger

    @property
    def encryption_configured(self) -> bool:
        """Storage method encrypts values (a passphrase may still be missing)."""
        return self._cipher is not None

    @property
    def encryption_active(self) -> bool:
        """Values are encrypted on store: method supports it and a key is set."""
        return self._cipher is not None and self._passphrase is not None

    def set_encryption_key(self, passphrase: str) -> None:
        """Set the passphrase used for per-value and file-wide encryption."""
        if self._cipher is None:
            raise EncryptionError(
                f"Encryption not configured for storage method '{self.config.method.value}'"
            )
        if not isinstance(passphrase, str) or not passphrase:
            raise ValidationError("Encryption key must be a non-empty string")
        self._passphrase = passphrase
        logger.debug("Encryption key set for %s", self.storage_path)

    # ── Record lifecycle ────────────────────────────────────────────

    def _new_record(self) -> StorageRecord:
        return StorageRecord.create(
            storage_method=self.config.method.value,
            encryption_enabled=self.encryption_configured,
        )

    def load(self) -> StorageRecord:
        """
        Read the record from disk.

        Returns a fresh empty record when the file does not exist.

        Raises:
            StorageCorruptionError: file is not valid JSON or fails structure checks
            DecryptionError: file is encrypted and the key is missing or wrong
            StorageIOError: file could not be read
        """
        with self._lock:
            return self._load_unlocked()

    def _load_unlocked(self) -> StorageRecord:
        try:
            raw = self.storage_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info("Credential file not found, starting new record: %s", self.storage_path)
            return self._new_record()
        except UnicodeDecodeError as e:
            raise StorageCorruptionError(f"Credential file is not UTF-8 text: {e}") from None
        except OSError as e:
            raise StorageIOError("Failed to read credential file", str(self.storage_path), e) from e

        try:
            document = json.loads(raw)
            if isinstance(document, dict) and document.get("encrypted") is True:
                document = self._decrypt_document(document.get("data"))
            return StorageRecord.from_dict(document)
        except StorageCorruptionError as e:
            self.events.log_event(
                event_type=EventType.STORAGE_ERROR,
                severity=EventSeverity.CRITICAL,
                message=f"Credential file is corrupted: {e}",
                details={"path": str(self.storage_path)},
            )
            raise
        except ValueError as e:
            self.events.log_event(
                event_type=EventType.STORAGE_ERROR,
                severity=EventSeverity.CRITICAL,
                message="Credential file is not valid JSON",
                details={"path": str(self.storage_path)},
            )
            raise StorageCorruptionError(f"Credential file is not valid JSON: {e}") from None

    def _decrypt_document(self, data: Any) -> Any:
        """Unwrap the file-wide envelope."""
        if not self.encryption_active:
            raise DecryptionError("Credential file is encrypted but no encryption key is set")

        envelope = EncryptionEnvelope.from_dict(data)
        plaintext = self._cipher.decrypt(envelope, self._passphrase)
        try:
            return json.loads(plaintext)
        except ValueError as e:
            raise StorageCorruptionError(f"Decrypted credential record is not valid JSON: {e}") from None

    def save(self, record: StorageRecord) -> None:
        """
        Persist the full record.

        Raises:
            StorageIOError: directory or file could not be written
        """
        with self._lock:
            self._save_unlocked(record)

    def _save_unlocked(self, record: StorageRecord) -> None:
        record.touch()
        payload = json.dumps(record.to_dict(), indent=2)

        if self.encryption_active and self.config.encrypt_file:
            envelope = self._cipher.encrypt(payload, self._passphrase)
            payload = json.dumps({"encrypted": True, "data": envelope.to_dict()})

        is_new = not self.storage_path.exists()
        self._ensure_storage_directory()
        self._write_atomic(payload)
        self._set_secure_permissions(self.storage_path)

        if is_new:
            self.events.log_event(
                event_type=EventType.STORAGE_CREATED,
                severity=EventSeverity.INFO,
                message="Credential storage created",
                details={
                    "path": str(self.storage_path),
                    "method": self.config.method.value,
                    "encryption_enabled": record.metadata.encryption_enabled,
                },
            )
        logger.debug(
            "Credential file saved: %s (%d credentials)",
            self.storage_path, len(record.credentials),
        )

    def _ensure_storage_directory(self) -> None:
        directory = self.storage_path.parent
        if directory.is_dir():
            return
        try:
            directory.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
        except OSError as e:
            raise StorageIOError("Failed to create storage directory", str(directory), e) from e
        self._set_secure_permissions(directory, DIR_MODE)

    def _write_atomic(self, payload: str) -> None:
        """Write to a temp file in the same directory, then rename over the record."""
        directory = str(self.storage_path.parent)
        try:
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".credentials_", suffix=".tmp")
        except OSError as e:
            raise StorageIOError("Failed to write credential file", str(self.storage_path), e) from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_path, self.storage_path)
        except OSError as e:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise StorageIOError("Failed to write credential file", str(self.storage_path), e) from e

    @staticmethod
    def _set_secure_permissions(path: Path, mode: int = FILE_MODE) -> None:
        """Restrict permissions to the owner. Best-effort: failures are logged."""
        try:
            os.chmod(path, mode)
        except OSError as e:
            logger.warning("Failed to set secure permissions on %s: %s", path, e)

    @contextmanager
    def _transaction(self) -> Iterator[StorageRecord]:
        """Load, yield for mutation, save. Nothing is saved if the body raises."""
        with self._lock:
            record = self._load_unlocked()
            yield record
            self._save_unlocked(record)

    # ── Audit helpers ───────────────────────────────────────────────

    def record_audit(
        self,
        action: AuditAction,
        credential_key: str,
        success: bool,
        error: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Append one audit entry to the record and persist it.

        Best-effort: never raises. Returns False when the entry could not be
        written (e.g. the record itself is unreadable).
        """
        entry = AuditEntry(
            action=AuditAction(action),
            credential_key=credential_key,
            success=success,
            error=error,
            metadata=metadata,
        )
        try:
            with self._transaction() as record:
                record.append_audit(entry)
        except CredentialError as e:
            logger.warning("Could not append audit entry for '%s': %s", credential_key, e)
            return False
        return True

    def _audit_failure(self, action: AuditAction, credential_key: str, exc: CredentialError) -> None:
        if not isinstance(credential_key, str) or not credential_key:
            return
        self.record_audit(action, credential_key, False, error=str(exc))
        self.events.log_credential_event(
            EventType.CREDENTIAL_ERROR,
            credential_key,
            success=False,
            error=str(exc),
            details={"action": action.value, "error_kind": exc.kind},
        )

    def _claim_record_mode(self, record: StorageRecord, name: str) -> None:
        """
        Keep a record all-encrypted or all-plaintext.

        A record with no other entries adopts this manager's mode; otherwise
        the modes must match.
        """
        encrypting = self.encryption_active
        if record.metadata.encryption_enabled == encrypting:
            return
        if any(key != name for key in record.credentials):
            if encrypting:
                message = "Credential record holds plaintext entries; refusing to add an encrypted one"
            else:
                message = "Credential record is encrypted; refusing to add a plaintext entry"
            raise EncryptionError(message, name)

        record.metadata.encryption_enabled = encrypting
        record.metadata.storage_method = self.config.method.value
        logger.info(
            "Credential record switched to %s storage: %s",
            "encrypted" if encrypting else "plaintext", self.storage_path,
        )

    @staticmethod
    def _require_name(name: str) -> None:
        if not isinstance(name, str) or not name:
            raise ValidationError("Key name must be a non-empty string")

    # ── Credential operations ───────────────────────────────────────

    def store(self, name: str, value: str) -> StoredCredential:
        """
        Store (or overwrite) a credential.

        Overwriting resets storedAt and accessCount.

        Raises:
            ValidationError: empty name or value
            EncryptionError: encryption configured but no key set, or the
                record already holds entries in the other mode
        """
        try:
            self._require_name(name)
            if not isinstance(value, str) or not value:
                raise ValidationError("Value must be a non-empty string", name)
            if self.encryption_configured and not self.encryption_active:
                raise EncryptionError(
                    "Encryption key not set for encrypted storage", name
                )

            with self._transaction() as record:
                self._claim_record_mode(record, name)
                if self.encryption_active:
                    payload = self._cipher.encrypt(value, self._passphrase).to_json()
                else:
                    payload = value

                credential = StoredCredential(
                    name=name,
                    payload=payload,
                    encrypted=self.encryption_active,
                )
                record.credentials[name] = credential
                record.append_audit(AuditEntry(
                    action=AuditAction.STORE,
                    credential_key=name,
                    success=True,
                    metadata={"encrypted": credential.encrypted},
                ))
        except CredentialError as e:
            self._audit_failure(AuditAction.STORE, name, e)
            raise

        self.events.log_credential_event(
            EventType.CREDENTIAL_STORED, name, details={"encrypted": credential.encrypted}
        )
        logger.info("Credential stored: %s (encrypted=%s)", name, credential.encrypted)
        return credential

    def retrieve(self, name: str) -> str:
        """
        Return the decrypted value of a credential.

        Not read-only: increments accessCount, refreshes lastAccessed and
        persists both.

        Raises:
            ValidationError: empty name
            NotFoundError: no such credential
            DecryptionError: wrong key or tampered payload
        """
        try:
            self._require_name(name)
            with self._transaction() as record:
                credential = record.credentials.get(name)
                if credential is None:
                    raise NotFoundError(f"Credential '{name}' not found", name)

                value = self._reveal(credential)
                credential.mark_accessed()
                record.append_audit(AuditEntry(
                    action=AuditAction.RETRIEVE,
                    credential_key=name,
                    success=True,
                ))
        except CredentialError as e:
            self._audit_failure(AuditAction.RETRIEVE, name, e)
            raise

        self.events.log_credential_event(
            EventType.CREDENTIAL_RETRIEVED, name,
            details={"access_count": credential.access_count},
        )
        logger.debug("Credential retrieved: %s", name)
        return value

    def _reveal(self, credential: StoredCredential) -> str:
        if not credential.encrypted:
            return credential.payload
        if not self.encryption_active:
            raise DecryptionError(
                f"Credential '{credential.name}' is encrypted but no encryption key is set",
                credential.name,
            )
        return self._cipher.decrypt(credential.envelope(), self._passphrase)

    def delete(self, name: str) -> None:
        """
        Remove a credential.

        Raises:
            ValidationError: empty name
            NotFoundError: no such credential
        """
        try:
            self._require_name(name)
            with self._transaction() as record:
                if name not in record.credentials:
                    raise NotFoundError(f"Credential '{name}' not found", name)
                del record.credentials[name]
                record.append_audit(AuditEntry(
                    action=AuditAction.DELETE,
                    credential_key=name,
                    success=True,
                ))
        except CredentialError as e:
            self._audit_failure(AuditAction.DELETE, name, e)
            raise

        self.events.log_credential_event(EventType.CREDENTIAL_DELETED, name)
        logger.info("Credential deleted: %s", name)

    def list(self) -> List[Dict[str, Any]]:
        """Credential metadata (name, encrypted, timestamps, access count). Never values."""
        return self.load().credential_metadata()

    def exists(self, name: str) -> bool:
        """Membership check. Does not touch access bookkeeping."""
        return name in self.load().credentials

    def audit_log(self, limit: int = 100) -> List[AuditEntry]:
        """Last ``limit`` audit entries, most recent last."""
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationError("Audit log limit must be a positive integer")
        entries = list(self.load().audit_log)
        return entries[-limit:]

    def validate_integrity(self) -> Dict[str, Any]:
        """
        Check the record's structural invariants.

        - every entry is stored under its own name
        - every entry marked encrypted holds a parseable envelope
        - metadata.encryptionEnabled matches the entries (an empty record
          created in encrypted mode is consistent)

        Raises:
            IntegrityError: an invariant is violated
            StorageCorruptionError: the record cannot be parsed at all

        Returns:
            {"credential_count", "encryption_enabled", "last_modified"}
        """
        record = self.load()
        try:
            self._check_invariants(record)
        except IntegrityError as e:
            self.events.log_event(
                event_type=EventType.STORAGE_INTEGRITY_FAILED,
                severity=EventSeverity.CRITICAL,
                message=f"Credential storage integrity check failed: {e}",
                details={"path": str(self.storage_path)},
            )
            raise

        report = {
            "credential_count": len(record.credentials),
            "encryption_enabled": record.metadata.encryption_enabled,
            "last_modified": record.metadata.last_modified,
        }
        self.events.log_event(
            event_type=EventType.STORAGE_INTEGRITY_CHECKED,
            severity=EventSeverity.INFO,
            message="Credential storage integrity check passed",
            details=report,
        )
        return report

    @staticmethod
    def _check_invariants(record: StorageRecord) -> None:
        for key, credential in record.credentials.items():
            if credential.name != key:
                raise IntegrityError(
                    f"Credential entry '{key}' is stored under a different name "
                    f"('{credential.name}')", key,
                )
            if credential.encrypted:
                try:
                    credential.envelope()
                except DecryptionError:
                    raise IntegrityError(
                        f"Credential '{key}' is marked encrypted but holds no envelope", key,
                    ) from None

        has_encrypted = any(c.encrypted for c in record.credentials.values())
        enabled = record.metadata.encryption_enabled
        if has_encrypted != enabled and not (enabled and not record.credentials):
            raise IntegrityError(
                f"Encryption state mismatch: encryptionEnabled={enabled} but "
                f"encrypted credentials present={has_encrypted}"
            )

    def export_env(self) -> Dict[str, str]:
        """
        All credentials decrypted, keyed as environment variable names.

        Bulk export is not a per-credential retrieval: access counts are
        left unchanged.
        """
        record = self.load()
        exported = {
            env_var_name(name): self._reveal(credential)
            for name, credential in record.credentials.items()
        }
        self.events.log_event(
            event_type=EventType.STORAGE_EXPORTED,
            severity=EventSeverity.INVESTIGATE,
            message=f"Exported {len(exported)} credentials as environment variables",
            details={"credential_keys": sorted(record.credentials)},
        )
        return exported
