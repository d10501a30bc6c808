# Credential Manager - Public API
#
# Composes the StorageManager with per-kind validation and an external
# acquisition callback (e.g. an interactive prompt) for missing secrets.
# Every public method returns a structured result; expected failures never
# raise past this layer.

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from dotenv import set_key

from .config import StorageConfig, load_config_from_env, load_passphrase_from_env
from .core.audit_log import AuditLogger, EventSeverity, EventType
from .errors import CredentialError, NotFoundError, ValidationError
from .validators import CredentialKind, ValidationResult, classify_credential, validate_value
from .vault.encryption import verify_passphrase
from .vault.models import AuditAction
from .vault.storage import FILE_MODE, StorageManager

logger = logging.getLogger(__name__)


# ── Request / Result types ──────────────────────────────────────────


@dataclass(frozen=True)
class CredentialRequest:
    """A credential the orchestrator needs, as handed to the acquirer."""

    name: str
    description: str = ""
    optional: bool = False
    help_url: Optional[str] = None
    kind: Optional[CredentialKind] = None

    def resolved_kind(self) -> CredentialKind:
        return self.kind or classify_credential(self.name)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CredentialRequest":
        """
        Accepts ``{name, description, optional, helpUrl, kind}`` as well as the
        tool-discovery shape ``{key_name, description, is_optional, get_key_url}``.
        """
        if not isinstance(data, Mapping):
            raise ValidationError(f"Credential request must be a mapping, got {type(data).__name__}")
        name = data.get("name") or data.get("key_name")
        if not isinstance(name, str) or not name:
            raise ValidationError("Credential request needs a name")

        kind = data.get("kind")
        try:
            kind = CredentialKind(kind) if kind else None
        except ValueError:
            allowed = ", ".join(k.value for k in CredentialKind)
            raise ValidationError(
                f"Unknown credential kind {kind!r} (expected one of: {allowed})", name
            ) from None

        return cls(
            name=name,
            description=data.get("description") or f"Enter value for {name}",
            optional=_is_optional(data),
            help_url=data.get("helpUrl") or data.get("help_url") or data.get("get_key_url"),
            kind=kind,
        )


def _is_optional(data: Any) -> bool:
    if isinstance(data, CredentialRequest):
        return data.optional
    if isinstance(data, Mapping):
        return bool(data.get("optional", data.get("is_optional", False)))
    return False


@dataclass(frozen=True)
class AcquisitionResult:
    """What the acquisition collaborator returns."""

    success: bool
    value: Optional[str] = None
    error: Optional[str] = None
    cancelled: bool = False


Acquirer = Callable[[CredentialRequest], AcquisitionResult]


@dataclass
class OperationResult:
    """Outcome of a facade call. ``error_kind`` is an error taxonomy label."""

    success: bool
    message: str
    data: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @classmethod
    def failed(cls, message: str, exc: BaseException, data: Any = None) -> "OperationResult":
        kind = exc.kind if isinstance(exc, CredentialError) else "internal"
        return cls(success=False, message=message, data=data, error=str(exc), error_kind=kind)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success, "message": self.message}
        if self.data is not None:
            result["data"] = self.data
        if self.error is not None:
            result["error"] = self.error
            result["error_kind"] = self.error_kind
        return result


@dataclass
class BatchResult:
    """Outcome of handle_credential_requests()."""

    status: str  # "success" | "failed"
    stored_location: str
    credential_keys: List[str] = field(default_factory=list)
    next_steps: str = ""
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == "success"


# ── Credential Manager ──────────────────────────────────────────────


class CredentialManager:
    """
    Get/set/remove/list credentials with validation and acquisition.

    Args:
        storage: StorageManager for one credential record
        acquirer: Called with a CredentialRequest when a secret is missing
        auto_acquire: Default for get_credential(acquire=...)
        validate_on_retrieve: Default for get_credential(validate=...)
    """

    def __init__(
        self,
        storage: StorageManager,
        acquirer: Optional[Acquirer] = None,
        auto_acquire: bool = True,
        validate_on_retrieve: bool = True,
    ):
        self.storage = storage
        self.acquirer = acquirer
        self.auto_acquire = auto_acquire
        self.validate_on_retrieve = validate_on_retrieve

        logger.info(
            "Credential manager initialized (method=%s, auto_acquire=%s)",
            storage.config.method.value, auto_acquire,
        )

    @classmethod
    def from_config(
        cls,
        config: Optional[StorageConfig] = None,
        passphrase: Optional[str] = None,
        acquirer: Optional[Acquirer] = None,
        event_logger: Optional[AuditLogger] = None,
        **options,
    ) -> "CredentialManager":
        storage = StorageManager(config, passphrase=passphrase, event_logger=event_logger)
        return cls(storage, acquirer=acquirer, **options)

    @property
    def storage_location(self) -> str:
        return str(self.storage.storage_path)

    def set_encryption_key(self, passphrase: str) -> OperationResult:
        """Set the storage passphrase. Weak passphrases are rejected."""
        is_valid, error_msg = verify_passphrase(passphrase)
        if not is_valid:
            return OperationResult.failed(
                "Encryption key rejected", ValidationError(f"Passphrase too weak: {error_msg}")
            )
        try:
            self.storage.set_encryption_key(passphrase)
        except CredentialError as e:
            return OperationResult.failed("Failed to set encryption key", e)

        self.storage.events.log_event(
            event_type=EventType.ENCRYPTION_KEY_SET,
            severity=EventSeverity.INFO,
            message="Encryption key set",
            details={"path": self.storage_location},
        )
        return OperationResult(success=True, message="Encryption key set")

    # ── Retrieval and acquisition ───────────────────────────────────

    def get_credential(
        self,
        name: str,
        request: Optional[CredentialRequest] = None,
        acquire: Optional[bool] = None,
        validate: Optional[bool] = None,
    ) -> OperationResult:
        """
        Get a credential, acquiring it if missing.

        1. Retrieve from storage
        2. Found: validate (optional) and return
        3. Not found and acquisition disallowed: not-found result
        4. Otherwise ask the acquirer, validate, store, return

        Storage failures other than not-found (wrong key, corruption, I/O)
        are returned as-is and never answered by acquisition.
        """
        acquire = self.auto_acquire if acquire is None else acquire
        validate = self.validate_on_retrieve if validate is None else validate
        kind = request.resolved_kind() if request else classify_credential(name)

        try:
            try:
                value = self.storage.retrieve(name)
            except NotFoundError as e:
                missing = e
            except CredentialError as e:
                return OperationResult.failed(f"Failed to retrieve credential '{name}'", e)
            else:
                if validate:
                    validation = self._validate(name, value, kind)
                    if not validation.valid:
                        return self._validation_failure(name, validation)
                logger.debug("Credential retrieved from storage: %s", name)
                return OperationResult(
                    success=True,
                    message=f"Credential '{name}' retrieved successfully",
                    data={"name": name, "value": value, "source": "storage"},
                )

            if not acquire or self.acquirer is None:
                return OperationResult.failed(
                    f"Credential '{name}' not found and acquisition disabled", missing
                )

            if request is None:
                request = CredentialRequest(name=name, description=f"Enter value for {name}")
            return self._acquire(name, request, kind, validate)

        except Exception as e:
            logger.exception("Failed to get credential '%s'", name)
            return OperationResult.failed(f"Failed to get credential '{name}'", e)

    def _acquire(
        self,
        name: str,
        request: CredentialRequest,
        kind: CredentialKind,
        validate: bool,
    ) -> OperationResult:
        outcome = self.acquirer(request)

        if not outcome.success or not outcome.value:
            error = outcome.error or ("Acquisition cancelled" if outcome.cancelled else "Acquisition failed")
            return OperationResult(
                success=False,
                message=f"Failed to acquire credential '{name}'",
                data={"name": name, "cancelled": outcome.cancelled},
                error=error,
                error_kind="cancelled" if outcome.cancelled else "acquisition",
            )

        if validate:
            validation = self._validate(name, outcome.value, kind)
            if not validation.valid:
                return self._validation_failure(name, validation)

        data = {"name": name, "value": outcome.value, "source": "acquired"}
        try:
            self.storage.store(name, outcome.value)
        except CredentialError as e:
            logger.warning("Failed to store acquired credential '%s': %s", name, e)
            data["storage_failed"] = True
            data["storage_error"] = str(e)
            return OperationResult(
                success=True,
                message=f"Credential '{name}' acquired (storage failed)",
                data=data,
            )

        self.storage.events.log_credential_event(EventType.CREDENTIAL_ACQUIRED, name)
        logger.info("Credential acquired and stored: %s", name)
        return OperationResult(
            success=True,
            message=f"Credential '{name}' acquired and stored successfully",
            data=data,
        )

    # ── Validation ──────────────────────────────────────────────────

    def _validate(self, name: str, value: str, kind: CredentialKind) -> ValidationResult:
        result = validate_value(kind, value)
        self.storage.record_audit(
            AuditAction.VALIDATE,
            name,
            result.valid,
            error=result.error,
            metadata={"kind": kind.value},
        )
        self.storage.events.log_credential_event(
            EventType.CREDENTIAL_VALIDATED,
            name,
            success=result.valid,
            error=result.error,
            details={"kind": kind.value},
        )
        return result

    @staticmethod
    def _validation_failure(name: str, validation: ValidationResult) -> OperationResult:
        logger.warning("Credential validation failed for '%s': %s", name, validation.error)
        return OperationResult(
            success=False,
            message=f"Credential validation failed: {validation.error}",
            data={"name": name, "validation": validation.to_dict()},
            error=validation.error or "Validation failed",
            error_kind=ValidationError.kind,
        )

    def validate_credential(
        self,
        name: str,
        value: str,
        kind: Optional[CredentialKind] = None,
    ) -> ValidationResult:
        """Validate a value for ``name`` (kind derived from the name if not given)."""
        return self._validate(name, value, kind or classify_credential(name))

    # ── Mutation and inspection ─────────────────────────────────────

    def set_credential(self, name: str, value: str) -> OperationResult:
        """Store or overwrite a credential."""
        try:
            credential = self.storage.store(name, value)
        except CredentialError as e:
            return OperationResult.failed(f"Failed to set credential '{name}'", e)
        except Exception as e:
            logger.exception("Failed to set credential '%s'", name)
            return OperationResult.failed(f"Failed to set credential '{name}'", e)

        return OperationResult(
            success=True,
            message=f"Credential '{name}' set successfully",
            data={"name": name, "encrypted": credential.encrypted},
        )

    def remove_credential(self, name: str) -> OperationResult:
        try:
            self.storage.delete(name)
        except CredentialError as e:
            return OperationResult.failed(f"Failed to remove credential '{name}'", e)
        except Exception as e:
            logger.exception("Failed to remove credential '%s'", name)
            return OperationResult.failed(f"Failed to remove credential '{name}'", e)

        return OperationResult(
            success=True,
            message=f"Credential '{name}' removed successfully",
            data={"name": name},
        )

    def list_credentials(self) -> OperationResult:
        """Credential metadata only; values are never listed."""
        try:
            credentials = self.storage.list()
        except Exception as e:
            if not isinstance(e, CredentialError):
                logger.exception("Failed to list credentials")
            return OperationResult.failed("Failed to list credentials", e)

        return OperationResult(
            success=True,
            message=f"Found {len(credentials)} stored credentials",
            data=credentials,
        )

    def get_audit_log(self, limit: int = 100) -> OperationResult:
        try:
            entries = self.storage.audit_log(limit)
        except Exception as e:
            if not isinstance(e, CredentialError):
                logger.exception("Failed to get audit log")
            return OperationResult.failed("Failed to get audit log", e)

        return OperationResult(
            success=True,
            message=f"Retrieved {len(entries)} audit entries",
            data=[entry.to_dict() for entry in entries],
        )

    def validate_storage(self) -> OperationResult:
        try:
            report = self.storage.validate_integrity()
        except Exception as e:
            if not isinstance(e, CredentialError):
                logger.exception("Storage validation error")
            return OperationResult.failed("Storage validation failed", e)

        return OperationResult(success=True, message="Storage validation passed", data=report)

    def export_env_file(self, path: Union[str, Path]) -> OperationResult:
        """
        Write every credential to a dotenv file (``KEY='value'`` lines).

        The file is created owner read/write only.
        """
        env_path = Path(path).expanduser()
        try:
            values = self.storage.export_env()
            env_path.parent.mkdir(parents=True, exist_ok=True)
            if not env_path.exists():
                os.close(os.open(env_path, os.O_CREAT | os.O_WRONLY, FILE_MODE))
            # Tighten an existing file before any secret lands in it
            os.chmod(env_path, FILE_MODE)
            for key, value in values.items():
                set_key(str(env_path), key, value, quote_mode="always")
            # set_key rewrites through a temp file
            os.chmod(env_path, FILE_MODE)
        except CredentialError as e:
            return OperationResult.failed("Failed to export credentials", e)
        except OSError as e:
            logger.warning("Failed to write env file %s: %s", env_path, e)
            return OperationResult(
                success=False,
                message="Failed to export credentials",
                error=str(e),
                error_kind="io",
            )

        return OperationResult(
            success=True,
            message=f"Exported {len(values)} credentials to {env_path}",
            data={"path": str(env_path), "keys": sorted(values)},
        )

    # ── Batch ───────────────────────────────────────────────────────

    def handle_credential_requests(
        self,
        requests: Iterable[Union[CredentialRequest, Mapping[str, Any]]],
    ) -> BatchResult:
        """
        Resolve a batch of requests.

        Optional requests that fail are skipped; required failures are
        collected. The batch succeeds only if no required request failed.
        """
        credential_keys: List[str] = []
        errors: List[str] = []

        requests = list(requests)
        logger.info("Handling %d credential requests", len(requests))

        for index, raw in enumerate(requests):
            try:
                request = raw if isinstance(raw, CredentialRequest) else CredentialRequest.from_dict(raw)
            except ValidationError as e:
                if _is_optional(raw):
                    logger.debug("Optional credential request #%d skipped: %s", index, e)
                else:
                    errors.append(f"Credential request #{index}: {e}")
                continue

            result = self.get_credential(request.name, request)
            if result.success:
                credential_keys.append(request.name)
            elif request.optional:
                logger.debug("Optional credential skipped: %s (%s)", request.name, result.error)
            else:
                errors.append(f"Required credential '{request.name}': {result.error}")

        if errors:
            return BatchResult(
                status="failed",
                stored_location=self.storage_location,
                credential_keys=credential_keys,
                next_steps=f"Fix the following errors: {', '.join(errors)}",
                errors=errors,
            )

        return BatchResult(
            status="success",
            stored_location=self.storage_location,
            credential_keys=credential_keys,
            next_steps="All credentials collected successfully. You can now use the MCP server.",
        )


# Composition-root instance (built from the environment on first use)
_default_manager: Optional[CredentialManager] = None


def default_credential_manager() -> CredentialManager:
    """Get the environment-configured credential manager (singleton pattern)."""
    global _default_manager
    if _default_manager is None:
        config = load_config_from_env()
        passphrase = load_passphrase_from_env() if config.method.supports_encryption else None
        _default_manager = CredentialManager.from_config(config, passphrase=passphrase)
    return _default_manager
