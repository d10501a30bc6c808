# Credential Engine - Storage Configuration
#
# Storage method presets, security-level labels and the environment-driven
# configuration the engine consumes. Values are trusted beyond structural
# checks: nothing here decides which secrets an agent needs.

import os
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .errors import ValidationError
from .vault.encryption import (
    DEFAULT_ALGORITHM,
    DEFAULT_ITERATIONS,
    DEFAULT_KEY_DERIVATION,
    SALT_LENGTH,
    normalize_key_derivation,
    validate_encryption_config,
)

DEFAULT_STORAGE_DIR = Path("~/.mcp-hub")
DEFAULT_STORAGE_FILE = "credentials.json"
DEFAULT_LOG_DIR = DEFAULT_STORAGE_DIR / "audit_logs"

ENV_PREFIX = "MCP_CREDENTIALS_"


class StorageMethod(str, Enum):
    """
    Where and how the credential record is persisted.

    - SYSTEM_KEYCHAIN: OS keychain label. There is no keychain binding; the
      record is kept unencrypted at the default path.
    - ENCRYPTED_CONFIG: JSON record with per-value and (optionally) file-wide
      AES-256-GCM encryption. Default.
    - ENV_FILE: plaintext JSON record next to the user's env files.
    """

    SYSTEM_KEYCHAIN = "system-keychain"
    ENCRYPTED_CONFIG = "encrypted-config"
    ENV_FILE = "env-file"

    @property
    def supports_encryption(self) -> bool:
        """Can a passphrase be configured for this method?"""
        return self == StorageMethod.ENCRYPTED_CONFIG

    @classmethod
    def from_string(cls, method: str) -> "StorageMethod":
        """Parse a storage method (case-insensitive)."""
        try:
            return cls(method.strip().lower())
        except ValueError:
            allowed = ", ".join(m.value for m in cls)
            raise ValidationError(
                f"Unknown storage method {method!r} (expected one of: {allowed})"
            ) from None


class SecurityLevel(str, Enum):
    """Informational security label attached to a storage method."""

    HIGH = "high"
    MEDIUM_HIGH = "medium-high"
    MEDIUM = "medium"

    @classmethod
    def from_string(cls, level: str) -> "SecurityLevel":
        """Parse a security level (case-insensitive)."""
        try:
            return cls(level.strip().lower())
        except ValueError:
            raise ValidationError(f"Unknown security level {level!r}") from None

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class StorageConfig:
    """
    Explicit configuration for a StorageManager.

    Args:
        method: Storage method (see StorageMethod)
        location: Record path; ``~`` is expanded. None uses the default path.
        security_level: Informational label
        algorithm: Cipher identifier (only ``aes-256-gcm``)
        key_derivation: KDF identifier (``pbkdf2-sha256``; ``pbkdf2`` accepted)
        iterations: PBKDF2 iteration count (>= 100,000)
        salt_length: Salt length in bytes for new envelopes
        encrypt_file: Wrap the whole record in a second envelope when a
            passphrase is active
    """

    method: StorageMethod = StorageMethod.ENCRYPTED_CONFIG
    location: Optional[str] = None
    security_level: SecurityLevel = SecurityLevel.MEDIUM_HIGH
    algorithm: str = DEFAULT_ALGORITHM
    key_derivation: str = DEFAULT_KEY_DERIVATION
    iterations: int = DEFAULT_ITERATIONS
    salt_length: int = SALT_LENGTH
    encrypt_file: bool = True

    def validate(self) -> "StorageConfig":
        """Structural checks. Returns a copy with the KDF name normalized."""
        if not isinstance(self.method, StorageMethod):
            raise ValidationError(f"Invalid storage method: {self.method!r}")
        if self.location is not None and not str(self.location).strip():
            raise ValidationError("Storage location must be a non-empty path")
        validate_encryption_config(
            self.algorithm, self.key_derivation, self.salt_length, self.iterations
        )
        return replace(self, key_derivation=normalize_key_derivation(self.key_derivation))

    def with_location(self, location: str) -> "StorageConfig":
        return replace(self, location=location)


# Presets, most secure first
STORAGE_PRIORITY = (
    StorageConfig(
        method=StorageMethod.SYSTEM_KEYCHAIN,
        security_level=SecurityLevel.HIGH,
    ),
    StorageConfig(
        method=StorageMethod.ENCRYPTED_CONFIG,
        security_level=SecurityLevel.MEDIUM_HIGH,
    ),
    StorageConfig(
        method=StorageMethod.ENV_FILE,
        location="~/.mcp-hub/.env.json",
        security_level=SecurityLevel.MEDIUM,
    ),
)


def default_config() -> StorageConfig:
    """The encrypted-config preset."""
    return STORAGE_PRIORITY[1]


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ValidationError(f"{name} must be a boolean, got {raw!r}")


def load_config_from_env(dotenv_path: Optional[str] = None) -> StorageConfig:
    """
    Build a StorageConfig from ``MCP_CREDENTIALS_*`` environment variables.

    A ``.env`` file (or ``dotenv_path``) is loaded first; variables already set
    in the process environment win.
    """
    load_dotenv(dotenv_path=dotenv_path, override=False)

    method = StorageMethod.from_string(
        os.getenv(f"{ENV_PREFIX}METHOD", StorageMethod.ENCRYPTED_CONFIG.value)
    )
    preset = next(c for c in STORAGE_PRIORITY if c.method == method)

    level_raw = os.getenv(f"{ENV_PREFIX}SECURITY_LEVEL")
    iterations_raw = os.getenv(f"{ENV_PREFIX}KDF_ITERATIONS")
    encrypt_file_raw = os.getenv(f"{ENV_PREFIX}ENCRYPT_FILE")

    iterations = DEFAULT_ITERATIONS
    if iterations_raw:
        try:
            iterations = int(iterations_raw)
        except ValueError:
            raise ValidationError(
                f"{ENV_PREFIX}KDF_ITERATIONS must be an integer, got {iterations_raw!r}"
            ) from None

    config = replace(
        preset,
        location=os.getenv(f"{ENV_PREFIX}PATH") or preset.location,
        security_level=(
            SecurityLevel.from_string(level_raw) if level_raw else preset.security_level
        ),
        algorithm=os.getenv(f"{ENV_PREFIX}ALGORITHM", DEFAULT_ALGORITHM),
        key_derivation=os.getenv(f"{ENV_PREFIX}KEY_DERIVATION", DEFAULT_KEY_DERIVATION),
        iterations=iterations,
        encrypt_file=(
            _parse_bool(f"{ENV_PREFIX}ENCRYPT_FILE", encrypt_file_raw)
            if encrypt_file_raw else True
        ),
    )
    return config.validate()


def load_passphrase_from_env() -> Optional[str]:
    """Return the storage passphrase from ``MCP_CREDENTIALS_KEY``, if set."""
    return os.getenv(f"{ENV_PREFIX}KEY") or None


def load_log_dir_from_env() -> Path:
    """Directory for the daily security-event log files."""
    raw = os.getenv(f"{ENV_PREFIX}LOG_DIR")
    return Path(raw).expanduser() if raw else DEFAULT_LOG_DIR.expanduser()
