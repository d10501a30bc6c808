# MCP Credentials - Main Package
#
# Credential encryption-and-storage engine for a tool-orchestration agent:
# passphrase-derived AES-256-GCM encryption, a JSON credential record with
# owner-only permissions and a bounded audit trail.

__version__ = "0.1.0"
__author__ = "MCP Credentials Team"
__description__ = "Encrypted credential storage for MCP tool orchestration"

from .errors import (
    CredentialError,
    DecryptionError,
    EncryptionError,
    IntegrityError,
    NotFoundError,
    StorageCorruptionError,
    StorageIOError,
    ValidationError,
)
# vault must load before config (config reads the cipher defaults)
from .vault import (
    EncryptionEnvelope,
    EncryptionService,
    StorageManager,
    generate_secure_passphrase,
    score_passphrase,
)
from .config import (
    SecurityLevel,
    StorageConfig,
    StorageMethod,
    load_config_from_env,
)
from .validators import CredentialKind, classify_credential
from .manager import (
    AcquisitionResult,
    BatchResult,
    CredentialManager,
    CredentialRequest,
    OperationResult,
    default_credential_manager,
)

__all__ = [
    "__version__",
    # Errors
    "CredentialError",
    "DecryptionError",
    "EncryptionError",
    "IntegrityError",
    "NotFoundError",
    "StorageCorruptionError",
    "StorageIOError",
    "ValidationError",
    # Vault
    "EncryptionEnvelope",
    "EncryptionService",
    "StorageManager",
    "generate_secure_passphrase",
    "score_passphrase",
    # Config
    "SecurityLevel",
    "StorageConfig",
    "StorageMethod",
    "load_config_from_env",
    # Facade
    "CredentialKind",
    "classify_credential",
    "AcquisitionResult",
    "BatchResult",
    "CredentialManager",
    "CredentialRequest",
    "OperationResult",
    "default_credential_manager",
]
