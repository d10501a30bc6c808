# Credential Engine - Security Event Log
#
# Append-only structured log of credential events (store, retrieve, delete,
# validate, integrity checks). Complements the bounded audit trail kept inside
# each credential record: that one travels with the record, this one is the
# operator-facing forensic log.
#
# Secret values are never passed to this logger, only credential names.

import logging
import os
import socket
import sys
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog

AUDIT_LOGGER_NAME = "mcp_credentials.audit"


class EventType(str, Enum):
    """Types of security events that can be logged."""

    # Credential Events
    CREDENTIAL_STORED = "credential.stored"
    CREDENTIAL_RETRIEVED = "credential.retrieved"
    CREDENTIAL_DELETED = "credential.deleted"
    CREDENTIAL_VALIDATED = "credential.validated"
    CREDENTIAL_ACQUIRED = "credential.acquired"
    CREDENTIAL_ERROR = "credential.error"

    # Storage Events
    STORAGE_CREATED = "storage.created"
    STORAGE_INTEGRITY_CHECKED = "storage.integrity.checked"
    STORAGE_INTEGRITY_FAILED = "storage.integrity.failed"
    STORAGE_ERROR = "storage.error"
    STORAGE_EXPORTED = "storage.exported"

    # System Events
    ENCRYPTION_KEY_SET = "system.encryption_key.set"


class EventSeverity(str, Enum):
    """
    Severity levels for security events.

    - INFO: Normal activity (logged only)
    - INVESTIGATE: Something unusual, e.g. a failed lookup
    - ALERT: A check failed, e.g. decryption or validation
    - CRITICAL: Stored state is unusable (corruption, integrity violation)
    """

    INFO = "info"
    INVESTIGATE = "investigate"
    ALERT = "alert"
    CRITICAL = "critical"


class AuditLogger:
    """
    Append-only security event logger.

    Features:
    - Structured JSON lines (structlog)
    - Automatic timestamp and event ID
    - OS user / host context
    - One file per day: ``audit_YYYY-MM-DD.log``
    """

    def __init__(self, log_dir: Optional[Path] = None):
        """
        Args:
            log_dir: Directory for log files (default: ~/.mcp-hub/audit_logs,
                     or ``MCP_CREDENTIALS_LOG_DIR``)
        """
        if log_dir is None:
            from ..config import load_log_dir_from_env

            log_dir = load_log_dir_from_env()

        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

        self._file_handler: Optional[logging.Handler] = None
        self._setup_file_handler()

        self.logger = structlog.get_logger(AUDIT_LOGGER_NAME)

    def _setup_file_handler(self):
        """Attach a daily file handler to the audit logger."""
        today = datetime.now().strftime("%Y-%m-%d")
        log_file = self.log_dir / f"audit_{today}.log"

        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(message)s"))  # structlog renders

        std_logger = logging.getLogger(AUDIT_LOGGER_NAME)
        std_logger.addHandler(file_handler)
        std_logger.setLevel(logging.INFO)
        self._file_handler = file_handler

    @property
    def log_file(self) -> Optional[Path]:
        if self._file_handler is None:
            return None
        return Path(self._file_handler.baseFilename)

    def close(self) -> None:
        """Detach and close the file handler."""
        if self._file_handler is not None:
            logging.getLogger(AUDIT_LOGGER_NAME).removeHandler(self._file_handler)
            self._file_handler.close()
            self._file_handler = None

    def log_event(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        user_context: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Log a security event.

        Args:
            event_type: Type of event
            severity: Severity level
            message: Human-readable description
            details: Additional details (never secret values)
            user_context: Caller context (default: OS user and host)

        Returns:
            str: Event ID (UUID)
        """
        event_id = str(uuid4())

        self.logger.info(
            "security_event",
            event_id=event_id,
            event_type=event_type.value,
            severity=severity.value,
            message=message,
            event_time=datetime.now(timezone.utc).isoformat(),
            details=details or {},
            user_context=user_context or self._get_default_user_context(),
        )
        return event_id

    def log_credential_event(
        self,
        event_type: EventType,
        credential_key: str,
        success: bool = True,
        error: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Log an event about a named credential.

        Failures are logged at ALERT; successes at INFO.
        """
        event_details = dict(details or {})
        event_details["credential_key"] = credential_key
        event_details["success"] = success
        if error:
            event_details["error"] = error

        message = f"Credential: {event_type.value} - {credential_key}"
        if not success:
            message += " (failed)"

        return self.log_event(
            event_type=event_type,
            severity=EventSeverity.INFO if success else EventSeverity.ALERT,
            message=message,
            details=event_details,
        )

    def _get_default_user_context(self) -> Dict[str, Any]:
        return {
            "os_user": os.getenv("USERNAME") or os.getenv("USER"),
            "hostname": socket.gethostname(),
            "platform": sys.platform,
        }


# Global logger instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get global audit logger (singleton pattern)."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def log_security_event(
    event_type: EventType,
    severity: EventSeverity,
    message: str,
    **kwargs,
) -> str:
    """
    Convenience function for logging security events.

    Usage:
        log_security_event(
            EventType.STORAGE_ERROR,
            EventSeverity.CRITICAL,
            "Credential file could not be parsed",
            details={"path": "~/.mcp-hub/credentials.json"}
        )
    """
    return get_audit_logger().log_event(event_type, severity, message, **kwargs)
