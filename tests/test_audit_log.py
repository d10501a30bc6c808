# Tests for the security event log

import json

import pytest

import mcp_credentials.core.audit_log as audit_mod
from mcp_credentials.core.audit_log import (
    AuditLogger,
    EventSeverity,
    EventType,
    get_audit_logger,
    log_security_event,
)
from mcp_credentials.vault.storage import StorageManager

PASSPHRASE = "Correct-Horse-9!"

API_KEY = "sk-ABCDEFGHIJKLMNOPQRSTUVWXYZ0123"


def _events(audit_logger):
    lines = audit_logger.log_file.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines if line.strip()]


class TestAuditLogger:
    def test_daily_file_in_log_dir(self, event_logger, tmp_path):
        assert event_logger.log_file.parent == tmp_path / "events"
        assert event_logger.log_file.name.startswith("audit_")

    def test_event_is_json_line(self, event_logger):
        event_id = event_logger.log_event(
            EventType.STORAGE_CREATED,
            EventSeverity.INFO,
            "Credential storage created",
            details={"path": "/tmp/x"},
        )

        [event] = _events(event_logger)
        assert event["event_id"] == event_id
        assert event["event_type"] == "storage.created"
        assert event["severity"] == "info"
        assert event["details"] == {"path": "/tmp/x"}
        assert "hostname" in event["user_context"]

    def test_credential_failure_is_alert(self, event_logger):
        event_logger.log_credential_event(
            EventType.CREDENTIAL_ERROR, "api_key", success=False, error="authentication failed",
        )

        [event] = _events(event_logger)
        assert event["severity"] == "alert"
        assert event["details"]["credential_key"] == "api_key"
        assert event["message"].endswith("(failed)")

    def test_close_detaches_handler(self, tmp_path):
        audit_logger = AuditLogger(log_dir=tmp_path / "closing")
        audit_logger.close()

        assert audit_logger.log_file is None
        audit_logger.close()


class TestGlobalLogger:
    def test_singleton_uses_env_dir(self, tmp_path):
        first = get_audit_logger()
        assert first is get_audit_logger()
        assert first.log_dir == tmp_path / "audit_logs"

    def test_convenience_function(self, tmp_path):
        log_security_event(EventType.STORAGE_ERROR, EventSeverity.CRITICAL, "boom")

        [event] = _events(audit_mod._audit_logger)
        assert event["event_type"] == "storage.error"


class TestNoSecretsInLog:
    def test_storage_operations_never_log_values(self, encrypted_config, event_logger):
        storage = StorageManager(encrypted_config, passphrase=PASSPHRASE, event_logger=event_logger)
        storage.store("api_key", API_KEY)
        storage.retrieve("api_key")
        storage.export_env()
        storage.validate_integrity()
        storage.delete("api_key")

        text = event_logger.log_file.read_text(encoding="utf-8")
        assert API_KEY not in text
        assert PASSPHRASE not in text

        types = [e["event_type"] for e in _events(event_logger)]
        assert types == [
            "storage.created",
            "credential.stored",
            "credential.retrieved",
            "storage.exported",
            "storage.integrity.checked",
            "credential.deleted",
        ]

    def test_corruption_is_critical(self, plaintext_config, storage_path, event_logger):
        from mcp_credentials.errors import StorageCorruptionError

        storage_path.parent.mkdir(parents=True)
        storage_path.write_text("{broken")

        with pytest.raises(StorageCorruptionError):
            StorageManager(plaintext_config, event_logger=event_logger).list()

        [event] = _events(event_logger)
        assert event["event_type"] == "storage.error"
        assert event["severity"] == "critical"
