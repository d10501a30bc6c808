"""
Shared pytest fixtures for the MCP Credentials test suite.

The autouse fixture below keeps the security-event log out of the user's
home directory: every test gets a fresh AuditLogger writing into tmp_path.
"""

import pytest

from mcp_credentials.config import StorageConfig, StorageMethod
from mcp_credentials.vault.encryption import MIN_ITERATIONS


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path, monkeypatch):
    """Redirect the global AuditLogger to a temp directory for every test.

    Without this, any StorageManager built without an explicit event logger
    calls ``get_audit_logger()`` and writes into ``~/.mcp-hub/audit_logs``.
    """
    import mcp_credentials.core.audit_log as audit_mod

    monkeypatch.setenv("MCP_CREDENTIALS_LOG_DIR", str(tmp_path / "audit_logs"))

    # Reset the singleton so the next get_audit_logger() creates a fresh
    # instance pointing at the temp directory.
    old_logger = audit_mod._audit_logger
    audit_mod._audit_logger = None

    yield

    if audit_mod._audit_logger is not None:
        audit_mod._audit_logger.close()
    audit_mod._audit_logger = old_logger


@pytest.fixture
def event_logger(tmp_path):
    from mcp_credentials.core.audit_log import AuditLogger

    audit_logger = AuditLogger(log_dir=tmp_path / "events")
    yield audit_logger
    audit_logger.close()


@pytest.fixture
def storage_path(tmp_path):
    return tmp_path / "hub" / "credentials.json"


@pytest.fixture
def encrypted_config(storage_path):
    """Encrypted-config storage with the cheapest allowed KDF cost."""
    return StorageConfig(
        method=StorageMethod.ENCRYPTED_CONFIG,
        location=str(storage_path),
        iterations=MIN_ITERATIONS,
    )


@pytest.fixture
def value_only_config(encrypted_config):
    """Per-value encryption, record file itself left as plaintext JSON."""
    from dataclasses import replace

    return replace(encrypted_config, encrypt_file=False)


@pytest.fixture
def plaintext_config(storage_path):
    return StorageConfig(method=StorageMethod.ENV_FILE, location=str(storage_path))
