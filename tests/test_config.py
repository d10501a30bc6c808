# Tests for storage configuration and environment loading

import pytest

from mcp_credentials.config import (
    STORAGE_PRIORITY,
    SecurityLevel,
    StorageConfig,
    StorageMethod,
    default_config,
    load_config_from_env,
    load_log_dir_from_env,
    load_passphrase_from_env,
)
from mcp_credentials.errors import ValidationError

ENV_VARS = (
    "MCP_CREDENTIALS_METHOD",
    "MCP_CREDENTIALS_PATH",
    "MCP_CREDENTIALS_SECURITY_LEVEL",
    "MCP_CREDENTIALS_ALGORITHM",
    "MCP_CREDENTIALS_KEY_DERIVATION",
    "MCP_CREDENTIALS_KDF_ITERATIONS",
    "MCP_CREDENTIALS_ENCRYPT_FILE",
    "MCP_CREDENTIALS_KEY",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # An empty dotenv file keeps a stray .env from leaking into the test
    empty = tmp_path / "empty.env"
    empty.write_text("")
    return empty


class TestPresets:
    def test_priority_order(self):
        assert [c.method for c in STORAGE_PRIORITY] == [
            StorageMethod.SYSTEM_KEYCHAIN,
            StorageMethod.ENCRYPTED_CONFIG,
            StorageMethod.ENV_FILE,
        ]
        assert [c.security_level for c in STORAGE_PRIORITY] == [
            SecurityLevel.HIGH,
            SecurityLevel.MEDIUM_HIGH,
            SecurityLevel.MEDIUM,
        ]

    def test_default_is_encrypted_config(self):
        config = default_config()
        assert config.method is StorageMethod.ENCRYPTED_CONFIG
        assert config.algorithm == "aes-256-gcm"
        assert config.encrypt_file is True

    def test_only_encrypted_config_supports_encryption(self):
        assert StorageMethod.ENCRYPTED_CONFIG.supports_encryption
        assert not StorageMethod.SYSTEM_KEYCHAIN.supports_encryption
        assert not StorageMethod.ENV_FILE.supports_encryption


class TestStorageConfig:
    def test_validate_normalizes_kdf(self):
        config = StorageConfig(key_derivation="pbkdf2").validate()
        assert config.key_derivation == "pbkdf2-sha256"

    @pytest.mark.parametrize("kwargs", [
        {"method": "encrypted-config"},
        {"location": "   "},
        {"iterations": 1_000},
        {"algorithm": "aes-256-cbc"},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValidationError):
            StorageConfig(**kwargs).validate()

    def test_with_location(self):
        config = default_config().with_location("/tmp/creds.json")
        assert config.location == "/tmp/creds.json"
        assert config.method is StorageMethod.ENCRYPTED_CONFIG


class TestParsing:
    def test_method_case_insensitive(self):
        assert StorageMethod.from_string(" Env-File ") is StorageMethod.ENV_FILE

    def test_unknown_method(self):
        with pytest.raises(ValidationError, match="expected one of"):
            StorageMethod.from_string("cloud-vault")

    def test_security_level(self):
        assert SecurityLevel.from_string("HIGH") is SecurityLevel.HIGH
        assert str(SecurityLevel.MEDIUM_HIGH) == "medium-high"
        with pytest.raises(ValidationError):
            SecurityLevel.from_string("extreme")


class TestEnvironment:
    def test_defaults(self, clean_env):
        config = load_config_from_env(clean_env)

        assert config.method is StorageMethod.ENCRYPTED_CONFIG
        assert config.location is None
        assert config.iterations == 600_000
        assert config.encrypt_file is True

    def test_overrides(self, clean_env, monkeypatch):
        monkeypatch.setenv("MCP_CREDENTIALS_METHOD", "env-file")
        monkeypatch.setenv("MCP_CREDENTIALS_PATH", "/srv/agent/creds.json")
        monkeypatch.setenv("MCP_CREDENTIALS_SECURITY_LEVEL", "high")
        monkeypatch.setenv("MCP_CREDENTIALS_KDF_ITERATIONS", "200000")
        monkeypatch.setenv("MCP_CREDENTIALS_ENCRYPT_FILE", "no")

        config = load_config_from_env(clean_env)

        assert config.method is StorageMethod.ENV_FILE
        assert config.location == "/srv/agent/creds.json"
        assert config.security_level is SecurityLevel.HIGH
        assert config.iterations == 200_000
        assert config.encrypt_file is False

    def test_env_file_preset_location(self, clean_env, monkeypatch):
        monkeypatch.setenv("MCP_CREDENTIALS_METHOD", "env-file")
        assert load_config_from_env(clean_env).location == "~/.mcp-hub/.env.json"

    def test_dotenv_file_is_read(self, clean_env, monkeypatch, tmp_path):
        dotenv = tmp_path / ".env"
        dotenv.write_text("MCP_CREDENTIALS_KDF_ITERATIONS=300000\n")
        # load_dotenv writes into os.environ; have monkeypatch restore it
        monkeypatch.setenv("MCP_CREDENTIALS_KDF_ITERATIONS", "")
        monkeypatch.delenv("MCP_CREDENTIALS_KDF_ITERATIONS")

        assert load_config_from_env(dotenv).iterations == 300_000

    def test_process_env_wins_over_dotenv(self, clean_env, monkeypatch, tmp_path):
        dotenv = tmp_path / ".env"
        dotenv.write_text("MCP_CREDENTIALS_KDF_ITERATIONS=300000\n")
        monkeypatch.setenv("MCP_CREDENTIALS_KDF_ITERATIONS", "400000")

        assert load_config_from_env(dotenv).iterations == 400_000

    @pytest.mark.parametrize("name,value", [
        ("MCP_CREDENTIALS_KDF_ITERATIONS", "lots"),
        ("MCP_CREDENTIALS_KDF_ITERATIONS", "50000"),
        ("MCP_CREDENTIALS_ENCRYPT_FILE", "maybe"),
        ("MCP_CREDENTIALS_METHOD", "cloud-vault"),
        ("MCP_CREDENTIALS_KEY_DERIVATION", "scrypt"),
    ])
    def test_invalid_values(self, clean_env, monkeypatch, name, value):
        monkeypatch.setenv(name, value)
        with pytest.raises(ValidationError):
            load_config_from_env(clean_env)

    def test_passphrase(self, clean_env, monkeypatch):
        assert load_passphrase_from_env() is None
        monkeypatch.setenv("MCP_CREDENTIALS_KEY", "Correct-Horse-9!")
        assert load_passphrase_from_env() == "Correct-Horse-9!"

    def test_log_dir(self, monkeypatch, tmp_path):
        monkeypatch.setenv("MCP_CREDENTIALS_LOG_DIR", str(tmp_path / "logs"))
        assert load_log_dir_from_env() == tmp_path / "logs"
