"""
Tests for VaultConfig and the device identifier.
"""
from pathlib import Path

import pytest
from pydantic import ValidationError

from kirohub_vault.vault import device
from kirohub_vault.vault.config import (
    DEFAULT_AUTH_ENDPOINT,
    DEFAULT_REDIRECT_URI,
    MIN_PBKDF2_ITERATIONS,
    VaultConfig,
    default_vault_path,
)
from kirohub_vault.vault.device import get_machine_id


class TestVaultConfig:

    def test_defaults(self):
        config = VaultConfig()
        assert config.vault_path == default_vault_path()
        assert config.vault_path.parts[-2:] == (".kirohub", "accounts.json")
        assert config.cipher_backend == "chacha20"
        assert config.pbkdf2_iterations == MIN_PBKDF2_ITERATIONS
        assert config.callback_timeout == 300
        assert config.state_validity == 300
        assert config.batch_concurrency == 5
        assert config.auth_endpoint == DEFAULT_AUTH_ENDPOINT
        assert config.redirect_uri == DEFAULT_REDIRECT_URI

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("KIROHUB_VAULT_PATH", str(tmp_path / "v.json"))
        monkeypatch.setenv("KIROHUB_CIPHER_BACKEND", "AESGCM")
        monkeypatch.setenv("KIROHUB_PBKDF2_ITERATIONS", "200000")
        monkeypatch.setenv("KIROHUB_BATCH_CONCURRENCY", "50")
        monkeypatch.setenv("KIROHUB_AUTH_ENDPOINT", "http://localhost:9000/")
        config = VaultConfig.from_env()
        assert config.vault_path == Path(tmp_path / "v.json")
        assert config.machine_id == "test-machine-id-12345"
        assert config.cipher_backend == "aesgcm"
        assert config.pbkdf2_iterations == 200_000
        assert config.batch_concurrency == 20
        assert config.auth_endpoint == "http://localhost:9000"

    def test_empty_env_keeps_default(self, monkeypatch):
        monkeypatch.setenv("KIROHUB_CIPHER_BACKEND", "")
        assert VaultConfig.from_env().cipher_backend == "chacha20"

    @pytest.mark.parametrize("field,value", [
        ("cipher_backend", "des"),
        ("pbkdf2_iterations", 1000),
        ("machine_id", "   "),
        ("auth_endpoint", "ftp://auth.example.test"),
        ("request_timeout", 0),
    ])
    def test_rejects_invalid(self, field, value):
        with pytest.raises(ValidationError):
            VaultConfig(**{field: value})

    @pytest.mark.parametrize("requested,expected", [(0, 1), (3, 3), (99, 20)])
    def test_concurrency_clamped(self, requested, expected):
        assert VaultConfig(batch_concurrency=requested).batch_concurrency == expected


class TestMachineId:

    def test_env_override(self):
        assert get_machine_id() == "test-machine-id-12345"

    def test_linux_file(self, monkeypatch, tmp_path):
        monkeypatch.delenv("KIROHUB_MACHINE_ID")
        monkeypatch.setattr(device.sys, "platform", "linux")
        missing = tmp_path / "missing"
        present = tmp_path / "machine-id"
        present.write_text("abc123\n")
        monkeypatch.setattr(device, "_LINUX_ID_FILES", (missing, present))
        assert get_machine_id() == "abc123"

    def test_fingerprint_fallback_is_stable(self, monkeypatch, tmp_path):
        monkeypatch.delenv("KIROHUB_MACHINE_ID")
        monkeypatch.setattr(device.sys, "platform", "linux")
        monkeypatch.setattr(device, "_LINUX_ID_FILES", (tmp_path / "nope",))
        first = get_machine_id()
        assert len(first) == 64
        assert get_machine_id() == first
