"""
Vault Configuration — Storage location and validated settings.

Reads settings from environment variables:
    KIROHUB_VAULT_PATH = <path to accounts.json>
    KIROHUB_MACHINE_ID = <device identifier override>
    KIROHUB_CIPHER_BACKEND = chacha20 | aesgcm
    KIROHUB_PBKDF2_ITERATIONS = <int, >= 100000>
    KIROHUB_CALLBACK_TIMEOUT / KIROHUB_STATE_VALIDITY = <seconds>
    KIROHUB_BATCH_CONCURRENCY = <int>
    KIROHUB_AUTH_ENDPOINT / KIROHUB_REQUEST_TIMEOUT

Security Note:
    Never log the machine id. It is the only input to the device key.
"""
import os
import sys
import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger("kirohub.vault")

DEFAULT_AUTH_ENDPOINT = "https://prod.us-east-1.auth.desktop.kiro.dev"
DEFAULT_REDIRECT_URI = "kiro://kiro.kiroAgent/authenticate-success"
MIN_PBKDF2_ITERATIONS = 100_000
MAX_BATCH_CONCURRENCY = 20


def get_data_dir() -> Path:
    """Return the per-user application data directory for this platform.

    Falls back to the home directory when no platform convention applies.
    """
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata)
    elif sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support"
    else:
        xdg = os.environ.get("XDG_DATA_HOME")
        if xdg:
            return Path(xdg)
        return Path.home() / ".local" / "share"
    return Path.home()


def default_vault_path() -> Path:
    """Default location of the accounts file."""
    return get_data_dir() / ".kirohub" / "accounts.json"


def clamp_concurrency(value: Optional[int], default: int = 5) -> int:
    """Clamp a requested batch concurrency into [1, MAX_BATCH_CONCURRENCY]."""
    if value is None:
        value = default
    return max(1, min(value, MAX_BATCH_CONCURRENCY))


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    vault_path: Path = Field(default_factory=default_vault_path)
    machine_id: Optional[str] = None
    # Informational; crypto.CIPHER_BACKEND, fixed at import from the env var,
    # is what encrypts. AppContext rejects a mismatch.
    cipher_backend: str = Field(default="chacha20")
    pbkdf2_iterations: int = Field(default=MIN_PBKDF2_ITERATIONS, ge=MIN_PBKDF2_ITERATIONS)
    callback_timeout: float = Field(default=300, ge=1)
    state_validity: int = Field(default=300, ge=1)
    batch_concurrency: int = Field(default=5)
    auth_endpoint: str = Field(default=DEFAULT_AUTH_ENDPOINT)
    redirect_uri: str = Field(default=DEFAULT_REDIRECT_URI)
    request_timeout: float = Field(default=10.0, gt=0)

    @field_validator("cipher_backend")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Validate cipher backend is supported."""
        v = v.lower()
        if v not in ("aesgcm", "chacha20"):
            raise ValueError(f"Unsupported cipher backend: {v}")
        return v

    @field_validator("machine_id")
    @classmethod
    def validate_machine_id(cls, v: Optional[str]) -> Optional[str]:
        """An explicit machine id must not be blank."""
        if v is not None and not v.strip():
            raise ValueError("machine_id cannot be blank")
        return v

    @field_validator("batch_concurrency")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        return clamp_concurrency(v)

    @field_validator("auth_endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        if not v.startswith(("https://", "http://")):
            raise ValueError(f"auth_endpoint must be an http(s) URL: {v}")
        return v.rstrip("/")

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Unset variables keep their defaults.

        Returns:
            Populated VaultConfig instance.
        """
        env_map = {
            "vault_path": "KIROHUB_VAULT_PATH",
            "machine_id": "KIROHUB_MACHINE_ID",
            "cipher_backend": "KIROHUB_CIPHER_BACKEND",
            "pbkdf2_iterations": "KIROHUB_PBKDF2_ITERATIONS",
            "callback_timeout": "KIROHUB_CALLBACK_TIMEOUT",
            "state_validity": "KIROHUB_STATE_VALIDITY",
            "batch_concurrency": "KIROHUB_BATCH_CONCURRENCY",
            "auth_endpoint": "KIROHUB_AUTH_ENDPOINT",
            "request_timeout": "KIROHUB_REQUEST_TIMEOUT",
        }
        values = {
            field: os.environ[name]
            for field, name in env_map.items()
            if os.environ.get(name)
        }
        config = cls(**values)
        logger.debug(
            "Vault config loaded: path=%s cipher=%s iterations=%d",
            config.vault_path, config.cipher_backend, config.pbkdf2_iterations,
        )
        return config
