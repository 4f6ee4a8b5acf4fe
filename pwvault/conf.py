"""
Vault Configuration — File locations, reveal timeout and KDF cost.

Reads settings from environment variables:
    PWVAULT_DB_FILE = <path to the credential store document>
    PWVAULT_MASTER_FILE = <path to the master record token>
    PWVAULT_REVEAL_TIMEOUT = <seconds a revealed password stays visible>
    PWVAULT_SCRYPT_N / PWVAULT_SCRYPT_R / PWVAULT_SCRYPT_P = <scrypt cost>
    PWVAULT_CIPHER_BACKEND = aesgcm | chacha20 (new master records only)

Command line flags override the environment.

Security Note:
    Never log key material or passwords. Only log paths and parameters.
"""
import os
import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .crypto import CIPHERS, DEFAULT_CIPHER
from .exceptions import UsageError

logger = logging.getLogger("pwvault")

DEFAULT_VAULT_DIR = Path.home() / ".pwvault"
DEFAULT_REVEAL_TIMEOUT = 15.0


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    store_file: Path = Field(default=DEFAULT_VAULT_DIR / "credentials.json")
    master_file: Path = Field(default=DEFAULT_VAULT_DIR / "master.key")
    reveal_timeout: float = Field(default=DEFAULT_REVEAL_TIMEOUT, gt=0)
    scrypt_n: int = Field(default=2 ** 15, ge=2)
    scrypt_r: int = Field(default=8, ge=1)
    scrypt_p: int = Field(default=1, ge=1)
    cipher_backend: str = Field(default=DEFAULT_CIPHER)

    model_config = {"frozen": True}

    @field_validator("store_file", "master_file")
    @classmethod
    def expand_path(cls, v: Path) -> Path:
        return v.expanduser()

    @field_validator("scrypt_n")
    @classmethod
    def validate_scrypt_n(cls, v: int) -> int:
        """Scrypt requires the CPU/memory cost to be a power of two."""
        if v & (v - 1):
            raise ValueError(f"scrypt_n must be a power of two, got {v}")
        return v

    @field_validator("cipher_backend")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Validate cipher backend is supported."""
        v = v.lower()
        if v not in CIPHERS:
            raise ValueError(f"Unsupported cipher backend: {v}")
        return v

    @classmethod
    def build(cls, **values) -> "VaultConfig":
        """Create a VaultConfig, reporting invalid values as UsageError.

        ``None`` values are dropped so callers can pass unset CLI flags
        straight through and keep the defaults.
        """
        values = {k: v for k, v in values.items() if v is not None}
        try:
            return cls(**values)
        except ValidationError as err:
            raise UsageError(f"Invalid vault configuration: {err}") from err

    @classmethod
    def from_env(cls, **overrides: Optional[object]) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Args:
            **overrides: Explicit values (e.g. from CLI flags) that take
                precedence over environment variables when not ``None``.

        Returns:
            Populated VaultConfig instance.
        """
        env = {
            "store_file": os.environ.get("PWVAULT_DB_FILE"),
            "master_file": os.environ.get("PWVAULT_MASTER_FILE"),
            "reveal_timeout": os.environ.get("PWVAULT_REVEAL_TIMEOUT"),
            "scrypt_n": os.environ.get("PWVAULT_SCRYPT_N"),
            "scrypt_r": os.environ.get("PWVAULT_SCRYPT_R"),
            "scrypt_p": os.environ.get("PWVAULT_SCRYPT_P"),
            "cipher_backend": os.environ.get("PWVAULT_CIPHER_BACKEND"),
        }
        for name, value in overrides.items():
            if value is not None:
                env[name] = value
        config = cls.build(**env)
        logger.debug(
            "Vault config: store=%s master=%s timeout=%s",
            config.store_file, config.master_file, config.reveal_timeout,
        )
        return config
