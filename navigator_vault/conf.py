"""
Vault Configuration — KDF cost parameters and validated settings.

Reads overrides from environment variables:
    VAULT_KDF_MEMORY_COST = <KiB>
    VAULT_KDF_TIME_COST = <iterations>
    VAULT_KDF_PARALLELISM = <lanes>
    VAULT_CIPHER_BACKEND = aesgcm | chacha20
    VAULT_IDLE_TIMEOUT = <seconds>
    VAULT_MAX_ENTRIES = <integer>
    VAULT_KDF_CONCURRENCY = <integer>

Security Note:
    Never log passphrases or derived keys. Only log cost parameters.
"""
import os
import logging

from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger("navigator.vault")

SALT_SIZE = 16
KEY_LENGTH = 32  # AES-256 / ChaCha20
KDF_ALGORITHM = "argon2id"
PASSPHRASE_SYMBOLS = "!@#$%^&*"


class KDFParams(BaseModel):
    """Argon2id cost parameters, stored alongside every account."""

    algorithm: str = Field(default=KDF_ALGORITHM)
    memory_cost: int = Field(default=65536, description="KiB")
    time_cost: int = Field(default=3)
    parallelism: int = Field(default=4)
    key_length: int = Field(default=KEY_LENGTH)

    model_config = {"frozen": True}


class KDFLimits(BaseModel):
    """Range of KDF costs accepted for derivation."""

    min_memory_cost: int = Field(default=19456, ge=8)
    max_memory_cost: int = Field(default=4 * 1024 * 1024)
    min_time_cost: int = Field(default=2, ge=1)
    max_time_cost: int = Field(default=16)
    min_parallelism: int = Field(default=1, ge=1)
    max_parallelism: int = Field(default=16)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def validate_ranges(self) -> "KDFLimits":
        """Ensure every lower bound is below its upper bound."""
        for name in ("memory_cost", "time_cost", "parallelism"):
            low = getattr(self, f"min_{name}")
            high = getattr(self, f"max_{name}")
            if low > high:
                raise ValueError(
                    f"min_{name} ({low}) is greater than max_{name} ({high})"
                )
        return self


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    kdf: KDFParams = Field(default_factory=KDFParams)
    kdf_limits: KDFLimits = Field(default_factory=KDFLimits)
    cipher_backend: str = Field(default="aesgcm")
    idle_timeout: int = Field(default=900, ge=1)
    max_entries_per_account: int = Field(default=1000, ge=1)
    kdf_concurrency: int = Field(default=2, ge=1, le=64)

    @field_validator("cipher_backend")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Validate cipher backend is supported."""
        v = v.lower()
        if v not in ("aesgcm", "chacha20"):
            raise ValueError(f"Unsupported cipher backend: {v}")
        return v

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.
        """
        defaults = KDFParams()
        kdf = KDFParams(
            memory_cost=int(
                os.environ.get("VAULT_KDF_MEMORY_COST", defaults.memory_cost)
            ),
            time_cost=int(
                os.environ.get("VAULT_KDF_TIME_COST", defaults.time_cost)
            ),
            parallelism=int(
                os.environ.get("VAULT_KDF_PARALLELISM", defaults.parallelism)
            ),
        )
        config = cls(
            kdf=kdf,
            cipher_backend=os.environ.get("VAULT_CIPHER_BACKEND", "aesgcm"),
            idle_timeout=int(os.environ.get("VAULT_IDLE_TIMEOUT", 900)),
            max_entries_per_account=int(
                os.environ.get("VAULT_MAX_ENTRIES", 1000)
            ),
            kdf_concurrency=int(os.environ.get("VAULT_KDF_CONCURRENCY", 2)),
        )
        logger.debug(
            "Vault config loaded: kdf=%s/%dKiB/t=%d/p=%d cipher=%s idle=%ds",
            kdf.algorithm, kdf.memory_cost, kdf.time_cost, kdf.parallelism,
            config.cipher_backend, config.idle_timeout,
        )
        return config
