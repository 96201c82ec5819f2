"""
Vault KDF — Argon2id key derivation from a master passphrase.

The derived key is the only thing protecting the vault against offline
brute force, so there is no fallback to a cheaper hash: a missing
argon2-cffi installation is an import error, and costs outside the
configured limits raise ``InvalidParameters``.

Security Note:
    Never log the passphrase, salt or derived key.
"""
import os
import logging
from typing import Optional

from argon2.low_level import Type, hash_secret_raw
from argon2.exceptions import HashingError

from ..conf import KDF_ALGORITHM, KEY_LENGTH, SALT_SIZE, KDFLimits, KDFParams
from ..exceptions import InvalidParameters, ValidationError

logger = logging.getLogger("navigator.vault")


def generate_salt() -> bytes:
    """Return a fresh random salt for a new account."""
    return os.urandom(SALT_SIZE)


def check_params(params: KDFParams, limits: KDFLimits) -> None:
    """Reject KDF parameters outside the configured range.

    Raises:
        InvalidParameters: If the algorithm is unknown or any cost is out of
            ``limits``.
    """
    if params.algorithm != KDF_ALGORITHM:
        raise InvalidParameters(
            f"Unsupported KDF algorithm: {params.algorithm}"
        )
    if params.key_length != KEY_LENGTH:
        raise InvalidParameters(
            f"KDF key_length must be {KEY_LENGTH}, got {params.key_length}"
        )
    checks = (
        ("memory_cost", params.memory_cost,
         limits.min_memory_cost, limits.max_memory_cost),
        ("time_cost", params.time_cost,
         limits.min_time_cost, limits.max_time_cost),
        ("parallelism", params.parallelism,
         limits.min_parallelism, limits.max_parallelism),
    )
    for name, value, low, high in checks:
        if not low <= value <= high:
            raise InvalidParameters(
                f"KDF {name}={value} outside allowed range [{low}, {high}]"
            )
    # argon2 needs at least 8 KiB per lane
    if params.memory_cost < 8 * params.parallelism:
        raise InvalidParameters(
            f"KDF memory_cost must be at least 8 KiB per lane "
            f"({8 * params.parallelism})"
        )


def derive_key(
    passphrase: str,
    salt: bytes,
    params: KDFParams,
    limits: Optional[KDFLimits] = None,
) -> bytes:
    """Derive a fixed-length key from a passphrase using Argon2id.

    Deterministic: the same passphrase, salt and params always yield the
    same key.

    Args:
        passphrase: Master passphrase.
        salt: Per-account random salt.
        params: Argon2id cost parameters.
        limits: Accepted cost range, defaults to ``KDFLimits()``.

    Returns:
        ``params.key_length`` bytes of key material.

    Raises:
        InvalidParameters: If params are outside ``limits``.
        ValidationError: If passphrase or salt are empty.
    """
    check_params(params, limits or KDFLimits())
    if not passphrase:
        raise ValidationError("Passphrase cannot be empty")
    if len(salt) < 8:
        raise ValidationError("KDF salt must be at least 8 bytes")
    try:
        return hash_secret_raw(
            secret=passphrase.encode("utf-8"),
            salt=salt,
            time_cost=params.time_cost,
            memory_cost=params.memory_cost,
            parallelism=params.parallelism,
            hash_len=params.key_length,
            type=Type.ID,
        )
    except HashingError as err:
        raise InvalidParameters(f"Argon2 rejected parameters: {err}") from err
