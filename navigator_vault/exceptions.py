"""
Vault Exceptions.

Security Note:
    Exception messages must never carry passphrases, keys, secrets or
    ciphertext. Only identifiers and field names are allowed.
"""
from typing import Optional


class VaultError(Exception):
    """Base class for every error raised by the vault core."""

    message: str = "Vault error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.message
        super().__init__(self.message)


class ValidationError(VaultError):
    """Bad input shape, reported to the caller."""

    message = "Invalid input"


class WeakPassphrase(ValidationError):
    """Passphrase does not satisfy the strength policy."""

    message = "Passphrase does not meet strength requirements"

    def __init__(self, missing: list[str]):
        self.missing = list(missing)
        super().__init__(
            f"{self.message}, missing: {', '.join(self.missing)}"
        )


class EmailTaken(ValidationError):
    """An account already exists for this email."""

    message = "An account with this email already exists"


class AuthenticationFailure(VaultError):
    """Wrong passphrase or tampered ciphertext.

    Both cases share one message so callers cannot tell them apart.
    """

    message = "Invalid credentials or corrupted vault data"

    def __init__(self):
        super().__init__(self.message)


class NotFoundError(VaultError):
    """Unknown account, entry or storage key."""

    message = "Not found"


class IOFailure(VaultError):
    """Persistence layer unavailable, the operation was aborted."""

    message = "Storage operation failed"


class InvalidParameters(VaultError):
    """KDF cost parameters are outside the configured safe range."""

    message = "Invalid key derivation parameters"


class SessionLocked(VaultError):
    """Operation attempted on a session that is not unlocked."""

    message = "Vault session is locked"
