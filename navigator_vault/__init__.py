"""Navigator Vault.

Encrypted, passphrase-protected storage of website credentials.
"""
from .version import __version__
from .conf import VaultConfig, KDFParams, KDFLimits
from .exceptions import (
    VaultError,
    ValidationError,
    WeakPassphrase,
    EmailTaken,
    AuthenticationFailure,
    NotFoundError,
    IOFailure,
    InvalidParameters,
    SessionLocked,
)
from .models import Account, AccountInfo, EntryView, VaultEntry
from .policy import check_passphrase, generate_passphrase, validate_passphrase
from .session import SessionState, VaultSession
from .storages import AbstractStorage, FileStorage, MemoryStorage
from .vault.store import CredentialStore

__all__ = (
    "__version__",
    "VaultConfig",
    "KDFParams",
    "KDFLimits",
    "VaultError",
    "ValidationError",
    "WeakPassphrase",
    "EmailTaken",
    "AuthenticationFailure",
    "NotFoundError",
    "IOFailure",
    "InvalidParameters",
    "SessionLocked",
    "Account",
    "AccountInfo",
    "EntryView",
    "VaultEntry",
    "check_passphrase",
    "generate_passphrase",
    "validate_passphrase",
    "SessionState",
    "VaultSession",
    "AbstractStorage",
    "FileStorage",
    "MemoryStorage",
    "CredentialStore",
)
