"""Vault data model: accounts, persisted entries and decrypted views."""
import re
import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, SecretStr

from .conf import KDFParams
from .exceptions import ValidationError

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

MAX_FIELD_LENGTH = 255


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Opaque, globally unique identifier."""
    return uuid.uuid4().hex


def normalize_email(email: str) -> str:
    """Trim and lower-case an email, raising ValidationError if malformed."""
    if not isinstance(email, str):
        raise ValidationError("Email must be a string")
    normalized = email.strip().lower()
    if len(normalized) > MAX_FIELD_LENGTH or not _EMAIL_PATTERN.match(normalized):
        raise ValidationError("Invalid email address")
    return normalized


def clean_field(name: str, value: Any) -> str:
    """Validate a short, non-empty text field (website, username, name)."""
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be a string")
    value = value.strip()
    if not value:
        raise ValidationError(f"{name} cannot be empty")
    if len(value) > MAX_FIELD_LENGTH:
        raise ValidationError(
            f"{name} cannot exceed {MAX_FIELD_LENGTH} characters"
        )
    return value


class Account(BaseModel):
    """A registered vault owner.

    ``kdf_salt`` is fixed at creation. The verifier is a sealed known
    plaintext: opening it proves a derived key is correct.
    """

    id: str = Field(default_factory=new_id)
    display_name: str
    email: str
    kdf_salt: bytes
    kdf_params: KDFParams
    verifier_nonce: bytes
    verifier: bytes
    cipher_backend: str = "aesgcm"
    created_at: datetime = Field(default_factory=utcnow)

    model_config = {"frozen": True}

    def __repr__(self) -> str:
        return f"<Account id={self.id} email={self.email}>"

    def to_record(self) -> dict:
        return self.model_dump()

    @classmethod
    def from_record(cls, record: dict) -> "Account":
        return cls.model_validate(record)


class VaultEntry(BaseModel):
    """Persisted credential record. ``secret`` is ciphertext with tag."""

    id: str = Field(default_factory=new_id)
    account_id: str
    website: str
    username: str
    secret: bytes
    nonce: bytes
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = {"frozen": True}

    def __repr__(self) -> str:
        return f"<VaultEntry id={self.id} website={self.website}>"

    def to_record(self) -> dict:
        return self.model_dump()

    @classmethod
    def from_record(cls, record: dict) -> "VaultEntry":
        return cls.model_validate(record)


class EntryView(BaseModel):
    """Decrypted entry handed to callers; never carries ciphertext."""

    id: str
    account_id: str
    website: str
    username: str
    secret: SecretStr
    created_at: datetime
    updated_at: datetime

    model_config = {"frozen": True}


class AccountInfo(BaseModel):
    """Account summary for display."""

    id: str
    display_name: str
    email: str
    created_at: datetime
    entry_count: int
