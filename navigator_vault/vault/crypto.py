"""
Vault Crypto Core — authenticated encryption and document serialization.

Every secret is sealed with AES-256-GCM (or ChaCha20-Poly1305) under the
key derived from the account passphrase:
    seal(plaintext, associated_data) → Sealed(nonce, ciphertext + tag)

Nonces are never supplied by callers. Each one is a process-wide 32-bit
counter followed by 8 random bytes, so two seals in the same process
never repeat a nonce and independent processes collide with negligible
probability.

Security Note:
    Never log plaintext, ciphertext or key values.
    ``open`` fails closed: any failure raises AuthenticationFailure and
    no partial plaintext is ever returned.
"""
import os
import base64
import struct
import logging
import threading
from typing import Any, NamedTuple, Union

import orjson
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from ..conf import KEY_LENGTH
from ..exceptions import AuthenticationFailure, ValidationError

logger = logging.getLogger("navigator.vault")

NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16
COUNTER_SIZE = 4  # uint32 big-endian
DOCUMENT_FORMAT = 1

_BYTES_WRAPPER_KEY = "__vault_bytes_b64__"

_CIPHERS = {
    "aesgcm": AESGCM,
    "chacha20": ChaCha20Poly1305,
}


class Sealed(NamedTuple):
    """Output of a seal: the generated nonce and ciphertext with tag."""

    nonce: bytes
    ciphertext: bytes


# ---------------------------------------------------------------------------
# Nonce generation
# ---------------------------------------------------------------------------

class _NonceSequence:
    """Process-wide nonce source: [counter 4B][random 8B]."""

    def __init__(self):
        self._lock = threading.Lock()
        self._counter = 0

    def next(self) -> bytes:
        with self._lock:
            self._counter = (self._counter + 1) & 0xFFFFFFFF
            counter = self._counter
        return struct.pack("!I", counter) + os.urandom(NONCE_SIZE - COUNTER_SIZE)


_nonces = _NonceSequence()


def _get_cipher_cls(backend: str) -> type:
    """Return the AEAD cipher class for a backend name."""
    try:
        return _CIPHERS[backend.lower()]
    except KeyError:
        raise ValidationError(f"Unsupported cipher backend: {backend}") from None


# ---------------------------------------------------------------------------
# AEAD cipher
# ---------------------------------------------------------------------------

class AEADCipher:
    """Authenticated cipher bound to a single key.

    Args:
        key: 32-byte symmetric key (bytes or bytearray).
        backend: ``aesgcm`` or ``chacha20``.
    """

    def __init__(self, key: Union[bytes, bytearray], backend: str = "aesgcm"):
        if len(key) != KEY_LENGTH:
            raise ValidationError(
                f"Cipher key must be {KEY_LENGTH} bytes, got {len(key)}"
            )
        self._aead = _get_cipher_cls(backend)(bytes(key))
        self.backend = backend.lower()

    def __repr__(self) -> str:
        return f"<AEADCipher backend={self.backend}>"

    def seal(self, plaintext: bytes, associated_data: bytes = b"") -> Sealed:
        """Encrypt and authenticate plaintext under a fresh nonce.

        Args:
            plaintext: Data to encrypt.
            associated_data: Authenticated but unencrypted context.

        Returns:
            Sealed(nonce, ciphertext) where ciphertext carries the 16-byte tag.
        """
        nonce = _nonces.next()
        ct = self._aead.encrypt(nonce, plaintext, associated_data)
        return Sealed(nonce, ct)

    def open(
        self,
        nonce: bytes,
        ciphertext: bytes,
        associated_data: bytes = b"",
    ) -> bytes:
        """Verify and decrypt a sealed payload.

        Raises:
            AuthenticationFailure: On any tag mismatch, wrong key or AD,
                or malformed nonce/ciphertext.
        """
        if len(nonce) != NONCE_SIZE or len(ciphertext) < TAG_SIZE:
            raise AuthenticationFailure()
        try:
            return self._aead.decrypt(nonce, ciphertext, associated_data)
        except InvalidTag:
            raise AuthenticationFailure() from None


def entry_context(account_id: str, entry_id: str) -> bytes:
    """Associated data binding a secret to its account and entry."""
    return f"navigator-vault:entry:{account_id}:{entry_id}".encode("utf-8")


def verifier_context(account_id: str) -> bytes:
    """Associated data binding the verifier to its account."""
    return f"navigator-vault:verifier:{account_id}".encode("utf-8")


VERIFIER_PLAINTEXT = b"navigator-vault:verifier:v1"


def seal_verifier(cipher: AEADCipher, account_id: str) -> Sealed:
    """Seal the known plaintext used to check a derived key."""
    return cipher.seal(VERIFIER_PLAINTEXT, verifier_context(account_id))


def check_verifier(
    cipher: AEADCipher, account_id: str, nonce: bytes, verifier: bytes
) -> None:
    """Open an account verifier.

    Raises:
        AuthenticationFailure: If the key is wrong or the verifier was
            tampered with.
    """
    plaintext = cipher.open(nonce, verifier, verifier_context(account_id))
    if plaintext != VERIFIER_PLAINTEXT:
        raise AuthenticationFailure()


# ---------------------------------------------------------------------------
# Document serialization
# ---------------------------------------------------------------------------

def _wrap_bytes(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return {_BYTES_WRAPPER_KEY: base64.b64encode(value).decode("ascii")}
    if isinstance(value, dict):
        return {k: _wrap_bytes(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_wrap_bytes(v) for v in value]
    return value


def _unwrap_bytes(value: Any) -> Any:
    if isinstance(value, dict):
        if _BYTES_WRAPPER_KEY in value and len(value) == 1:
            return base64.b64decode(value[_BYTES_WRAPPER_KEY])
        return {k: _unwrap_bytes(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_unwrap_bytes(v) for v in value]
    return value


def encode_document(document: dict) -> bytes:
    """Serialize a persisted document to bytes.

    bytes values are wrapped as {"__vault_bytes_b64__": "<base64>"} for a
    safe JSON round-trip; datetimes are written as RFC 3339 strings.

    Args:
        document: Mapping of JSON-compatible values, bytes and datetimes.

    Returns:
        orjson-encoded bytes.
    """
    payload = {"format": DOCUMENT_FORMAT, **document}
    return orjson.dumps(_wrap_bytes(payload))


def decode_document(data: bytes) -> dict:
    """Deserialize a persisted document.

    Raises:
        ValidationError: If the blob is not a vault document this version
            understands.
    """
    try:
        parsed = orjson.loads(data)
    except orjson.JSONDecodeError as err:
        raise ValidationError("Stored vault document is not valid JSON") from err
    if not isinstance(parsed, dict):
        raise ValidationError("Stored vault document must be an object")
    version = parsed.pop("format", None)
    if version != DOCUMENT_FORMAT:
        raise ValidationError(
            f"Unsupported vault document format: {version!r}"
        )
    try:
        return _unwrap_bytes(parsed)
    except (ValueError, TypeError) as err:
        raise ValidationError("Stored vault document is malformed") from err
