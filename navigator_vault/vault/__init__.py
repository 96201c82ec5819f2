"""Vault Core — Argon2id key derivation and authenticated encryption.

Security Note (Threat Model):
    Decrypted secrets and the derived key exist in process memory while a
    session is unlocked. A memory dump of the application process could
    expose them. This is an accepted limitation; locking a session zeroes
    the key buffer it owns.
"""

from .kdf import derive_key, check_params, generate_salt
from .crypto import AEADCipher, Sealed, encode_document, decode_document

__all__ = [
    "derive_key",
    "check_params",
    "generate_salt",
    "AEADCipher",
    "Sealed",
    "encode_document",
    "decode_document",
]
