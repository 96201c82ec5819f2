"""Passphrase strength policy and random passphrase generation."""
import string
import secrets

from .conf import PASSPHRASE_SYMBOLS
from .exceptions import WeakPassphrase

MIN_LENGTH = 8

_CLASSES = (
    ("uppercase", string.ascii_uppercase),
    ("lowercase", string.ascii_lowercase),
    ("digit", string.digits),
    ("symbol", PASSPHRASE_SYMBOLS),
)


def check_passphrase(passphrase: str) -> list[str]:
    """Return the requirements a passphrase is missing (empty when strong).

    Requirement names: ``length``, ``uppercase``, ``lowercase``, ``digit``,
    ``symbol``.
    """
    missing = []
    if len(passphrase) < MIN_LENGTH:
        missing.append("length")
    for name, charset in _CLASSES:
        if not any(ch in charset for ch in passphrase):
            missing.append(name)
    return missing


def validate_passphrase(passphrase: str) -> None:
    """Raise WeakPassphrase listing every missing requirement."""
    if not isinstance(passphrase, str):
        raise WeakPassphrase(["length"])
    missing = check_passphrase(passphrase)
    if missing:
        raise WeakPassphrase(missing)


def generate_passphrase(length: int = 16) -> str:
    """Generate a random passphrase that satisfies the policy.

    Args:
        length: Total length, at least one character per class.

    Returns:
        Random passphrase drawn with ``secrets``.
    """
    if length < max(MIN_LENGTH, len(_CLASSES)):
        raise ValueError(f"length must be at least {MIN_LENGTH}")
    alphabet = "".join(charset for _, charset in _CLASSES)
    # one character from each class, the rest from the full alphabet
    chars = [secrets.choice(charset) for _, charset in _CLASSES]
    chars += [secrets.choice(alphabet) for _ in range(length - len(chars))]
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)
