"""
VaultSession — the Locked/Unlocked lifecycle of an account's vault.

A session is created Unlocked by a successful authentication and holds the
derived key in a private bytearray. Locking (explicitly, on logout, on
supersession or when the idle deadline passes) zeroes that bytearray in
place. A locked session never unlocks again: re-entry always goes through
authentication and yields a new session.

Security Note:
    The derived key is never persisted, logged or shown in ``repr``.
    ``bytes(key)`` copies handed to the cipher library cannot be wiped;
    this is an accepted limitation of a managed runtime.
"""
import uuid
import time
import logging
from enum import Enum
from typing import Callable, Optional

from .exceptions import SessionLocked
from .vault.crypto import AEADCipher

logger = logging.getLogger("navigator.vault")


class SessionState(str, Enum):
    LOCKED = "locked"
    UNLOCKED = "unlocked"


class VaultSession:
    """Unlocked vault bound to one account.

    Args:
        account_id: Owning account.
        key: Derived key; copied into a private bytearray.
        cipher_backend: AEAD backend used with the key.
        idle_timeout: Seconds of inactivity before auto-lock.
        clock: Time source returning seconds (``time.time`` by default).
    """

    def __init__(
        self,
        account_id: str,
        key: bytes,
        *,
        cipher_backend: str = "aesgcm",
        idle_timeout: int = 900,
        clock: Callable[[], float] = time.time,
        id: Optional[str] = None
    ) -> None:
        self._id_ = id or uuid.uuid4().hex
        self._account_id = account_id
        self._key = bytearray(key)
        self._backend = cipher_backend
        self._clock = clock
        self._idle_timeout = idle_timeout
        self._unlocked_at = clock()
        self._idle_deadline = self._unlocked_at + idle_timeout
        self._state = SessionState.UNLOCKED
        self._ended = False

    def __repr__(self) -> str:
        return (
            f'<NAV-Vault-Session [{self._state.value}, '
            f'account:{self._account_id}] id={self._id_}>'
        )

    # --- Properties ---

    @property
    def session_id(self) -> str:
        return self._id_

    @property
    def account_id(self) -> str:
        return self._account_id

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_unlocked(self) -> bool:
        return self._state is SessionState.UNLOCKED

    @property
    def unlocked_at(self) -> float:
        return self._unlocked_at

    @property
    def idle_timeout(self) -> int:
        return self._idle_timeout

    @property
    def idle_deadline(self) -> Optional[float]:
        return self._idle_deadline

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def expired(self) -> bool:
        """True when unlocked but past the idle deadline."""
        return self.is_unlocked and self._clock() >= self._idle_deadline

    # --- Transitions ---

    def touch(self) -> None:
        """Slide the idle deadline forward after a mutation."""
        if self.is_unlocked:
            self._idle_deadline = self._clock() + self._idle_timeout

    def lock(self) -> bool:
        """Wipe the key and move to Locked.

        Returns:
            True if the session was unlocked before the call.
        """
        was_unlocked = self.is_unlocked
        for i in range(len(self._key)):
            self._key[i] = 0
        self._key = bytearray()
        self._state = SessionState.LOCKED
        self._idle_deadline = None
        return was_unlocked

    def end(self) -> None:
        """Lock and mark the session as finished (logout)."""
        self.lock()
        self._ended = True

    # --- Key access for the credential store ---

    def _cipher(self) -> AEADCipher:
        if not self.is_unlocked:
            raise SessionLocked()
        return AEADCipher(self._key, self._backend)

    def _replace_key(self, key: bytes) -> None:
        """Swap in a new key after a successful passphrase change."""
        if not self.is_unlocked:
            raise SessionLocked()
        for i in range(len(self._key)):
            self._key[i] = 0
        self._key = bytearray(key)
