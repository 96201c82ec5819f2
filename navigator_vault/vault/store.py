"""
CredentialStore — accounts and encrypted website credentials.

Provides the public API of the vault core:
- ``create_account()`` / ``authenticate()`` — register and unlock
- ``add_entry()`` / ``update_entry()`` / ``delete_entry()`` — mutate
- ``get_entry()`` / ``list_entries()`` / ``account_info()`` — read
- ``change_passphrase()`` — atomic re-key of the whole vault
- ``lock()`` / ``logout()`` / ``sweep()`` — end or expire sessions
- ``delete_account()`` — remove an account and every entry it owns

Each account is persisted as one document (account record plus entries)
under its id; a second document under ``_index`` maps normalized emails to
account ids. Every mutation writes the whole account document with a
single ``put`` and swaps in-memory state only after the write succeeds.

Mutations and unlocks of one account are serialized by a per-account
asyncio lock; email index updates are serialized by a registry lock that
is never held while Argon2 runs. Argon2 runs in worker threads, bounded
by a semaphore. A write and the in-memory swap that follows it finish
together even when the caller is cancelled.

Security Note:
    Never log passphrases, keys, plaintext or ciphertext values. Only log
    account ids, entry ids and operations.
"""
import time
import asyncio
import logging
from collections.abc import Callable
from typing import Optional

from pydantic import SecretStr
from pydantic import ValidationError as ModelValidationError

from ..conf import VaultConfig, KDFParams
from ..exceptions import (
    AuthenticationFailure,
    EmailTaken,
    IOFailure,
    NotFoundError,
    SessionLocked,
    ValidationError,
)
from ..models import (
    Account,
    AccountInfo,
    EntryView,
    VaultEntry,
    clean_field,
    new_id,
    normalize_email,
    utcnow,
)
from ..policy import validate_passphrase
from ..session import VaultSession
from ..storages.abstract import AbstractStorage
from .crypto import (
    AEADCipher,
    check_verifier,
    decode_document,
    encode_document,
    entry_context,
    seal_verifier,
)
from .kdf import check_params, derive_key, generate_salt
from .rekey import rekey_vault

logger = logging.getLogger("navigator.vault")

_INDEX_KEY = "_index"
_MAX_SECRET_LENGTH = 4096
_SORT_FIELDS = ("website", "username", "created_at", "updated_at")


class _VaultState:
    """Decoded document of an unlocked account."""

    __slots__ = ("account", "entries")

    def __init__(self, account: Account, entries: dict[str, VaultEntry]):
        self.account = account
        self.entries = entries


class CredentialStore:
    """Encrypted credential vault over a blob storage backend.

    Args:
        storage: Persistence backend.
        config: Vault settings, defaults to ``VaultConfig()``.
        clock: Time source for idle deadlines.

    Raises:
        InvalidParameters: If the configured KDF costs are outside the
            configured limits. This is fatal at startup.
    """

    def __init__(
        self,
        storage: AbstractStorage,
        config: Optional[VaultConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._storage = storage
        self.config = config or VaultConfig()
        check_params(self.config.kdf, self.config.kdf_limits)
        self._clock = clock
        self._sessions: dict[str, VaultSession] = {}
        self._states: dict[str, _VaultState] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._registry_lock = asyncio.Lock()
        self._kdf_slots = asyncio.Semaphore(self.config.kdf_concurrency)

    def __repr__(self) -> str:
        return (
            f"<CredentialStore storage={type(self._storage).__name__} "
            f"sessions={len(self._sessions)}>"
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lock_for(self, account_id: str) -> asyncio.Lock:
        return self._locks.setdefault(account_id, asyncio.Lock())

    async def _derive(
        self, passphrase: str, salt: bytes, params: KDFParams
    ) -> bytes:
        """Run Argon2 off the event loop."""
        async with self._kdf_slots:
            return await asyncio.to_thread(
                derive_key, passphrase, salt, params, self.config.kdf_limits,
            )

    async def _load_index(self) -> dict[str, str]:
        try:
            data = await self._storage.get(_INDEX_KEY)
        except NotFoundError:
            return {}
        return dict(decode_document(data).get("accounts", {}))

    async def _save_index(self, index: dict[str, str]) -> None:
        await self._storage.put(_INDEX_KEY, encode_document({"accounts": index}))

    async def _load_document(
        self, account_id: str
    ) -> tuple[Account, dict[str, VaultEntry]]:
        data = await self._storage.get(account_id)
        document = decode_document(data)
        try:
            account = Account.from_record(document["account"])
            entries = [
                VaultEntry.from_record(record)
                for record in document.get("entries", [])
            ]
        except (KeyError, ModelValidationError) as err:
            raise ValidationError(
                f"Stored document for account {account_id} is malformed"
            ) from err
        if account.id != account_id or any(
            e.account_id != account_id for e in entries
        ):
            raise ValidationError(
                f"Stored document for account {account_id} is inconsistent"
            )
        return account, {e.id: e for e in entries}

    def _encode(self, account: Account, entries: dict[str, VaultEntry]) -> bytes:
        return encode_document({
            "account": account.to_record(),
            "entries": [e.to_record() for e in entries.values()],
        })

    async def _run_to_completion(self, coro):
        """Await ``coro`` as one unit that caller cancellation cannot split.

        If the caller is cancelled, the unit still finishes before the
        cancellation propagates, so the held locks are released only once
        storage and memory agree again.
        """
        task = asyncio.ensure_future(coro)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            await asyncio.wait({task})
            if not task.cancelled() and task.exception() is not None:
                logger.error(
                    "Vault write of a cancelled call failed: %s",
                    task.exception(),
                )
            raise

    async def _commit(
        self,
        state: _VaultState,
        account: Account,
        entries: dict[str, VaultEntry],
        session: Optional[VaultSession] = None,
        new_key: Optional[bytes] = None,
    ) -> None:
        """Persist a new document, then swap it into memory.

        The put, the swap and the session update (new key, idle deadline)
        run to completion together even when the caller is cancelled.
        """
        async def persist():
            await self._storage.put(account.id, self._encode(account, entries))
            state.account = account
            state.entries = entries
            if session is not None and session.is_unlocked:
                if new_key is not None:
                    session._replace_key(new_key)
                session.touch()

        await self._run_to_completion(persist())

    def _require(self, session: VaultSession) -> _VaultState:
        """Return the state of an unlocked session owned by this store.

        Raises:
            SessionLocked: If the session is locked, expired, superseded or
                unknown to this store.
        """
        if not isinstance(session, VaultSession):
            raise ValidationError("A VaultSession is required")
        if session.expired:
            self._expire(session)
            raise SessionLocked()
        if (
            not session.is_unlocked
            or self._sessions.get(session.account_id) is not session
        ):
            raise SessionLocked()
        return self._states[session.account_id]

    def _release(self, session: VaultSession) -> bool:
        """Lock a session and drop its decoded state."""
        if self._sessions.get(session.account_id) is session:
            del self._sessions[session.account_id]
            self._states.pop(session.account_id, None)
        return session.lock()

    def _expire(self, session: VaultSession) -> None:
        self._release(session)
        logger.warning(
            "Vault session idle timeout: account=%s session=%s locked",
            session.account_id, session.session_id,
        )

    async def _verify_passphrase(
        self, account: Account, passphrase: str
    ) -> bytes:
        """Derive the key for ``passphrase`` and check it against the verifier."""
        if not isinstance(passphrase, str) or not passphrase:
            raise AuthenticationFailure()
        check_params(account.kdf_params, self.config.kdf_limits)
        key = await self._derive(passphrase, account.kdf_salt, account.kdf_params)
        cipher = AEADCipher(key, account.cipher_backend)
        check_verifier(cipher, account.id, account.verifier_nonce, account.verifier)
        return key

    def _clean_secret(self, secret: str) -> str:
        if not isinstance(secret, str) or not secret:
            raise ValidationError("secret cannot be empty")
        if len(secret) > _MAX_SECRET_LENGTH:
            raise ValidationError(
                f"secret cannot exceed {_MAX_SECRET_LENGTH} characters"
            )
        return secret

    def _open_view(self, cipher: AEADCipher, entry: VaultEntry) -> EntryView:
        plaintext = cipher.open(
            entry.nonce, entry.secret, entry_context(entry.account_id, entry.id),
        )
        return EntryView(
            id=entry.id,
            account_id=entry.account_id,
            website=entry.website,
            username=entry.username,
            secret=SecretStr(plaintext.decode("utf-8")),
            created_at=entry.created_at,
            updated_at=entry.updated_at,
        )

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def create_account(
        self, display_name: str, email: str, passphrase: str
    ) -> Account:
        """Register a new account with an empty vault.

        Args:
            display_name: Name shown to the user.
            email: Login email, unique case-insensitively.
            passphrase: Master passphrase, must satisfy the strength policy.

        Returns:
            The persisted Account.

        Raises:
            ValidationError: If display name or email are malformed.
            WeakPassphrase: If the passphrase fails the policy.
            EmailTaken: If an account already uses this email.
            IOFailure: If the account could not be persisted.
        """
        display_name = clean_field("display_name", display_name)
        email = normalize_email(email)
        validate_passphrase(passphrase)

        if email in await self._load_index():
            raise EmailTaken()

        account_id = new_id()
        params = self.config.kdf
        salt = generate_salt()
        key = await self._derive(passphrase, salt, params)
        cipher = AEADCipher(key, self.config.cipher_backend)
        verifier = seal_verifier(cipher, account_id)
        account = Account(
            id=account_id,
            display_name=display_name,
            email=email,
            kdf_salt=salt,
            kdf_params=params,
            verifier_nonce=verifier.nonce,
            verifier=verifier.ciphertext,
            cipher_backend=self.config.cipher_backend,
        )

        async with self._registry_lock:
            # the email may have been taken while the key was derived
            index = await self._load_index()
            if email in index:
                raise EmailTaken()
            index[email] = account.id
            await self._run_to_completion(self._register(account, index))

        logger.info("Vault account created: account=%s", account.id)
        return account

    async def _register(self, account: Account, index: dict[str, str]) -> None:
        """Write a new account document, then the index pointing to it."""
        await self._storage.put(account.id, self._encode(account, {}))
        try:
            await self._save_index(index)
        except IOFailure:
            try:
                await self._storage.delete(account.id)
            except (IOFailure, NotFoundError) as err:
                logger.error(
                    "Could not remove orphan document of account=%s: %s",
                    account.id, err,
                )
            raise

    async def authenticate(self, email: str, passphrase: str) -> VaultSession:
        """Unlock the vault of the account registered under ``email``.

        A successful unlock locks any earlier session of the same account.

        Returns:
            A new Unlocked VaultSession.

        Raises:
            NotFoundError: If no account uses this email.
            AuthenticationFailure: If the passphrase is wrong or the
                verifier was tampered with.
            InvalidParameters: If the stored KDF costs are out of range.
        """
        email = normalize_email(email)
        index = await self._load_index()
        account_id = index.get(email)
        if account_id is None:
            raise NotFoundError("Account not found")

        async with self._lock_for(account_id):
            account, entries = await self._load_document(account_id)
            try:
                key = await self._verify_passphrase(account, passphrase)
            except AuthenticationFailure:
                logger.warning("Vault unlock failed: account=%s", account_id)
                raise

            previous = self._sessions.get(account_id)
            if previous is not None:
                self._release(previous)
                logger.info(
                    "Vault session superseded: account=%s session=%s",
                    account_id, previous.session_id,
                )
            session = VaultSession(
                account_id,
                key,
                cipher_backend=account.cipher_backend,
                idle_timeout=self.config.idle_timeout,
                clock=self._clock,
            )
            self._sessions[account_id] = session
            self._states[account_id] = _VaultState(account, entries)

        logger.info(
            "Vault unlocked: account=%s session=%s (%d entries)",
            account_id, session.session_id, len(entries),
        )
        return session

    async def account_info(self, session: VaultSession) -> AccountInfo:
        """Summary of the session's account."""
        state = self._require(session)
        account = state.account
        return AccountInfo(
            id=account.id,
            display_name=account.display_name,
            email=account.email,
            created_at=account.created_at,
            entry_count=len(state.entries),
        )

    async def delete_account(self, session: VaultSession, passphrase: str) -> None:
        """Delete the session's account and every entry it owns.

        The passphrase is confirmed again before anything is removed.

        Raises:
            SessionLocked: If the session is not unlocked.
            AuthenticationFailure: If the passphrase is wrong.
            IOFailure: If storage could not be updated.
        """
        self._require(session)
        account_id = session.account_id
        async with self._lock_for(account_id):
            state = self._require(session)
            account = state.account
            await self._verify_passphrase(account, passphrase)

            async with self._registry_lock:
                await self._run_to_completion(self._unregister(account))
            self._release(session)
            session.end()
        self._locks.pop(account_id, None)

        logger.info("Vault account deleted: account=%s", account_id)

    async def _unregister(self, account: Account) -> None:
        """Drop an account from the index, then remove its document."""
        index = await self._load_index()
        index.pop(account.email, None)
        await self._save_index(index)
        try:
            await self._storage.delete(account.id)
        except IOFailure:
            index[account.email] = account.id
            try:
                await self._save_index(index)
            except IOFailure as err:
                logger.error(
                    "Document of account=%s is kept but no longer indexed: %s",
                    account.id, err,
                )
            raise
        except NotFoundError:
            logger.warning(
                "Document of account=%s was already gone", account.id,
            )

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    async def add_entry(
        self,
        session: VaultSession,
        website: str,
        username: str,
        secret: str,
    ) -> EntryView:
        """Seal and persist a new credential.

        Raises:
            SessionLocked: If the session is not unlocked.
            ValidationError: On empty fields or a full vault.
            IOFailure: If the vault could not be persisted.
        """
        self._require(session)
        website = clean_field("website", website)
        username = clean_field("username", username)
        secret = self._clean_secret(secret)

        async with self._lock_for(session.account_id):
            state = self._require(session)
            if len(state.entries) >= self.config.max_entries_per_account:
                raise ValidationError(
                    "Max entries per account "
                    f"({self.config.max_entries_per_account}) exceeded"
                )
            entry_id = new_id()
            sealed = session._cipher().seal(
                secret.encode("utf-8"),
                entry_context(session.account_id, entry_id),
            )
            now = utcnow()
            entry = VaultEntry(
                id=entry_id,
                account_id=session.account_id,
                website=website,
                username=username,
                secret=sealed.ciphertext,
                nonce=sealed.nonce,
                created_at=now,
                updated_at=now,
            )
            entries = {**state.entries, entry.id: entry}
            await self._commit(state, state.account, entries, session)

        logger.debug(
            "Vault entry added: account=%s entry=%s", session.account_id, entry.id,
        )
        return EntryView(
            id=entry.id,
            account_id=entry.account_id,
            website=entry.website,
            username=entry.username,
            secret=SecretStr(secret),
            created_at=entry.created_at,
            updated_at=entry.updated_at,
        )

    async def update_entry(
        self,
        session: VaultSession,
        entry_id: str,
        website: Optional[str] = None,
        username: Optional[str] = None,
        secret: Optional[str] = None,
    ) -> EntryView:
        """Change fields of an entry; a new secret gets a fresh nonce.

        Raises:
            SessionLocked: If the session is not unlocked.
            NotFoundError: If the entry does not exist.
            ValidationError: If no field is given or a field is empty.
        """
        self._require(session)
        updates: dict = {}
        if website is not None:
            updates["website"] = clean_field("website", website)
        if username is not None:
            updates["username"] = clean_field("username", username)
        if secret is not None:
            secret = self._clean_secret(secret)
        if not updates and secret is None:
            raise ValidationError("Nothing to update")

        async with self._lock_for(session.account_id):
            state = self._require(session)
            entry = state.entries.get(entry_id)
            if entry is None:
                raise NotFoundError(f"Entry {entry_id} not found")
            cipher = session._cipher()
            if secret is not None:
                sealed = cipher.seal(
                    secret.encode("utf-8"),
                    entry_context(session.account_id, entry_id),
                )
                updates["secret"] = sealed.ciphertext
                updates["nonce"] = sealed.nonce
            updates["updated_at"] = utcnow()
            updated = entry.model_copy(update=updates)
            entries = dict(state.entries)
            entries[entry_id] = updated
            await self._commit(state, state.account, entries, session)

        logger.debug(
            "Vault entry updated: account=%s entry=%s", session.account_id, entry_id,
        )
        return self._open_view(cipher, updated)

    async def delete_entry(self, session: VaultSession, entry_id: str) -> None:
        """Hard-delete an entry.

        Raises:
            SessionLocked: If the session is not unlocked.
            NotFoundError: If the entry does not exist.
        """
        self._require(session)
        async with self._lock_for(session.account_id):
            state = self._require(session)
            if entry_id not in state.entries:
                raise NotFoundError(f"Entry {entry_id} not found")
            entries = {
                key: entry for key, entry in state.entries.items()
                if key != entry_id
            }
            await self._commit(state, state.account, entries, session)

        logger.debug(
            "Vault entry deleted: account=%s entry=%s", session.account_id, entry_id,
        )

    async def get_entry(self, session: VaultSession, entry_id: str) -> EntryView:
        """Decrypt a single entry."""
        state = self._require(session)
        entry = state.entries.get(entry_id)
        if entry is None:
            raise NotFoundError(f"Entry {entry_id} not found")
        return self._open_view(session._cipher(), entry)

    async def list_entries(
        self,
        session: VaultSession,
        search: Optional[str] = None,
        sort_by: Optional[str] = None,
    ) -> list[EntryView]:
        """Decrypt the session's entries.

        Args:
            session: Unlocked session.
            search: Case-insensitive substring matched against website
                and username.
            sort_by: One of ``website``, ``username``, ``created_at``,
                ``updated_at``; insertion order when omitted.

        Returns:
            List of decrypted entry views.

        Raises:
            SessionLocked: If the session is not unlocked.
            AuthenticationFailure: If any stored secret fails to open.
        """
        state = self._require(session)
        if sort_by is not None and sort_by not in _SORT_FIELDS:
            raise ValidationError(f"Cannot sort entries by {sort_by!r}")
        entries = list(state.entries.values())
        if search:
            needle = search.strip().lower()
            entries = [
                e for e in entries
                if needle in e.website.lower() or needle in e.username.lower()
            ]
        if sort_by in ("website", "username"):
            entries.sort(key=lambda e: getattr(e, sort_by).lower())
        elif sort_by is not None:
            entries.sort(key=lambda e: getattr(e, sort_by))
        cipher = session._cipher()
        return [self._open_view(cipher, e) for e in entries]

    # ------------------------------------------------------------------
    # Passphrase change
    # ------------------------------------------------------------------

    async def change_passphrase(
        self,
        session: VaultSession,
        old_passphrase: str,
        new_passphrase: str,
    ) -> None:
        """Re-key the whole vault under a new passphrase.

        Every entry and the verifier are re-sealed before anything is
        written; the new document replaces the old one with one atomic put.
        On any failure the vault still opens with the old passphrase. The
        new key is derived with the currently configured KDF costs.

        Raises:
            SessionLocked: If the session is not unlocked.
            WeakPassphrase: If the new passphrase fails the policy.
            AuthenticationFailure: If the old passphrase is wrong.
            IOFailure: If the new document could not be persisted.
        """
        self._require(session)
        validate_passphrase(new_passphrase)
        if new_passphrase == old_passphrase:
            raise ValidationError("New passphrase must differ from the old one")

        async with self._lock_for(session.account_id):
            state = self._require(session)
            account = state.account
            try:
                old_key = await self._verify_passphrase(account, old_passphrase)
            except AuthenticationFailure:
                logger.warning(
                    "Passphrase change refused: account=%s", account.id,
                )
                raise
            new_params = self.config.kdf
            new_key = await self._derive(
                new_passphrase, account.kdf_salt, new_params,
            )
            new_account, new_entries = rekey_vault(
                account,
                list(state.entries.values()),
                AEADCipher(old_key, account.cipher_backend),
                AEADCipher(new_key, account.cipher_backend),
                new_params,
            )
            await self._commit(
                state,
                new_account,
                {e.id: e for e in new_entries},
                session,
                new_key=new_key,
            )

        logger.info("Vault passphrase changed: account=%s", account.id)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def lock(self, session: VaultSession) -> None:
        """Lock a session and wipe its key."""
        if self._release(session):
            logger.info(
                "Vault locked: account=%s session=%s",
                session.account_id, session.session_id,
            )

    async def logout(self, session: VaultSession) -> None:
        """Lock a session and mark it as ended."""
        await self.lock(session)
        session.end()
        logger.info(
            "Vault logout: account=%s session=%s",
            session.account_id, session.session_id,
        )

    async def sweep(self) -> int:
        """Lock every session past its idle deadline.

        Returns:
            Number of sessions locked.
        """
        expired = [s for s in self._sessions.values() if s.expired]
        for session in expired:
            self._expire(session)
        return len(expired)

    def is_active(self, session: VaultSession) -> bool:
        """True when the session is the unlocked, current one of its account."""
        return (
            session.is_unlocked
            and not session.expired
            and self._sessions.get(session.account_id) is session
        )
