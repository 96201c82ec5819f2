"""
Tests for change_passphrase and the atomic vault re-key.

Tests cover:
- Successful passphrase change
- Wrong old passphrase and weak new passphrase
- Failure injected while re-sealing entry k of n
- Failed write of the re-keyed document
- Cancellation while the re-keyed document is written
- KDF cost upgrade on passphrase change
"""
import asyncio

import pytest

from navigator_vault import (
    AuthenticationFailure,
    IOFailure,
    KDFParams,
    SessionLocked,
    ValidationError,
    WeakPassphrase,
)
from navigator_vault.vault.crypto import AEADCipher, decode_document

from .conftest import NEW_PASSPHRASE, PASSPHRASE

EMAIL = "alice@example.com"
SECRETS = {f"site{i}.com": f"s3cr3t-{i}" for i in range(5)}


async def populated(store):
    await store.create_account("Alice", EMAIL, PASSPHRASE)
    session = await store.authenticate(EMAIL, PASSPHRASE)
    for website, secret in SECRETS.items():
        await store.add_entry(session, website, "alice", secret)
    return session


async def decrypted(store, passphrase):
    """Unlock with ``passphrase`` and decrypt every entry."""
    session = await store.authenticate(EMAIL, passphrase)
    entries = await store.list_entries(session)
    await store.lock(session)
    return {e.website: e.secret.get_secret_value() for e in entries}


class TestChangePassphrase:

    @pytest.mark.asyncio
    async def test_change_passphrase(self, store):
        session = await populated(store)
        await store.change_passphrase(session, PASSPHRASE, NEW_PASSPHRASE)

        # the current session keeps working with the new key
        assert session.is_unlocked
        await store.add_entry(session, "new.com", "alice", "fresh")
        assert len(await store.list_entries(session)) == len(SECRETS) + 1
        await store.lock(session)

        with pytest.raises(AuthenticationFailure):
            await store.authenticate(EMAIL, PASSPHRASE)
        secrets = await decrypted(store, NEW_PASSPHRASE)
        assert secrets == {**SECRETS, "new.com": "fresh"}

    @pytest.mark.asyncio
    async def test_salt_preserved(self, store, storage):
        session = await populated(store)
        before = decode_document(await storage.get(session.account_id))
        await store.change_passphrase(session, PASSPHRASE, NEW_PASSPHRASE)
        after = decode_document(await storage.get(session.account_id))
        assert before["account"]["kdf_salt"] == after["account"]["kdf_salt"]
        assert before["account"]["verifier"] != after["account"]["verifier"]

    @pytest.mark.asyncio
    async def test_wrong_old_passphrase(self, store):
        session = await populated(store)
        with pytest.raises(AuthenticationFailure):
            await store.change_passphrase(session, "N0t!thePass", NEW_PASSPHRASE)
        await store.lock(session)
        assert await decrypted(store, PASSPHRASE) == SECRETS

    @pytest.mark.asyncio
    async def test_weak_new_passphrase(self, store):
        session = await populated(store)
        with pytest.raises(WeakPassphrase) as err:
            await store.change_passphrase(session, PASSPHRASE, "weakpass")
        assert set(err.value.missing) == {"uppercase", "digit", "symbol"}

    @pytest.mark.asyncio
    async def test_same_passphrase_rejected(self, store):
        session = await populated(store)
        with pytest.raises(ValidationError):
            await store.change_passphrase(session, PASSPHRASE, PASSPHRASE)

    @pytest.mark.asyncio
    async def test_requires_unlocked_session(self, store):
        session = await populated(store)
        await store.lock(session)
        with pytest.raises(SessionLocked):
            await store.change_passphrase(session, PASSPHRASE, NEW_PASSPHRASE)

    @pytest.mark.asyncio
    async def test_empty_vault(self, store):
        await store.create_account("Alice", EMAIL, PASSPHRASE)
        session = await store.authenticate(EMAIL, PASSPHRASE)
        await store.change_passphrase(session, PASSPHRASE, NEW_PASSPHRASE)
        await store.lock(session)
        assert await decrypted(store, NEW_PASSPHRASE) == {}


class TestAtomicity:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fail_at", range(1, len(SECRETS) + 2))
    async def test_failure_mid_reseal(self, store, monkeypatch, fail_at):
        """A failure sealing entry k of n (or the verifier) changes nothing."""
        session = await populated(store)
        original = AEADCipher.seal
        calls = {"count": 0}

        def failing_seal(self, plaintext, associated_data=b""):
            calls["count"] += 1
            if calls["count"] == fail_at:
                raise RuntimeError("injected failure")
            return original(self, plaintext, associated_data)

        monkeypatch.setattr(AEADCipher, "seal", failing_seal)
        with pytest.raises(RuntimeError):
            await store.change_passphrase(session, PASSPHRASE, NEW_PASSPHRASE)
        monkeypatch.undo()

        # in-memory state still uses the old key
        listed = await store.list_entries(session)
        assert {e.website: e.secret.get_secret_value() for e in listed} == SECRETS
        await store.lock(session)

        # persisted state: everything under the old key, nothing under the new
        assert await decrypted(store, PASSPHRASE) == SECRETS
        with pytest.raises(AuthenticationFailure):
            await store.authenticate(EMAIL, NEW_PASSPHRASE)

        # recovery: retrying moves everything to the new key
        session = await store.authenticate(EMAIL, PASSPHRASE)
        await store.change_passphrase(session, PASSPHRASE, NEW_PASSPHRASE)
        await store.lock(session)
        assert await decrypted(store, NEW_PASSPHRASE) == SECRETS

    @pytest.mark.asyncio
    async def test_failed_write_keeps_old_key(self, store, storage):
        session = await populated(store)
        storage.fail_puts = True
        with pytest.raises(IOFailure):
            await store.change_passphrase(session, PASSPHRASE, NEW_PASSPHRASE)
        storage.fail_puts = False

        listed = await store.list_entries(session)
        assert len(listed) == len(SECRETS)
        await store.add_entry(session, "after.com", "alice", "later")
        await store.lock(session)

        assert await decrypted(store, PASSPHRASE) == {**SECRETS, "after.com": "later"}
        with pytest.raises(AuthenticationFailure):
            await store.authenticate(EMAIL, NEW_PASSPHRASE)

    @pytest.mark.asyncio
    async def test_cancelled_during_write(self, store, storage):
        """A change cancelled mid-write still finishes as one unit."""
        session = await populated(store)
        storage.gate = asyncio.Event()
        storage.writing = asyncio.Event()
        task = asyncio.create_task(
            store.change_passphrase(session, PASSPHRASE, NEW_PASSPHRASE)
        )
        await storage.writing.wait()
        task.cancel()
        storage.gate.set()
        with pytest.raises(asyncio.CancelledError):
            await task
        storage.gate = None

        # the session moved to the new key together with the stored vault
        await store.add_entry(session, "after.com", "alice", "later")
        await store.lock(session)
        assert await decrypted(store, NEW_PASSPHRASE) == {**SECRETS, "after.com": "later"}
        with pytest.raises(AuthenticationFailure):
            await store.authenticate(EMAIL, PASSPHRASE)


class TestCostUpgrade:

    @pytest.mark.asyncio
    async def test_new_params_applied(self, store, storage):
        session = await populated(store)
        stronger = KDFParams(memory_cost=128, time_cost=2, parallelism=1)
        store.config = store.config.model_copy(update={"kdf": stronger})

        await store.change_passphrase(session, PASSPHRASE, NEW_PASSPHRASE)
        document = decode_document(await storage.get(session.account_id))
        assert document["account"]["kdf_params"]["memory_cost"] == 128
        assert document["account"]["kdf_params"]["time_cost"] == 2
        await store.lock(session)
        assert await decrypted(store, NEW_PASSPHRASE) == SECRETS

    @pytest.mark.asyncio
    async def test_old_accounts_keep_their_params(self, store, storage):
        session = await populated(store)
        await store.lock(session)
        stronger = KDFParams(memory_cost=128, time_cost=2, parallelism=1)
        store.config = store.config.model_copy(update={"kdf": stronger})
        assert await decrypted(store, PASSPHRASE) == SECRETS
