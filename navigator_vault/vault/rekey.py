"""
Vault Re-key — re-encryption of a whole vault under a new passphrase key.

Every entry is opened with the old key and sealed again with the new one
into fresh objects, together with a new verifier. Nothing is written here:
the caller persists the returned document with a single atomic put and only
then swaps its in-memory state. A failure on any entry aborts the whole
operation, so a vault is never left with entries under two keys.

Security Note:
    Plaintext exists in memory only during re-encryption of each entry.
    Never log plaintext or ciphertext values.
"""
import logging
from collections.abc import Sequence

from ..conf import KDFParams
from ..models import Account, VaultEntry
from .crypto import AEADCipher, entry_context, seal_verifier

logger = logging.getLogger("navigator.vault")


def rekey_vault(
    account: Account,
    entries: Sequence[VaultEntry],
    old_cipher: AEADCipher,
    new_cipher: AEADCipher,
    new_params: KDFParams,
) -> tuple[Account, list[VaultEntry]]:
    """Re-seal every entry and the verifier under ``new_cipher``.

    Args:
        account: Current account record.
        entries: Current entries, sealed under ``old_cipher``.
        old_cipher: Cipher bound to the current key.
        new_cipher: Cipher bound to the replacement key.
        new_params: KDF params the replacement key was derived with.

    Returns:
        Tuple of (new_account, new_entries). Inputs are left untouched.

    Raises:
        AuthenticationFailure: If any entry fails to open under the old key.
    """
    logger.info(
        "Starting re-key of account=%s (%d entries)", account.id, len(entries),
    )
    rekeyed: list[VaultEntry] = []
    for entry in entries:
        context = entry_context(account.id, entry.id)
        plaintext = old_cipher.open(entry.nonce, entry.secret, context)
        sealed = new_cipher.seal(plaintext, context)
        rekeyed.append(
            entry.model_copy(
                update={"secret": sealed.ciphertext, "nonce": sealed.nonce}
            )
        )
    verifier = seal_verifier(new_cipher, account.id)
    new_account = account.model_copy(
        update={
            "kdf_params": new_params,
            "verifier_nonce": verifier.nonce,
            "verifier": verifier.ciphertext,
        }
    )
    logger.info(
        "Re-key prepared for account=%s: %d entries", account.id, len(rekeyed),
    )
    return new_account, rekeyed
