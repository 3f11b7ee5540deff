"""
Vault Key Rotation — Re-encryption of the card catalog under a new master key.

Re-encrypts every seed and password of the primary catalog and its backup
from one master key version to another. The operation is idempotent: cards
already at the target key version are skipped. Both catalogs are written in
a single property update once every card has been processed.

Security Note:
    Plaintext exists in memory only during re-encryption of each card.
    Never log plaintext or ciphertext values.
"""
import logging
from typing import Optional

from ..catalog import BACKUP_KEY, CATALOG_KEY, dump_cards, load_cards
from ..models import Card
from ..storage import PropertyStore
from .crypto import MasterCipher

logger = logging.getLogger("totp_vault")


def _reencrypt(
    value: Optional[str], old_cipher: MasterCipher, new_cipher: MasterCipher
) -> Optional[str]:
    if not value:
        return value
    return new_cipher.encrypt(old_cipher.decrypt(value))


def _rotate_cards(
    cards: list[Card],
    old_cipher: MasterCipher,
    new_cipher: MasterCipher,
    stats: dict,
) -> None:
    for card in cards:
        stats["total"] += 1
        try:
            if new_cipher.key_id_of(card.encrypted_seed) == new_cipher.key_id:
                stats["skipped"] += 1
                continue
            seed = _reencrypt(card.encrypted_seed, old_cipher, new_cipher)
            password = _reencrypt(card.encrypted_password, old_cipher, new_cipher)
            card.encrypted_seed = seed
            card.encrypted_password = password
            stats["rotated"] += 1
        except Exception as err:
            logger.error(
                "Error rotating card %s: %s", card.card_id, err,
            )
            stats["errors"] += 1


def rotate_master_key(
    store: PropertyStore,
    old_cipher: MasterCipher,
    new_cipher: MasterCipher,
) -> dict:
    """Re-encrypt all cards from ``old_cipher``'s key to ``new_cipher``'s.

    Args:
        store: Property store holding the catalogs.
        old_cipher: Cipher for the key version being retired.
        new_cipher: Cipher for the target key version.

    Returns:
        Stats dict with keys: total, rotated, errors, skipped.

    Raises:
        ValueError: If both ciphers use the same key version.
        UpstreamUnavailableError: If either master key cannot be fetched.
    """
    if old_cipher.key_id == new_cipher.key_id:
        raise ValueError(
            f"Old and new master key share version {new_cipher.key_id}"
        )
    stats = {"total": 0, "rotated": 0, "errors": 0, "skipped": 0}

    logger.info(
        "Starting key rotation from v%d to v%d",
        old_cipher.key_id, new_cipher.key_id,
    )
    # surface an unreachable key service before touching any card
    old_cipher.ensure_key()
    new_cipher.ensure_key()

    with store.transaction():
        cards = load_cards(store, CATALOG_KEY)
        backup = load_cards(store, BACKUP_KEY)
        _rotate_cards(cards, old_cipher, new_cipher, stats)
        _rotate_cards(backup, old_cipher, new_cipher, stats)
        store.set_properties({
            CATALOG_KEY: dump_cards(cards),
            BACKUP_KEY: dump_cards(backup),
        })

    logger.info(
        "Key rotation complete: %s", stats,
    )
    return stats
