"""
SecretStore — Catalog of cards holding double-encrypted TOTP seeds.

Provides the card operations used by the admin and home views:
- ``create_card(...)`` — validate and store a new seed (and password)
- ``update_card(...)`` — change identity/password, never the seed
- ``list_metadata()`` — company/email pairs only
- ``get_for_editing(company, email)`` — identity plus decrypted password
- ``remove_card(company, email)`` — delete a card everywhere

Inbound seeds and passwords arrive under the credential layer. They are
opened only to validate them and are re-encrypted with the master key
before anything is written. The primary catalog and its backup copy are
always written together.

Security Note:
    Never log plaintext or ciphertext values. Only log card ids and
    operations.
"""
import logging
from typing import TYPE_CHECKING, Optional

from .. import totp
from ..catalog import (
    BACKUP_KEY,
    CATALOG_KEY,
    dump_cards,
    load_cards,
)
from ..exceptions import (
    CryptoFailureError,
    DuplicateError,
    InvalidInputError,
    NotFoundError,
    VaultError,
)
from ..models import Card, CardSummary, Result, card_id
from ..storage import PropertyStore
from .crypto import CredentialCipher, MasterCipher

if TYPE_CHECKING:
    from ..permissions import PermissionResolver

logger = logging.getLogger("totp_vault")


def _find(cards: list[Card], company: str, email: str) -> int:
    for index, card in enumerate(cards):
        if card.matches(company, email):
            return index
    return -1


class SecretStore:
    """Card catalog persisted in a ``PropertyStore``.

    Args:
        store: Shared property store.
        credential_cipher: Opens inbound material (keyed by card identity).
        master_cipher: Protects material at rest.
        permissions: Resolver notified of card creation, rename and removal.
    """

    def __init__(
        self,
        store: PropertyStore,
        credential_cipher: CredentialCipher,
        master_cipher: MasterCipher,
        permissions: "PermissionResolver",
    ):
        self._store = store
        self._credentials = credential_cipher
        self._master = master_cipher
        self._permissions = permissions

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _open_seed(self, encrypted_seed: str, company: str, email: str) -> str:
        try:
            seed = self._credentials.decrypt(encrypted_seed, company, email)
        except CryptoFailureError as err:
            raise InvalidInputError("Invalid secret seed provided.") from err
        if not totp.is_valid_seed(seed):
            raise InvalidInputError("Invalid secret seed provided.")
        return seed

    def _write(self, cards: list[Card], backup: list[Card], **extra: str) -> None:
        self._store.set_properties({
            CATALOG_KEY: dump_cards(cards),
            BACKUP_KEY: dump_cards(backup),
            **extra,
        })

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def create_card(
        self,
        company: str,
        email: str,
        encrypted_seed: str,
        verification_tag: str,
        encrypted_password: Optional[str] = None,
    ) -> Result:
        """Validate a new seed, store it under the master key and publish it.

        Every existing user and group receives an explicit permission entry
        for the card, equal to its ``is_admin`` flag.
        """
        if not (company and email and encrypted_seed and verification_tag):
            return Result.fail(
                "All fields (company, email, encrypted seed, hash) are required."
            )
        try:
            seed = self._open_seed(encrypted_seed, company, email)
            password = None
            if encrypted_password:
                password = self._credentials.decrypt(encrypted_password, company, email)
            with self._store.transaction():
                cards = load_cards(self._store)
                if _find(cards, company, email) != -1:
                    raise DuplicateError(
                        "An entry with this company and email already exists. "
                        "Click the entry to edit it."
                    )
                card = Card(
                    company=company,
                    email=email,
                    encrypted_seed=self._master.encrypt(seed),
                    verification_tag=verification_tag,
                    encrypted_password=(
                        self._master.encrypt(password) if password else None
                    ),
                )
                cards.append(card)
                backup = load_cards(self._store, BACKUP_KEY)
                backup.append(card)
                self._write(
                    cards, backup, **self._permissions.new_card_updates(card.card_id)
                )
        except VaultError as err:
            logger.warning("Card %s not created: %s", card_id(company, email), err.detail)
            return Result.fail(err.detail)
        except Exception:
            logger.exception("Error saving secret %s", card_id(company, email))
            return Result.fail("Failed to save secret securely.")
        logger.info("Card %s created", card.card_id)
        return Result.ok("Secret saved securely.")

    def update_card(
        self,
        original_company: str,
        original_email: str,
        new_company: str,
        new_email: str,
        encrypted_password: Optional[str] = None,
    ) -> Result:
        """Change a card's identity and password, keeping its seed untouched.

        A supplied password is opened with the *new* identity. Omitting it
        removes the stored password.
        """
        if not (original_company and original_email and new_company and new_email):
            return Result.fail("Original and new company and email are required.")
        old_id = card_id(original_company, original_email)
        new_id = card_id(new_company, new_email)
        try:
            password = None
            if encrypted_password:
                password = self._credentials.decrypt(
                    encrypted_password, new_company, new_email
                )
            with self._store.transaction():
                cards = load_cards(self._store)
                index = _find(cards, original_company, original_email)
                if index == -1:
                    raise NotFoundError("Original entry not found for update.")
                if new_id != old_id and _find(cards, new_company, new_email) != -1:
                    raise DuplicateError(
                        "An entry with this company and email already exists."
                    )
                card = cards[index]
                card.company = new_company
                card.email = new_email
                card.encrypted_password = (
                    self._master.encrypt(password) if password else None
                )
                backup = load_cards(self._store, BACKUP_KEY)
                backup_index = _find(backup, original_company, original_email)
                if backup_index != -1:
                    backup[backup_index] = card.model_copy()
                extra = {}
                if new_id != old_id:
                    extra = self._permissions.renamed_card_updates(old_id, new_id)
                self._write(cards, backup, **extra)
        except VaultError as err:
            logger.warning("Card %s not updated: %s", old_id, err.detail)
            return Result.fail(err.detail)
        except Exception:
            logger.exception("Error updating secret %s", old_id)
            return Result.fail("Failed to save secret securely.")
        logger.info("Card %s updated (now %s)", old_id, new_id)
        return Result.ok("Entry updated successfully.")

    def list_metadata(self) -> Result:
        """Company/email of every card, in catalog order. No secrets."""
        try:
            cards = load_cards(self._store)
        except Exception:
            logger.exception("Error retrieving secrets metadata")
            return Result.fail("Failed to retrieve secrets.", cards=[])
        return Result.ok(
            cards=[CardSummary(company=c.company, email=c.email) for c in cards]
        )

    def get_for_editing(self, company: str, email: str) -> Result:
        """Identity and decrypted password of a card. The seed stays sealed."""
        try:
            cards = load_cards(self._store)
            index = _find(cards, company, email)
            if index == -1:
                return Result.fail("Secret not found.")
            card = cards[index]
            password = None
            if card.encrypted_password:
                try:
                    password = self._master.decrypt(card.encrypted_password)
                except CryptoFailureError as err:
                    logger.error(
                        "Error decrypting password for %s: %s", card.card_id, err.detail,
                    )
        except VaultError as err:
            logger.error("Cannot open card %s: %s", card_id(company, email), err.detail)
            return Result.fail(f"Failed to retrieve secret: {err.detail}")
        except Exception:
            logger.exception("Error retrieving secret %s", card_id(company, email))
            return Result.fail("Failed to retrieve secret.")
        return Result.ok(company=card.company, email=card.email, password=password)

    def remove_card(self, company: str, email: str) -> Result:
        """Delete a card from the catalog, its backup and every grant."""
        if not company or not email:
            return Result.fail("Company name and email must be provided.")
        cid = card_id(company, email)
        try:
            with self._store.transaction():
                cards = load_cards(self._store)
                index = _find(cards, company, email)
                if index == -1:
                    raise NotFoundError(f"Failed to remove secret for {company}.")
                del cards[index]
                backup = [
                    card for card in load_cards(self._store, BACKUP_KEY)
                    if not card.matches(company, email)
                ]
                self._write(cards, backup, **self._permissions.removed_card_updates(cid))
        except VaultError as err:
            logger.warning("Card %s not removed: %s", cid, err.detail)
            return Result.fail(err.detail)
        except Exception:
            logger.exception("Error removing secret %s", cid)
            return Result.fail("Server error: Failed to remove secret.")
        logger.info("Card %s removed", cid)
        return Result.ok(f"Secret for {company} removed successfully.")
