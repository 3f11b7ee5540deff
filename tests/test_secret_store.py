"""
Tests for the Secret Store card operations.

Tests cover:
- Card creation, validation and duplicate detection
- Double encryption of seeds and passwords at rest
- In-place updates that keep the seed untouched
- Metadata listing and edit-form retrieval
- Removal from the primary catalog and its backup
"""
import orjson
import pytest

from totp_vault.catalog import BACKUP_KEY, CATALOG_KEY, load_cards
from totp_vault.vault.crypto import MasterCipher
from totp_vault.vault.keys import MasterKeyCache
from totp_vault.vault.secret_store import SecretStore

from .conftest import CountingKeyService, JBSWY_SEED


def raw_catalog(store, key=CATALOG_KEY):
    return orjson.loads(store.get_property(key))


class TestCreateCard:
    """Creating cards."""

    def test_create_success(self, add_card, store):
        """Test a valid card is saved."""
        result = add_card("Acme", "a@x")
        assert result.success is True
        assert result.message == "Secret saved securely."
        cards = load_cards(store)
        assert len(cards) == 1
        assert cards[0].company == "Acme"
        assert cards[0].verification_tag == "tag-Acme"

    def test_seed_stored_under_master_key(self, add_card, store, master_cipher):
        """Test the stored seed opens with the master key only."""
        add_card("Acme", "a@x")
        stored = load_cards(store)[0].encrypted_seed
        assert JBSWY_SEED not in stored
        assert master_cipher.decrypt(stored) == JBSWY_SEED

    def test_password_stored_under_master_key(self, add_card, store, master_cipher):
        """Test the stored password opens with the master key."""
        add_card("Acme", "a@x", password="hunter2")
        card = load_cards(store)[0]
        assert master_cipher.decrypt(card.encrypted_password) == "hunter2"

    def test_stored_document_shape(self, add_card, store):
        """Test the catalog document field names."""
        add_card("Acme", "a@x")
        doc = raw_catalog(store)[0]
        assert set(doc) == {"company", "email", "encryptedSeed", "secretHash"}

    def test_backup_written(self, add_card, store):
        """Test the backup catalog mirrors the primary one."""
        add_card("Acme", "a@x")
        assert raw_catalog(store, BACKUP_KEY) == raw_catalog(store)

    @pytest.mark.parametrize("field", ["company", "email", "seed", "tag"])
    def test_missing_field(self, secrets, seal, field):
        """Test each required field."""
        values = {
            "company": "Acme",
            "email": "a@x",
            "seed": seal(JBSWY_SEED, "Acme", "a@x"),
            "tag": "tag",
        }
        values[field] = ""
        result = secrets.create_card(
            values["company"], values["email"], values["seed"], values["tag"]
        )
        assert result.success is False
        assert "required" in result.message

    def test_invalid_seed(self, add_card, store):
        """Test a seed that is not Base32 is refused and nothing is written."""
        result = add_card("Acme", "a@x", seed="NOT-BASE32!")
        assert result.success is False
        assert result.message == "Invalid secret seed provided."
        assert store.get_property(CATALOG_KEY) is None

    def test_empty_seed_rejected(self, secrets, seal):
        """Test an empty seed."""
        result = secrets.create_card("Acme", "a@x", seal("", "Acme", "a@x"), "tag")
        assert result.success is False
        assert result.message == "Invalid secret seed provided."

    def test_seed_sealed_for_another_card(self, secrets, seal):
        """Test a seed sealed for a different identity."""
        result = secrets.create_card("Acme", "a@x", seal(JBSWY_SEED, "Acme", "b@x"), "tag")
        assert result.success is False
        assert result.message == "Invalid secret seed provided."

    def test_duplicate(self, add_card, store):
        """Test creating the same company and email twice."""
        assert add_card("Acme", "a@x").success is True
        result = add_card("Acme", "a@x")
        assert result.success is False
        assert "already exists" in result.message
        assert len(load_cards(store)) == 1

    def test_same_company_other_email(self, add_card, store):
        """Test two cards sharing a company."""
        assert add_card("Acme", "a@x").success is True
        assert add_card("Acme", "b@x").success is True
        assert len(load_cards(store)) == 2

    def test_master_key_unavailable(self, store, credential_cipher, resolver, seal):
        """Test an unreachable key service fails the create."""
        cipher = MasterCipher(MasterKeyCache(CountingKeyService(fail=True)))
        secrets = SecretStore(store, credential_cipher, cipher, resolver)
        result = secrets.create_card("Acme", "a@x", seal(JBSWY_SEED, "Acme", "a@x"), "tag")
        assert result.success is False
        assert "unavailable" in result.message.lower() or "master key" in result.message.lower()
        assert store.get_property(CATALOG_KEY) is None


class TestUpdateCard:
    """Updating cards in place."""

    def test_update_identity_keeps_seed(self, add_card, secrets, store):
        """Test a rename keeps the stored seed."""
        add_card("Acme", "a@x")
        seed_before = load_cards(store)[0].encrypted_seed
        tag_before = load_cards(store)[0].verification_tag
        result = secrets.update_card("Acme", "a@x", "Acme Corp", "b@x")
        assert result.success is True
        card = load_cards(store)[0]
        assert (card.company, card.email) == ("Acme Corp", "b@x")
        assert card.encrypted_seed == seed_before
        assert card.verification_tag == tag_before

    def test_update_sets_password_with_new_identity(
        self, add_card, secrets, store, seal, master_cipher
    ):
        """Test a password sealed for the new identity is stored on rename."""
        add_card("Acme", "a@x")
        result = secrets.update_card(
            "Acme", "a@x", "Acme", "b@x", seal("s3cret", "Acme", "b@x"),
        )
        assert result.success is True
        card = load_cards(store)[0]
        assert master_cipher.decrypt(card.encrypted_password) == "s3cret"

    def test_password_sealed_for_old_identity_rejected(self, add_card, secrets, seal):
        """Test a password sealed for the old identity."""
        add_card("Acme", "a@x")
        result = secrets.update_card(
            "Acme", "a@x", "Acme", "b@x", seal("s3cret", "Acme", "a@x"),
        )
        assert result.success is False

    def test_update_without_password_removes_it(self, add_card, secrets, store):
        """Test an update without a password clears it."""
        add_card("Acme", "a@x", password="hunter2")
        assert load_cards(store)[0].encrypted_password is not None
        assert secrets.update_card("Acme", "a@x", "Acme", "a@x").success is True
        assert load_cards(store)[0].encrypted_password is None
        assert "encryptedPass" not in raw_catalog(store)[0]

    def test_update_not_found(self, secrets):
        """Test updating a card that does not exist."""
        result = secrets.update_card("Nope", "n@x", "Acme", "a@x")
        assert result.success is False
        assert result.message == "Original entry not found for update."

    def test_update_into_existing_identity(self, add_card, secrets, store):
        """Test renaming onto another card."""
        add_card("Acme", "a@x")
        add_card("Beta", "b@x")
        result = secrets.update_card("Acme", "a@x", "Beta", "b@x")
        assert result.success is False
        assert [c.company for c in load_cards(store)] == ["Acme", "Beta"]

    def test_update_mirrors_backup(self, add_card, secrets, store):
        """Test updates reach the backup catalog."""
        add_card("Acme", "a@x")
        add_card("Beta", "b@x")
        secrets.update_card("Beta", "b@x", "Gamma", "g@x")
        assert raw_catalog(store, BACKUP_KEY) == raw_catalog(store)

    def test_update_moves_permissions(self, add_card, secrets, resolver, store):
        """Test grants follow a renamed card."""
        resolver.create_principal("u@x")
        add_card("Acme", "a@x")
        resolver.set_permissions("u@x", {"cardPermissions": {"Acme-a@x": True}})
        secrets.update_card("Acme", "a@x", "Acme", "new@x")
        assert resolver.has_visibility("u@x", "Acme-new@x") is True
        assert resolver.has_visibility("u@x", "Acme-a@x") is False


class TestReadOperations:
    """Metadata listing and the edit form."""

    def test_list_metadata_order(self, add_card, secrets):
        """Test cards list in insertion order."""
        add_card("Acme", "a@x", password="pw")
        add_card("Beta", "b@x")
        result = secrets.list_metadata()
        assert result.success is True
        assert [(c.company, c.email) for c in result.cards] == [
            ("Acme", "a@x"), ("Beta", "b@x"),
        ]

    def test_list_metadata_has_no_secrets(self, add_card, secrets):
        """Test the listing carries only company and email."""
        add_card("Acme", "a@x", password="pw")
        dumped = secrets.list_metadata().model_dump()
        assert dumped["cards"] == [{"company": "Acme", "email": "a@x"}]

    def test_list_metadata_empty(self, secrets):
        """Test an empty catalog."""
        assert secrets.list_metadata().cards == []

    def test_get_for_editing(self, add_card, secrets):
        """Test the edit view returns seed and password."""
        add_card("Acme", "a@x", password="hunter2")
        result = secrets.get_for_editing("Acme", "a@x")
        assert result.success is True
        assert (result.company, result.email, result.password) == ("Acme", "a@x", "hunter2")
        assert "seed" not in str(result.model_dump()).lower()

    def test_get_for_editing_without_password(self, add_card, secrets):
        """Test the edit view of a card without password."""
        add_card("Acme", "a@x")
        assert secrets.get_for_editing("Acme", "a@x").password is None

    def test_get_for_editing_not_found(self, secrets):
        """Test editing a card that does not exist."""
        result = secrets.get_for_editing("Acme", "a@x")
        assert result.success is False
        assert result.message == "Secret not found."


class TestRemoveCard:
    """Removing cards."""

    def test_remove(self, add_card, secrets, store):
        """Test removing a card from both catalogs."""
        add_card("Acme", "a@x")
        add_card("Beta", "b@x")
        result = secrets.remove_card("Acme", "a@x")
        assert result.success is True
        assert [c.company for c in load_cards(store)] == ["Beta"]
        assert [c.company for c in load_cards(store, BACKUP_KEY)] == ["Beta"]

    def test_remove_requires_exact_match(self, add_card, secrets, store):
        """Test removal needs both company and email to match."""
        add_card("Acme", "a@x")
        assert secrets.remove_card("Acme", "b@x").success is False
        assert len(load_cards(store)) == 1

    def test_remove_not_found(self, secrets):
        """Test removing a card that does not exist."""
        assert secrets.remove_card("Acme", "a@x").success is False

    def test_remove_missing_fields(self, secrets):
        """Test removal without company or email."""
        assert secrets.remove_card("", "").success is False

    def test_remove_drops_permissions(self, add_card, secrets, resolver):
        """Test grants for a removed card are dropped."""
        resolver.create_principal("u@x")
        add_card("Acme", "a@x")
        secrets.remove_card("Acme", "a@x")
        users = resolver.list_principals_and_groups().users
        assert "Acme-a@x" not in users["u@x"].card_permissions

    def test_create_after_remove(self, add_card, secrets):
        """Test a removed identity can be created again."""
        add_card("Acme", "a@x")
        secrets.remove_card("Acme", "a@x")
        assert add_card("Acme", "a@x").success is True
