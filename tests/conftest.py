"""Shared fixtures for the vault test-suite."""
import base64

import pytest

from totp_vault.permissions import PermissionResolver
from totp_vault.storage import MemoryPropertyStore
from totp_vault.vault.crypto import CredentialCipher, MasterCipher
from totp_vault.vault.keys import MasterKeyCache, StaticKeyService
from totp_vault.vault.secret_store import SecretStore

# RFC 6238 SHA1 test secret "12345678901234567890"
RFC_SEED = base64.b32encode(b"12345678901234567890").decode("ascii")
JBSWY_SEED = "JBSWY3DPEHPK3PXP"

MASTER_KEY = bytes(range(32))
CREDENTIAL_SECRET = b"client-shared-secret-for-tests!!"


class CountingKeyService:
    """Key service double that records how often it was asked."""

    def __init__(self, master_key: bytes = MASTER_KEY, fail: bool = False):
        self.master_key = master_key
        self.fail = fail
        self.calls = 0

    def fetch_master_key(self) -> bytes:
        self.calls += 1
        if self.fail:
            raise ConnectionError("secret manager unreachable")
        return self.master_key


@pytest.fixture
def store():
    return MemoryPropertyStore()


@pytest.fixture
def key_service():
    return CountingKeyService()


@pytest.fixture
def key_cache(key_service):
    return MasterKeyCache(key_service, ttl=1800)


@pytest.fixture
def master_cipher(key_cache):
    return MasterCipher(key_cache, key_id=1)


@pytest.fixture
def credential_cipher():
    return CredentialCipher(CREDENTIAL_SECRET)


@pytest.fixture
def resolver(store, master_cipher):
    return PermissionResolver(store, master_cipher)


@pytest.fixture
def secrets(store, credential_cipher, master_cipher, resolver):
    return SecretStore(store, credential_cipher, master_cipher, resolver)


@pytest.fixture
def seal(credential_cipher):
    """Encrypt a value the way the client does before submitting it."""
    def _seal(value: str, company: str, email: str) -> str:
        return credential_cipher.encrypt(value, company, email)
    return _seal


@pytest.fixture
def add_card(secrets, seal):
    """Create a card with a valid seed and return its Result."""
    def _add(company: str, email: str, seed: str = JBSWY_SEED, password=None):
        encrypted_password = seal(password, company, email) if password else None
        return secrets.create_card(
            company,
            email,
            seal(seed, company, email),
            "tag-" + company,
            encrypted_password,
        )
    return _add


@pytest.fixture
def static_master_cipher():
    """Master cipher over a fixed key, independent of any counting double."""
    return MasterCipher(MasterKeyCache(StaticKeyService(MASTER_KEY)), key_id=1)
