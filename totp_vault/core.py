"""
TotpVault — wires configuration, key cache, ciphers and services together.

    vault = TotpVault.from_env(FilePropertyStore("/var/lib/totp/vault.json"))
    vault.secrets.create_card(...)
    vault.permissions.get_visible_codes("someone@example.com")
"""
import logging
from typing import Optional

from .permissions import PermissionResolver
from .storage import PropertyStore
from .vault.config import VaultConfig
from .vault.crypto import CredentialCipher, MasterCipher
from .vault.keys import EnvKeyService, MasterKeyCache, MasterKeyService
from .vault.secret_store import SecretStore

logger = logging.getLogger("totp_vault")


class TotpVault:
    """Entry point bundling the Secret Store and the Permission Resolver.

    Args:
        store: Property store shared by every component.
        config: Validated vault configuration.
        key_service: Master key source; defaults to the environment.
    """

    def __init__(
        self,
        store: PropertyStore,
        config: VaultConfig,
        key_service: Optional[MasterKeyService] = None,
    ):
        self.config = config
        self.store = store
        self.key_cache = MasterKeyCache(
            key_service or EnvKeyService(config.active_key_id),
            ttl=config.master_key_ttl,
            cache_key=config.master_key_cache_key,
        )
        self.master_cipher = MasterCipher(
            self.key_cache,
            key_id=config.active_key_id,
            backend=config.cipher_backend,
        )
        self.credential_cipher = CredentialCipher(
            config.credential_secret, backend=config.cipher_backend,
        )
        self.permissions = PermissionResolver(
            store,
            self.master_cipher,
            allowed_email_domain=config.allowed_email_domain,
        )
        self.secrets = SecretStore(
            store,
            self.credential_cipher,
            self.master_cipher,
            self.permissions,
        )
        logger.debug(
            "Vault ready (key v%d, backend=%s)",
            config.active_key_id, config.cipher_backend,
        )

    @classmethod
    def from_env(
        cls,
        store: PropertyStore,
        key_service: Optional[MasterKeyService] = None,
    ) -> "TotpVault":
        """Build a vault from environment configuration."""
        return cls(store, VaultConfig.from_env(), key_service=key_service)
