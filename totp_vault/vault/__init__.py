"""Vault — Encryption layers, master key handling and the card catalog.

Security Note (Threat Model):
    Seeds and passwords are decrypted in process memory while a code is
    computed or an edit form is populated. A memory dump of the process
    could expose them together with the cached master key.
    This is an accepted limitation — mitigation requires HSM/secure
    enclave integration which is out of scope.
"""

from .config import VaultConfig
from .crypto import CredentialCipher, MasterCipher
from .keys import EnvKeyService, MasterKeyCache, MasterKeyService, StaticKeyService
from .key_rotation import rotate_master_key
from .secret_store import SecretStore

__all__ = [
    "VaultConfig",
    "CredentialCipher",
    "MasterCipher",
    "EnvKeyService",
    "MasterKeyCache",
    "MasterKeyService",
    "StaticKeyService",
    "rotate_master_key",
    "SecretStore",
]
