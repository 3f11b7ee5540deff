"""
Vault Crypto Core — Key derivation and the two encryption layers.

Implements dual-layer protection for card seeds and passwords:
- Credential layer: HKDF(credential_secret, salt=card_id, "vault-credentials")
  → AEAD → base64([nonce|payload])
- Master layer: HKDF(MASTER_KEY, "vault-master-vN") → AEAD
  → base64([key_id|nonce|payload])

Nothing is persisted under the credential layer alone: inbound material is
decrypted from it and re-encrypted under the master layer before storage.

Security Note:
    Never log plaintext or ciphertext values.
    Nonces are random 96-bit; collision probability negligible under normal usage.
"""
import os
import base64
import struct
import logging
import binascii
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from ..exceptions import CryptoFailureError
from ..models import card_id
from .keys import MasterKeyCache

logger = logging.getLogger("totp_vault")

NONCE_SIZE = 12  # 96-bit nonce
KEY_ID_SIZE = 2  # uint16 big-endian
KEY_LENGTH = 32  # AES-256
TAG_SIZE = 16

CREDENTIAL_CONTEXT = "vault-credentials"

_CIPHERS = {
    "aesgcm": AESGCM,
    "chacha20": ChaCha20Poly1305,
}


def get_cipher_cls(backend: Optional[str] = None) -> type:
    """Return the AEAD cipher class for ``backend``.

    When ``backend`` is None the VAULT_CIPHER_BACKEND env var is used.
    """
    if backend is None:
        backend = os.environ.get("VAULT_CIPHER_BACKEND", "aesgcm")
    return _CIPHERS.get(backend.lower(), AESGCM)


# Resolve cipher once at module load to prevent encrypt/decrypt mismatch
# if the env var changes mid-process.
CIPHER_CLS = get_cipher_cls()


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(seed: bytes, context: str, salt: Optional[bytes] = None) -> bytes:
    """Derive a 32-byte encryption key using HKDF-SHA256.

    Args:
        seed: Input key material (master key or credential secret).
        context: Context string for domain separation.
        salt: Optional salt; the card id for the credential layer.

    Returns:
        32-byte derived key.
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        info=context.encode("utf-8"),
    )
    return hkdf.derive(seed)


def _b64decode(payload: str) -> bytes:
    try:
        return base64.b64decode(payload.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError, AttributeError) as err:
        raise CryptoFailureError("Ciphertext is not valid base64") from err


# ---------------------------------------------------------------------------
# Credential layer (keyed by the card identity)
# ---------------------------------------------------------------------------

class CredentialCipher:
    """Symmetric cipher keyed by a card's (company, email) identity.

    The client and the server share ``secret``; the per-card key is derived
    from it with the card id as salt, so a ciphertext only opens for the
    card it was produced for.

    Any object exposing ``encrypt(plaintext, company, email)`` and
    ``decrypt(ciphertext, company, email)`` can replace this class.
    """

    def __init__(self, secret: bytes, backend: Optional[str] = None):
        if not secret:
            raise ValueError("Credential cipher requires a non-empty secret")
        self._secret = secret
        self._cipher_cls = get_cipher_cls(backend) if backend else CIPHER_CLS

    def _key(self, company: str, email: str) -> bytes:
        return derive_key(
            self._secret,
            CREDENTIAL_CONTEXT,
            salt=card_id(company, email).encode("utf-8"),
        )

    def encrypt(self, plaintext: str, company: str, email: str) -> str:
        """Encrypt ``plaintext`` for the card (company, email).

        Format: base64([nonce 12B][encrypted_payload + tag 16B])
        """
        cipher = self._cipher_cls(self._key(company, email))
        nonce = os.urandom(NONCE_SIZE)
        ct = cipher.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + ct).decode("ascii")

    def decrypt(self, ciphertext: str, company: str, email: str) -> str:
        """Decrypt a credential-layer ciphertext for the card (company, email).

        Raises:
            CryptoFailureError: On malformed input, wrong identity or tampering.
        """
        raw = _b64decode(ciphertext)
        _min = NONCE_SIZE + TAG_SIZE
        if len(raw) < _min:
            raise CryptoFailureError(
                f"Credential ciphertext too short: {len(raw)} bytes "
                f"(minimum {_min})"
            )
        cipher = self._cipher_cls(self._key(company, email))
        try:
            plaintext = cipher.decrypt(raw[:NONCE_SIZE], raw[NONCE_SIZE:], None)
            return plaintext.decode("utf-8")
        except (InvalidTag, UnicodeDecodeError) as err:
            raise CryptoFailureError(
                "Credential ciphertext does not match this card"
            ) from err


# ---------------------------------------------------------------------------
# Master layer (vault-wide key, persistent)
# ---------------------------------------------------------------------------

class MasterCipher:
    """Symmetric cipher keyed by the vault master key.

    The key comes from a ``MasterKeyCache``; fetching it may raise
    ``UpstreamUnavailableError``, which is never masked here. ``key_id``
    marks the key epoch and is embedded in every ciphertext.
    """

    def __init__(
        self,
        key_cache: MasterKeyCache,
        key_id: int = 1,
        backend: Optional[str] = None,
    ):
        if not 0 <= key_id <= 0xFFFF:
            raise ValueError(f"key_id must fit in uint16, got {key_id}")
        self._keys = key_cache
        self.key_id = key_id
        self._cipher_cls = get_cipher_cls(backend) if backend else CIPHER_CLS

    @property
    def context(self) -> str:
        return f"vault-master-v{self.key_id}"

    def _cipher(self):
        master_key = self._keys.get()
        return self._cipher_cls(derive_key(master_key, self.context))

    def ensure_key(self) -> None:
        """Fetch (or reuse) the master key, surfacing any upstream failure."""
        self._keys.get()

    def key_id_of(self, ciphertext: str) -> int:
        """Return the key epoch embedded in a master-layer ciphertext."""
        raw = _b64decode(ciphertext)
        if len(raw) < KEY_ID_SIZE:
            raise CryptoFailureError("Master ciphertext is truncated")
        return struct.unpack("!H", raw[:KEY_ID_SIZE])[0]

    def encrypt(self, plaintext: str) -> str:
        """Encrypt ``plaintext`` for storage.

        Format: base64([key_id 2B uint16 BE][nonce 12B][encrypted_payload + tag])
        """
        cipher = self._cipher()
        nonce = os.urandom(NONCE_SIZE)
        ct = cipher.encrypt(nonce, plaintext.encode("utf-8"), None)
        key_id_bytes = struct.pack("!H", self.key_id)
        return base64.b64encode(key_id_bytes + nonce + ct).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a master-layer ciphertext.

        Raises:
            CryptoFailureError: If the payload is malformed, belongs to another
                key epoch, or fails authentication.
            UpstreamUnavailableError: If the master key cannot be fetched.
        """
        raw = _b64decode(ciphertext)
        _min = KEY_ID_SIZE + NONCE_SIZE + TAG_SIZE
        if len(raw) < _min:
            raise CryptoFailureError(
                f"Master ciphertext too short: {len(raw)} bytes "
                f"(minimum {_min})"
            )
        key_id = struct.unpack("!H", raw[:KEY_ID_SIZE])[0]
        if key_id != self.key_id:
            raise CryptoFailureError(
                f"Ciphertext uses master key version {key_id}, "
                f"cipher holds version {self.key_id}"
            )
        cipher = self._cipher()
        nonce = raw[KEY_ID_SIZE:KEY_ID_SIZE + NONCE_SIZE]
        ct = raw[KEY_ID_SIZE + NONCE_SIZE:]
        try:
            return cipher.decrypt(nonce, ct, None).decode("utf-8")
        except (InvalidTag, UnicodeDecodeError) as err:
            raise CryptoFailureError(
                "Master ciphertext failed authentication"
            ) from err
