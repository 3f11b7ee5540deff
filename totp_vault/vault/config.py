"""
Vault Configuration — validated settings read from the environment.

    VAULT_ACTIVE_KEY_ID        master key version used for new ciphertexts
    VAULT_CREDENTIAL_SECRET    base64 secret factor of the credential layer
    VAULT_CIPHER_BACKEND       aesgcm (default) or chacha20
    VAULT_MASTER_KEY_TTL       seconds a fetched master key stays cached
    VAULT_ALLOWED_EMAIL_DOMAIN optional domain new users must belong to

The master keys themselves (VAULT_MASTER_KEY_v{N}) are read by
``keys.EnvKeyService``, never by the config.

Security Note:
    Never log key material. Only log key IDs and version numbers.
"""
import os
import base64
import binascii
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ..exceptions import InvalidInputError

MASTER_KEY_CACHE_KEY = "MASTER_ENCRYPTION_KEY"
DEFAULT_MASTER_KEY_TTL = 1800


def _setting(name: str, default: Optional[str] = None) -> str:
    value = os.environ.get(name) or default
    if value is None:
        raise InvalidInputError(f"{name} environment variable is not set")
    return value


def _int_setting(name: str, default: Optional[int] = None) -> int:
    raw = _setting(name, None if default is None else str(default))
    try:
        return int(raw)
    except ValueError as err:
        raise InvalidInputError(f"{name} must be an integer") from err


def _secret_setting(name: str) -> bytes:
    try:
        return base64.b64decode(_setting(name), validate=True)
    except binascii.Error as err:
        raise InvalidInputError(f"{name} must be base64 encoded") from err


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    active_key_id: int = Field(default=1, ge=0, le=0xFFFF)
    credential_secret: bytes
    cipher_backend: str = Field(default="aesgcm")
    master_key_ttl: int = Field(default=DEFAULT_MASTER_KEY_TTL, ge=60)
    master_key_cache_key: str = Field(default=MASTER_KEY_CACHE_KEY)
    allowed_email_domain: Optional[str] = None

    @field_validator("cipher_backend")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Validate cipher backend is supported."""
        if v not in ("aesgcm", "chacha20"):
            raise ValueError(f"Unsupported cipher backend: {v}")
        return v

    @field_validator("credential_secret")
    @classmethod
    def validate_credential_secret(cls, v: bytes) -> bytes:
        if len(v) < 16:
            raise ValueError("credential_secret must be at least 16 bytes")
        return v

    @model_validator(mode="after")
    def normalize_domain(self) -> "VaultConfig":
        """Store the email domain without a leading '@'."""
        if self.allowed_email_domain:
            self.allowed_email_domain = self.allowed_email_domain.lstrip("@").lower()
        else:
            self.allowed_email_domain = None
        return self

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Raises:
            InvalidInputError: If a required setting is missing or malformed.
            pydantic.ValidationError: If a setting is out of range.
        """
        return cls(
            active_key_id=_int_setting("VAULT_ACTIVE_KEY_ID"),
            credential_secret=_secret_setting("VAULT_CREDENTIAL_SECRET"),
            cipher_backend=_setting("VAULT_CIPHER_BACKEND", "aesgcm"),
            master_key_ttl=_int_setting(
                "VAULT_MASTER_KEY_TTL", DEFAULT_MASTER_KEY_TTL
            ),
            allowed_email_domain=os.environ.get("VAULT_ALLOWED_EMAIL_DOMAIN"),
        )
