"""
Domain exceptions for the TOTP vault.

Services raise these internally; the Secret Store and Permission Resolver
catch them at their public boundary and translate them into a ``Result``
so no raw fault crosses into the caller.

Exception hierarchy:
    VaultError (base)
    ├── InvalidInputError        — missing or malformed fields
    ├── NotFoundError            — no matching card, user or group
    ├── DuplicateError           — identity collision on create
    ├── CryptoFailureError       — seed/password fails to decrypt or decode
    └── UpstreamUnavailableError — master key service unreachable
"""


class VaultError(Exception):
    """Base exception for all vault domain errors."""

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(self.detail)


class InvalidInputError(VaultError):
    """Raised when a required field is missing or malformed."""


class NotFoundError(VaultError):
    """Raised when a card, user or group does not exist."""


class DuplicateError(VaultError):
    """Raised when creating an entry whose identity already exists."""


class CryptoFailureError(VaultError):
    """Raised when a ciphertext cannot be decrypted or a seed decoded.

    The message never contains plaintext or ciphertext values.
    """

    def __init__(self, detail: str = "Unable to decrypt secret material"):
        super().__init__(detail)


class UpstreamUnavailableError(VaultError):
    """Raised when the master key cannot be obtained from its service."""

    def __init__(self, detail: str = "Master key service is unavailable"):
        super().__init__(detail)
