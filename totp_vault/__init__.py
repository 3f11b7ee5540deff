"""TOTP Vault.

Multi-tenant store of TOTP seeds and passwords with per-user and per-group
visibility over each entry.
"""
from .version import __version__
from .core import TotpVault
from .exceptions import (
    VaultError,
    InvalidInputError,
    NotFoundError,
    DuplicateError,
    CryptoFailureError,
    UpstreamUnavailableError,
)
from .models import (
    Card,
    CardSummary,
    CodeEntry,
    Group,
    PermissionUpdate,
    Principal,
    Result,
    card_id,
)
from .permissions import PermissionResolver, has_visibility
from .storage import FilePropertyStore, MemoryPropertyStore, PropertyStore

__all__ = [
    "__version__",
    "TotpVault",
    "VaultError",
    "InvalidInputError",
    "NotFoundError",
    "DuplicateError",
    "CryptoFailureError",
    "UpstreamUnavailableError",
    "Card",
    "CardSummary",
    "CodeEntry",
    "Group",
    "PermissionUpdate",
    "Principal",
    "Result",
    "card_id",
    "PermissionResolver",
    "has_visibility",
    "FilePropertyStore",
    "MemoryPropertyStore",
    "PropertyStore",
]
