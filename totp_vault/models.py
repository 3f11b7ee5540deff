"""
Records stored by the vault and the result shape returned to callers.

Stored JSON keeps the field names of the existing property-store documents
(``encryptedSeed``, ``secretHash``, ``cardPermissions``, ``userGroup`` ...);
Python code uses the snake_case attribute names.
"""
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_GROUP = "DEFAULT"
ADMIN_GROUP = "ADMIN"
RESERVED_GROUPS = frozenset({DEFAULT_GROUP, ADMIN_GROUP})


def card_id(company: str, email: str) -> str:
    """Build the key used for a card in every permission map."""
    return f"{company}-{email}"


class Card(BaseModel):
    """A stored TOTP seed (and optional password), master-key encrypted."""

    model_config = ConfigDict(populate_by_name=True)

    company: str
    email: str
    encrypted_seed: str = Field(alias="encryptedSeed")
    # client-side integrity hash, stored as supplied and never re-derived
    verification_tag: str = Field(alias="secretHash")
    encrypted_password: Optional[str] = Field(default=None, alias="encryptedPass")

    @property
    def card_id(self) -> str:
        return card_id(self.company, self.email)

    def matches(self, company: str, email: str) -> bool:
        return self.company == company and self.email == email

    def to_store(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class CardSummary(BaseModel):
    """Card metadata that is safe to show to any caller."""

    company: str
    email: str


class CodeEntry(BaseModel):
    """A live code as revealed to a principal."""

    company: str
    email: str
    code: str
    password: Optional[str] = None
    error: bool = False


class Permissions(BaseModel):
    """Visibility overrides shared by principals and groups."""

    model_config = ConfigDict(populate_by_name=True)

    is_admin: bool = Field(default=False, alias="isAdmin")
    card_permissions: dict[str, bool] = Field(
        default_factory=dict, alias="cardPermissions"
    )

    def allows(self, card: str) -> bool:
        return self.is_admin or self.card_permissions.get(card, False)

    def to_store(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Group(Permissions):
    """A named bundle of visibility overrides. Groups do not nest."""


class Principal(Permissions):
    """An individually registered user.

    ``group`` None means the user falls back to the DEFAULT group.
    """

    group: Optional[str] = Field(default=None, alias="userGroup")


class PermissionUpdate(BaseModel):
    """Replacement permissions for a principal or a group.

    ``group`` is ignored when the target is a group.
    """

    model_config = ConfigDict(populate_by_name=True)

    is_admin: bool = Field(default=False, alias="isAdmin")
    card_permissions: dict[str, bool] = Field(
        default_factory=dict, alias="cardPermissions"
    )
    group: Optional[str] = Field(default=None, alias="userGroup")


class Result(BaseModel):
    """Outcome of a vault operation: ``{success, message, **payload}``."""

    model_config = ConfigDict(extra="allow")

    success: bool
    message: str = ""

    @classmethod
    def ok(cls, message: str = "", **payload: Any) -> "Result":
        return cls(success=True, message=message, **payload)

    @classmethod
    def fail(cls, message: str, **payload: Any) -> "Result":
        return cls(success=False, message=message, **payload)
