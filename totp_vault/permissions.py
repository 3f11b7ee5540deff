"""
Permission Resolver — users, groups and per-card visibility.

Visibility is OR-composed across three layers: the user's own flags, the
user's group, and the DEFAULT group for users without a group (or callers
who are not registered at all). There is no deny override: a stricter group
never hides a card the user was granted individually.

Security Note:
    Never log seeds, passwords or codes. Log identities and card ids only.
"""
import enum
import time
import logging
from collections.abc import Mapping
from typing import Any, Optional, Union

from pydantic import ValidationError

from . import totp
from .catalog import (
    USERS_KEY,
    GROUPS_KEY,
    card_ids,
    load_cards,
    load_groups,
    load_principals,
    dump_groups,
    dump_principals,
)
from .exceptions import CryptoFailureError, UpstreamUnavailableError
from .models import (
    ADMIN_GROUP,
    DEFAULT_GROUP,
    RESERVED_GROUPS,
    CardSummary,
    CodeEntry,
    Group,
    PermissionUpdate,
    Principal,
    Result,
)
from .storage import PropertyStore
from .vault.crypto import MasterCipher

logger = logging.getLogger("totp_vault")

CODE_ERROR = "Error"


class GroupBinding(enum.Enum):
    """How a principal's group layer resolves."""

    ASSIGNED = "assigned"      # group set and present
    UNASSIGNED = "unassigned"  # no group: the DEFAULT group applies
    DANGLING = "dangling"      # group set but missing: no group grant


def resolve_group(
    principal: Principal, groups: Mapping[str, Group]
) -> tuple[GroupBinding, Optional[Group]]:
    """Return the binding of ``principal`` and the group that applies."""
    if principal.group is None:
        return GroupBinding.UNASSIGNED, groups.get(DEFAULT_GROUP)
    group = groups.get(principal.group)
    if group is None:
        return GroupBinding.DANGLING, None
    return GroupBinding.ASSIGNED, group


def has_visibility(
    principal: Optional[Principal],
    groups: Mapping[str, Group],
    card: str,
) -> bool:
    """Decide whether ``principal`` may see the code of ``card``.

    ``principal`` None stands for a caller that is not registered; such a
    caller sees what the DEFAULT group sees.
    """
    if principal is None:
        default = groups.get(DEFAULT_GROUP)
        return default is not None and default.allows(card)
    if principal.is_admin or principal.card_permissions.get(card, False):
        return True
    _, group = resolve_group(principal, groups)
    return group is not None and group.allows(card)


class PermissionResolver:
    """Owns users and groups stored in a ``PropertyStore``.

    Args:
        store: Shared property store.
        master_cipher: Cipher used to open seeds and passwords when
            revealing codes.
        allowed_email_domain: When set, new users must belong to it.
    """

    def __init__(
        self,
        store: PropertyStore,
        master_cipher: MasterCipher,
        allowed_email_domain: Optional[str] = None,
    ):
        self._store = store
        self._cipher = master_cipher
        self._domain = allowed_email_domain
        self.ensure_reserved_groups()

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    def ensure_reserved_groups(self) -> None:
        """Create the DEFAULT and ADMIN groups when they are missing."""
        with self._store.transaction():
            groups = load_groups(self._store)
            missing = [name for name in (DEFAULT_GROUP, ADMIN_GROUP) if name not in groups]
            if not missing:
                return
            existing_cards = card_ids(self._store)
            for name in missing:
                is_admin = name == ADMIN_GROUP
                groups[name] = Group(
                    is_admin=is_admin,
                    card_permissions={cid: is_admin for cid in existing_cards},
                )
            self._store.set_property(GROUPS_KEY, dump_groups(groups))
        logger.info("Created reserved group(s): %s", ", ".join(missing))

    # ------------------------------------------------------------------
    # Visibility
    # ------------------------------------------------------------------

    def has_visibility(self, identity: Optional[str], card: str) -> bool:
        """Decide visibility of ``card`` for the user ``identity``."""
        principals = load_principals(self._store)
        groups = load_groups(self._store)
        return has_visibility(principals.get(identity or ""), groups, card)

    def is_admin(self, identity: Optional[str]) -> bool:
        """True when ``identity`` is a registered administrator."""
        principal = load_principals(self._store).get(identity or "")
        return principal is not None and principal.is_admin

    def get_visible_codes(
        self, identity: Optional[str], now: Optional[float] = None
    ) -> Result:
        """Compute live codes for every card ``identity`` may see.

        A card that fails to decrypt or yields no code is reported with
        ``code="Error"`` while the rest of the listing continues. An
        unavailable master key fails the whole call. ``expires_in`` holds
        the seconds left before the listed codes roll over.
        """
        if now is None:
            now = time.time()
        expires_in = totp.seconds_remaining(now=now)
        with self._store.transaction():
            cards = load_cards(self._store)
            principals = load_principals(self._store)
            groups = load_groups(self._store)
        principal = principals.get(identity or "")
        visible = [card for card in cards if has_visibility(principal, groups, card.card_id)]
        if not visible:
            return Result.ok(codes=[], expires_in=expires_in)
        try:
            self._cipher.ensure_key()
        except UpstreamUnavailableError as err:
            logger.error("Cannot reveal codes for %s: %s", identity, err.detail)
            return Result.fail(err.detail, codes=[])

        codes: list[CodeEntry] = []
        for card in visible:
            try:
                seed = self._cipher.decrypt(card.encrypted_seed)
                code = totp.generate_from_base32(seed, now=now)
                if code == totp.INVALID_SEED:
                    raise CryptoFailureError("Stored seed does not decode")
                password = None
                if card.encrypted_password:
                    password = self._cipher.decrypt(card.encrypted_password)
                codes.append(CodeEntry(
                    company=card.company,
                    email=card.email,
                    code=code,
                    password=password,
                ))
            except UpstreamUnavailableError as err:
                logger.error("Master key lost while revealing codes: %s", err.detail)
                return Result.fail(err.detail, codes=[])
            except Exception as err:
                logger.error(
                    "Error generating code for card %s: %s", card.card_id, err,
                )
                codes.append(CodeEntry(
                    company=card.company,
                    email=card.email,
                    code=CODE_ERROR,
                    error=True,
                ))
        return Result.ok(codes=codes, expires_in=expires_in)

    # ------------------------------------------------------------------
    # Users and groups
    # ------------------------------------------------------------------

    def _valid_email(self, email: Any) -> bool:
        if not email or not isinstance(email, str) or "@" not in email:
            return False
        if self._domain:
            return email.lower().endswith(f"@{self._domain}")
        return True

    def create_principal(self, email: str) -> Result:
        """Register a user in the DEFAULT group, seeing no card yet."""
        if not self._valid_email(email):
            return Result.fail("Invalid email provided.")
        try:
            with self._store.transaction():
                principals = load_principals(self._store)
                if email in principals:
                    return Result.fail("This email is already a registered user.")
                principals[email] = Principal(
                    is_admin=False,
                    card_permissions={cid: False for cid in card_ids(self._store)},
                    group=DEFAULT_GROUP,
                )
                self._store.set_property(USERS_KEY, dump_principals(principals))
        except Exception:
            logger.exception("Error saving user %s", email)
            return Result.fail("Server error: Failed to save user.")
        logger.info("User %s registered", email)
        return Result.ok("User added successfully.")

    def create_group(self, name: str) -> Result:
        """Create a non-admin group seeing no card yet."""
        if not name or not isinstance(name, str) or not name.strip():
            return Result.fail("Invalid group name provided.")
        try:
            with self._store.transaction():
                groups = load_groups(self._store)
                if name in groups:
                    return Result.fail("This group name already exists.")
                groups[name] = Group(
                    is_admin=False,
                    card_permissions={cid: False for cid in card_ids(self._store)},
                )
                self._store.set_property(GROUPS_KEY, dump_groups(groups))
        except Exception:
            logger.exception("Error saving user group %s", name)
            return Result.fail("Server error: Failed to save user group.")
        logger.info("User group %s created", name)
        return Result.ok(f'User group "{name}" added successfully.')

    def set_permissions(
        self,
        identity: str,
        permissions: Union[PermissionUpdate, Mapping[str, Any]],
        is_group: bool = False,
    ) -> Result:
        """Replace the permissions of a user or a group."""
        if not identity or not isinstance(identity, str):
            return Result.fail("Invalid identifier provided.")
        try:
            update = (
                permissions if isinstance(permissions, PermissionUpdate)
                else PermissionUpdate.model_validate(permissions)
            )
        except ValidationError:
            return Result.fail("Invalid permissions provided.")
        try:
            with self._store.transaction():
                groups = load_groups(self._store)
                if is_group:
                    if identity not in groups:
                        return Result.fail("User group not found.")
                    groups[identity] = Group(
                        is_admin=update.is_admin,
                        card_permissions=dict(update.card_permissions),
                    )
                    self._store.set_property(GROUPS_KEY, dump_groups(groups))
                    message = "User group permissions updated successfully."
                else:
                    principals = load_principals(self._store)
                    if identity not in principals:
                        return Result.fail("User not found.")
                    if update.group is not None and update.group not in groups:
                        return Result.fail("User group not found.")
                    principals[identity] = Principal(
                        is_admin=update.is_admin,
                        card_permissions=dict(update.card_permissions),
                        group=update.group,
                    )
                    self._store.set_property(USERS_KEY, dump_principals(principals))
                    message = "User permissions updated successfully."
        except Exception:
            logger.exception("Error updating permissions for %s", identity)
            return Result.fail("Server error: Failed to update permissions.")
        logger.info(
            "Permissions updated for %s %s", "group" if is_group else "user", identity,
        )
        return Result.ok(message)

    def remove_principal_or_group(self, identity: str, is_group: bool = False) -> Result:
        """Delete a user, or a group whose members then fall back to DEFAULT."""
        if not identity or not isinstance(identity, str):
            return Result.fail("Invalid identifier provided.")
        if is_group and identity in RESERVED_GROUPS:
            return Result.fail(
                f"The {identity} group cannot be removed as it is required "
                "for system permissions."
            )
        try:
            with self._store.transaction():
                principals = load_principals(self._store)
                if is_group:
                    groups = load_groups(self._store)
                    if identity not in groups:
                        return Result.fail("User group not found.")
                    del groups[identity]
                    moved = 0
                    for principal in principals.values():
                        if principal.group == identity:
                            principal.group = DEFAULT_GROUP
                            moved += 1
                    self._store.set_properties({
                        GROUPS_KEY: dump_groups(groups),
                        USERS_KEY: dump_principals(principals),
                    })
                    logger.info(
                        "User group %s removed, %d member(s) moved to %s",
                        identity, moved, DEFAULT_GROUP,
                    )
                    return Result.ok("User group removed successfully.")
                if identity not in principals:
                    return Result.fail("User not found.")
                del principals[identity]
                self._store.set_property(USERS_KEY, dump_principals(principals))
        except Exception:
            logger.exception("Error removing %s", identity)
            return Result.fail("Server error: Failed to remove item.")
        logger.info("User %s removed", identity)
        return Result.ok("User removed successfully.")

    # ------------------------------------------------------------------
    # Card lifecycle hooks
    # ------------------------------------------------------------------

    def new_card_updates(self, card: str) -> dict[str, str]:
        """Property updates granting ``card`` to admins and hiding it from others."""
        principals = load_principals(self._store)
        groups = load_groups(self._store)
        for entry in (*principals.values(), *groups.values()):
            entry.card_permissions[card] = entry.is_admin
        return {USERS_KEY: dump_principals(principals), GROUPS_KEY: dump_groups(groups)}

    def renamed_card_updates(self, old_card: str, new_card: str) -> dict[str, str]:
        """Property updates moving grants from ``old_card`` to ``new_card``."""
        principals = load_principals(self._store)
        groups = load_groups(self._store)
        for entry in (*principals.values(), *groups.values()):
            if old_card in entry.card_permissions:
                entry.card_permissions[new_card] = entry.card_permissions.pop(old_card)
        return {USERS_KEY: dump_principals(principals), GROUPS_KEY: dump_groups(groups)}

    def removed_card_updates(self, card: str) -> dict[str, str]:
        """Property updates dropping every grant of ``card``."""
        principals = load_principals(self._store)
        groups = load_groups(self._store)
        for entry in (*principals.values(), *groups.values()):
            entry.card_permissions.pop(card, None)
        return {USERS_KEY: dump_principals(principals), GROUPS_KEY: dump_groups(groups)}

    def propagate_new_card_default(self, card: str) -> None:
        """Give every user and group an explicit entry for a new card."""
        with self._store.transaction():
            self._store.set_properties(self.new_card_updates(card))
        logger.debug("Default visibility propagated for card %s", card)

    # ------------------------------------------------------------------
    # Admin views
    # ------------------------------------------------------------------

    def list_principals_and_groups(self) -> Result:
        with self._store.transaction():
            principals = load_principals(self._store)
            groups = load_groups(self._store)
        return Result.ok(users=principals, groups=groups)

    def permissions_overview(self) -> Result:
        """Users, groups and card metadata for the permission editor."""
        with self._store.transaction():
            principals = load_principals(self._store)
            groups = load_groups(self._store)
            cards = [
                CardSummary(company=card.company, email=card.email)
                for card in load_cards(self._store)
            ]
        return Result.ok(users=principals, groups=groups, cards=cards)
