"""
Property keys and typed accessors for the vault documents.

    SECRETS-ENCRYPTED  primary card catalog (JSON list)
    SECRETS            backup copy of the card catalog (JSON list)
    USERS              {email: principal}
    USER_GROUPS        {name: group}
"""
from .models import Card, Group, Principal
from .storage import PropertyStore, read_json, dump_json

CATALOG_KEY = "SECRETS-ENCRYPTED"
BACKUP_KEY = "SECRETS"
USERS_KEY = "USERS"
GROUPS_KEY = "USER_GROUPS"


def load_cards(store: PropertyStore, key: str = CATALOG_KEY) -> list[Card]:
    return [Card.model_validate(item) for item in read_json(store, key, [])]


def dump_cards(cards: list[Card]) -> str:
    return dump_json([card.to_store() for card in cards])


def card_ids(store: PropertyStore) -> list[str]:
    """Ids of every card currently in the primary catalog."""
    return [card.card_id for card in load_cards(store)]


def load_principals(store: PropertyStore) -> dict[str, Principal]:
    return {
        email: Principal.model_validate(data)
        for email, data in read_json(store, USERS_KEY, {}).items()
    }


def dump_principals(principals: dict[str, Principal]) -> str:
    return dump_json({email: p.to_store() for email, p in principals.items()})


def load_groups(store: PropertyStore) -> dict[str, Group]:
    return {
        name: Group.model_validate(data)
        for name, data in read_json(store, GROUPS_KEY, {}).items()
    }


def dump_groups(groups: dict[str, Group]) -> str:
    return dump_json({name: g.to_store() for name, g in groups.items()})
