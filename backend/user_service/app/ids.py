# backend/user_service/app/ids.py

import enum
import logging

from .config import COUNTER_PREFIX
from .errors import StoreUnavailable
from .store import DocumentStore

logger = logging.getLogger(__name__)


class EntityClass(str, enum.Enum):
    CUSTOMER = "customer"
    USER = "user"
    ORDER = "order"


# Counters start above any hand-seeded documents with low ids.
STARTING_IDS = {
    EntityClass.CUSTOMER: 1000,
    EntityClass.USER: 1000,
    EntityClass.ORDER: 5000,
}


class IdGenerator:
    """Mints unique integer ids per entity class from the store's atomic counters."""

    def __init__(self, store: DocumentStore, prefix: str = COUNTER_PREFIX):
        self._store = store
        self._prefix = prefix

    def counter_name(self, entity_class: EntityClass) -> str:
        return f"{self._prefix}-{EntityClass(entity_class).value}-counter"

    @staticmethod
    def key_for(entity_class: EntityClass, entity_id: int) -> str:
        return f"{EntityClass(entity_class).value}_{entity_id}"

    def next_id(self, entity_class: EntityClass) -> int:
        entity_class = EntityClass(entity_class)
        name = self.counter_name(entity_class)
        try:
            value = self._store.increment_counter(
                name, step=1, initial=STARTING_IDS[entity_class]
            )
        except StoreUnavailable:
            logger.error(f"User Service: Could not mint a new {entity_class.value} id.")
            raise
        if value is None:
            raise StoreUnavailable(f"Counter '{name}' returned no value.")
        logger.debug(f"User Service: Minted {entity_class.value} id {value}.")
        return value
