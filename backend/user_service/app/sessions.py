# backend/user_service/app/sessions.py

import logging
import uuid
from typing import Optional

from fastapi import Depends

from .config import SESSION_TTL_SECONDS
from .db import get_store
from .errors import StoreUnavailable, WriteStatus
from .schemas import Session
from .store import DocumentStore

logger = logging.getLogger(__name__)


def session_key(session_id: str) -> str:
    return f"session::{session_id}"


class SessionStore:
    """
    Session records with a sliding TTL. Expiry is enforced by the document
    store, so a session nobody touches simply stops being readable.
    """

    def __init__(self, store: DocumentStore, ttl: int = SESSION_TTL_SECONDS):
        self._store = store
        self._ttl = ttl

    def create(self, username: str, ttl: Optional[int] = None) -> Session:
        ttl = ttl or self._ttl
        now = self._store.now()
        session = Session(
            sessionId=str(uuid.uuid4()),
            username=username,
            createdAt=now,
            expiresAt=now + ttl,
        )
        body = session.model_dump(exclude={"expiresAt"})
        status = self._store.insert(
            session_key(session.sessionId), body, doc_type="session", ttl=ttl
        )
        if status is not WriteStatus.OK:
            # A uuid4 collision means something is badly wrong with the store.
            raise StoreUnavailable(f"Could not persist session for '{username}'.")
        logger.info(f"User Service: Session created for '{username}'.")
        return session

    def extend(self, session_id: str, ttl: Optional[int] = None) -> Optional[Session]:
        """
        Resets the session's expiry to now + ttl and returns it. None means the
        session is expired or never existed; the two are deliberately not told apart.
        """
        ttl = ttl or self._ttl
        body = self._store.get_and_touch(session_key(session_id), ttl)
        if body is None:
            logger.info("User Service: Session extend refused, session expired or unknown.")
            return None
        return Session(**body, expiresAt=self._store.now() + ttl)

    def remove(self, session_id: str) -> bool:
        """Returns False when the session was already gone."""
        removed = self._store.remove_by_key(session_key(session_id)) is WriteStatus.OK
        if removed:
            logger.info("User Service: Session removed.")
        return removed


def get_session_store(store: DocumentStore = Depends(get_store)) -> SessionStore:
    return SessionStore(store)
