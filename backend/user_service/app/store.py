# backend/user_service/app/store.py

import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import and_, case, delete, or_, select, text, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import aliased, sessionmaker

from .errors import StoreUnavailable, WriteStatus
from .models import Counter, Document

logger = logging.getLogger(__name__)

# Dialects able to run the counter upsert as one atomic statement.
_UPSERT_BUILDERS = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


def _live(model, now: float):
    return or_(model.expires_at.is_(None), model.expires_at > now)


class DocumentStore:
    """
    Key/value + query access to the document tables.

    A lookup miss is reported as None or WriteStatus.NOT_FOUND. Anything the
    database itself raises is converted to StoreUnavailable here, so callers
    never see driver exceptions.
    """

    def __init__(self, session_factory: sessionmaker, clock: Callable[[], float] = time.time):
        self._session_factory = session_factory
        self._clock = clock

    @property
    def engine(self):
        return self._session_factory.kw["bind"]

    def now(self) -> float:
        return self._clock()

    @contextmanager
    def _unavailable_on_error(self, operation: str):
        try:
            yield
        except SQLAlchemyError as e:
            logger.error(f"User Service: Document store '{operation}' failed: {e}")
            raise StoreUnavailable.from_exception(
                f"Document store unavailable during {operation}.", e
            ) from e

    def get_by_key(self, key: str) -> Optional[Dict[str, Any]]:
        now = self._clock()
        with self._unavailable_on_error("get"), self._session_factory() as db:
            return db.execute(
                select(Document.body).where(Document.key == key, _live(Document, now))
            ).scalar_one_or_none()

    def insert(
        self,
        key: str,
        document: Dict[str, Any],
        doc_type: Optional[str] = None,
        ttl: Optional[int] = None,
    ) -> WriteStatus:
        now = self._clock()
        with self._unavailable_on_error("insert"), self._session_factory() as db:
            try:
                # An expired row still occupies the key until something replaces it.
                db.execute(
                    delete(Document).where(
                        Document.key == key,
                        Document.expires_at.is_not(None),
                        Document.expires_at <= now,
                    )
                )
                db.add(
                    Document(
                        key=key,
                        doc_type=doc_type,
                        body=dict(document),
                        expires_at=now + ttl if ttl else None,
                    )
                )
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.warning(f"User Service: Document '{key}' already exists.")
                return WriteStatus.ALREADY_EXISTS
        return WriteStatus.OK

    def replace(self, key: str, document: Dict[str, Any]) -> WriteStatus:
        now = self._clock()
        with self._unavailable_on_error("replace"), self._session_factory() as db:
            result = db.execute(
                update(Document)
                .where(Document.key == key, _live(Document, now))
                .values(body=dict(document))
            )
            db.commit()
        return WriteStatus.OK if result.rowcount else WriteStatus.NOT_FOUND

    def remove_by_key(self, key: str) -> WriteStatus:
        now = self._clock()
        with self._unavailable_on_error("remove"), self._session_factory() as db:
            result = db.execute(
                delete(Document).where(Document.key == key, _live(Document, now))
            )
            db.commit()
        return WriteStatus.OK if result.rowcount else WriteStatus.NOT_FOUND

    def get_and_touch(self, key: str, ttl: int) -> Optional[Dict[str, Any]]:
        """
        Reads a live document and pushes its expiry to now + ttl in the same
        statement. The expiry only ever moves forward.
        """
        now = self._clock()
        new_expiry = now + ttl
        with self._unavailable_on_error("touch"), self._session_factory() as db:
            body = db.execute(
                update(Document)
                .where(Document.key == key, _live(Document, now))
                .values(
                    expires_at=case(
                        (Document.expires_at > new_expiry, Document.expires_at),
                        else_=new_expiry,
                    )
                )
                .returning(Document.body)
            ).scalar_one_or_none()
            db.commit()
        return body

    def increment_counter(self, name: str, step: int = 1, initial: int = 0) -> int:
        """
        Atomically adds `step` to the named counter and returns the new value.
        A missing counter starts at `initial`, so its first value is initial + step.
        """
        dialect = self.engine.dialect.name
        builder = _UPSERT_BUILDERS.get(dialect)
        if builder is None:
            raise StoreUnavailable(
                f"Atomic counters are not supported on the '{dialect}' backend."
            )

        stmt = (
            builder(Counter)
            .values(name=name, value=initial + step)
            .on_conflict_do_update(
                index_elements=[Counter.name],
                set_={"value": Counter.value + step},
            )
            .returning(Counter.value)
        )
        with self._unavailable_on_error("increment"), self._session_factory() as db:
            value = db.execute(stmt).scalar_one_or_none()
            db.commit()

        if value is None:
            raise StoreUnavailable(f"Counter '{name}' returned no value.")
        return int(value)

    def find_by_field(self, doc_type: str, field: str, value: Any) -> List[Dict[str, Any]]:
        now = self._clock()
        column = Document.body[field]
        if isinstance(value, int) and not isinstance(value, bool):
            column = column.as_integer()
        else:
            column = column.as_string()

        with self._unavailable_on_error("query"), self._session_factory() as db:
            return list(
                db.execute(
                    select(Document.body)
                    .where(
                        Document.doc_type == doc_type,
                        column == value,
                        _live(Document, now),
                    )
                    .order_by(Document.key)
                ).scalars()
            )

    def find_user_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        """
        Joins the user document with the customer document sharing its username.
        Returns None when there is no user; custId is None when the user has no
        customer document.
        """
        now = self._clock()
        user = aliased(Document)
        customer = aliased(Document)
        stmt = (
            select(
                customer.body["custId"].as_integer(),
                user.body["userId"].as_integer(),
                user.body["username"].as_string(),
                user.body["password"].as_string(),
            )
            .select_from(user)
            .outerjoin(
                customer,
                and_(
                    customer.doc_type == "customer",
                    customer.body["username"].as_string()
                    == user.body["username"].as_string(),
                    _live(customer, now),
                ),
            )
            .where(
                user.doc_type == "user",
                user.body["username"].as_string() == username,
                _live(user, now),
            )
            .order_by(user.key, customer.key)
            .limit(1)
        )
        with self._unavailable_on_error("query"), self._session_factory() as db:
            row = db.execute(stmt).first()

        if row is None:
            return None
        cust_id, user_id, found_username, password = row
        return {
            "custId": cust_id,
            "userId": user_id,
            "username": found_username,
            "password": password,
        }

    def ping(self) -> Dict[str, Any]:
        started = time.perf_counter()
        with self._unavailable_on_error("ping"), self._session_factory() as db:
            db.execute(text("SELECT 1"))
        return {
            "backend": self.engine.dialect.name,
            "url": self.engine.url.render_as_string(hide_password=True),
            "status": "ok",
            "latencyMs": round((time.perf_counter() - started) * 1000, 3),
        }
