# backend/user_service/app/services.py

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from fastapi import Depends

from .db import get_store, get_token_service
from .errors import (
    DataIntegrityError,
    NotFoundError,
    StoreUnavailable,
    Unauthorized,
    ValidationError,
    WriteStatus,
)
from .ids import EntityClass, IdGenerator
from .passwords import hash_password, verify_password
from .schemas import Session
from .sessions import SessionStore
from .store import DocumentStore
from .tokens import TokenService

logger = logging.getLogger(__name__)

NEW_ORDER_STATUS = "created"

# Placeholder contact details every new customer profile starts with.
_PLACEHOLDER_ADDRESS = {
    "address": "1234 Main St",
    "city": "Some City",
    "state": "TX",
    "zipCode": "12345",
    "country": "US",
}
_PLACEHOLDER_PHONE = {"phone_number": "1234567891", "extension": "1234"}


def customer_key(cust_id: int) -> str:
    return IdGenerator.key_for(EntityClass.CUSTOMER, cust_id)


def username_key(username: str) -> str:
    return f"username::{username}"


def parse_order_id(order_ref: Union[int, str]) -> int:
    """Accepts an order id (5001) or an order key (order_5001)."""
    ref = str(order_ref).strip()
    if ref.startswith("order_"):
        ref = ref[len("order_"):]
    if not ref.isdigit():
        raise ValidationError("Invalid orderId provided.")
    return int(ref)


def order_key(order_ref: Union[int, str]) -> str:
    return IdGenerator.key_for(EntityClass.ORDER, parse_order_id(order_ref))


def _split_path(path: str) -> List[str]:
    parts = path.split(".") if path else []
    if not parts or any(not part.strip() for part in parts):
        raise ValidationError(f"Invalid document path '{path}'.")
    return [part.strip() for part in parts]


def _resolve(document: Dict[str, Any], parts: List[str], create: bool) -> Dict[str, Any]:
    node = document
    for part in parts:
        child = node.get(part)
        if child is None and create:
            child = node[part] = {}
        if not isinstance(child, dict):
            raise NotFoundError(f"No document object at path '{'.'.join(parts)}'.")
        node = child
    return node


def _numeric_cust_id(order: Dict[str, Any]) -> Dict[str, Any]:
    # Orders are looked up by an integer custId.
    cust_id = order.get("custId")
    if isinstance(cust_id, str) and cust_id.strip().isdigit():
        cust_id = int(cust_id)
    if isinstance(cust_id, bool) or not isinstance(cust_id, int):
        raise ValidationError("Order must have a numeric custId.")
    order["custId"] = cust_id
    return order


def _stamp(document: Dict[str, Any], epoch: float, actor: Any, verb: str) -> None:
    meta = document.get("doc")
    if not isinstance(meta, dict):
        meta = document["doc"] = {}
    meta[verb] = int(epoch)
    meta[f"{verb}By"] = actor


class AccountService:
    """Registration, credential checks and the sessions that follow a login."""

    def __init__(
        self,
        store: DocumentStore,
        ids: IdGenerator,
        sessions: SessionStore,
        tokens: TokenService,
    ):
        self._store = store
        self._ids = ids
        self._sessions = sessions
        self._tokens = tokens

    def register(
        self, first_name: str, last_name: str, email: str, username: str, password: str
    ) -> Dict[str, Any]:
        hashed = hash_password(password)
        now = self._store.now()

        # The username document is the uniqueness check: only one insert can win.
        reservation = username_key(username)
        claimed = self._store.insert(
            reservation, {"username": username}, doc_type="username"
        )
        if claimed is WriteStatus.ALREADY_EXISTS:
            raise ValidationError(f"Username '{username}' is already registered.")

        created = [reservation]
        try:
            cust_id = self._ids.next_id(EntityClass.CUSTOMER)
            customer = self._new_customer_document(
                cust_id, first_name, last_name, email, username, now
            )
            if self._store.insert(customer["_id"], customer, doc_type="customer") is not WriteStatus.OK:
                raise DataIntegrityError(f"Customer document '{customer['_id']}' already exists.")
            created.append(customer["_id"])

            user_id = self._ids.next_id(EntityClass.USER)
            user = {
                "docType": "user",
                "_id": IdGenerator.key_for(EntityClass.USER, user_id),
                "userId": user_id,
                "username": username,
                "password": hashed,
            }
            if self._store.insert(user["_id"], user, doc_type="user") is not WriteStatus.OK:
                raise DataIntegrityError(f"User document '{user['_id']}' already exists.")
        except Exception:
            self._discard(reversed(created))
            raise

        logger.info(
            f"User Service: Registered '{username}' (custId={cust_id}, userId={user_id})."
        )
        user["password"] = None
        return {"customerInfo": customer, "userInfo": user}

    def login(self, username: str, password: str) -> Dict[str, Any]:
        user = self._store.find_user_by_username(username)
        if user is None or not verify_password(password, user["password"]):
            logger.warning(f"User Service: Failed login for '{username}'.")
            raise Unauthorized("Invalid user.  Check username and password.")

        customer = self._correlated_customer(user)
        session = self._sessions.create(username)
        token = self._tokens.issue(session.sessionId)
        logger.info(f"User Service: '{username}' logged in.")
        return self._account_view(user, customer, token)

    def get_user_from_session(self, session: Session, token: str) -> Dict[str, Any]:
        user = self._store.find_user_by_username(session.username)
        if user is None:
            raise Unauthorized("Invalid user.  Check username and password.")
        customer = self._correlated_customer(user)
        return self._account_view(user, customer, token)

    def logout(self, session_id: str) -> bool:
        return self._sessions.remove(session_id)

    def _correlated_customer(self, user: Dict[str, Any]) -> Dict[str, Any]:
        customer = None
        if user["custId"] is not None:
            customer = self._store.get_by_key(customer_key(user["custId"]))
        if customer is None:
            logger.error(
                f"User Service: User '{user['username']}' has no customer document "
                f"(custId={user['custId']})."
            )
            raise Unauthorized(
                f"Invalid user.  No customer record found for '{user['username']}'."
            )
        return customer

    @staticmethod
    def _account_view(user: Dict[str, Any], customer: Dict[str, Any], token: str) -> Dict[str, Any]:
        return {
            "userInfo": {
                "userId": user["userId"],
                "username": user["username"],
                "token": token,
            },
            "customerInfo": customer,
        }

    def _discard(self, keys: Iterable[str]) -> None:
        for key in keys:
            try:
                self._store.remove_by_key(key)
                logger.warning(f"User Service: Removed '{key}' after a failed registration.")
            except StoreUnavailable as e:
                logger.error(f"User Service: Orphaned document '{key}': {e.message}")

    @staticmethod
    def _new_customer_document(
        cust_id: int, first_name: str, last_name: str, email: str, username: str, now: float
    ) -> Dict[str, Any]:
        return {
            "doc": {
                "type": "customer",
                "schema": "1.0.0",
                "created": int(now),
                "createdBy": cust_id,
            },
            "_id": customer_key(cust_id),
            "custId": cust_id,
            "custName": {"firstName": first_name, "lastName": last_name},
            "username": username,
            "email": email,
            "createdOn": datetime.fromtimestamp(now, tz=timezone.utc).date().isoformat(),
            "address": {
                "home": dict(_PLACEHOLDER_ADDRESS),
                "work": dict(_PLACEHOLDER_ADDRESS),
            },
            "mainPhone": dict(_PLACEHOLDER_PHONE),
            "additionalPhones": {"type": "work", **_PLACEHOLDER_PHONE},
        }


class CustomerService:
    """Customer profile, order and address documents."""

    def __init__(self, store: DocumentStore, ids: IdGenerator):
        self._store = store
        self._ids = ids

    def get_customer(self, cust_id: int) -> Dict[str, Any]:
        customer = self._store.get_by_key(customer_key(cust_id))
        if customer is None:
            raise NotFoundError("Customer not found.")
        return customer

    def get_customer_orders(self, cust_id: int) -> List[Dict[str, Any]]:
        orders = [
            order
            for order in self._store.find_by_field("order", "custId", cust_id)
            if order.get("orderStatus") != NEW_ORDER_STATUS
        ]
        orders.sort(key=lambda order: order.get("orderId", 0), reverse=True)
        return [self._order_summary(order) for order in orders]

    def get_new_order(self, cust_id: int) -> List[Dict[str, Any]]:
        pending = [
            order
            for order in self._store.find_by_field("order", "custId", cust_id)
            if order.get("orderStatus") == NEW_ORDER_STATUS
        ]
        if not pending:
            return []
        return [max(pending, key=lambda order: order.get("orderId", 0))]

    def get_order(self, order_ref: Union[int, str]) -> Dict[str, Any]:
        order = self._store.get_by_key(order_key(order_ref))
        if order is None:
            raise NotFoundError("Order not found.")
        return order

    def save_order(self, order: Dict[str, Any]) -> Dict[str, Any]:
        order = _numeric_cust_id(dict(order))
        order_id = self._ids.next_id(EntityClass.ORDER)
        key = IdGenerator.key_for(EntityClass.ORDER, order_id)
        order.update(_id=key, orderId=order_id)
        _stamp(order, self._store.now(), order["custId"], "created")

        if self._store.insert(key, order, doc_type="order") is not WriteStatus.OK:
            raise DataIntegrityError(f"Order document '{key}' already exists.")
        logger.info(f"User Service: Saved order {key} for customer {order.get('custId')}.")

        saved = self._store.get_by_key(key)
        if saved is None:
            raise DataIntegrityError(f"Order document '{key}' vanished after insert.")
        return saved

    def update_order(self, order: Dict[str, Any]) -> bool:
        if order.get("orderId") is None:
            raise ValidationError("Order is missing orderId.")
        order_id = parse_order_id(order["orderId"])
        key = IdGenerator.key_for(EntityClass.ORDER, order_id)
        order = _numeric_cust_id(dict(order, _id=key, orderId=order_id))
        _stamp(order, self._store.now(), order.get("custId"), "modified")

        if self._store.replace(key, order) is WriteStatus.NOT_FOUND:
            raise NotFoundError("Order not found.")
        logger.info(f"User Service: Updated order {key}.")
        return True

    def delete_order(self, order_ref: Union[int, str]) -> bool:
        key = order_key(order_ref)
        if self._store.remove_by_key(key) is WriteStatus.NOT_FOUND:
            raise NotFoundError("Order not found.")
        logger.info(f"User Service: Deleted order {key}.")
        return True

    def save_address(self, cust_id: int, path: str, address: Dict[str, Any]) -> bool:
        """Adds `address` under `path` (e.g. "address"), keyed by its `name`."""
        name = address.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Address must have a name.")

        customer = self.get_customer(cust_id)
        addresses = _resolve(customer, _split_path(path), create=True)
        if name in addresses:
            raise ValidationError(f"Address '{name}' already exists.")
        addresses[name] = {key: value for key, value in address.items() if key != "name"}
        return self._replace_customer(customer, cust_id)

    def update_address(self, cust_id: int, path: str, address: Dict[str, Any]) -> bool:
        """Replaces the address stored at `path` (e.g. "address.home")."""
        parts = _split_path(path)
        customer = self.get_customer(cust_id)
        parent = _resolve(customer, parts[:-1], create=False)
        if parts[-1] not in parent:
            raise NotFoundError(f"No address found at path '{path}'.")
        parent[parts[-1]] = dict(address)
        return self._replace_customer(customer, cust_id)

    def _replace_customer(self, customer: Dict[str, Any], cust_id: int) -> bool:
        _stamp(customer, self._store.now(), cust_id, "modified")
        if self._store.replace(customer_key(cust_id), customer) is WriteStatus.NOT_FOUND:
            raise NotFoundError("Customer not found.")
        return True

    @staticmethod
    def _order_summary(order: Dict[str, Any]) -> Dict[str, Any]:
        created: Optional[int] = (order.get("doc") or {}).get("created")
        shipping = order.get("shippingInfo") or {}
        return {
            "id": order.get("_id"),
            "orderId": order.get("orderId"),
            "orderStatus": order.get("orderStatus"),
            "shippedTo": shipping.get("name"),
            "grandTotal": order.get("grandTotal"),
            "lineItems": order.get("lineItems", []),
            "orderDate": (
                datetime.fromtimestamp(created, tz=timezone.utc).isoformat()
                if created is not None
                else None
            ),
        }


# --- FastAPI dependencies ---
def get_account_service(
    store: DocumentStore = Depends(get_store),
    tokens: TokenService = Depends(get_token_service),
) -> AccountService:
    return AccountService(store, IdGenerator(store), SessionStore(store), tokens)


def get_customer_service(store: DocumentStore = Depends(get_store)) -> CustomerService:
    return CustomerService(store, IdGenerator(store))
