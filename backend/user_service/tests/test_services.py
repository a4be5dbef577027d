# backend/user_service/tests/test_services.py

import threading
from unittest.mock import patch

import pytest
from app.errors import NotFoundError, StoreUnavailable, Unauthorized, ValidationError
from app.ids import IdGenerator
from app.services import AccountService, CustomerService, order_key
from app.sessions import SessionStore
from app.tokens import TokenService


@pytest.fixture
def tokens():
    return TokenService(secret="service-tests")


@pytest.fixture
def accounts(store, tokens):
    return AccountService(store, IdGenerator(store), SessionStore(store), tokens)


@pytest.fixture
def customers(store):
    return CustomerService(store, IdGenerator(store))


def register(accounts, username="amy", password="pw-123456"):
    return accounts.register("Amy", "Pond", f"{username}@example.com", username, password)


# --- Account tests ---
def test_register_creates_customer_and_user(accounts, store):
    result = register(accounts)

    customer = result["customerInfo"]
    assert customer["custId"] == 1001
    assert customer["_id"] == "customer_1001"
    assert customer["custName"] == {"firstName": "Amy", "lastName": "Pond"}
    assert customer["doc"]["createdBy"] == 1001
    assert set(customer["address"]) == {"home", "work"}
    assert result["userInfo"]["userId"] == 1001
    assert result["userInfo"]["password"] is None

    stored_user = store.get_by_key("user_1001")
    assert stored_user["password"].startswith("$2")
    assert stored_user["password"] != "pw-123456"


def test_register_rejects_duplicate_username(accounts, store):
    register(accounts)
    with pytest.raises(ValidationError):
        register(accounts)
    assert store.get_by_key("customer_1002") is None


def test_register_removes_customer_when_user_id_cannot_be_minted(accounts, store):
    real_next_id = IdGenerator.next_id

    def failing_next_id(self, entity_class):
        if entity_class == "user":
            raise StoreUnavailable("counter down")
        return real_next_id(self, entity_class)

    with patch.object(IdGenerator, "next_id", failing_next_id):
        with pytest.raises(StoreUnavailable):
            register(accounts)

    assert store.get_by_key("customer_1001") is None
    assert store.find_by_field("customer", "username", "amy") == []
    assert store.get_by_key("username::amy") is None

    # The username is free again once the failed attempt is cleaned up.
    assert register(accounts)["userInfo"]["username"] == "amy"


def test_concurrent_registrations_of_one_username(accounts, store):
    """Test only one of several simultaneous registrations of a username wins."""
    barrier = threading.Barrier(4)
    results, errors = [], []

    def attempt():
        barrier.wait()
        try:
            results.append(register(accounts))
        except ValidationError as e:
            errors.append(e)

    threads = [threading.Thread(target=attempt) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(results) == 1
    assert len(errors) == 3
    assert len(store.find_by_field("user", "username", "amy")) == 1
    assert len(store.find_by_field("customer", "username", "amy")) == 1
    assert accounts.login("amy", "pw-123456")["userInfo"]["userId"] == (
        results[0]["userInfo"]["userId"]
    )


def test_login_returns_token_for_new_session(accounts, tokens, store):
    register(accounts)
    result = accounts.login("amy", "pw-123456")

    assert result["userInfo"]["username"] == "amy"
    assert result["userInfo"]["userId"] == 1001
    assert result["customerInfo"]["custId"] == 1001
    session_id = tokens.verify(result["userInfo"]["token"])
    assert store.get_by_key(f"session::{session_id}")["username"] == "amy"


def test_login_rejects_bad_credentials(accounts):
    register(accounts)
    with pytest.raises(Unauthorized) as wrong_password:
        accounts.login("amy", "not-the-password")
    with pytest.raises(Unauthorized) as unknown_user:
        accounts.login("rory", "pw-123456")

    assert wrong_password.value.message == unknown_user.value.message
    assert wrong_password.value.authorized is False


def test_login_without_customer_document(accounts, store):
    register(accounts)
    store.remove_by_key("customer_1001")

    with pytest.raises(Unauthorized) as excinfo:
        accounts.login("amy", "pw-123456")
    assert excinfo.value.message == "Invalid user.  No customer record found for 'amy'."


def test_get_user_from_session_and_logout(accounts, tokens, store):
    register(accounts)
    token = accounts.login("amy", "pw-123456")["userInfo"]["token"]
    session_id = tokens.verify(token)
    session = SessionStore(store).extend(session_id)

    view = accounts.get_user_from_session(session, token)
    assert view["userInfo"] == {"userId": 1001, "username": "amy", "token": token}

    assert accounts.logout(session_id) is True
    assert accounts.logout(session_id) is False


# --- Order tests ---
def test_order_key_accepts_ids_and_keys():
    assert order_key(5001) == "order_5001"
    assert order_key("5001") == "order_5001"
    assert order_key("order_5001") == "order_5001"
    with pytest.raises(ValidationError):
        order_key("five")


def test_save_update_and_delete_order(customers, clock):
    saved = customers.save_order({"custId": "1001", "orderStatus": "created", "lineItems": []})
    assert saved["orderId"] == 5001
    assert saved["_id"] == "order_5001"
    assert saved["custId"] == 1001
    assert saved["doc"]["created"] == int(clock.now)

    saved["orderStatus"] = "shipped"
    assert customers.update_order(saved) is True
    assert customers.get_order("order_5001")["orderStatus"] == "shipped"

    assert customers.delete_order(5001) is True
    with pytest.raises(NotFoundError):
        customers.get_order(5001)
    with pytest.raises(NotFoundError):
        customers.delete_order(5001)


def test_update_with_string_order_id_keeps_listing_sortable(customers):
    """Test an orderId sent as text is stored as a number."""
    customers.save_order({"custId": 1001, "orderStatus": "placed"})
    second = customers.save_order({"custId": 1001, "orderStatus": "placed"})

    second["orderId"] = "order_5002"
    second["orderStatus"] = "shipped"
    assert customers.update_order(second) is True
    assert customers.get_order(5002)["orderId"] == 5002

    placed = customers.get_customer_orders(1001)
    assert [order["orderId"] for order in placed] == [5002, 5001]


@pytest.mark.parametrize("cust_id", [None, "abc", "", 10.5, True])
def test_orders_need_a_numeric_customer(customers, cust_id):
    """Test orders with a missing or non-numeric custId are refused."""
    order = {"orderStatus": "created"}
    if cust_id is not None:
        order["custId"] = cust_id

    with pytest.raises(ValidationError):
        customers.save_order(order)

    saved = customers.save_order({"custId": 1001, "orderStatus": "created"})
    assert saved["orderId"] == 5001

    with pytest.raises(ValidationError):
        customers.update_order(dict(order, orderId=5001))
    assert customers.get_order(5001)["custId"] == 1001


def test_update_order_needs_an_existing_order(customers):
    with pytest.raises(ValidationError):
        customers.update_order({"custId": 1001})
    with pytest.raises(NotFoundError):
        customers.update_order({"orderId": 5999, "custId": 1001})


def test_orders_split_into_placed_and_new(customers, clock):
    customers.save_order({"custId": 1001, "orderStatus": "placed", "grandTotal": 10.5,
                          "shippingInfo": {"name": "Amy Pond"}})
    customers.save_order({"custId": 1001, "orderStatus": "created"})
    customers.save_order({"custId": 1001, "orderStatus": "shipped"})
    customers.save_order({"custId": 1001, "orderStatus": "created"})
    customers.save_order({"custId": 2002, "orderStatus": "placed"})

    placed = customers.get_customer_orders(1001)
    assert [order["orderId"] for order in placed] == [5003, 5001]
    assert placed[1]["shippedTo"] == "Amy Pond"
    assert placed[1]["grandTotal"] == 10.5
    assert placed[1]["orderDate"].startswith("2023-11-14")

    pending = customers.get_new_order(1001)
    assert [order["orderId"] for order in pending] == [5004]
    assert customers.get_new_order(3003) == []


# --- Customer / address tests ---
def test_get_missing_customer(customers):
    with pytest.raises(NotFoundError):
        customers.get_customer(4242)


def test_save_and_update_address(accounts, customers):
    register(accounts)
    beach_house = {"name": "beach", "address": "1 Shore Rd", "city": "Leadworth"}

    assert customers.save_address(1001, "address", beach_house) is True
    customer = customers.get_customer(1001)
    assert customer["address"]["beach"] == {"address": "1 Shore Rd", "city": "Leadworth"}
    assert customer["address"]["home"]["zipCode"] == "12345"

    with pytest.raises(ValidationError):
        customers.save_address(1001, "address", beach_house)
    with pytest.raises(ValidationError):
        customers.save_address(1001, "address", {"city": "Nowhere"})

    assert customers.update_address(1001, "address.home", {"address": "2 New St"}) is True
    assert customers.get_customer(1001)["address"]["home"] == {"address": "2 New St"}

    with pytest.raises(NotFoundError):
        customers.update_address(1001, "address.cabin", {"address": "3 Hill Rd"})
    with pytest.raises(NotFoundError):
        customers.save_address(9999, "address", beach_house)
