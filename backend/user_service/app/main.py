# backend/user_service/app/main.py

import logging
import sys
import time
from typing import Any, Callable, Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import OperationalError

from . import models  # noqa: F401  registers the tables on Base.metadata
from .auth import AuthOutcome, authenticate, reject_unauthorized, screen_token
from .config import (
    CORS_ORIGINS,
    JWT_SECRET,
    STARTUP_MAX_RETRIES,
    STARTUP_RETRY_DELAY_SECONDS,
)
from .db import Base, build_engine, build_session_factory, get_store, get_token_service
from .errors import ServiceError, StoreUnavailable, ValidationError
from .responses import envelope, ok, parse_request_id, service_error, unexpected_error
from .schemas import (
    LoginRequest,
    RegisterRequest,
    RequestIdBody,
    SaveAddressRequest,
    SaveOrderRequest,
)
from .services import (
    AccountService,
    CustomerService,
    get_account_service,
    get_customer_service,
)
from .store import DocumentStore
from .tokens import TokenService

# --- Standard Logging Configuration ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)

# Suppress noisy logs from third-party libraries for cleaner output
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
logging.getLogger("uvicorn.error").setLevel(logging.INFO)

# Routes served without a bearer token.
OPEN_PATHS = {"/", "/health", "/test/ping", "/test/testLogin", "/user/register", "/user/login"}

# --- FastAPI Application Setup ---
app = FastAPI(
    title="User Service API",
    description="Registration, login sessions and customer/order/address documents for the mini-ecommerce app.",
    version="1.0.0",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- FastAPI Event Handlers ---
@app.on_event("startup")
async def startup_event():
    engine = build_engine()
    for i in range(STARTUP_MAX_RETRIES):
        try:
            logger.info(
                f"User Service: Attempting to connect to the document store and create tables (attempt {i+1}/{STARTUP_MAX_RETRIES})..."
            )
            Base.metadata.create_all(bind=engine)
            logger.info(
                "User Service: Successfully connected to the document store and ensured tables exist."
            )
            break
        except OperationalError as e:
            logger.warning(f"User Service: Failed to connect to the document store: {e}")
            if i < STARTUP_MAX_RETRIES - 1:
                logger.info(
                    f"User Service: Retrying in {STARTUP_RETRY_DELAY_SECONDS} seconds..."
                )
                time.sleep(STARTUP_RETRY_DELAY_SECONDS)
            else:
                logger.critical(
                    f"User Service: Failed to connect to the document store after {STARTUP_MAX_RETRIES} attempts. Exiting application."
                )
                sys.exit(1)

    if JWT_SECRET == "change-me":
        logger.warning("User Service: JWT_SECRET is not set, using the development default.")

    # One shared store (engine + pool) for every request.
    app.state.store = DocumentStore(build_session_factory(engine))
    app.state.token_service = TokenService()


@app.on_event("shutdown")
async def shutdown_event():
    store = getattr(app.state, "store", None)
    if store is not None:
        store.engine.dispose()
        logger.info("User Service: Document store connections closed.")


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"User Service: Invalid request to {request.url.path}: {exc.errors()}")
    body = getattr(exc, "body", None)
    raw_request_id = body.get("requestId") if isinstance(body, dict) else None
    if raw_request_id is None:
        raw_request_id = request.query_params.get("requestId")
    request_id = parse_request_id(raw_request_id)

    # A caller without a usable token is refused before its body is judged.
    if request.url.path not in OPEN_PATHS:
        refusal = screen_token(
            request.headers.get("authorization"), get_token_service(request)
        )
        if refusal is not None:
            return reject_unauthorized(refusal, request_id)

    return envelope(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        request_id,
        message="Invalid request.",
        error={
            "message": "Request validation failed.",
            "details": [
                {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
                for err in exc.errors()
            ],
        },
    )


def _respond(
    request_id: int,
    action: Callable[[], Any],
    success_message: str,
    failure_message: str,
    authorized: Optional[bool] = True,
    error_authorized: Optional[bool] = True,
):
    try:
        data = action()
    except ServiceError as e:
        return service_error(e, request_id, authorized=error_authorized)
    except Exception as e:
        logger.error(f"User Service: {failure_message} {e}", exc_info=True)
        return unexpected_error(e, request_id, failure_message)
    return ok(request_id, data, success_message, authorized=authorized)


def _numeric_id(raw: Optional[str], name: str) -> int:
    if raw is None or not str(raw).strip():
        raise ValidationError(f"No {name} provided.")
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"Invalid {name} provided.")


# --- Root Endpoint ---
@app.get("/", status_code=status.HTTP_200_OK, summary="Root endpoint")
async def read_root():
    return {"message": "Welcome to the User Service!"}


# --- Health Check Endpoint ---
@app.get("/health", status_code=status.HTTP_200_OK, summary="Health check endpoint")
async def health_check():
    return {"status": "ok", "service": "user-service"}


# --- Test Endpoints ---
def _ping(store: DocumentStore, request_id: int, authorized: Optional[bool] = None):
    try:
        diagnostics = store.ping()
    except StoreUnavailable as e:
        return envelope(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_id,
            message="Error trying to ping database.",
            error=e.error,
        )
    return ok(request_id, diagnostics, "Successfully pinged database.", authorized=authorized)


@app.get("/test/ping", summary="Ping the document store")
def ping(requestId: Optional[str] = None, store: DocumentStore = Depends(get_store)):
    return _ping(store, parse_request_id(requestId))


@app.get("/test/authorizedPing", summary="Ping the document store with a valid session")
def authorized_ping(
    requestId: Optional[str] = None,
    auth: AuthOutcome = Depends(authenticate),
    store: DocumentStore = Depends(get_store),
):
    request_id = parse_request_id(requestId)
    rejection = reject_unauthorized(auth, request_id)
    if rejection is not None:
        return rejection
    return _ping(store, request_id, authorized=True)


def _login(username: Optional[str], password: Optional[str], request_id: int, accounts: AccountService):
    if not (username and password):
        return envelope(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_id,
            message="No username and/or password provided.",
        )
    return _respond(
        request_id,
        lambda: accounts.login(username, password),
        "Successfully logged in (session created).",
        "Error attempting to login user.",
        error_authorized=None,
    )


@app.get("/test/testLogin", summary="Login through query parameters")
def query_login(
    username: Optional[str] = None,
    password: Optional[str] = None,
    requestId: Optional[str] = None,
    accounts: AccountService = Depends(get_account_service),
):
    return _login(username, password, parse_request_id(requestId), accounts)


# --- User Endpoints ---
@app.post("/user/register", summary="Register a new customer and user")
def register(body: RegisterRequest, accounts: AccountService = Depends(get_account_service)):
    logger.info(f"User Service: Registering user '{body.username}'.")
    return _respond(
        parse_request_id(body.requestId),
        lambda: accounts.register(
            body.firstName, body.lastName, body.email, body.username, body.password
        ),
        "Successfully registered customer/user.",
        "Error attempting to register user.",
        authorized=None,
        error_authorized=None,
    )


@app.post("/user/login", summary="Validate credentials and create a session")
def login(body: LoginRequest, accounts: AccountService = Depends(get_account_service)):
    return _login(body.username, body.password, parse_request_id(body.requestId), accounts)


@app.get("/user/verifyUserSession", summary="Verify and extend the caller's session")
def verify_user_session(
    requestId: Optional[str] = None,
    auth: AuthOutcome = Depends(authenticate),
    accounts: AccountService = Depends(get_account_service),
):
    request_id = parse_request_id(requestId)
    rejection = reject_unauthorized(auth, request_id)
    if rejection is not None:
        return rejection
    return _respond(
        request_id,
        lambda: accounts.get_user_from_session(auth.session, auth.token),
        "Successfully verified and extended session.",
        "Error trying to verify user session.",
    )


@app.post("/user/logout", summary="End the caller's session")
def logout(
    body: Optional[RequestIdBody] = None,
    auth: AuthOutcome = Depends(authenticate),
    accounts: AccountService = Depends(get_account_service),
):
    request_id = parse_request_id(body.requestId if body else None)
    rejection = reject_unauthorized(auth, request_id)
    if rejection is not None:
        return rejection
    return _respond(
        request_id,
        lambda: accounts.logout(auth.session.sessionId),
        "Successfully logged out (session removed).",
        "Error attempting to logout user.",
    )


@app.get("/user/getCustomer", summary="Get a customer document")
def get_customer(
    customerId: Optional[str] = None,
    requestId: Optional[str] = None,
    auth: AuthOutcome = Depends(authenticate),
    customers: CustomerService = Depends(get_customer_service),
):
    request_id = parse_request_id(requestId)
    rejection = reject_unauthorized(auth, request_id)
    if rejection is not None:
        return rejection
    return _respond(
        request_id,
        lambda: customers.get_customer(_numeric_id(customerId, "customerId")),
        "Successfully retrieved customer.",
        "Error attempting to get customer.",
    )


@app.get("/user/getCustomerOrders", summary="Get a customer's placed orders")
def get_customer_orders(
    customerId: Optional[str] = None,
    requestId: Optional[str] = None,
    auth: AuthOutcome = Depends(authenticate),
    customers: CustomerService = Depends(get_customer_service),
):
    request_id = parse_request_id(requestId)
    rejection = reject_unauthorized(auth, request_id)
    if rejection is not None:
        return rejection
    return _respond(
        request_id,
        lambda: customers.get_customer_orders(_numeric_id(customerId, "customerId")),
        "Successfully retrieved orders.",
        "Error attempting to get customer orders.",
    )


@app.get("/user/getNewOrder", summary="Get a customer's new/pending order")
def get_new_order(
    customerId: Optional[str] = None,
    requestId: Optional[str] = None,
    auth: AuthOutcome = Depends(authenticate),
    customers: CustomerService = Depends(get_customer_service),
):
    request_id = parse_request_id(requestId)
    rejection = reject_unauthorized(auth, request_id)
    if rejection is not None:
        return rejection
    return _respond(
        request_id,
        lambda: customers.get_new_order(_numeric_id(customerId, "customerId")),
        "Successfully retrieved new/pending order.",
        "Error attempting to get customer new/pending orders.",
    )


@app.get("/user/getOrder", summary="Get an order document")
def get_order(
    orderId: Optional[str] = None,
    requestId: Optional[str] = None,
    auth: AuthOutcome = Depends(authenticate),
    customers: CustomerService = Depends(get_customer_service),
):
    request_id = parse_request_id(requestId)
    rejection = reject_unauthorized(auth, request_id)
    if rejection is not None:
        return rejection
    if not orderId:
        return service_error(ValidationError("No orderId provided."), request_id, True)
    return _respond(
        request_id,
        lambda: customers.get_order(orderId),
        "Successfully retrieved order.",
        "Error attempting to get customer order.",
    )


@app.post("/user/saveOrUpdateOrder", summary="Create or replace an order")
def save_or_update_order(
    body: Optional[SaveOrderRequest] = None,
    auth: AuthOutcome = Depends(authenticate),
    customers: CustomerService = Depends(get_customer_service),
):
    request_id = parse_request_id(body.requestId if body else None)
    rejection = reject_unauthorized(auth, request_id)
    if rejection is not None:
        return rejection
    if body is None or not body.order:
        return service_error(ValidationError("No order provided."), request_id, True)

    if body.update:
        return _respond(
            request_id,
            lambda: customers.update_order(body.order),
            "Successfully updated order.",
            "Error attempting to update order.",
        )
    return _respond(
        request_id,
        lambda: customers.save_order(body.order),
        "Successfully saved order.",
        "Error attempting to save new order.",
    )


@app.delete("/user/deleteOrder", summary="Delete an order")
def delete_order(
    orderId: Optional[str] = None,
    requestId: Optional[str] = None,
    auth: AuthOutcome = Depends(authenticate),
    customers: CustomerService = Depends(get_customer_service),
):
    request_id = parse_request_id(requestId)
    rejection = reject_unauthorized(auth, request_id)
    if rejection is not None:
        return rejection
    if not orderId:
        return service_error(ValidationError("No orderId provided."), request_id, True)
    return _respond(
        request_id,
        lambda: customers.delete_order(orderId),
        "Successfully deleted order.",
        "Error attempting to delete customer order.",
    )


@app.post("/user/saveOrUpdateAddress", summary="Add or replace a customer address")
def save_or_update_address(
    body: Optional[SaveAddressRequest] = None,
    auth: AuthOutcome = Depends(authenticate),
    customers: CustomerService = Depends(get_customer_service),
):
    request_id = parse_request_id(body.requestId if body else None)
    rejection = reject_unauthorized(auth, request_id)
    if rejection is not None:
        return rejection

    missing = None
    if body is None or not body.customerId:
        missing = "No customerId provided."
    elif not body.address:
        missing = "No address provided."
    elif not body.path:
        missing = "No document path provided."
    if missing:
        return service_error(ValidationError(missing), request_id, True)

    if body.update:
        return _respond(
            request_id,
            lambda: customers.update_address(body.customerId, body.path, body.address),
            "Successfully updated address.",
            "Error attempting to update address.",
        )
    return _respond(
        request_id,
        lambda: customers.save_address(body.customerId, body.path, body.address),
        "Successfully saved address.",
        "Error attempting to save new address.",
    )
