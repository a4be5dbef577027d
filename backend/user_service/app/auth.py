# backend/user_service/app/auth.py

import enum
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, status
from fastapi.responses import JSONResponse

from .db import get_token_service
from .errors import StoreUnavailable
from .responses import envelope
from .schemas import Session
from .sessions import SessionStore, get_session_store
from .tokens import TokenService

logger = logging.getLogger(__name__)


class AuthStatus(enum.Enum):
    NO_TOKEN = "no_token"
    UNAUTHORIZED = "unauthorized"
    AUTHORIZED = "authorized"
    # The store failed while checking the session: the verdict is unknown.
    ERROR = "error"


@dataclass(frozen=True)
class AuthOutcome:
    status: AuthStatus
    message: str
    session: Optional[Session] = None
    token: Optional[str] = None
    error: Optional[dict] = None

    @property
    def authorized(self) -> Optional[bool]:
        if self.status is AuthStatus.AUTHORIZED:
            return True
        if self.status is AuthStatus.ERROR:
            return None
        return False


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """
    None when no header was sent. A header without the Bearer scheme is taken
    as the raw token.
    """
    if authorization is None:
        return None
    value = authorization.strip()
    scheme, _, rest = value.partition(" ")
    if scheme.lower() == "bearer":
        return rest.strip()
    return value


NO_TOKEN_MESSAGE = "No authorization token provided."
INVALID_TOKEN_MESSAGE = "Error extending session.  Invalid token"


def screen_token(authorization: Optional[str], tokens: TokenService) -> Optional[AuthOutcome]:
    """
    Refusal for a missing or unverifiable token, decided from the header alone.
    None means the token verifies and its session still has to be checked.
    """
    token = extract_bearer_token(authorization)
    if token is None:
        return AuthOutcome(AuthStatus.NO_TOKEN, NO_TOKEN_MESSAGE)
    if not token or tokens.verify(token) is None:
        return AuthOutcome(AuthStatus.UNAUTHORIZED, INVALID_TOKEN_MESSAGE)
    return None


def evaluate(
    authorization: Optional[str], tokens: TokenService, sessions: SessionStore
) -> AuthOutcome:
    token = extract_bearer_token(authorization)
    if token is None:
        return AuthOutcome(AuthStatus.NO_TOKEN, NO_TOKEN_MESSAGE)

    session_id = tokens.verify(token) if token else None
    if session_id is None:
        return AuthOutcome(AuthStatus.UNAUTHORIZED, INVALID_TOKEN_MESSAGE)

    try:
        session = sessions.extend(session_id)
    except StoreUnavailable as e:
        logger.error(f"User Service: Could not verify session: {e.message}")
        return AuthOutcome(
            AuthStatus.ERROR, "Failed to extend session.", error=e.error
        )

    if session is None:
        return AuthOutcome(AuthStatus.UNAUTHORIZED, "Unauthorized.  Session expired.")

    return AuthOutcome(
        AuthStatus.AUTHORIZED,
        "Successfully extended session.",
        session=session,
        token=token,
    )


def authenticate(
    authorization: Optional[str] = Header(None),
    tokens: TokenService = Depends(get_token_service),
    sessions: SessionStore = Depends(get_session_store),
) -> AuthOutcome:
    """
    Request dependency for bearer-protected routes. It never rejects: the
    handler decides, so routes can also serve anonymous callers.
    """
    return evaluate(authorization, tokens, sessions)


def reject_unauthorized(outcome: AuthOutcome, request_id: int) -> Optional[JSONResponse]:
    """The response a protected route must return, or None to proceed."""
    if outcome.status is AuthStatus.AUTHORIZED:
        return None
    status_code = (
        status.HTTP_500_INTERNAL_SERVER_ERROR
        if outcome.authorized is None
        else status.HTTP_401_UNAUTHORIZED
    )
    return envelope(
        status_code,
        request_id,
        message=outcome.message,
        error=outcome.error,
        authorized=outcome.authorized,
    )
