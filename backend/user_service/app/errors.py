# backend/user_service/app/errors.py

import enum
import traceback
from typing import Optional

from fastapi import status


class WriteStatus(enum.Enum):
    """Result of a keyed write against the document store."""

    OK = "ok"
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"


class ServiceError(Exception):
    """
    Base for failures the HTTP layer renders into the response envelope.
    `authorized` is echoed in the envelope: None when the failure says nothing
    about the caller's session.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    authorized: Optional[bool] = None

    def __init__(self, message: str, error: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.error = error

    @classmethod
    def from_exception(cls, message: str, exc: BaseException) -> "ServiceError":
        return cls(message, error=describe_exception(exc))


class ValidationError(ServiceError):
    """A request field is missing or malformed."""


class Unauthorized(ServiceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    authorized = False


class StoreUnavailable(ServiceError):
    """The document store could not be reached or did not answer in time."""


class DataIntegrityError(ServiceError):
    """A record that must correlate with another one is missing."""


class NotFoundError(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND


def describe_exception(exc: BaseException) -> dict:
    return {
        "message": str(exc),
        "stackTrace": "".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        ),
    }
