# backend/user_service/app/responses.py

from typing import Any, Optional

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from .errors import ServiceError, describe_exception
from .schemas import ApiResponse


def parse_request_id(raw: Any) -> int:
    """Correlation id for client-side logs; anything unparseable becomes -1."""
    if raw is None or isinstance(raw, bool):
        return -1
    try:
        return int(raw)
    except (TypeError, ValueError):
        return -1


def envelope(
    status_code: int,
    request_id: int,
    data: Any = None,
    message: Optional[str] = None,
    error: Optional[dict] = None,
    authorized: Optional[bool] = None,
) -> JSONResponse:
    body = ApiResponse(
        data=data,
        message=message,
        error=error,
        authorized=authorized,
        requestId=request_id,
    )
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def ok(request_id: int, data: Any, message: str, authorized: Optional[bool] = True) -> JSONResponse:
    return envelope(
        status.HTTP_200_OK, request_id, data=data, message=message, authorized=authorized
    )


def service_error(exc: ServiceError, request_id: int, authorized: Optional[bool] = None) -> JSONResponse:
    """
    Renders a ServiceError. Errors that carry no session verdict of their own
    take `authorized` from the caller (True once the gate has let the request in).
    """
    verdict = exc.authorized if exc.authorized is not None else authorized
    return envelope(
        exc.status_code,
        request_id,
        message=exc.message,
        error=exc.error,
        authorized=verdict,
    )


def unexpected_error(exc: Exception, request_id: int, message: str) -> JSONResponse:
    return envelope(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        request_id,
        message=message,
        error=describe_exception(exc),
    )
