# backend/user_service/app/schemas.py

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

# Field names are camelCase: they are the wire format the web client already uses.


class ApiResponse(BaseModel):
    """Envelope shared by every response body."""

    data: Any = Field(None, description="Payload on success, null on failure.")
    message: Optional[str] = Field(None, description="Human readable outcome.")
    error: Optional[Dict[str, Any]] = Field(
        None, description="Structured error detail (message and stackTrace)."
    )
    authorized: Optional[bool] = Field(
        None, description="Session verdict; null when not applicable."
    )
    requestId: int = Field(
        -1, description="Client supplied correlation id, echoed back untouched."
    )


class Session(BaseModel):
    sessionId: str = Field(..., description="UUID identifying the session.")
    username: str = Field(..., description="Owner of the session.")
    docType: str = Field("SESSION")
    createdAt: float = Field(..., description="Epoch seconds of session creation.")
    expiresAt: Optional[float] = Field(
        None, description="Epoch seconds after which the session is evicted."
    )

    model_config = ConfigDict(extra="ignore")


class RegisterRequest(BaseModel):
    firstName: str = Field(..., min_length=1, max_length=255)
    lastName: str = Field(..., min_length=1, max_length=255)
    username: str = Field(..., min_length=1, max_length=255)
    email: EmailStr = Field(..., description="Unique email address of the customer.")
    # bcrypt only looks at the first 72 bytes.
    password: str = Field(..., min_length=1, max_length=72)
    requestId: Optional[int] = None


class LoginRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None
    requestId: Optional[int] = None


class SaveOrderRequest(BaseModel):
    order: Optional[Dict[str, Any]] = None
    update: bool = False
    requestId: Optional[int] = None


class SaveAddressRequest(BaseModel):
    customerId: Optional[int] = None
    address: Optional[Dict[str, Any]] = None
    path: Optional[str] = None
    update: bool = False
    requestId: Optional[int] = None


class RequestIdBody(BaseModel):
    requestId: Optional[int] = None
