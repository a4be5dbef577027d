# backend/user_service/app/tokens.py

import logging
from typing import Optional

from jose import JWTError, jwt

from .config import JWT_ALGORITHM, JWT_SECRET

logger = logging.getLogger(__name__)


class TokenService:
    """
    Bearer tokens wrapping a session id. Tokens carry no expiry of their own:
    a stale token still verifies and is then refused by the session store.
    """

    def __init__(self, secret: str = JWT_SECRET, algorithm: str = JWT_ALGORITHM):
        self._secret = secret
        self._algorithm = algorithm

    def issue(self, session_id: str) -> str:
        return jwt.encode({"id": session_id}, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> Optional[str]:
        """Returns the session id, or None for any malformed or foreign token."""
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except JWTError as e:
            logger.warning(f"User Service: Rejected bearer token: {e}")
            return None

        session_id = payload.get("id")
        if not isinstance(session_id, str) or not session_id:
            logger.warning("User Service: Rejected bearer token without a session id.")
            return None
        return session_id
