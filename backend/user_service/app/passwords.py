# backend/user_service/app/passwords.py

from typing import Optional

import bcrypt

from .errors import ValidationError

BCRYPT_ROUNDS = 10
MAX_PASSWORD_BYTES = 72


def hash_password(password: str) -> str:
    secret = password.encode("utf-8")
    if len(secret) > MAX_PASSWORD_BYTES:
        raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
    return bcrypt.hashpw(secret, bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not password or not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Not a bcrypt hash, or a secret bcrypt refuses (over 72 bytes).
        return False
