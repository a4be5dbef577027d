# backend/user_service/app/config.py

import os

POSTGRES_USER = os.getenv("POSTGRES_USER", "postgres")
POSTGRES_PASSWORD = os.getenv("POSTGRES_PASSWORD", "postgres")
POSTGRES_DB = os.getenv("POSTGRES_DB", "users")
POSTGRES_HOST = os.getenv("POSTGRES_HOST")
POSTGRES_PORT = os.getenv("POSTGRES_PORT", "5432")

if POSTGRES_HOST:
    _default_url = (
        "postgresql://"
        f"{POSTGRES_USER}:{POSTGRES_PASSWORD}@"
        f"{POSTGRES_HOST}:{POSTGRES_PORT}/{POSTGRES_DB}"
    )
else:
    _default_url = "sqlite:///./user_service.db"

DATABASE_URL = os.getenv("DATABASE_URL", _default_url)

# Bounded wait applied to every store call (connect, lock wait, statement).
STORE_TIMEOUT_SECONDS = float(os.getenv("STORE_TIMEOUT_SECONDS", "5"))

JWT_SECRET = os.getenv("JWT_SECRET", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Sliding session window; every authorized request resets it.
SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", "3600"))

COUNTER_PREFIX = os.getenv("COUNTER_PREFIX", "ecomm")

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "*").split(",")
    if origin.strip()
]

STARTUP_MAX_RETRIES = int(os.getenv("STARTUP_MAX_RETRIES", "10"))
STARTUP_RETRY_DELAY_SECONDS = int(os.getenv("STARTUP_RETRY_DELAY_SECONDS", "5"))
