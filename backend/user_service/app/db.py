# backend/user_service/app/db.py

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import DATABASE_URL, STORE_TIMEOUT_SECONDS

Base = declarative_base()


def build_engine(url: str = DATABASE_URL, timeout: float = STORE_TIMEOUT_SECONDS) -> Engine:
    """
    Creates the engine behind the document store, with every connection bounded
    by `timeout` seconds so a slow backend fails fast instead of hanging a worker.
    """
    if url.startswith("sqlite"):
        # check_same_thread: pooled connections are handed between request threads
        # timeout: how long a writer waits on a locked database file
        return create_engine(
            url, connect_args={"check_same_thread": False, "timeout": timeout}
        )

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_timeout=timeout,
        connect_args={
            "connect_timeout": max(1, int(timeout)),
            "options": f"-c statement_timeout={int(timeout * 1000)}",
        },
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


# --- FastAPI dependencies: shared instances are created once at startup ---
def get_store(request: Request):
    return request.app.state.store


def get_token_service(request: Request):
    return request.app.state.token_service
