import logging
import os
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from app.core.config import settings
from app.db.base import Base

logger = logging.getLogger(__name__)


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        # sqlite waits `timeout` seconds for a locked database before raising
        return {"check_same_thread": False, "timeout": settings.DB_CONNECT_TIMEOUT_SECONDS}
    return {"connect_timeout": settings.DB_CONNECT_TIMEOUT_SECONDS}


def _ensure_sqlite_dir(url: str) -> None:
    prefix = "sqlite:///"
    if not url.startswith(prefix) or url.endswith(":memory:"):
        return
    directory = os.path.dirname(url[len(prefix):])
    if directory:
        os.makedirs(directory, exist_ok=True)


def build_engine(url: str) -> Engine:
    _ensure_sqlite_dir(url)
    kwargs = {"connect_args": _connect_args(url), "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        kwargs.update(pool_recycle=3600, pool_timeout=settings.DB_CONNECT_TIMEOUT_SECONDS)
    return create_engine(url, **kwargs)


# Create the SQLAlchemy engine
engine = build_engine(settings.DATABASE_URL)

# Create a configured "Session" class
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Engine | None = None) -> None:
    """Create missing tables. Schema migrations are managed outside this service."""
    # register every model on Base.metadata
    import app.models.auth  # noqa: F401
    import app.models.escrow  # noqa: F401
    import app.models.users  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


# do not change the order of the code below
# Dependency that can be used in routes to get the session
def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()  # generate a new SessionLocal
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
