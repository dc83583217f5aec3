from typing import Callable, Generator
import logging

from fastapi import Request
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine, Session

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


# ============================================================
# ✅ Create SQLModel engine
# ============================================================
def build_engine(database_url: str) -> Engine:
    """
    Build the engine for the given url.
    In-memory SQLite shares one connection so every session sees the same data.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url == "sqlite://":
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=False, **kwargs)

    # For PostgreSQL, pool_pre_ping avoids stale connections
    logger.info("✅ Using database from environment")
    return create_engine(database_url, echo=False, pool_pre_ping=True)


def session_factory(engine: Engine) -> SessionFactory:
    """Return a zero-arg callable opening a new Session on the engine."""

    def _open() -> Session:
        return Session(engine, expire_on_commit=False)

    return _open


# ============================================================
# ✅ Create tables (called at startup)
# ============================================================
def create_db_and_tables(engine: Engine) -> None:
    """
    Create all database tables based on SQLModel models.
    This runs automatically at app startup.
    """
    # models must be imported so their tables are registered on the metadata
    import models.models  # noqa: F401

    try:
        SQLModel.metadata.create_all(engine)
        logger.info("✅ All database tables created successfully.")
    except Exception as e:
        logger.error(f"❌ Failed to create tables: {e}")
        raise


# ============================================================
# ✅ Dependency: FastAPI session generator
# ============================================================
def get_session(request: Request) -> Generator[Session, None, None]:
    """
    Provides a SQLModel Session bound to the engine opened by the app lifespan.
    Closes automatically after request completes.
    """
    with Session(request.app.state.engine, expire_on_commit=False) as session:
        yield session
