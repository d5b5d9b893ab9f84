"""Database session management."""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from snapsecure_api.settings import get_settings


def create_db_engine(database_url: str) -> Engine:
    """Create an engine with pooling suited to the backend."""
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
        )
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create the session factory shared by all repositories."""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create all tables."""
    from snapsecure_api.db.base import Base
    import snapsecure_api.models  # noqa: F401

    Base.metadata.create_all(engine)


def get_engine() -> Engine:
    """Get engine for the configured database."""
    return create_db_engine(get_settings().database_url_computed)
