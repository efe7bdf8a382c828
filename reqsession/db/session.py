from contextlib import contextmanager
from typing import Any, Dict, Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker


def get_connect_args(database_url: str) -> Dict[str, Any]:
    """Get database-specific connection arguments"""
    if database_url.startswith("sqlite"):
        # SQLite connections are shared with the ASGI threadpool
        return {"check_same_thread": False}
    return {}


def create_session_engine(database_url: str, **kwargs: Any) -> Engine:
    """Create an engine with the appropriate connection args for the URL."""
    return create_engine(
        database_url,
        connect_args=get_connect_args(database_url),
        **kwargs,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create the ORM session factory bound to an engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def get_db_sync(factory: sessionmaker) -> Generator[Session, None, None]:
    """Get a synchronous DB session with proper resource management"""
    db = factory()
    try:
        yield db
    finally:
        db.close()
