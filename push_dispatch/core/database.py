"""Database connection and session management for the delivery audit store"""
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session

# Base class for ORM models
Base = declarative_base()


def create_audit_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create a SQLAlchemy engine for the audit store.

    Args:
        database_url: SQLAlchemy database URL (sqlite or postgresql)
        echo: Log SQL statements

    Returns:
        Configured Engine
    """
    engine_kwargs = {"echo": echo}

    # SQLite requires check_same_thread=False since writes run in worker threads
    if database_url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}

    return create_engine(database_url, **engine_kwargs)


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to the given engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def session_scope(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Context manager for database sessions outside request handlers.

    Usage:
        with session_scope(factory) as db:
            db.add(record)
            db.commit()

    Rolls back on exception and always closes the session.
    """
    db = session_factory()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_audit_schema(engine: Engine) -> None:
    """Create audit tables if they do not exist yet."""
    # Import models so their tables are registered on Base.metadata
    from push_dispatch.models import delivery_log  # noqa: F401

    Base.metadata.create_all(bind=engine)
