"""
Database Persistence Layer - Core Engine.

============================================================
PURPOSE
============================================================
Engine construction, session factories and explicit
transaction boundaries for every arena service.

Requirements:
- SQLAlchemy 2.0 ORM (PostgreSQL in production, SQLite in tests)
- Explicit transaction management
- Domain exceptions propagate unchanged so callers can
  convert them to result values after rollback
- Storage failures surface as DatabasePersistenceError

============================================================
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from core.config import DatabaseConfig
from core.exceptions import ArenaError

from .models import Base

logger = logging.getLogger(__name__)


# =============================================================
# CUSTOM EXCEPTIONS
# =============================================================


class DatabasePersistenceError(Exception):
    """Raised when database persistence fails."""
    pass


class DatabaseConnectionError(DatabasePersistenceError):
    """Raised when database connection fails."""
    pass


class DatabaseInitializationError(DatabasePersistenceError):
    """Raised when database initialization fails."""
    pass


# =============================================================
# DATABASE ENGINE
# =============================================================


def _redact(url: str) -> str:
    return url.split("@")[-1]


def create_database_engine(config: Optional[DatabaseConfig] = None) -> Engine:
    """
    Create SQLAlchemy engine.

    SQLite URLs get a StaticPool (in-memory databases are shared
    by every session) and foreign keys switched on. Other URLs get
    the default QueuePool sized from the config.

    Args:
        config: Database configuration (defaults to environment)

    Returns:
        SQLAlchemy Engine
    """
    config = config or DatabaseConfig.from_env()

    logger.info(f"Creating database engine for: {_redact(config.url)}")

    if config.url.startswith("sqlite"):
        engine = create_engine(
            config.url,
            echo=config.echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

        @event.listens_for(engine, "connect")
        def on_connect(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(
        config.url,
        echo=config.echo,
        pool_size=config.pool_size,
        max_overflow=config.max_overflow,
        pool_recycle=config.pool_recycle,
        pool_pre_ping=True,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory shared by all services."""
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


# =============================================================
# SESSION MANAGEMENT
# =============================================================


@contextmanager
def transaction_scope(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Context manager for explicit transaction boundaries.

    Commits only if no exception occurs.
    Rolls back on ANY exception.

    Domain errors (ArenaError) are re-raised unchanged; storage
    errors are wrapped in DatabasePersistenceError.

    Usage:
        with transaction_scope(factory) as session:
            ledger.lock_tokens(..., session=session)
            session.add(bet)
            # Commits automatically at end
    """
    session = session_factory()
    try:
        yield session
        session.commit()
        logger.debug("Database transaction committed successfully")
    except ArenaError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        logger.error(f"Database transaction failed, rolling back: {e}")
        session.rollback()
        raise DatabasePersistenceError(f"Transaction failed: {e}") from e
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def session_scope(
    session_factory: sessionmaker,
    session: Optional[Session] = None,
) -> Generator[Session, None, None]:
    """
    Join a caller's transaction or open a new one.

    When the caller passes its own session the work becomes part of
    that transaction and nothing is committed here.
    """
    if session is not None:
        yield session
        return

    with transaction_scope(session_factory) as own_session:
        yield own_session


# =============================================================
# DATABASE INITIALIZATION
# =============================================================


def verify_database_connection(engine: Engine) -> bool:
    """
    Verify database connection is working.

    Raises:
        DatabaseConnectionError if connection fails
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
            logger.info("Database connection verified successfully")
            return True
    except OperationalError as e:
        logger.error(f"Database connection failed: {e}")
        raise DatabaseConnectionError(f"Cannot connect to database: {e}") from e


def create_all_tables(engine: Engine) -> None:
    """
    Create all tables defined in ORM models.

    Raises:
        DatabaseInitializationError if table creation fails
    """
    try:
        logger.info("Creating database tables...")
        Base.metadata.create_all(bind=engine)
        logger.info(f"Database tables ready: {', '.join(sorted(Base.metadata.tables))}")
    except SQLAlchemyError as e:
        logger.error(f"Failed to create database tables: {e}")
        raise DatabaseInitializationError(f"Table creation failed: {e}") from e


def initialize_database(config: Optional[DatabaseConfig] = None) -> sessionmaker:
    """
    Full database initialization sequence.

    1. Create engine
    2. Verify connection
    3. Create tables if not exist

    Returns:
        Session factory bound to the initialized engine
    """
    engine = create_database_engine(config)
    verify_database_connection(engine)
    create_all_tables(engine)
    return create_session_factory(engine)


__all__ = [
    "create_database_engine",
    "create_session_factory",
    "transaction_scope",
    "session_scope",
    "verify_database_connection",
    "create_all_tables",
    "initialize_database",
    "DatabasePersistenceError",
    "DatabaseConnectionError",
    "DatabaseInitializationError",
]
