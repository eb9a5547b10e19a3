"""
Database Package Initialization.

============================================================
ARENA PERSISTENCE LAYER
============================================================

ORM models for competitions, execution, ledger and settlement,
plus engine/session helpers with explicit transaction
boundaries (commit or rollback, never implicit).

============================================================
"""

from .engine import (
    create_database_engine,
    create_session_factory,
    transaction_scope,
    session_scope,
    verify_database_connection,
    create_all_tables,
    initialize_database,
    DatabasePersistenceError,
    DatabaseConnectionError,
    DatabaseInitializationError,
)
from .models import Base

__all__ = [
    "Base",
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
