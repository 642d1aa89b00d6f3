"""
Database Package Initialization.

============================================================
AUDIT PERSISTENCE LAYER
============================================================

Provides the declarative base and transaction management used
to store permission assessments and state transitions.

REQUIRED:
- Every write goes through an explicit transaction
- Every failure raises a DatabasePersistenceError
- Every repository write is logged with the rows it touched

============================================================
"""

from .engine import (
    # Declarative base
    Base,

    # Engine creation
    create_database_engine,
    get_database_url,
    get_engine,
    reset_engine,

    # Session management
    get_session,
    get_session_factory,
    get_db_session,
    transaction_scope,

    # Database initialization
    initialize_database,
    verify_database_connection,
    create_all_tables,

    # Exceptions
    DatabasePersistenceError,
    DatabaseConnectionError,
    DatabaseInitializationError,
)


__all__ = [
    "Base",
    "create_database_engine",
    "get_database_url",
    "get_engine",
    "reset_engine",
    "get_session",
    "get_session_factory",
    "get_db_session",
    "transaction_scope",
    "initialize_database",
    "verify_database_connection",
    "create_all_tables",
    "DatabasePersistenceError",
    "DatabaseConnectionError",
    "DatabaseInitializationError",
]
