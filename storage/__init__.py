# storage/__init__.py
"""
Storage layer for the category engine.

Provides SQLite-based persistence for category rules, merchant mappings
and training examples.
"""

from .sqlite_store import SQLiteStore, open_conn

from .migrations import (
    ensure_current_schema,
    check_integrity,
    get_table_stats,
    initialize_fresh_db,
    table_exists,
)

from .schema import SCHEMA_VERSION

__all__ = [
    # Main class
    "SQLiteStore",
    "open_conn",
    # Schema info
    "SCHEMA_VERSION",
    # Migration functions
    "ensure_current_schema",
    "check_integrity",
    "get_table_stats",
    "initialize_fresh_db",
    "table_exists",
]
