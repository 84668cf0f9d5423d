# storage/migrations.py
"""
Database migration utilities for the category engine.

Handles:
- Fresh database initialization (tables, indexes, seed rules and merchants)
- Partial schemas (missing tables are created, existing data kept)
- Integrity checks and table statistics
"""
from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Any, Dict, Iterable, List

from sce_core.models import CategoryRule, MerchantMapping
from .rows import INSERT_MERCHANT, INSERT_RULE, merchant_to_row, rule_to_row
from .schema import ALL_TABLES, CREATE_INDEXES, DATA_TABLES, SCHEMA_VERSION

log = logging.getLogger("storage")


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Get current schema version, or 0 if not initialized."""
    cur = conn.cursor()
    try:
        cur.execute("SELECT MAX(version) FROM schema_version")
        row = cur.fetchone()
        return row[0] if row and row[0] else 0
    except sqlite3.OperationalError:
        # schema_version table doesn't exist
        return 0


def set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    """Record schema version."""
    conn.execute(
        "INSERT OR REPLACE INTO schema_version (version, applied_at) VALUES (?, ?)",
        (version, datetime.now().isoformat()),
    )
    conn.commit()


def table_exists(conn: sqlite3.Connection, table_name: str) -> bool:
    """Check if a table exists."""
    cur = conn.cursor()
    cur.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
        (table_name,),
    )
    return cur.fetchone() is not None


def create_missing_tables(conn: sqlite3.Connection) -> List[str]:
    """Create any table that doesn't exist yet. Returns the names created."""
    created = []
    for name, ddl in ALL_TABLES.items():
        if not table_exists(conn, name):
            conn.execute(ddl)
            created.append(name)
    conn.commit()
    return created


def create_all_indexes(conn: sqlite3.Connection) -> None:
    for ddl in CREATE_INDEXES:
        conn.execute(ddl)
    conn.commit()


def seed_defaults(
    conn: sqlite3.Connection,
    rules: Iterable[CategoryRule] = (),
    merchants: Iterable[MerchantMapping] = (),
) -> Dict[str, int]:
    """Insert seed rules and merchants. Returns counts inserted."""
    counts = {"rules_seeded": 0, "merchants_seeded": 0}
    for rule in rules:
        conn.execute(INSERT_RULE, rule_to_row(rule))
        counts["rules_seeded"] += 1
    for m in merchants:
        conn.execute(INSERT_MERCHANT, merchant_to_row(m))
        counts["merchants_seeded"] += 1
    conn.commit()
    return counts


def initialize_fresh_db(
    conn: sqlite3.Connection,
    seed_rules: Iterable[CategoryRule] = (),
    seed_merchants: Iterable[MerchantMapping] = (),
) -> Dict[str, Any]:
    """
    Initialize a fresh database with full schema and seed data.
    Returns initialization stats.
    """
    stats: Dict[str, Any] = {
        "tables_created": create_missing_tables(conn),
        "indexes_created": len(CREATE_INDEXES),
    }
    create_all_indexes(conn)
    stats.update(seed_defaults(conn, seed_rules, seed_merchants))
    set_schema_version(conn, SCHEMA_VERSION)
    return stats


def ensure_current_schema(
    conn: sqlite3.Connection,
    seed_rules: Iterable[CategoryRule] = (),
    seed_merchants: Iterable[MerchantMapping] = (),
) -> Dict[str, Any]:
    """
    Ensure database has current schema. Migrate if needed.
    This is the main entry point for schema management.

    Seed data is only written into a fresh database.
    """
    current_version = get_schema_version(conn)
    has_data = any(table_exists(conn, t) for t in DATA_TABLES)

    if current_version == 0 and not has_data:
        stats = initialize_fresh_db(conn, seed_rules, seed_merchants)
        log.info(
            "Initialized database: %d rules, %d merchants seeded",
            stats["rules_seeded"],
            stats["merchants_seeded"],
        )
        return {"status": "initialized", "version": SCHEMA_VERSION, **stats}

    created = create_missing_tables(conn)
    create_all_indexes(conn)
    if created or current_version != SCHEMA_VERSION:
        set_schema_version(conn, SCHEMA_VERSION)
        log.info("Migrated database schema to v%d (created: %s)", SCHEMA_VERSION, created)
        return {
            "status": "migrated",
            "from_version": current_version,
            "version": SCHEMA_VERSION,
            "tables_created": created,
        }
    return {"status": "current", "version": SCHEMA_VERSION}


def check_integrity(conn: sqlite3.Connection) -> Dict[str, Any]:
    """
    Run integrity checks on the database.
    Returns detailed status report.
    """
    result: Dict[str, Any] = {
        "status": "ok",
        "version": get_schema_version(conn),
        "tables": {},
        "integrity_check": None,
        "issues": [],
    }

    cur = conn.cursor()

    # SQLite integrity check
    cur.execute("PRAGMA integrity_check")
    integrity = cur.fetchone()[0]
    result["integrity_check"] = integrity
    if integrity != "ok":
        result["status"] = "error"
        result["issues"].append(f"Integrity check failed: {integrity}")

    for table in DATA_TABLES:
        if table_exists(conn, table):
            cur.execute(f"SELECT COUNT(*) FROM {table}")
            count = cur.fetchone()[0]
            result["tables"][table] = {"exists": True, "rows": count, "empty": count == 0}
        else:
            result["tables"][table] = {"exists": False, "rows": 0, "empty": True}
            if result["status"] == "ok":
                result["status"] = "warning"
            result["issues"].append(f"Missing table: {table}")

    if result["version"] != SCHEMA_VERSION and result["status"] == "ok":
        result["status"] = "warning"
        result["issues"].append(
            f"Schema version {result['version']} != expected {SCHEMA_VERSION}"
        )

    # An empty rule table means suggestions rely on the static sources only
    if result["tables"]["category_rules"].get("exists"):
        cur.execute("SELECT COUNT(*) FROM category_rules WHERE is_active = 1")
        if cur.fetchone()[0] == 0:
            result["issues"].append("No active rules - run induce after collecting feedback")

    return result


def get_table_stats(conn: sqlite3.Connection) -> Dict[str, int]:
    """Get row counts for all tables (-1 if the table doesn't exist)."""
    stats = {}
    cur = conn.cursor()
    for table in DATA_TABLES:
        if table_exists(conn, table):
            cur.execute(f"SELECT COUNT(*) FROM {table}")
            stats[table] = cur.fetchone()[0]
        else:
            stats[table] = -1
    if table_exists(conn, "category_rules"):
        cur.execute("SELECT COUNT(*) FROM category_rules WHERE is_active = 1")
        stats["active_rules"] = cur.fetchone()[0]
    return stats
