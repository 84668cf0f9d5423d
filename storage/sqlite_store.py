# storage/sqlite_store.py
"""
SQLite storage layer for the category engine.

Provides typed persistence for:
- Category rules
- Merchant mappings
- Training examples (the learning corpus)
"""
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional

from categorizer.rules import load_seed_merchants, load_seed_rules
from sce_core.models import CategoryRule, EngineSnapshot, MerchantMapping, TrainingExample
from .migrations import check_integrity, ensure_current_schema, get_table_stats
from .rows import (
    INSERT_EXAMPLE,
    INSERT_MERCHANT,
    INSERT_RULE,
    example_to_row,
    merchant_to_row,
    row_to_example,
    row_to_merchant,
    row_to_rule,
    rule_to_row,
)


def open_conn(path: str = "data/categories.sqlite") -> sqlite3.Connection:
    """
    Open a database connection with row factory.
    The connection may be used from several threads; callers serialize access.
    """
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


class SQLiteStore:
    """
    Main storage class. Writes commit immediately unless grouped with batch().
    """

    def __init__(self, db_path: str = "data/categories.sqlite"):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._batch_depth = 0

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = open_conn(self.db_path)
        return self._conn

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _commit(self) -> None:
        if self._batch_depth == 0:
            self.conn.commit()

    @contextmanager
    def batch(self) -> Iterator["SQLiteStore"]:
        """Group writes into one transaction; rolled back on any exception."""
        self._batch_depth += 1
        ok = False
        try:
            yield self
            ok = True
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0:
                if ok:
                    self.conn.commit()
                else:
                    self.conn.rollback()

    # =========================================================================
    # Schema
    # =========================================================================

    def ensure_schema(self, seed_path: Optional[str] = None) -> Dict[str, Any]:
        """Ensure database has current schema; a fresh database gets the seed data."""
        return ensure_current_schema(
            self.conn,
            seed_rules=load_seed_rules(seed_path),
            seed_merchants=load_seed_merchants(seed_path),
        )

    def check_integrity(self) -> Dict[str, Any]:
        """Run integrity checks."""
        return check_integrity(self.conn)

    def get_stats(self) -> Dict[str, int]:
        """Get row counts for all tables."""
        return get_table_stats(self.conn)

    def load_snapshot(self) -> EngineSnapshot:
        """Read all three stores into one immutable view."""
        return EngineSnapshot(
            rules=tuple(self.list_rules()),
            merchants=tuple(self.list_merchants()),
            examples=tuple(self.list_examples()),
        )

    # =========================================================================
    # Rule Operations
    # =========================================================================

    def list_rules(self, active_only: bool = False) -> List[CategoryRule]:
        where = "WHERE is_active = 1" if active_only else ""
        cur = self.conn.cursor()
        cur.execute(f"SELECT * FROM category_rules {where} ORDER BY priority DESC, id")
        return [row_to_rule(row) for row in cur.fetchall()]

    def get_rule(self, rule_id: str) -> Optional[CategoryRule]:
        cur = self.conn.cursor()
        cur.execute("SELECT * FROM category_rules WHERE rule_id = ?", (rule_id,))
        row = cur.fetchone()
        return row_to_rule(row) if row else None

    def save_rule(self, rule: CategoryRule) -> None:
        """Insert or update a rule by id."""
        self.conn.execute(INSERT_RULE, rule_to_row(rule))
        self._commit()

    def save_rules(self, rules: Iterable[CategoryRule]) -> int:
        n = 0
        with self.batch():
            for rule in rules:
                self.save_rule(rule)
                n += 1
        return n

    # =========================================================================
    # Merchant Operations
    # =========================================================================

    def list_merchants(self) -> List[MerchantMapping]:
        cur = self.conn.cursor()
        cur.execute("SELECT * FROM merchant_mappings ORDER BY id")
        return [row_to_merchant(row) for row in cur.fetchall()]

    def save_merchant(self, mapping: MerchantMapping) -> None:
        """Insert or update a merchant mapping by id."""
        self.conn.execute(INSERT_MERCHANT, merchant_to_row(mapping))
        self._commit()

    # =========================================================================
    # Training Example Operations
    # =========================================================================

    def insert_example(self, example: TrainingExample) -> int:
        """Append an example to the corpus. Returns the row id."""
        cur = self.conn.cursor()
        cur.execute(INSERT_EXAMPLE, example_to_row(example))
        self._commit()
        return cur.lastrowid

    def list_examples(self, limit: Optional[int] = None) -> List[TrainingExample]:
        """Examples in insertion order; with `limit`, only the newest ones."""
        cur = self.conn.cursor()
        if limit is None:
            cur.execute("SELECT * FROM training_examples ORDER BY id")
            rows = cur.fetchall()
        else:
            cur.execute(
                "SELECT * FROM training_examples ORDER BY id DESC LIMIT ?", (limit,)
            )
            rows = list(reversed(cur.fetchall()))
        return [row_to_example(row) for row in rows]

    def count_examples(self) -> int:
        cur = self.conn.cursor()
        cur.execute("SELECT COUNT(*) FROM training_examples")
        return cur.fetchone()[0]

    def prune_examples(self, keep: int) -> int:
        """Keep only the newest `keep` examples (0 keeps everything). Returns count deleted."""
        if keep <= 0:
            return 0
        cur = self.conn.cursor()
        cur.execute(
            """
            DELETE FROM training_examples
            WHERE id NOT IN (
                SELECT id FROM training_examples ORDER BY id DESC LIMIT ?
            )
            """,
            (keep,),
        )
        self._commit()
        return cur.rowcount
