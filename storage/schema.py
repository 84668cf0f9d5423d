# storage/schema.py
"""
Database schema definitions for the category engine.

Schema version history:
  v1: category_rules, merchant_mappings, training_examples
"""
from __future__ import annotations

SCHEMA_VERSION = 1

# =============================================================================
# Core Tables
# =============================================================================

CREATE_CATEGORY_RULES = """
CREATE TABLE IF NOT EXISTS category_rules (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    rule_id TEXT UNIQUE NOT NULL,
    name TEXT NOT NULL,
    category_id TEXT NOT NULL,
    keywords TEXT NOT NULL DEFAULT '[]',
    merchant_patterns TEXT NOT NULL DEFAULT '[]',
    min_amount REAL,
    max_amount REAL,
    min_confidence REAL NOT NULL DEFAULT 0.7,
    priority INTEGER NOT NULL DEFAULT 0,
    usage_count INTEGER NOT NULL DEFAULT 0,
    last_used TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);
"""

CREATE_MERCHANT_MAPPINGS = """
CREATE TABLE IF NOT EXISTS merchant_mappings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    mapping_id TEXT UNIQUE NOT NULL,
    merchant_name TEXT NOT NULL,
    standard_name TEXT NOT NULL DEFAULT '',
    category_id TEXT NOT NULL,
    merchant_type TEXT NOT NULL DEFAULT 'general',
    confidence REAL NOT NULL DEFAULT 1.0,
    aliases TEXT NOT NULL DEFAULT '[]',
    is_verified INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);
"""

CREATE_TRAINING_EXAMPLES = """
CREATE TABLE IF NOT EXISTS training_examples (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    example_id TEXT UNIQUE NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    amount REAL NOT NULL DEFAULT 0.0,
    merchant TEXT NOT NULL DEFAULT '',
    category_id TEXT NOT NULL,
    is_correct INTEGER NOT NULL DEFAULT 1,
    user_id TEXT NOT NULL DEFAULT '',
    timestamp TEXT NOT NULL,
    features TEXT
);
"""

# Schema version tracking
CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT DEFAULT CURRENT_TIMESTAMP
);
"""

# =============================================================================
# Indexes
# =============================================================================

CREATE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_rules_category ON category_rules(category_id);",
    "CREATE INDEX IF NOT EXISTS idx_rules_active ON category_rules(is_active);",
    "CREATE INDEX IF NOT EXISTS idx_merchants_name ON merchant_mappings(merchant_name);",
    "CREATE INDEX IF NOT EXISTS idx_examples_category ON training_examples(category_id);",
    "CREATE INDEX IF NOT EXISTS idx_examples_timestamp ON training_examples(timestamp);",
]

# =============================================================================
# Table registry
# =============================================================================

# table name -> DDL, creation order
ALL_TABLES = {
    "schema_version": CREATE_SCHEMA_VERSION,
    "category_rules": CREATE_CATEGORY_RULES,
    "merchant_mappings": CREATE_MERCHANT_MAPPINGS,
    "training_examples": CREATE_TRAINING_EXAMPLES,
}

DATA_TABLES = ["category_rules", "merchant_mappings", "training_examples"]
