# storage/rows.py
"""
Typed row encoding/decoding for the store. List columns are JSON text,
timestamps are ISO-8601 text, booleans are 0/1.
"""
from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from typing import Any, Dict, Optional

from sce_core.models import CategoryRule, FeatureRecord, MerchantMapping, TrainingExample


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        # CURRENT_TIMESTAMP default: "YYYY-MM-DD HH:MM:SS"
        return datetime.strptime(value, "%Y-%m-%d %H:%M:%S")


def _json_list(value: Optional[str]) -> tuple:
    if not value:
        return ()
    return tuple(json.loads(value))


# =============================================================================
# Rules
# =============================================================================

INSERT_RULE = """
INSERT INTO category_rules (
    rule_id, name, category_id, keywords, merchant_patterns,
    min_amount, max_amount, min_confidence, priority,
    usage_count, last_used, is_active, created_at
) VALUES (
    :rule_id, :name, :category_id, :keywords, :merchant_patterns,
    :min_amount, :max_amount, :min_confidence, :priority,
    :usage_count, :last_used, :is_active, :created_at
)
ON CONFLICT(rule_id) DO UPDATE SET
    name = excluded.name,
    category_id = excluded.category_id,
    keywords = excluded.keywords,
    merchant_patterns = excluded.merchant_patterns,
    min_amount = excluded.min_amount,
    max_amount = excluded.max_amount,
    min_confidence = excluded.min_confidence,
    priority = excluded.priority,
    usage_count = excluded.usage_count,
    last_used = excluded.last_used,
    is_active = excluded.is_active
"""


def rule_to_row(rule: CategoryRule) -> Dict[str, Any]:
    return {
        "rule_id": rule.id,
        "name": rule.name,
        "category_id": rule.category_id,
        "keywords": json.dumps(list(rule.keywords), ensure_ascii=False),
        "merchant_patterns": json.dumps(list(rule.merchant_patterns), ensure_ascii=False),
        "min_amount": rule.min_amount,
        "max_amount": rule.max_amount,
        "min_confidence": rule.min_confidence,
        "priority": rule.priority,
        "usage_count": rule.usage_count,
        "last_used": _ts(rule.last_used),
        "is_active": int(rule.is_active),
        "created_at": _ts(rule.created_at),
    }


def row_to_rule(row: sqlite3.Row) -> CategoryRule:
    return CategoryRule(
        id=row["rule_id"],
        name=row["name"],
        category_id=row["category_id"],
        keywords=_json_list(row["keywords"]),
        merchant_patterns=_json_list(row["merchant_patterns"]),
        min_amount=row["min_amount"],
        max_amount=row["max_amount"],
        min_confidence=float(row["min_confidence"]),
        priority=int(row["priority"]),
        usage_count=int(row["usage_count"]),
        last_used=_parse_ts(row["last_used"]),
        is_active=bool(row["is_active"]),
        created_at=_parse_ts(row["created_at"]) or datetime.now(),
    )


# =============================================================================
# Merchant mappings
# =============================================================================

INSERT_MERCHANT = """
INSERT INTO merchant_mappings (
    mapping_id, merchant_name, standard_name, category_id,
    merchant_type, confidence, aliases, is_verified, updated_at
) VALUES (
    :mapping_id, :merchant_name, :standard_name, :category_id,
    :merchant_type, :confidence, :aliases, :is_verified, :updated_at
)
ON CONFLICT(mapping_id) DO UPDATE SET
    merchant_name = excluded.merchant_name,
    standard_name = excluded.standard_name,
    category_id = excluded.category_id,
    merchant_type = excluded.merchant_type,
    confidence = excluded.confidence,
    aliases = excluded.aliases,
    is_verified = excluded.is_verified,
    updated_at = excluded.updated_at
"""


def merchant_to_row(m: MerchantMapping) -> Dict[str, Any]:
    return {
        "mapping_id": m.id,
        "merchant_name": m.merchant_name,
        "standard_name": m.standard_name,
        "category_id": m.category_id,
        "merchant_type": m.merchant_type,
        "confidence": m.confidence,
        "aliases": json.dumps(list(m.aliases), ensure_ascii=False),
        "is_verified": int(m.is_verified),
        "updated_at": datetime.now().isoformat(),
    }


def row_to_merchant(row: sqlite3.Row) -> MerchantMapping:
    return MerchantMapping(
        id=row["mapping_id"],
        merchant_name=row["merchant_name"],
        standard_name=row["standard_name"] or "",
        category_id=row["category_id"],
        merchant_type=row["merchant_type"],
        confidence=float(row["confidence"]),
        aliases=_json_list(row["aliases"]),
        is_verified=bool(row["is_verified"]),
    )


# =============================================================================
# Training examples
# =============================================================================

INSERT_EXAMPLE = """
INSERT INTO training_examples (
    example_id, description, amount, merchant, category_id,
    is_correct, user_id, timestamp, features
) VALUES (
    :example_id, :description, :amount, :merchant, :category_id,
    :is_correct, :user_id, :timestamp, :features
)
"""


def example_to_row(ex: TrainingExample) -> Dict[str, Any]:
    return {
        "example_id": ex.id,
        "description": ex.description,
        "amount": ex.amount,
        "merchant": ex.merchant,
        "category_id": ex.category_id,
        "is_correct": int(ex.is_correct),
        "user_id": ex.user_id,
        "timestamp": _ts(ex.timestamp),
        "features": json.dumps(ex.features.to_dict(), ensure_ascii=False),
    }


def row_to_example(row: sqlite3.Row) -> TrainingExample:
    features = json.loads(row["features"]) if row["features"] else None
    return TrainingExample(
        id=row["example_id"],
        description=row["description"],
        amount=float(row["amount"]),
        merchant=row["merchant"],
        category_id=row["category_id"],
        is_correct=bool(row["is_correct"]),
        user_id=row["user_id"],
        timestamp=_parse_ts(row["timestamp"]) or datetime.now(),
        features=FeatureRecord.from_dict(features),
    )
