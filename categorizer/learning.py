# categorizer/learning.py
"""
Feedback / learning loop.

    idle -> feedback_received -> reinforcing | decaying -> persisted_idle

learn() is pure: it returns the next snapshot plus the changes the caller has
to persist. Evaluation and corpus statistics are read-only reports built with
pandas.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

import pandas as pd

from config.loader import EngineConfig
from sce_core.models import (
    AccuracyReport,
    CategoryPerformance,
    CategoryRule,
    CorpusStatistics,
    EngineSnapshot,
    Feedback,
    FeedbackOutcome,
    LearningPhase,
    MerchantMapping,
    TrainingExample,
)
from sce_utils.categories import category_info
from sce_utils.features import extract_features
from . import merchants as merchant_map
from . import rules as rule_store
from .aggregator import idf_table_for, sanitize_amount, suggest_categories

log = logging.getLogger("categorizer.learning")

DEFAULT_CONFIG = EngineConfig()

FEEDBACK_COLUMNS = {"description", "category_id"}


@dataclass
class ChangeSet:
    """Records a learning step touched; persisted in one transaction."""

    example: Optional[TrainingExample] = None
    rules: List[CategoryRule] = field(default_factory=list)
    merchant: Optional[MerchantMapping] = None


def cap_corpus(
    examples: Tuple[TrainingExample, ...], cfg: EngineConfig = DEFAULT_CONFIG
) -> Tuple[TrainingExample, ...]:
    limit = cfg.max_training_examples
    if limit and len(examples) > limit:
        return examples[-limit:]
    return examples


def build_example(fb: Feedback, now: Optional[datetime] = None) -> TrainingExample:
    when = fb.timestamp or now or datetime.now()
    description = fb.description or ""
    merchant = fb.merchant or ""
    amount = sanitize_amount(fb.amount)
    return TrainingExample(
        id=str(uuid.uuid4()),
        description=description,
        amount=amount,
        merchant=merchant,
        category_id=fb.category_id,
        is_correct=fb.is_correct,
        user_id=fb.user_id or "",
        timestamp=when,
        features=extract_features(description, amount, merchant, now=when),
    )


def learn(
    snapshot: EngineSnapshot,
    fb: Feedback,
    cfg: EngineConfig = DEFAULT_CONFIG,
    now: Optional[datetime] = None,
) -> Tuple[EngineSnapshot, ChangeSet, FeedbackOutcome]:
    """
    Apply one feedback event.

    Correct: reinforce active rules of the confirmed category that the
    feedback matches, and learn the merchant. Incorrect: decay every active
    rule the feedback matches.
    """
    example = build_example(fb, now)
    outcome = FeedbackOutcome(example_id=example.id, phase=LearningPhase.FEEDBACK_RECEIVED)
    changes = ChangeSet(example=example)

    updated = {}
    for rule in snapshot.rules:
        if not rule.is_active:
            continue
        if not rule_store.matches_feedback(
            rule, example.description, example.merchant, example.amount
        ):
            continue
        if fb.is_correct:
            if rule.category_id != fb.category_id:
                continue
            new_rule = rule_store.record_usage(
                rule_store.reinforce(rule, cfg), example.timestamp
            )
            outcome.reinforced.append(rule.id)
        else:
            new_rule = rule_store.decay(rule, cfg)
            outcome.decayed.append(rule.id)
            if not new_rule.is_active:
                outcome.deactivated.append(rule.id)
        updated[rule.id] = new_rule

    rules = tuple(updated.get(r.id, r) for r in snapshot.rules)
    changes.rules = list(updated.values())

    merchants = snapshot.merchants
    if fb.is_correct:
        outcome.phase = LearningPhase.REINFORCING
        merchants, touched, action = merchant_map.upsert(
            snapshot.merchants, example.merchant, fb.category_id, cfg
        )
        changes.merchant = touched
        outcome.merchant_action = action
    else:
        outcome.phase = LearningPhase.DECAYING

    if outcome.deactivated:
        log.info("Deactivated rules after negative feedback: %s", outcome.deactivated)

    examples = cap_corpus(snapshot.examples + (example,), cfg)
    return EngineSnapshot(rules=rules, merchants=merchants, examples=examples), changes, outcome


def induce(
    snapshot: EngineSnapshot,
    cfg: EngineConfig = DEFAULT_CONFIG,
    now: Optional[datetime] = None,
) -> Tuple[EngineSnapshot, List[CategoryRule]]:
    """Append induced rules to the snapshot. Returns (new snapshot, new rules)."""
    new_rules = rule_store.induce_rules(snapshot.examples, snapshot.rules, cfg, now)
    if not new_rules:
        return snapshot, []
    log.info(
        "Induced %d rule(s): %s",
        len(new_rules),
        ", ".join(f"{r.category_id}[{','.join(r.keywords)}]" for r in new_rules),
    )
    return replace(snapshot, rules=snapshot.rules + tuple(new_rules)), new_rules


# =============================================================================
# Reports
# =============================================================================


def evaluate_accuracy(
    snapshot: EngineSnapshot,
    test_size: int = 100,
    cfg: EngineConfig = DEFAULT_CONFIG,
) -> AccuracyReport:
    """
    Score the top suggestion against the recorded category for the most
    recent `test_size` examples (capped at 100). Held-out examples are
    removed from the history the aggregator sees.
    """
    test_size = max(1, min(100, int(test_size)))
    examples = snapshot.examples
    if not examples:
        return AccuracyReport()

    held_out = examples[-test_size:]
    train = replace(snapshot, examples=examples[: len(examples) - len(held_out)])
    idf_table = idf_table_for(train, cfg)

    rows = []
    for ex in held_out:
        suggestions, _ = suggest_categories(
            train, ex.description, ex.amount, ex.merchant, 1, cfg, idf_table
        )
        top = suggestions[0] if suggestions else None
        rows.append(
            {
                "category_id": ex.category_id,
                "predicted": top.category_id if top else None,
                "confidence": top.confidence if top else 0.0,
            }
        )

    df = pd.DataFrame(rows)
    df["correct"] = df["predicted"] == df["category_id"]

    detailed: List[CategoryPerformance] = []
    category_accuracy = {}
    for category_id, group in df.groupby("category_id", sort=True):
        total = int(len(group))
        correct = int(group["correct"].sum())
        accuracy = correct / total if total else 0.0
        mistakes = group.loc[~group["correct"], "predicted"].dropna()
        category_accuracy[category_id] = accuracy
        detailed.append(
            CategoryPerformance(
                category_id=category_id,
                category_name=category_info(category_id).name,
                total_cases=total,
                correct_predictions=correct,
                accuracy=accuracy,
                average_confidence=float(group["confidence"].mean()),
                common_mistakes=list(mistakes.value_counts().head(3).index),
            )
        )

    total = int(len(df))
    correct = int(df["correct"].sum())
    return AccuracyReport(
        overall_accuracy=correct / total if total else 0.0,
        category_accuracy=category_accuracy,
        total_test_cases=total,
        correct_predictions=correct,
        evaluation_date=datetime.now(),
        detailed_performance=detailed,
    )


def corpus_statistics(snapshot: EngineSnapshot, recent: int = 10) -> CorpusStatistics:
    if not snapshot.examples:
        return CorpusStatistics()

    df = pd.DataFrame(
        [
            {
                "description": ex.description,
                "category_id": ex.category_id,
                "is_correct": ex.is_correct,
                "timestamp": ex.timestamp,
            }
            for ex in snapshot.examples
        ]
    )
    breakdown = df.groupby("category_id").size().sort_values(ascending=False)
    latest = df.sort_values("timestamp", ascending=False, kind="stable").head(recent)

    return CorpusStatistics(
        total_records=int(len(df)),
        correct_records=int(df["is_correct"].sum()),
        category_breakdown={str(k): int(v) for k, v in breakdown.items()},
        recent_activity=[
            {
                "description": str(row.description)[:30],
                "category_id": row.category_id,
                "is_correct": bool(row.is_correct),
                "timestamp": row.timestamp.isoformat(),
            }
            for row in latest.itertuples(index=False)
        ],
    )


def load_feedback_csv(path: str | Path) -> List[Feedback]:
    """
    Read labelled transactions from CSV.

    Required columns: description, category_id. Optional: amount, merchant,
    is_correct (defaults to true), user_id.
    """
    df = pd.read_csv(path)
    missing = FEEDBACK_COLUMNS - set(df.columns)
    if missing:
        raise ValueError(f"Training CSV is missing columns: {sorted(missing)}")

    df = df.dropna(subset=["description", "category_id"])
    for col, default in (("amount", 0.0), ("merchant", ""), ("user_id", ""), ("is_correct", True)):
        if col not in df.columns:
            df[col] = default
    df["amount"] = pd.to_numeric(df["amount"], errors="coerce").fillna(0.0)
    df["merchant"] = df["merchant"].fillna("")
    df["user_id"] = df["user_id"].fillna("")
    df["is_correct"] = df["is_correct"].fillna(True).map(_truthy)

    return [
        Feedback(
            description=str(row.description),
            amount=float(row.amount),
            category_id=str(row.category_id).strip(),
            is_correct=bool(row.is_correct),
            merchant=str(row.merchant),
            user_id=str(row.user_id),
        )
        for row in df.itertuples(index=False)
    ]


def _truthy(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "y", "t")
    return bool(value)
