# categorizer/aggregator.py
"""
Suggestion aggregator: fan out to every signal source, merge by category,
rank, truncate and attach display info.

Sources, in order: rules, static keyword table, correct-history similarity,
merchant map, static amount ranges. A failing source is logged and
contributes nothing.
"""
from __future__ import annotations

import heapq
import logging
import math
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from config.loader import EngineConfig
from sce_core.models import (
    CategoryRule,
    CategorySuggestion,
    EngineSnapshot,
    Result,
    SourceType,
)
from sce_utils.categories import AMOUNT_RANGES, KEYWORD_TO_CATEGORY, category_info
from sce_utils.normalizers import normalize
from . import merchants as merchant_map
from . import rules as rule_store
from .similarity import IdfTable, amount_similarity, token_similarity

log = logging.getLogger("categorizer")

DEFAULT_CONFIG = EngineConfig()


def sanitize_amount(amount) -> float:
    """Non-numeric, non-finite or negative amounts are treated as 0."""
    try:
        value = float(amount)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(value) or value < 0:
        return 0.0
    return value


# ---------------- Sources ----------------


def keyword_suggestions(tokens: Sequence[str]) -> List[CategorySuggestion]:
    out: List[CategorySuggestion] = []
    for token in tokens:
        for category_id, keywords in KEYWORD_TO_CATEGORY.items():
            partial = sum(1 for k in keywords if k in token or token in k)
            if not partial:
                continue
            if token in keywords:
                confidence = 0.8
            else:
                confidence = min(0.6, 0.2 * partial)
            out.append(
                CategorySuggestion(
                    category_id=category_id,
                    confidence=confidence,
                    reason=f"Keyword match: {token}",
                    source_type=SourceType.KEYWORD,
                )
            )
    return out


def history_suggestions(
    snapshot: EngineSnapshot,
    tokens: Sequence[str],
    amount: float,
    cfg: EngineConfig = DEFAULT_CONFIG,
    idf_table: Optional[IdfTable] = None,
) -> List[CategorySuggestion]:
    """Top-N correct examples whose combined text/amount score beats the threshold."""
    if not tokens:
        return []
    scored: List[Tuple[float, int, str, str]] = []
    for i, ex in enumerate(snapshot.examples):
        if not ex.is_correct:
            continue
        text_score = token_similarity(tokens, normalize(ex.description), idf_table)
        score = (
            cfg.history_text_weight * text_score
            + cfg.history_amount_weight * amount_similarity(amount, ex.amount)
        )
        if score > cfg.history_threshold:
            scored.append((score, -i, ex.category_id, ex.description))

    # highest score first; ties go to the earlier example
    best = heapq.nlargest(cfg.history_top_n, scored)
    return [
        CategorySuggestion(
            category_id=category_id,
            confidence=min(1.0, score),
            reason=f"Similar record: {description[:20]}...",
            source_type=SourceType.HISTORY,
        )
        for score, _, category_id, description in best
    ]


def amount_range_suggestions(
    amount: float, cfg: EngineConfig = DEFAULT_CONFIG
) -> List[CategorySuggestion]:
    return [
        CategorySuggestion(
            category_id=r.category_id,
            confidence=cfg.amount_range_confidence,
            reason=f"Amount range: {r.min_amount:g}-{r.max_amount:g}",
            source_type=SourceType.AMOUNT,
        )
        for r in AMOUNT_RANGES
        if r.min_amount <= amount <= r.max_amount
    ]


def idf_table_for(
    snapshot: EngineSnapshot, cfg: EngineConfig = DEFAULT_CONFIG
) -> Optional[IdfTable]:
    """Corpus-wide IDF over the correct examples, or None in pairwise mode."""
    if cfg.idf_mode != "corpus":
        return None
    return IdfTable.from_documents(
        normalize(ex.description) for ex in snapshot.examples if ex.is_correct
    )


def _guarded(name: str, fn: Callable[[], List[CategorySuggestion]]) -> Result[List[CategorySuggestion]]:
    try:
        return Result.success(fn())
    except Exception as e:
        log.exception("Suggestion source %s failed", name)
        return Result.failure(e)


# ---------------- Consolidation ----------------


def consolidate(suggestions: Sequence[CategorySuggestion]) -> List[CategorySuggestion]:
    """One entry per category: the highest confidence one, first seen on ties."""
    best: Dict[str, CategorySuggestion] = {}
    for s in suggestions:
        current = best.get(s.category_id)
        if current is None or s.confidence > current.confidence:
            best[s.category_id] = s
    return list(best.values())


def rank(suggestions: Sequence[CategorySuggestion], limit: int) -> List[CategorySuggestion]:
    ordered = sorted(suggestions, key=lambda s: s.confidence, reverse=True)
    return ordered[:limit]


def with_display_info(s: CategorySuggestion) -> CategorySuggestion:
    info = category_info(s.category_id)
    return replace(
        s,
        confidence=max(0.0, min(1.0, s.confidence)),
        category_name=info.name,
        icon_hint=info.icon,
    )


def suggest_categories(
    snapshot: EngineSnapshot,
    description: Optional[str],
    amount=0.0,
    merchant: Optional[str] = None,
    max_suggestions: int = 5,
    cfg: EngineConfig = DEFAULT_CONFIG,
    idf_table: Optional[IdfTable] = None,
) -> Tuple[List[CategorySuggestion], List[CategoryRule]]:
    """
    Ranked, de-duplicated suggestions plus the rules that fired.
    Pure function of the snapshot and inputs.
    """
    if max_suggestions is None or max_suggestions <= 0:
        return [], []

    description = description or ""
    merchant = merchant or ""
    amount = sanitize_amount(amount)
    tokens = normalize(description)

    fired: List[CategoryRule] = []

    def from_rules() -> List[CategorySuggestion]:
        found, hit = rule_store.suggest(snapshot.rules, description, merchant, amount, cfg)
        fired.extend(hit)
        return found

    sources = [
        ("rules", from_rules),
        ("keywords", lambda: keyword_suggestions(tokens)),
        ("history", lambda: history_suggestions(snapshot, tokens, amount, cfg, idf_table)),
        ("merchants", lambda: merchant_map.lookup(snapshot.merchants, merchant)),
        ("amount", lambda: amount_range_suggestions(amount, cfg)),
    ]

    collected: List[CategorySuggestion] = []
    for name, fn in sources:
        collected.extend(_guarded(name, fn).unwrap_or([]))

    ranked = rank(consolidate(collected), max_suggestions)
    return [with_display_info(s) for s in ranked], fired
