# categorizer/rules.py
"""
Adaptive rule store for transaction categorization.

Features:
- Match scoring over keywords, merchant patterns and amount bounds
- Per-rule confidence threshold, adjusted by user feedback
- Soft deactivation once a rule's threshold decays too far
- Usage statistics (usage_count, last_used)
- Rule induction from accumulated correct examples
- Seed rules loaded from YAML
"""
from __future__ import annotations

import uuid
from collections import Counter, defaultdict
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import yaml

from config.loader import EngineConfig
from sce_core.models import (
    CategoryRule,
    CategorySuggestion,
    MerchantMapping,
    SourceType,
    TrainingExample,
)
from sce_utils.normalizers import classify_merchant_type, normalize

DEFAULT_CONFIG = EngineConfig()


def new_rule_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# Matching
# =============================================================================


def _contains(haystack: str, needle: str) -> bool:
    return needle.lower() in haystack.lower()


def _amount_in_range(rule: CategoryRule, amount: float) -> bool:
    if rule.min_amount is not None and amount < rule.min_amount:
        return False
    if rule.max_amount is not None and amount > rule.max_amount:
        return False
    return True


def match_score(
    rule: CategoryRule,
    description: str,
    merchant: str,
    amount: float,
    cfg: EngineConfig = DEFAULT_CONFIG,
) -> float:
    """
    Average of the weighted sub-scores for the dimensions the rule declares.

    - keywords: fraction of rule keywords found in the description x keyword_weight
    - merchant: any pattern found in the merchant x merchant_weight
      (only evaluated when the merchant is non-blank)
    - amount: within [min_amount, max_amount] x amount_weight
    """
    score = 0.0
    factors = 0

    if rule.keywords:
        hits = sum(1 for k in rule.keywords if _contains(description, k))
        score += hits / len(rule.keywords) * cfg.keyword_weight
        factors += 1

    if rule.merchant_patterns and merchant.strip():
        if any(_contains(merchant, p) for p in rule.merchant_patterns):
            score += cfg.merchant_weight
        factors += 1

    if rule.min_amount is not None or rule.max_amount is not None:
        if _amount_in_range(rule, amount):
            score += cfg.amount_weight
        factors += 1

    return score / factors if factors else 0.0


def matches_feedback(
    rule: CategoryRule, description: str, merchant: str, amount: float
) -> bool:
    """
    Whether a feedback event should be attributed to this rule.

    A rule is implicated if any keyword appears in the description, or if the
    merchant is compatible (blank, or matching a pattern) and the amount is in
    range.
    """
    keyword_hit = any(_contains(description, k) for k in rule.keywords)
    merchant_ok = not merchant.strip() or any(
        _contains(merchant, p) for p in rule.merchant_patterns
    )
    return keyword_hit or (merchant_ok and _amount_in_range(rule, amount))


def suggest(
    rules: Iterable[CategoryRule],
    description: str,
    merchant: str,
    amount: float,
    cfg: EngineConfig = DEFAULT_CONFIG,
) -> Tuple[List[CategorySuggestion], List[CategoryRule]]:
    """
    Return (suggestions, fired_rules) for every active rule whose match score
    reaches its own min_confidence. Higher priority rules are listed first.
    """
    suggestions: List[CategorySuggestion] = []
    fired: List[CategoryRule] = []

    for rule in sorted(rules, key=lambda r: r.priority, reverse=True):
        if not rule.is_active:
            continue
        confidence = match_score(rule, description, merchant, amount, cfg)
        if confidence >= rule.min_confidence:
            suggestions.append(
                CategorySuggestion(
                    category_id=rule.category_id,
                    confidence=confidence,
                    reason=f"Rule match: {rule.name}",
                    source_type=SourceType.RULE,
                )
            )
            fired.append(rule)

    return suggestions, fired


# =============================================================================
# Adaptation
# =============================================================================


def record_usage(rule: CategoryRule, when: Optional[datetime] = None) -> CategoryRule:
    return replace(
        rule, usage_count=rule.usage_count + 1, last_used=when or datetime.now()
    )


def reinforce(rule: CategoryRule, cfg: EngineConfig = DEFAULT_CONFIG) -> CategoryRule:
    """Confirmed-correct feedback: nudge the threshold up, capped."""
    raised = min(cfg.max_confidence, rule.min_confidence + cfg.reinforce_step)
    return replace(rule, min_confidence=round(raised, 6))


def decay(rule: CategoryRule, cfg: EngineConfig = DEFAULT_CONFIG) -> CategoryRule:
    """Confirmed-incorrect feedback: lower the threshold; deactivate if too low."""
    lowered = round(max(cfg.confidence_floor, rule.min_confidence - cfg.decay_step), 6)
    if lowered < cfg.deactivate_below:
        return replace(rule, min_confidence=lowered, is_active=False)
    return replace(rule, min_confidence=lowered)


# =============================================================================
# Induction
# =============================================================================


def _min_confidence_for(sample_count: int) -> float:
    if sample_count >= 20:
        return 0.8
    if sample_count >= 10:
        return 0.7
    if sample_count >= 5:
        return 0.6
    return 0.5


def _priority_for(sample_count: int) -> int:
    if sample_count >= 50:
        return 3
    if sample_count >= 20:
        return 2
    if sample_count >= 10:
        return 1
    return 0


def keyword_frequency(examples: Sequence[TrainingExample]) -> List[Tuple[str, int]]:
    """
    Terms appearing in at least max(2, n // 3) of the examples, most frequent
    first (ties keep first-seen order). Counts are per example, not per token.
    """
    counts: Counter = Counter()
    for ex in examples:
        counts.update(dict.fromkeys(normalize(ex.description), 1))
    threshold = max(2, len(examples) // 3)
    return [(t, c) for t, c in counts.most_common() if c >= threshold]


def merchant_frequency(examples: Sequence[TrainingExample]) -> List[Tuple[str, int]]:
    counts: Counter = Counter(
        ex.merchant.lower().strip() for ex in examples if ex.merchant and ex.merchant.strip()
    )
    return [(m, c) for m, c in counts.most_common() if c >= 2]


def interquartile_range(amounts: Iterable[float]) -> Tuple[Optional[float], Optional[float]]:
    """(q1, q3) of the positive amounts by index; (None, None) if there are none."""
    values = sorted(a for a in amounts if a > 0)
    if not values:
        return None, None
    n = len(values)
    q1 = values[min(n // 4, n - 1)]
    q3 = values[min((n * 3) // 4, n - 1)]
    return q1, q3


def induce_rule_for_category(
    category_id: str,
    examples: Sequence[TrainingExample],
    now: Optional[datetime] = None,
) -> Optional[CategoryRule]:
    keywords = [t for t, _ in keyword_frequency(examples)][:10]
    if not keywords:
        return None

    now = now or datetime.now()
    merchants = [m for m, _ in merchant_frequency(examples)][:5]
    q1, q3 = interquartile_range(ex.amount for ex in examples)
    min_amount = q1 if q1 is not None and q1 > 0 else None
    max_amount = q3 if q3 is not None and q1 is not None and q3 > q1 else None

    return CategoryRule(
        id=new_rule_id(),
        name=f"Auto rule - {category_id} ({now:%Y-%m-%d})",
        category_id=category_id,
        keywords=tuple(keywords),
        merchant_patterns=tuple(merchants),
        min_amount=min_amount,
        max_amount=max_amount,
        min_confidence=_min_confidence_for(len(examples)),
        priority=_priority_for(len(examples)),
        usage_count=0,
        created_at=now,
    )


def induce_rules(
    corpus: Sequence[TrainingExample],
    existing_rules: Sequence[CategoryRule] = (),
    cfg: EngineConfig = DEFAULT_CONFIG,
    now: Optional[datetime] = None,
) -> List[CategoryRule]:
    """
    Generate new rules from correct examples, one per category with enough
    samples. Existing rules are never replaced; a candidate whose keyword set
    equals an active rule's for the same category is dropped.
    """
    correct = [ex for ex in corpus if ex.is_correct]
    if len(correct) < cfg.induce_min_corpus:
        return []

    groups: Dict[str, List[TrainingExample]] = defaultdict(list)
    for ex in correct:
        groups[ex.category_id].append(ex)

    known = {
        (r.category_id, frozenset(r.keywords)) for r in existing_rules if r.is_active
    }
    out: List[CategoryRule] = []
    for category_id, examples in groups.items():
        if len(examples) < cfg.induce_min_group:
            continue
        rule = induce_rule_for_category(category_id, examples, now=now)
        if rule is None:
            continue
        if (category_id, frozenset(rule.keywords)) in known:
            continue
        out.append(rule)
    return out


# =============================================================================
# Seed rules (YAML)
# =============================================================================


def parse_rule(r: Dict[str, Any], now: Optional[datetime] = None) -> CategoryRule:
    """Parse a rule from a YAML config dict."""
    min_amount = None
    max_amount = None
    if "if_amount_gt" in r:
        min_amount = float(r["if_amount_gt"])
    if "if_amount_lt" in r:
        max_amount = float(r["if_amount_lt"])
    if "if_amount_between" in r:
        between = r["if_amount_between"]
        if isinstance(between, (list, tuple)) and len(between) >= 2:
            min_amount = float(between[0])
            max_amount = float(between[1])

    return CategoryRule(
        id=str(r.get("id") or new_rule_id()),
        name=r.get("name", "unnamed"),
        category_id=str(r["category"]),
        keywords=tuple(str(k) for k in r.get("if_description_contains", [])),
        merchant_patterns=tuple(str(p) for p in r.get("if_merchant_matches", [])),
        min_amount=min_amount,
        max_amount=max_amount,
        min_confidence=float(r.get("min_confidence", 0.7)),
        priority=int(r.get("priority", 0)),
        is_active=bool(r.get("active", True)),
        created_at=now or datetime.now(),
    )


def parse_merchant(m: Dict[str, Any]) -> MerchantMapping:
    name = str(m["name"])
    return MerchantMapping(
        id=str(m.get("id") or uuid.uuid4()),
        merchant_name=name,
        standard_name=str(m.get("standard_name", name)),
        category_id=str(m["category"]),
        merchant_type=m.get("merchant_type") or classify_merchant_type(name),
        confidence=float(m.get("confidence", 1.0)),
        aliases=tuple(str(a) for a in m.get("aliases", [])),
        is_verified=bool(m.get("verified", False)),
    )


def _load_seed_yaml(path: Optional[str]) -> Dict[str, Any]:
    if not path:
        return {}
    p = Path(path)
    if not p.exists():
        return {}
    with open(p, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def compile_rules(cfg: Dict[str, Any]) -> List[CategoryRule]:
    """Compile all rules from a parsed seed file, sorted by priority (highest first)."""
    rules = [parse_rule(r) for r in cfg.get("rules", [])]
    rules.sort(key=lambda r: r.priority, reverse=True)
    return rules


def load_seed_rules(path: Optional[str]) -> List[CategoryRule]:
    return compile_rules(_load_seed_yaml(path))


def load_seed_merchants(path: Optional[str]) -> List[MerchantMapping]:
    return [parse_merchant(m) for m in _load_seed_yaml(path).get("merchants", [])]
