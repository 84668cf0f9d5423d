from __future__ import annotations

import re
from datetime import datetime
from typing import List, Optional, Tuple

from sce_core.models import AmountBucket, Entity, Language, TimeBucket
from .categories import (
    KNOWN_KEYWORDS,
    MERCHANT_ALIASES,
    MERCHANT_TYPES,
    STOP_WORDS,
    TEXT_ALIASES,
)


# ---------------- Tokenization ----------------

# \w is Unicode-aware, so CJK ideographs survive; everything else becomes a gap.
_PUNCT_RX = re.compile(r"[^\w\s]")


def normalize(text: Optional[str]) -> List[str]:
    """
    Lower-case, apply aliases, strip punctuation, split on whitespace and
    drop single-character tokens and stop-words. Token order is preserved.
    """
    if not text or not text.strip():
        return []

    s = text.lower()
    for src, dst in TEXT_ALIASES:
        s = s.replace(src, dst)
    s = _PUNCT_RX.sub(" ", s)

    return [t for t in s.split() if len(t) > 1 and t not in STOP_WORDS]


def extract_keywords(text: Optional[str], max_bigrams: int = 5) -> List[str]:
    """Known dictionary tokens followed by the first few adjacent-token bigrams."""
    tokens = normalize(text)
    keywords = [t for t in tokens if t in KNOWN_KEYWORDS]
    bigrams = [f"{a} {b}" for a, b in zip(tokens, tokens[1:])][:max_bigrams]

    seen = set()
    out: List[str] = []
    for k in keywords + bigrams:
        if k not in seen:
            seen.add(k)
            out.append(k)
    return out


# ---------------- Merchant type ----------------


def classify_merchant_type(merchant: Optional[str]) -> str:
    if not merchant or not merchant.strip():
        return "unknown"
    m = merchant.lower()
    for alias, mtype in MERCHANT_ALIASES.items():
        if alias in m:
            return mtype
    for mtype, needles in MERCHANT_TYPES.items():
        if any(n in m for n in needles):
            return mtype
    return "general"


# ---------------- Buckets ----------------

_AMOUNT_THRESHOLDS: Tuple[Tuple[float, AmountBucket], ...] = (
    (100, AmountBucket.MICRO),
    (500, AmountBucket.SMALL),
    (1000, AmountBucket.MEDIUM),
    (3000, AmountBucket.LARGE),
)


def amount_bucket(amount: float) -> AmountBucket:
    for upper, bucket in _AMOUNT_THRESHOLDS:
        if amount <= upper:
            return bucket
    return AmountBucket.HUGE


def time_bucket(when: datetime) -> TimeBucket:
    hour = when.hour
    if 6 <= hour < 10:
        return TimeBucket.MORNING
    if 10 <= hour < 14:
        return TimeBucket.MIDDAY
    if 14 <= hour < 18:
        return TimeBucket.AFTERNOON
    if 18 <= hour < 22:
        return TimeBucket.EVENING
    return TimeBucket.LATE_NIGHT


# ---------------- Language / entities ----------------


def _is_cjk(ch: str) -> bool:
    return "\u4e00" <= ch <= "\u9fff"


def detect_language(text: Optional[str]) -> Language:
    if not text or not text.strip():
        return Language.UNKNOWN
    cjk = sum(1 for ch in text if _is_cjk(ch))
    return Language.ZH_TW if cjk > len(text) * 0.3 else Language.EN


_AMOUNT_ENTITY_RX = re.compile(r"\$?\d+(?:\.\d{2})?")
_TIME_ENTITY_RX = re.compile(r"\d{1,2}:\d{2}")


def extract_entities(text: Optional[str]) -> List[Entity]:
    """Currency-like and time-like spans, ordered by position."""
    if not text:
        return []
    entities: List[Entity] = []
    try:
        for m in _AMOUNT_ENTITY_RX.finditer(text):
            entities.append(Entity("amount", m.group(0), m.start(), m.end()))
        for m in _TIME_ENTITY_RX.finditer(text):
            entities.append(Entity("time", m.group(0), m.start(), m.end()))
    except (TypeError, re.error):
        return []
    entities.sort(key=lambda e: (e.start, e.kind))
    return entities
