# categorizer/similarity.py
"""
TF-IDF + cosine similarity between short transaction descriptions.

By default the IDF "corpus" is just the two texts being compared, so the
score for a candidate never depends on the rest of the history. The IDF is
smoothed (ln((1 + N) / (1 + df)) + 1) so that terms shared by both texts keep
a non-zero weight; with the raw ln(N / df) every shared term would weigh 0 on
a two-document corpus and no pair could ever be similar.

IdfTable offers corpus-wide document frequencies for callers that prefer a
global statistic (config: similarity.idf_mode = "corpus").
"""
from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from sce_utils.normalizers import normalize


def term_frequency(tokens: Sequence[str]) -> Dict[str, float]:
    """count / document length, keyed in first-seen order."""
    if not tokens:
        return {}
    n = len(tokens)
    return {t: c / n for t, c in Counter(tokens).items()}


def smoothed_idf(corpus_size: int, doc_freq: int) -> float:
    return math.log((1 + corpus_size) / (1 + doc_freq)) + 1.0


@dataclass(frozen=True)
class IdfTable:
    """Document frequencies over a fixed corpus of token lists."""

    corpus_size: int
    doc_freq: Mapping[str, int]

    @classmethod
    def from_documents(cls, documents: Iterable[Sequence[str]]) -> "IdfTable":
        df: Counter = Counter()
        size = 0
        for tokens in documents:
            size += 1
            df.update(set(tokens))
        return cls(corpus_size=size, doc_freq=dict(df))

    def idf(self, term: str) -> float:
        return smoothed_idf(self.corpus_size, self.doc_freq.get(term, 0))


def tfidf_vector(
    tokens: Sequence[str], corpus: Sequence[Sequence[str]]
) -> Dict[str, float]:
    """Weight each term of `tokens` against the given corpus of token lists."""
    docs = [set(d) for d in corpus]
    vec: Dict[str, float] = {}
    for term, tf in term_frequency(tokens).items():
        df = sum(1 for d in docs if term in d)
        vec[term] = tf * smoothed_idf(len(docs), df)
    return vec


def cosine(vec_a: Mapping[str, float], vec_b: Mapping[str, float]) -> float:
    """
    Cosine of two sparse vectors, clamped to [0, 1].
    Sums run over sorted terms so cosine(a, b) == cosine(b, a) exactly.
    """
    if not vec_a or not vec_b:
        return 0.0
    common = sorted(set(vec_a) & set(vec_b))
    if not common:
        return 0.0

    dot = math.fsum(vec_a[t] * vec_b[t] for t in common)
    norm_a = math.fsum(vec_a[t] * vec_a[t] for t in sorted(vec_a))
    norm_b = math.fsum(vec_b[t] * vec_b[t] for t in sorted(vec_b))
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return max(0.0, min(1.0, dot / math.sqrt(norm_a * norm_b)))


def token_similarity(
    tokens_a: Sequence[str],
    tokens_b: Sequence[str],
    idf_table: Optional[IdfTable] = None,
) -> float:
    if not tokens_a or not tokens_b:
        return 0.0
    if idf_table is None:
        corpus: List[Sequence[str]] = [tokens_a, tokens_b]
        vec_a = tfidf_vector(tokens_a, corpus)
        vec_b = tfidf_vector(tokens_b, corpus)
    else:
        vec_a = {t: tf * idf_table.idf(t) for t, tf in term_frequency(tokens_a).items()}
        vec_b = {t: tf * idf_table.idf(t) for t, tf in term_frequency(tokens_b).items()}
    return cosine(vec_a, vec_b)


def similarity(
    text_a: Optional[str], text_b: Optional[str], idf_table: Optional[IdfTable] = None
) -> float:
    """Similarity of two free-text descriptions in [0, 1]."""
    return token_similarity(normalize(text_a), normalize(text_b), idf_table)


def amount_similarity(a: float, b: float) -> float:
    """min/max ratio less 0.2; amounts more than ~5x apart score 0."""
    if a == 0 and b == 0:
        return 1.0
    hi = max(a, b)
    if hi <= 0:
        return 0.0
    return max(0.0, min(a, b) / hi - 0.2)
