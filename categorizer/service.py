# categorizer/service.py
"""
Categorizer service: the public facade over the engine.

Reads (suggest, evaluate, statistics) use the current immutable snapshot
without locking. Writes (feedback, induction, reload) are serialized by one
lock: re-read the stores, compute, persist in a single transaction, then swap
the snapshot. Rule usage from suggestions is counted in memory and folded
into the next write (or flush_usage / close).

If the store can't be opened the service logs the error, serves seeded
in-memory defaults and ignores writes. With no store it runs in memory.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from config.loader import EngineConfig
from sce_core.models import (
    AccuracyReport,
    CategoryRule,
    CategorySuggestion,
    CorpusStatistics,
    EngineSnapshot,
    Feedback,
    FeedbackOutcome,
    LearningPhase,
    Result,
    StoreUnavailableError,
)
from storage.sqlite_store import SQLiteStore
from . import aggregator, learning
from . import rules as rule_store
from .similarity import IdfTable

log = logging.getLogger("categorizer")

# compute(current) -> (next snapshot, persist(store), value)
Mutation = Callable[[EngineSnapshot], Tuple[EngineSnapshot, Callable[[SQLiteStore], None], object]]


class CategorizerService:
    """Suggest categories for transactions and learn from user feedback."""

    def __init__(self, store: Optional[SQLiteStore] = None, cfg: Optional[EngineConfig] = None):
        self.cfg = cfg or EngineConfig()
        self.store = store
        self.degraded = False
        self._lock = threading.Lock()
        # rule id -> (uses, last used); flushed by the next write
        self._usage_lock = threading.Lock()
        self._pending_usage: Dict[str, Tuple[int, datetime]] = {}
        # (snapshot, idf table) swapped as one reference
        self._state: Tuple[EngineSnapshot, Optional[IdfTable]] = (EngineSnapshot(), None)
        self._loaded = False
        self.reload()

    @classmethod
    def from_config(cls, cfg: EngineConfig, db_path: Optional[str] = None) -> "CategorizerService":
        return cls(store=SQLiteStore(db_path or cfg.db_path), cfg=cfg)

    @property
    def snapshot(self) -> EngineSnapshot:
        return self._state[0]

    def close(self) -> None:
        if self.store is not None:
            if self._pending_usage and not self.degraded:
                self.flush_usage()
            self.store.close()

    # ---------------- state ----------------

    def _swap(self, snapshot: EngineSnapshot) -> None:
        self._state = (snapshot, aggregator.idf_table_for(snapshot, self.cfg))

    def _defaults(self) -> EngineSnapshot:
        try:
            return EngineSnapshot(
                rules=tuple(rule_store.load_seed_rules(self.cfg.seed_rules)),
                merchants=tuple(rule_store.load_seed_merchants(self.cfg.seed_rules)),
            )
        except Exception:
            log.exception("Failed to load seed data from %s", self.cfg.seed_rules)
            return EngineSnapshot()

    def reload(self) -> bool:
        """(Re)load state from the store. Returns False if running degraded."""
        with self._lock:
            if self.store is None:
                if not self._loaded:
                    self._swap(self._defaults())
                    self._loaded = True
                return True
            try:
                if self.store.db_path != ":memory:":
                    Path(self.store.db_path).parent.mkdir(parents=True, exist_ok=True)
                self.store.ensure_schema(self.cfg.seed_rules)
                snapshot = self.store.load_snapshot()
            except Exception:
                log.exception(
                    "Store unavailable at %s; serving in-memory defaults (read-only)",
                    self.store.db_path,
                )
                self.degraded = True
                self._swap(self._defaults())
                self._loaded = True
                return False
            self.degraded = False
            self._swap(snapshot)
            self._loaded = True
            log.debug(
                "Loaded %d rules, %d merchants, %d examples",
                len(snapshot.rules),
                len(snapshot.merchants),
                len(snapshot.examples),
            )
            return True

    def _mutate(self, op: str, compute: Mutation, quiet: bool = False) -> Result:
        with self._lock:
            if self.degraded:
                err = StoreUnavailableError(f"{op}: store unavailable, running read-only")
                if quiet:
                    log.debug("%s", err)
                else:
                    log.warning("%s", err)
                return Result.failure(err)
            pending = self._take_usage()
            try:
                current = self.store.load_snapshot() if self.store is not None else self.snapshot
                current, used = _apply_usage(current, pending)
                nxt, persist, value = compute(current)
                if self.store is not None:
                    with self.store.batch():
                        for r in used:
                            self.store.save_rule(r)
                        persist(self.store)
            except Exception as e:
                self._restore_usage(pending)
                log.exception("%s failed; state unchanged", op)
                return Result.failure(e)
            self._swap(nxt)
            return Result.success(value)

    # ---------------- rule usage ----------------

    def _record_usage(self, rule_ids: Iterable[str]) -> None:
        """Count fired rules in memory; never touches the store or the writer lock."""
        when = datetime.now()
        with self._usage_lock:
            for rule_id in rule_ids:
                uses, _ = self._pending_usage.get(rule_id, (0, when))
                self._pending_usage[rule_id] = (uses + 1, when)

    def _take_usage(self) -> Dict[str, Tuple[int, datetime]]:
        with self._usage_lock:
            pending, self._pending_usage = self._pending_usage, {}
        return pending

    def _restore_usage(self, pending: Dict[str, Tuple[int, datetime]]) -> None:
        with self._usage_lock:
            for rule_id, (uses, when) in pending.items():
                newer, last = self._pending_usage.get(rule_id, (0, when))
                self._pending_usage[rule_id] = (uses + newer, max(when, last))

    def flush_usage(self) -> bool:
        """Write buffered rule usage to the store. Returns False if the write failed."""

        def compute(current: EngineSnapshot):
            return current, lambda store: None, None

        return self._mutate("flush_usage", compute, quiet=True).ok

    # ---------------- public API ----------------

    def suggest_categories(
        self,
        description: Optional[str],
        amount=0.0,
        merchant: Optional[str] = None,
        max_suggestions: Optional[int] = None,
    ) -> List[CategorySuggestion]:
        """Ranked suggestions, at most `max_suggestions`. Never raises."""
        limit = self.cfg.max_suggestions if max_suggestions is None else max_suggestions
        snapshot, idf_table = self._state
        try:
            suggestions, fired = aggregator.suggest_categories(
                snapshot, description, amount, merchant, limit, self.cfg, idf_table
            )
        except Exception:
            log.exception("suggest_categories failed for %r", description)
            return []
        if fired:
            self._record_usage([r.id for r in fired])
        return suggestions

    def submit_feedback(self, feedback: Feedback) -> Optional[FeedbackOutcome]:
        """Learn from one accept/reject signal. Returns None if nothing was applied."""
        if not isinstance(feedback, Feedback):
            log.warning("Ignoring malformed feedback: %r", feedback)
            return None
        category_id = feedback.category_id
        if not isinstance(category_id, str) or not category_id.strip():
            log.warning(
                "Feedback without a category id ignored: %r (category_id=%r)",
                feedback.description,
                category_id,
            )
            return None

        def compute(current: EngineSnapshot):
            nxt, changes, outcome = learning.learn(current, feedback, self.cfg)

            def persist(store: SQLiteStore) -> None:
                store.insert_example(changes.example)
                for r in changes.rules:
                    store.save_rule(r)
                if changes.merchant is not None:
                    store.save_merchant(changes.merchant)
                store.prune_examples(self.cfg.max_training_examples)

            return nxt, persist, outcome

        res = self._mutate("submit_feedback", compute)
        if not res.ok:
            return None
        outcome: FeedbackOutcome = res.value
        outcome.phase = LearningPhase.PERSISTED_IDLE
        log.info(
            "Feedback %s (%s): reinforced=%d decayed=%d merchant=%s",
            outcome.example_id[:8],
            "correct" if feedback.is_correct else "incorrect",
            len(outcome.reinforced),
            len(outcome.decayed),
            outcome.merchant_action,
        )
        return outcome

    def induce_rules(self) -> List[CategoryRule]:
        """Generate rules from the correct corpus. Returns the new rules."""

        def compute(current: EngineSnapshot):
            nxt, new_rules = learning.induce(current, self.cfg)

            def persist(store: SQLiteStore) -> None:
                for r in new_rules:
                    store.save_rule(r)

            return nxt, persist, new_rules

        return self._mutate("induce_rules", compute).unwrap_or([])

    def evaluate_accuracy(self, test_size: Optional[int] = None) -> AccuracyReport:
        size = self.cfg.test_size if test_size is None else test_size
        try:
            return learning.evaluate_accuracy(self.snapshot, size, self.cfg)
        except Exception:
            log.exception("evaluate_accuracy failed")
            return AccuracyReport()

    def statistics(self) -> CorpusStatistics:
        try:
            return learning.corpus_statistics(self.snapshot)
        except Exception:
            log.exception("corpus statistics failed")
            return CorpusStatistics()

    def list_rules(self, include_inactive: bool = False) -> List[CategoryRule]:
        """Rules by priority, including usage not yet flushed to the store."""
        with self._usage_lock:
            pending = dict(self._pending_usage)
        snapshot, _ = _apply_usage(self.snapshot, pending)
        rules = sorted(snapshot.rules, key=lambda r: r.priority, reverse=True)
        return [r for r in rules if include_inactive or r.is_active]


def _apply_usage(
    snapshot: EngineSnapshot, pending: Dict[str, Tuple[int, datetime]]
) -> Tuple[EngineSnapshot, List[CategoryRule]]:
    """Fold buffered usage counts into the snapshot's rules."""
    if not pending:
        return snapshot, []
    used: List[CategoryRule] = []
    rules = []
    for r in snapshot.rules:
        if r.id in pending:
            uses, when = pending[r.id]
            r = replace(r, usage_count=r.usage_count + uses, last_used=when)
            used.append(r)
        rules.append(r)
    return replace(snapshot, rules=tuple(rules)), used
