# tests/test_learning.py
"""
Tests for the pure learning step, corpus cap, reports and CSV loading.
"""
from datetime import datetime

import pytest

from categorizer.learning import (
    build_example,
    cap_corpus,
    corpus_statistics,
    evaluate_accuracy,
    learn,
    load_feedback_csv,
)
from config.loader import EngineConfig
from sce_core.models import EngineSnapshot, Feedback, LearningPhase, TimeBucket

NOON = datetime(2024, 3, 15, 12, 30)


def _fb(description="午餐", category_id="food", is_correct=True, merchant="", amount=100.0):
    return Feedback(
        description=description,
        amount=amount,
        category_id=category_id,
        is_correct=is_correct,
        merchant=merchant,
        user_id="u1",
        timestamp=NOON,
    )


class TestLearn:
    def test_input_snapshot_untouched(self, rule_factory):
        rule = rule_factory(keywords=("午餐",))
        snap = EngineSnapshot(rules=(rule,))
        new_snap, changes, outcome = learn(snap, _fb(merchant="全聯"))
        assert snap.rules == (rule,)
        assert snap.examples == ()
        assert len(new_snap.examples) == 1
        assert changes.example is new_snap.examples[0]
        assert changes.rules == [new_snap.rules[0]]
        assert changes.merchant is new_snap.merchants[0]
        assert outcome.phase == LearningPhase.REINFORCING

    def test_reinforce_records_usage(self, rule_factory):
        rule = rule_factory(keywords=("午餐",))
        new_snap, _, _ = learn(EngineSnapshot(rules=(rule,)), _fb())
        updated = new_snap.rules[0]
        assert updated.min_confidence == pytest.approx(0.71)
        assert updated.usage_count == 1
        assert updated.last_used == NOON

    def test_other_category_not_reinforced(self, rule_factory):
        rule = rule_factory(keywords=("午餐",), category_id="daily")
        new_snap, changes, outcome = learn(EngineSnapshot(rules=(rule,)), _fb())
        assert new_snap.rules[0] == rule
        assert changes.rules == []
        assert outcome.reinforced == []

    def test_inactive_rules_ignored(self, rule_factory):
        rule = rule_factory(keywords=("午餐",), is_active=False)
        _, _, outcome = learn(EngineSnapshot(rules=(rule,)), _fb(is_correct=False))
        assert outcome.decayed == []

    def test_incorrect_skips_merchant(self):
        new_snap, changes, outcome = learn(
            EngineSnapshot(), _fb(is_correct=False, merchant="全聯")
        )
        assert new_snap.merchants == ()
        assert changes.merchant is None
        assert outcome.phase == LearningPhase.DECAYING
        assert new_snap.examples[0].is_correct is False


class TestCorpus:
    def test_cap(self, example_factory):
        examples = tuple(example_factory(f"e{i}") for i in range(5))
        assert cap_corpus(examples, EngineConfig(max_training_examples=2)) == examples[-2:]
        assert cap_corpus(examples, EngineConfig(max_training_examples=0)) == examples

    def test_build_example_features(self):
        ex = build_example(_fb("午餐 $120", amount=120))
        assert ex.timestamp == NOON
        assert ex.features.time_bucket == TimeBucket.MIDDAY
        assert ex.features.has_digits is True
        assert "午餐" in ex.features.keywords

    def test_build_example_sanitizes_amount(self):
        assert build_example(_fb(amount=float("nan"))).amount == 0.0


class TestReports:
    def test_held_out_examples_not_in_history(self, example_factory):
        # the only history for "早午餐 套餐" is the held-out example itself
        snap = EngineSnapshot(
            examples=(
                example_factory("捷運 通勤", "transport", amount=0),
                example_factory("早午餐 套餐", "brunch", amount=0),
            )
        )
        report = evaluate_accuracy(snap, 1)
        assert report.total_test_cases == 1
        assert report.correct_predictions == 0

    def test_test_size_capped(self, example_factory):
        snap = EngineSnapshot(examples=tuple(example_factory("午餐") for _ in range(120)))
        assert evaluate_accuracy(snap, 500).total_test_cases == 100

    def test_statistics_recent_limit(self, example_factory):
        snap = EngineSnapshot(examples=tuple(example_factory(f"午餐 {i}") for i in range(15)))
        stats = corpus_statistics(snap)
        assert stats.total_records == 15
        assert len(stats.recent_activity) == 10

    def test_statistics_empty(self):
        assert corpus_statistics(EngineSnapshot()).total_records == 0


class TestFeedbackCsv:
    def test_optional_columns_defaulted(self, tmp_path):
        p = tmp_path / "fb.csv"
        p.write_text(
            "description,category_id,amount,is_correct\n"
            "午餐,food,120,true\n"
            "捷運,transport,,no\n"
            ",food,10,yes\n",
            encoding="utf-8",
        )
        records = load_feedback_csv(p)
        assert len(records) == 2
        assert records[0] == Feedback(
            description="午餐", amount=120.0, category_id="food", is_correct=True
        )
        assert records[1].amount == 0.0
        assert records[1].is_correct is False
        assert records[1].merchant == ""

    def test_missing_required_column(self, tmp_path):
        p = tmp_path / "fb.csv"
        p.write_text("description,amount\n午餐,100\n", encoding="utf-8")
        with pytest.raises(ValueError, match="category_id"):
            load_feedback_csv(p)
