# tests/test_rules.py
from datetime import datetime

import pytest
import yaml

from categorizer.rules import (
    decay,
    induce_rules,
    interquartile_range,
    load_seed_merchants,
    load_seed_rules,
    match_score,
    matches_feedback,
    parse_rule,
    record_usage,
    reinforce,
    suggest,
)
from config.loader import EngineConfig
from sce_core.models import SourceType


class TestMatchScore:
    def test_keyword_fraction(self, rule_factory):
        rule = rule_factory(keywords=("午餐", "便當"))
        assert match_score(rule, "午餐 便當", "", 0) == pytest.approx(0.4)
        assert match_score(rule, "午餐 飲料", "", 0) == pytest.approx(0.2)

    def test_keyword_case_insensitive(self, rule_factory):
        rule = rule_factory(keywords=("Uber",))
        assert match_score(rule, "UBER ride", "", 0) == pytest.approx(0.4)

    def test_averaged_over_evaluated_dimensions(self, rule_factory):
        rule = rule_factory(keywords=("咖啡",), merchant_patterns=("星巴克",), min_amount=50, max_amount=300)
        # all three hit: (0.4 + 0.3 + 0.3) / 3
        assert match_score(rule, "咖啡", "星巴克", 150) == pytest.approx(1.0 / 3)
        # amount misses
        assert match_score(rule, "咖啡", "星巴克", 1000) == pytest.approx(0.7 / 3)

    def test_blank_merchant_not_evaluated(self, rule_factory):
        rule = rule_factory(keywords=("咖啡",), merchant_patterns=("星巴克",))
        assert match_score(rule, "咖啡", "", 0) == pytest.approx(0.4)
        assert match_score(rule, "咖啡", "路易莎", 0) == pytest.approx(0.2)

    def test_no_dimensions(self, rule_factory):
        assert match_score(rule_factory(), "anything", "", 10) == 0.0

    def test_weights_configurable(self, rule_factory):
        cfg = EngineConfig(keyword_weight=1.0)
        rule = rule_factory(keywords=("午餐",))
        assert match_score(rule, "午餐", "", 0, cfg) == pytest.approx(1.0)


class TestSuggest:
    def test_fires_when_score_reaches_threshold(self, rule_factory):
        rule = rule_factory(name="lunch", keywords=("午餐",), min_confidence=0.4)
        suggestions, fired = suggest([rule], "午餐", "", 0)
        assert [s.category_id for s in suggestions] == ["food"]
        assert suggestions[0].source_type == SourceType.RULE
        assert suggestions[0].reason == "Rule match: lunch"
        assert fired == [rule]

    def test_below_threshold_does_not_fire(self, rule_factory):
        rule = rule_factory(keywords=("午餐",), min_confidence=0.7)
        assert suggest([rule], "午餐", "", 0) == ([], [])

    def test_inactive_rule_never_fires(self, rule_factory):
        rule = rule_factory(keywords=("午餐",), min_confidence=0.1, is_active=False)
        assert suggest([rule], "午餐", "", 0) == ([], [])

    def test_priority_order(self, rule_factory):
        low = rule_factory(name="low", keywords=("午餐",), min_confidence=0.1, priority=0)
        high = rule_factory(name="high", category_id="daily", keywords=("午餐",), min_confidence=0.1, priority=3)
        _, fired = suggest([low, high], "午餐", "", 0)
        assert [r.name for r in fired] == ["high", "low"]


class TestAdaptation:
    def test_reinforce_caps(self, rule_factory):
        rule = rule_factory(min_confidence=0.7)
        assert reinforce(rule).min_confidence == pytest.approx(0.71)
        assert reinforce(rule_factory(min_confidence=0.95)).min_confidence == pytest.approx(0.95)

    def test_decay_floor(self, rule_factory):
        rule = rule_factory(min_confidence=0.12, is_active=False)
        assert decay(rule).min_confidence == pytest.approx(0.1)

    def test_decay_deactivates_below_threshold(self, rule_factory):
        rule = rule_factory(min_confidence=0.32)
        decayed = decay(rule)
        assert decayed.min_confidence == pytest.approx(0.27)
        assert decayed.is_active is False
        assert rule.is_active is True  # original untouched

    def test_repeated_decay_from_default(self, rule_factory):
        rule = rule_factory(keywords=("午餐",), min_confidence=0.7)
        steps = 0
        while rule.is_active:
            rule = decay(rule)
            steps += 1
        # 0.7 -> 0.25 after nine steps
        assert steps == 9
        assert suggest([rule], "午餐", "", 0) == ([], [])

    def test_record_usage(self, rule_factory):
        when = datetime(2024, 5, 1, 9, 0)
        used = record_usage(rule_factory(), when)
        assert used.usage_count == 1
        assert used.last_used == when


class TestMatchesFeedback:
    def test_keyword_hit(self, rule_factory):
        rule = rule_factory(keywords=("午餐",), merchant_patterns=("便當店",), min_amount=50, max_amount=200)
        assert matches_feedback(rule, "今天午餐", "別家", 5000)

    def test_merchant_and_amount(self, rule_factory):
        rule = rule_factory(keywords=("午餐",), merchant_patterns=("便當店",), min_amount=50, max_amount=200)
        assert matches_feedback(rule, "外帶", "池上便當店", 100)
        assert not matches_feedback(rule, "外帶", "池上便當店", 500)
        assert not matches_feedback(rule, "外帶", "別家", 100)

    def test_blank_merchant_counts_as_compatible(self, rule_factory):
        rule = rule_factory(keywords=("午餐",), merchant_patterns=("便當店",))
        assert matches_feedback(rule, "外帶", "", 100)


class TestInduction:
    def _lunch_corpus(self, example_factory, n=10):
        return [
            example_factory("午餐 便當", "food", amount=80 + i * 10, merchant="池上便當")
            for i in range(n)
        ]

    def test_lunch_scenario(self, example_factory):
        corpus = self._lunch_corpus(example_factory)
        new_rules = induce_rules(corpus, now=datetime(2024, 3, 1))
        assert len(new_rules) == 1
        rule = new_rules[0]
        assert rule.category_id == "food"
        assert "午餐" in rule.keywords and "便當" in rule.keywords
        assert rule.merchant_patterns == ("池上便當",)
        assert rule.min_confidence == pytest.approx(0.7)
        assert rule.priority == 1
        assert rule.min_amount == 100  # sorted[10 // 4]
        assert rule.max_amount == 150  # sorted[30 // 4]
        assert rule.is_active and rule.usage_count == 0

    def test_needs_ten_correct_examples(self, example_factory):
        corpus = self._lunch_corpus(example_factory, n=9)
        corpus.append(example_factory("午餐 便當", "food", is_correct=False))
        assert induce_rules(corpus) == []

    def test_small_groups_skipped(self, example_factory):
        corpus = self._lunch_corpus(example_factory)
        corpus += [example_factory("捷運 通勤", "transport", amount=30)] * 2
        cats = [r.category_id for r in induce_rules(corpus)]
        assert cats == ["food"]

    def test_group_without_shared_keywords_yields_nothing(self, example_factory):
        words = ["aa", "bb", "cc", "dd", "ee", "ff", "gg", "hh", "ii", "jj"]
        corpus = [example_factory(w, "shopping") for w in words]
        assert induce_rules(corpus) == []

    def test_does_not_duplicate_existing_rule(self, example_factory):
        corpus = self._lunch_corpus(example_factory)
        first = induce_rules(corpus)
        assert induce_rules(corpus, existing_rules=first) == []

    def test_confidence_and_priority_tiers(self, example_factory):
        corpus = [example_factory("午餐 便當", "food", amount=100) for _ in range(25)]
        rule = induce_rules(corpus)[0]
        assert rule.min_confidence == pytest.approx(0.8)
        assert rule.priority == 2

    def test_interquartile_range(self):
        assert interquartile_range([]) == (None, None)
        assert interquartile_range([0, -5]) == (None, None)
        assert interquartile_range([40, 10, 30, 20]) == (20, 40)


class TestSeedYaml:
    def test_parse_rule(self):
        rule = parse_rule(
            {
                "name": "coffee",
                "category": "food",
                "if_description_contains": ["咖啡"],
                "if_merchant_matches": ["星巴克"],
                "if_amount_between": [50, 300],
                "priority": 2,
            }
        )
        assert rule.keywords == ("咖啡",)
        assert rule.merchant_patterns == ("星巴克",)
        assert (rule.min_amount, rule.max_amount) == (50.0, 300.0)
        assert rule.priority == 2
        assert rule.min_confidence == pytest.approx(0.7)

    def test_load_seed_file(self, tmp_path):
        p = tmp_path / "seed.yaml"
        p.write_text(
            yaml.safe_dump(
                {
                    "rules": [
                        {"name": "a", "category": "food", "priority": 0},
                        {"name": "b", "category": "transport", "priority": 5},
                    ],
                    "merchants": [{"name": "全聯", "category": "daily", "confidence": 0.8}],
                },
                allow_unicode=True,
            ),
            encoding="utf-8",
        )
        rules = load_seed_rules(str(p))
        assert [r.name for r in rules] == ["b", "a"]
        merchants = load_seed_merchants(str(p))
        assert merchants[0].standard_name == "全聯"
        assert merchants[0].merchant_type == "supermarket"

    def test_missing_seed_file(self, tmp_path):
        assert load_seed_rules(str(tmp_path / "nope.yaml")) == []
        assert load_seed_rules(None) == []

    def test_default_seed_file_has_starbucks(self):
        merchants = load_seed_merchants(EngineConfig().seed_rules)
        names = {m.standard_name: m for m in merchants}
        assert names["星巴克"].category_id == "food"
        assert names["星巴克"].confidence >= 0.6
