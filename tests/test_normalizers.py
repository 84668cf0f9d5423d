# tests/test_normalizers.py
from datetime import datetime

import pytest

from sce_core.models import AmountBucket, Language, TimeBucket
from sce_utils.categories import KEYWORD_TO_CATEGORY, category_info
from sce_utils.features import extract_features
from sce_utils.normalizers import (
    amount_bucket,
    classify_merchant_type,
    detect_language,
    extract_entities,
    extract_keywords,
    normalize,
    time_bucket,
)


class TestNormalize:
    """Tests for tokenization."""

    def test_blank_input(self):
        assert normalize("") == []
        assert normalize("   ") == []
        assert normalize(None) == []

    def test_lowercase_and_punctuation(self):
        assert normalize("Uber, TAXI!") == ["uber", "taxi"]

    def test_cjk_tokens_survive(self):
        assert normalize("午餐 便當") == ["午餐", "便當"]

    def test_aliases_applied(self):
        assert normalize("早餐店 奶茶") == ["早餐", "奶茶"]
        assert normalize("飲料店") == ["飲料"]

    def test_convenience_store_alias(self):
        # 7-11 -> 7-eleven, then the hyphen splits it
        assert normalize("7-11 咖啡") == ["eleven", "咖啡"]

    def test_drops_single_chars_and_stop_words(self):
        assert normalize("我 的 午餐 a") == ["午餐"]

    def test_order_preserved(self):
        assert normalize("coffee latte coffee") == ["coffee", "latte", "coffee"]


class TestBuckets:
    @pytest.mark.parametrize(
        "amount,bucket",
        [
            (0, AmountBucket.MICRO),
            (100, AmountBucket.MICRO),
            (100.01, AmountBucket.SMALL),
            (500, AmountBucket.SMALL),
            (1000, AmountBucket.MEDIUM),
            (3000, AmountBucket.LARGE),
            (3000.5, AmountBucket.HUGE),
        ],
    )
    def test_amount_bucket(self, amount, bucket):
        assert amount_bucket(amount) == bucket

    @pytest.mark.parametrize(
        "hour,bucket",
        [
            (6, TimeBucket.MORNING),
            (9, TimeBucket.MORNING),
            (10, TimeBucket.MIDDAY),
            (14, TimeBucket.AFTERNOON),
            (18, TimeBucket.EVENING),
            (22, TimeBucket.LATE_NIGHT),
            (3, TimeBucket.LATE_NIGHT),
        ],
    )
    def test_time_bucket(self, hour, bucket):
        assert time_bucket(datetime(2024, 1, 1, hour, 0)) == bucket


class TestLanguageAndEntities:
    def test_language(self):
        assert detect_language("") == Language.UNKNOWN
        assert detect_language("午餐便當") == Language.ZH_TW
        assert detect_language("lunch box") == Language.EN

    def test_entities_ordered_by_position(self):
        ents = extract_entities("paid $12.50 at 12:30")
        kinds = [e.kind for e in ents]
        assert "amount" in kinds and "time" in kinds
        assert [e.start for e in ents] == sorted(e.start for e in ents)
        assert ents[0].text == "$12.50"

    def test_entities_blank(self):
        assert extract_entities("") == []
        assert extract_entities(None) == []


class TestKeywordsAndMerchants:
    def test_known_keywords_then_bigrams(self):
        kws = extract_keywords("午餐 便當 好吃")
        assert kws[:2] == ["午餐", "便當"]
        assert "午餐 便當" in kws

    def test_keywords_deduplicated(self):
        kws = extract_keywords("咖啡 咖啡")
        assert kws.count("咖啡") == 1

    def test_merchant_type(self):
        assert classify_merchant_type("") == "unknown"
        assert classify_merchant_type("星巴克 信義店") == "cafe"
        assert classify_merchant_type("中油 加油站") == "gas_station"
        assert classify_merchant_type("阿明小店") == "general"


class TestFeatures:
    def test_extract_features(self):
        f = extract_features("午餐 便當 12:30", 120, "全家", now=datetime(2024, 1, 1, 12))
        assert f.amount_bucket == AmountBucket.SMALL
        assert f.time_bucket == TimeBucket.MIDDAY
        assert f.merchant_type == "convenience_store"
        assert f.has_digits
        assert "午餐" in f.keywords
        assert f.text_length == len("午餐 便當 12:30")

    def test_features_roundtrip_dict(self):
        f = extract_features("coffee $3.50", 3.5, "", now=datetime(2024, 1, 1, 8))
        assert type(f).from_dict(f.to_dict()) == f


class TestDictionaries:
    def test_tables_are_read_only(self):
        with pytest.raises(TypeError):
            KEYWORD_TO_CATEGORY["food"] = ()

    def test_unknown_category_info(self):
        info = category_info("nope")
        assert info.name == "其他"
        assert info.icon == "fas fa-question"
