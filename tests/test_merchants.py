# tests/test_merchants.py
import pytest

from categorizer.merchants import CREATED, REASSIGNED, REINFORCED, SKIPPED, lookup, upsert
from sce_core.models import MerchantMapping, SourceType


def _mapping(**kw):
    base = dict(
        id="m1",
        merchant_name="星巴克",
        standard_name="星巴克",
        category_id="food",
        confidence=0.9,
        aliases=("starbucks",),
    )
    base.update(kw)
    return MerchantMapping(**base)


class TestLookup:
    def test_standard_name_contained(self):
        out = lookup([_mapping()], "星巴克 信義店")
        assert len(out) == 1
        s = out[0]
        assert s.category_id == "food"
        assert s.confidence == pytest.approx(0.9)
        assert s.source_type == SourceType.MERCHANT
        assert s.reason == "Merchant match: 星巴克"

    def test_alias_case_insensitive(self):
        assert lookup([_mapping()], "STARBUCKS Taipei")[0].category_id == "food"

    def test_blank_merchant(self):
        assert lookup([_mapping()], "") == []
        assert lookup([_mapping()], None) == []
        assert lookup([_mapping()], "   ") == []

    def test_empty_standard_name_never_matches_everything(self):
        m = _mapping(standard_name="", aliases=())
        assert lookup([m], "any shop") == []


class TestUpsert:
    def test_blank_skipped(self):
        mappings = (_mapping(),)
        out, touched, action = upsert(mappings, "  ", "food")
        assert out == mappings
        assert touched is None
        assert action == SKIPPED

    def test_unseen_merchant_created(self):
        out, touched, action = upsert((), " 全聯 ", "daily")
        assert action == CREATED
        assert len(out) == 1
        assert touched.merchant_name == "全聯"
        assert touched.standard_name == "全聯"
        assert touched.category_id == "daily"
        assert touched.confidence == pytest.approx(0.6)
        assert touched.is_verified is False
        assert touched.merchant_type == "supermarket"

    def test_pxmart_reassignment(self):
        # learned as daily, later confirmed as food: category overwritten, confidence kept
        out, first, _ = upsert((), "全聯", "daily")
        out, second, action = upsert(out, "全聯", "food")
        assert action == REASSIGNED
        assert len(out) == 1
        assert second.id == first.id
        assert second.category_id == "food"
        assert second.confidence == pytest.approx(first.confidence)

    def test_same_category_reinforced_and_capped(self):
        out, _, _ = upsert((), "全聯", "daily")
        for _ in range(3):
            out, touched, action = upsert(out, "全聯", "daily")
            assert action == REINFORCED
        assert touched.confidence == pytest.approx(0.9)
        for _ in range(5):
            out, touched, _ = upsert(out, "全聯", "daily")
        assert touched.confidence == pytest.approx(1.0)

    def test_matched_by_alias(self):
        out, touched, action = upsert((_mapping(),), "Starbucks", "food")
        assert action == REINFORCED
        assert touched.id == "m1"
        assert touched.confidence == pytest.approx(1.0)

    def test_other_mappings_untouched(self):
        other = _mapping(id="m2", merchant_name="中油", standard_name="中油", category_id="transport", aliases=())
        out, _, _ = upsert((_mapping(), other), "星巴克", "daily")
        assert out[1] == other
        assert out[0].category_id == "daily"
