# categorizer/merchants.py
from __future__ import annotations

import uuid
from dataclasses import replace
from typing import Iterable, List, Optional, Sequence, Tuple

from config.loader import EngineConfig
from sce_core.models import CategorySuggestion, MerchantMapping, SourceType
from sce_utils.normalizers import classify_merchant_type

DEFAULT_CONFIG = EngineConfig()

CREATED = "created"
REASSIGNED = "reassigned"
REINFORCED = "reinforced"
SKIPPED = "skipped"


def _key(text: str) -> str:
    return text.lower().strip()


def lookup(
    mappings: Iterable[MerchantMapping], merchant: Optional[str]
) -> List[CategorySuggestion]:
    """
    One MerchantBased suggestion per mapping whose standard name or any alias
    occurs in the merchant text (case-insensitive).
    """
    if not merchant or not merchant.strip():
        return []
    m = merchant.lower()
    out: List[CategorySuggestion] = []
    for mapping in mappings:
        names = [mapping.standard_name, *mapping.aliases]
        if any(n and n.lower() in m for n in names):
            out.append(
                CategorySuggestion(
                    category_id=mapping.category_id,
                    confidence=mapping.confidence,
                    reason=f"Merchant match: {mapping.standard_name}",
                    source_type=SourceType.MERCHANT,
                )
            )
    return out


def find_existing(
    mappings: Iterable[MerchantMapping], merchant: str
) -> Optional[MerchantMapping]:
    k = _key(merchant)
    for mapping in mappings:
        if _key(mapping.merchant_name) == k:
            return mapping
        if any(_key(a) == k for a in mapping.aliases):
            return mapping
    return None


def upsert(
    mappings: Sequence[MerchantMapping],
    merchant: Optional[str],
    category_id: str,
    cfg: EngineConfig = DEFAULT_CONFIG,
) -> Tuple[Tuple[MerchantMapping, ...], Optional[MerchantMapping], str]:
    """
    Learn a merchant -> category association from confirmed feedback.

    Returns (new mappings, touched mapping or None, action).
    """
    if not merchant or not merchant.strip():
        return tuple(mappings), None, SKIPPED

    existing = find_existing(mappings, merchant)
    if existing is None:
        name = merchant.strip()
        created = MerchantMapping(
            id=str(uuid.uuid4()),
            merchant_name=name,
            standard_name=name,
            category_id=category_id,
            merchant_type=classify_merchant_type(name),
            confidence=cfg.merchant_initial_confidence,
            is_verified=False,
        )
        return tuple(mappings) + (created,), created, CREATED

    if existing.category_id != category_id:
        updated = replace(existing, category_id=category_id)
        action = REASSIGNED
    else:
        bumped = min(1.0, existing.confidence + cfg.merchant_confidence_step)
        updated = replace(existing, confidence=round(bumped, 6))
        action = REINFORCED

    out = tuple(updated if m.id == existing.id else m for m in mappings)
    return out, updated, action
