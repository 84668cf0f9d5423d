# Purpose: turn (description, amount, merchant) into a FeatureRecord.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sce_core.models import FeatureRecord
from .normalizers import (
    amount_bucket,
    classify_merchant_type,
    detect_language,
    extract_entities,
    extract_keywords,
    time_bucket,
)


def extract_features(
    description: Optional[str],
    amount: float,
    merchant: Optional[str],
    now: Optional[datetime] = None,
) -> FeatureRecord:
    """Pure function of its inputs; `now` defaults to the current local time."""
    text = description or ""
    return FeatureRecord(
        keywords=tuple(extract_keywords(text)),
        merchant_type=classify_merchant_type(merchant or ""),
        amount_bucket=amount_bucket(amount),
        time_bucket=time_bucket(now or datetime.now()),
        text_length=len(text),
        has_digits=any(ch.isdigit() for ch in text),
        language=detect_language(text),
        entities=tuple(extract_entities(text)),
    )
