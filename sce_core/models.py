from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar

T = TypeVar("T")


class SourceType(str, Enum):
    RULE = "RuleBased"
    KEYWORD = "KeywordBased"
    HISTORY = "HistoryBased"
    MERCHANT = "MerchantBased"
    AMOUNT = "AmountBased"


class AmountBucket(str, Enum):
    MICRO = "micro"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    HUGE = "huge"


class TimeBucket(str, Enum):
    MORNING = "morning"
    MIDDAY = "midday"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    LATE_NIGHT = "late_night"


class Language(str, Enum):
    ZH_TW = "zh-TW"
    EN = "en"
    UNKNOWN = "unknown"


class LearningPhase(str, Enum):
    IDLE = "idle"
    FEEDBACK_RECEIVED = "feedback_received"
    REINFORCING = "reinforcing"
    DECAYING = "decaying"
    PERSISTED_IDLE = "persisted_idle"


class StoreUnavailableError(RuntimeError):
    """Raised internally when a write is attempted while storage is degraded."""


@dataclass(frozen=True)
class Result(Generic[T]):
    """Success/error wrapper for internal fallible operations."""

    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: BaseException) -> "Result[T]":
        return cls(error=error)

    def unwrap_or(self, default: T) -> T:
        return self.value if self.error is None else default


@dataclass(frozen=True)
class Entity:
    kind: str  # "amount" | "time"
    text: str
    start: int
    end: int


@dataclass(frozen=True)
class FeatureRecord:
    keywords: Tuple[str, ...] = ()
    merchant_type: str = "unknown"
    amount_bucket: AmountBucket = AmountBucket.MICRO
    time_bucket: TimeBucket = TimeBucket.LATE_NIGHT
    text_length: int = 0
    has_digits: bool = False
    language: Language = Language.UNKNOWN
    entities: Tuple[Entity, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "keywords": list(self.keywords),
            "merchant_type": self.merchant_type,
            "amount_bucket": self.amount_bucket.value,
            "time_bucket": self.time_bucket.value,
            "text_length": self.text_length,
            "has_digits": self.has_digits,
            "language": self.language.value,
            "entities": [
                {"kind": e.kind, "text": e.text, "start": e.start, "end": e.end}
                for e in self.entities
            ],
        }

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> "FeatureRecord":
        if not d:
            return cls()
        return cls(
            keywords=tuple(d.get("keywords", [])),
            merchant_type=d.get("merchant_type", "unknown"),
            amount_bucket=AmountBucket(d.get("amount_bucket", "micro")),
            time_bucket=TimeBucket(d.get("time_bucket", "late_night")),
            text_length=int(d.get("text_length", 0)),
            has_digits=bool(d.get("has_digits", False)),
            language=Language(d.get("language", "unknown")),
            entities=tuple(
                Entity(
                    kind=e["kind"],
                    text=e["text"],
                    start=int(e["start"]),
                    end=int(e["end"]),
                )
                for e in d.get("entities", [])
            ),
        )


@dataclass(frozen=True)
class TrainingExample:
    id: str
    description: str
    amount: float
    merchant: str
    category_id: str
    is_correct: bool
    user_id: str
    timestamp: datetime
    features: FeatureRecord = field(default_factory=FeatureRecord)


@dataclass(frozen=True)
class Feedback:
    """A user's accept/reject signal as reported by the accounting side."""

    description: str
    amount: float
    category_id: str
    is_correct: bool
    merchant: str = ""
    user_id: str = ""
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class CategoryRule:
    id: str
    name: str
    category_id: str
    keywords: Tuple[str, ...] = ()
    merchant_patterns: Tuple[str, ...] = ()
    min_amount: Optional[float] = None
    max_amount: Optional[float] = None
    min_confidence: float = 0.7
    priority: int = 0
    usage_count: int = 0
    last_used: Optional[datetime] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class MerchantMapping:
    id: str
    merchant_name: str
    standard_name: str
    category_id: str
    merchant_type: str = "general"
    confidence: float = 1.0
    aliases: Tuple[str, ...] = ()
    is_verified: bool = False


@dataclass(frozen=True)
class CategorySuggestion:
    category_id: str
    confidence: float
    reason: str
    source_type: SourceType
    category_name: str = ""
    icon_hint: str = ""


@dataclass(frozen=True)
class EngineSnapshot:
    """Consistent view of the three stores; replaced wholesale by the writer."""

    rules: Tuple[CategoryRule, ...] = ()
    merchants: Tuple[MerchantMapping, ...] = ()
    examples: Tuple[TrainingExample, ...] = ()


@dataclass
class FeedbackOutcome:
    example_id: str
    phase: LearningPhase = LearningPhase.IDLE
    reinforced: List[str] = field(default_factory=list)
    decayed: List[str] = field(default_factory=list)
    deactivated: List[str] = field(default_factory=list)
    merchant_action: str = "skipped"  # created | reassigned | reinforced | skipped


@dataclass
class CategoryPerformance:
    category_id: str
    category_name: str
    total_cases: int
    correct_predictions: int
    accuracy: float
    average_confidence: float
    common_mistakes: List[str] = field(default_factory=list)


@dataclass
class AccuracyReport:
    overall_accuracy: float = 0.0
    category_accuracy: Dict[str, float] = field(default_factory=dict)
    total_test_cases: int = 0
    correct_predictions: int = 0
    evaluation_date: datetime = field(default_factory=datetime.now)
    detailed_performance: List[CategoryPerformance] = field(default_factory=list)


@dataclass
class CorpusStatistics:
    total_records: int = 0
    correct_records: int = 0
    category_breakdown: Dict[str, int] = field(default_factory=dict)
    recent_activity: List[Dict[str, Any]] = field(default_factory=list)
