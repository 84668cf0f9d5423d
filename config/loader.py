from __future__ import annotations

import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict

REPO = Path(__file__).resolve().parents[1]
DEFAULT_SEED_RULES = Path(__file__).resolve().parent / "rules.default.yaml"


def load_config(config_path: Path | None = None) -> Dict[str, Any]:
    """
    Load config.toml from repo root by default.
    """
    if config_path is None:
        config_path = REPO / "config.toml"

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with config_path.open("rb") as f:
        return tomllib.load(f)


@dataclass(frozen=True)
class EngineConfig:
    """Flattened engine settings. Defaults are the engine's reference constants."""

    # [storage]
    db_path: str = "data/categories.sqlite"
    max_training_examples: int = 5000

    # [suggest]
    max_suggestions: int = 5
    history_threshold: float = 0.6
    history_text_weight: float = 0.7
    history_amount_weight: float = 0.3
    history_top_n: int = 3
    amount_range_confidence: float = 0.3

    # [similarity]
    idf_mode: str = "pairwise"

    # [rules]
    keyword_weight: float = 0.4
    merchant_weight: float = 0.3
    amount_weight: float = 0.3
    reinforce_step: float = 0.01
    decay_step: float = 0.05
    max_confidence: float = 0.95
    confidence_floor: float = 0.1
    deactivate_below: float = 0.3
    induce_min_corpus: int = 10
    induce_min_group: int = 3
    seed_rules: str = str(DEFAULT_SEED_RULES)

    # [merchants]
    merchant_initial_confidence: float = 0.6
    merchant_confidence_step: float = 0.1

    # [evaluation]
    test_size: int = 100

    # [logging]
    log_level: str = "INFO"

    # toml section -> {toml key: field name}
    _SECTIONS = {
        "storage": {
            "db_path": "db_path",
            "max_training_examples": "max_training_examples",
        },
        "suggest": {
            "max_suggestions": "max_suggestions",
            "history_threshold": "history_threshold",
            "history_text_weight": "history_text_weight",
            "history_amount_weight": "history_amount_weight",
            "history_top_n": "history_top_n",
            "amount_range_confidence": "amount_range_confidence",
        },
        "similarity": {"idf_mode": "idf_mode"},
        "rules": {
            "keyword_weight": "keyword_weight",
            "merchant_weight": "merchant_weight",
            "amount_weight": "amount_weight",
            "reinforce_step": "reinforce_step",
            "decay_step": "decay_step",
            "max_confidence": "max_confidence",
            "confidence_floor": "confidence_floor",
            "deactivate_below": "deactivate_below",
            "induce_min_corpus": "induce_min_corpus",
            "induce_min_group": "induce_min_group",
            "seed_rules": "seed_rules",
        },
        "merchants": {
            "initial_confidence": "merchant_initial_confidence",
            "confidence_step": "merchant_confidence_step",
        },
        "evaluation": {"test_size": "test_size"},
        "logging": {"level": "log_level"},
    }

    def __post_init__(self) -> None:
        if self.idf_mode not in ("pairwise", "corpus"):
            raise ValueError(f"idf_mode must be 'pairwise' or 'corpus', got {self.idf_mode!r}")
        if not 0 < self.test_size <= 100:
            raise ValueError(f"test_size must be in 1..100, got {self.test_size}")
        if self.max_suggestions <= 0:
            raise ValueError("max_suggestions must be positive")
        if self.max_training_examples < 0:
            raise ValueError("max_training_examples must be >= 0 (0 disables the cap)")
        if not self.confidence_floor <= self.deactivate_below <= self.max_confidence:
            raise ValueError("expected confidence_floor <= deactivate_below <= max_confidence")

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any]) -> "EngineConfig":
        """Build from a parsed config.toml; unknown keys are ignored."""
        known = {f.name: f for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for section, keys in cls._SECTIONS.items():
            values = cfg.get(section) or {}
            for key, attr in keys.items():
                if key in values:
                    kwargs[attr] = type(known[attr].default)(values[key])
        return cls(**kwargs)


def load_engine_config(config_path: Path | None = None) -> EngineConfig:
    return EngineConfig.from_dict(load_config(config_path))
