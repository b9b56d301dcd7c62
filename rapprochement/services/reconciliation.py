"""Reconciliation engine policy configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from decimal import Decimal
from pathlib import Path

import yaml

from rapprochement.config import settings
from rapprochement.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ReconciliationConfig:
    """Runtime policy for scoring and classification."""

    matched_threshold: int
    uncertain_threshold: int
    amount_tolerance: Decimal
    inverse_tolerance: Decimal
    auto_aggregate: bool
    auto_inverse: bool
    default_rule_score: int
    report_top_candidates: int

    def __post_init__(self) -> None:
        if self.amount_tolerance < 0 or self.inverse_tolerance < 0:
            raise ValueError("Tolerances must be >= 0")
        if self.uncertain_threshold > self.matched_threshold:
            raise ValueError("uncertain_threshold must not exceed matched_threshold")


DEFAULT_CONFIG = ReconciliationConfig(
    matched_threshold=70,
    uncertain_threshold=1,
    amount_tolerance=Decimal("0.01"),
    inverse_tolerance=Decimal("0.01"),
    auto_aggregate=False,
    auto_inverse=True,
    default_rule_score=10,
    report_top_candidates=5,
)

_config_cache: ReconciliationConfig | None = None


def default_config_path() -> Path:
    if settings.reconciliation_config_path:
        return Path(settings.reconciliation_config_path)
    return Path(__file__).resolve().parents[2] / "config" / "reconciliation.yaml"


def _as_bool(value: object, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def load_reconciliation_config(
    force_reload: bool = False,
    config_path: Path | None = None,
) -> ReconciliationConfig:
    """Load reconciliation configuration from YAML if available.

    Caches the result to avoid repeated disk I/O. A malformed file logs a
    warning and falls back to defaults.
    """
    global _config_cache
    if _config_cache is not None and not force_reload and config_path is None:
        return _config_cache

    config = DEFAULT_CONFIG
    path = config_path or default_config_path()

    if path.exists():
        try:
            raw = yaml.safe_load(path.read_text()) or {}
            scoring = raw.get("scoring", {}) or {}
            thresholds = scoring.get("thresholds", {}) or {}
            tolerances = scoring.get("tolerances", {}) or {}
            matching = raw.get("matching", {}) or {}
            report = raw.get("report", {}) or {}

            config = ReconciliationConfig(
                matched_threshold=int(thresholds.get("matched", config.matched_threshold)),
                uncertain_threshold=int(thresholds.get("uncertain", config.uncertain_threshold)),
                amount_tolerance=Decimal(str(tolerances.get("amount", config.amount_tolerance))),
                inverse_tolerance=Decimal(str(tolerances.get("inverse", config.inverse_tolerance))),
                auto_aggregate=_as_bool(matching.get("auto_aggregate"), config.auto_aggregate),
                auto_inverse=_as_bool(matching.get("auto_inverse"), config.auto_inverse),
                default_rule_score=int(scoring.get("default_rule_score", config.default_rule_score)),
                report_top_candidates=int(report.get("top_candidates", config.report_top_candidates)),
            )
        except Exception as e:
            logger.warning(
                "Failed to load reconciliation config - using defaults",
                config_path=str(path),
                error=str(e),
                error_type=type(e).__name__,
            )
            config = DEFAULT_CONFIG

    matched_env = os.getenv("RECONCILIATION_MATCHED_THRESHOLD")
    uncertain_env = os.getenv("RECONCILIATION_UNCERTAIN_THRESHOLD")
    if matched_env:
        config = replace(config, matched_threshold=int(matched_env))
    if uncertain_env:
        config = replace(config, uncertain_threshold=int(uncertain_env))

    if config_path is None:
        _config_cache = config
    return config
