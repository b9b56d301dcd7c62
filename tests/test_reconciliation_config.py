"""Tests for reconciliation policy loading."""

from decimal import Decimal

import pytest

from rapprochement.services.reconciliation import DEFAULT_CONFIG, ReconciliationConfig, load_reconciliation_config


def test_loads_yaml_overrides(tmp_path) -> None:
    path = tmp_path / "reconciliation.yaml"
    path.write_text(
        """
scoring:
  default_rule_score: 15
  thresholds:
    matched: 80
    uncertain: 20
  tolerances:
    amount: 0.05
matching:
  auto_aggregate: true
  auto_inverse: "no"
report:
  top_candidates: 3
"""
    )

    config = load_reconciliation_config(config_path=path)

    assert config.matched_threshold == 80
    assert config.uncertain_threshold == 20
    assert config.amount_tolerance == Decimal("0.05")
    assert config.inverse_tolerance == DEFAULT_CONFIG.inverse_tolerance
    assert config.auto_aggregate is True
    assert config.auto_inverse is False
    assert config.default_rule_score == 15
    assert config.report_top_candidates == 3


def test_missing_file_uses_defaults(tmp_path) -> None:
    assert load_reconciliation_config(config_path=tmp_path / "missing.yaml") == DEFAULT_CONFIG


def test_malformed_file_falls_back_to_defaults(tmp_path) -> None:
    path = tmp_path / "reconciliation.yaml"
    path.write_text("scoring:\n  thresholds:\n    matched: 10\n    uncertain: 50\n")
    assert load_reconciliation_config(config_path=path) == DEFAULT_CONFIG


def test_environment_overrides_thresholds(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("RECONCILIATION_MATCHED_THRESHOLD", "90")
    monkeypatch.setenv("RECONCILIATION_UNCERTAIN_THRESHOLD", "30")

    config = load_reconciliation_config(config_path=tmp_path / "missing.yaml")

    assert config.matched_threshold == 90
    assert config.uncertain_threshold == 30


def test_default_path_is_cached() -> None:
    first = load_reconciliation_config()
    assert load_reconciliation_config() is first
    assert load_reconciliation_config(force_reload=True) == first


def test_invalid_values_rejected() -> None:
    with pytest.raises(ValueError):
        ReconciliationConfig(
            matched_threshold=50,
            uncertain_threshold=60,
            amount_tolerance=Decimal("0.01"),
            inverse_tolerance=Decimal("0.01"),
            auto_aggregate=False,
            auto_inverse=True,
            default_rule_score=10,
            report_top_candidates=5,
        )
