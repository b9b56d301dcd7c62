"""Tests for rule condition validation."""

from decimal import Decimal

import pytest

from rapprochement.schemas.rules import (
    DateCondition,
    LabelCondition,
    MonthlySupplierCondition,
    RuleKind,
    parse_rule,
)
from rapprochement.services.errors import RuleConfigurationError


def test_parse_rule_accepts_stored_column_names() -> None:
    rule = parse_rule(
        {
            "id": 7,
            "type_regle": "LABEL",
            "condition_json": {"keywords": ["ORANGE MOBILE", "SFR"]},
            "score_attribue": 40,
            "priorite": 2,
            "actif": True,
            "nom": "Telecom",
        }
    )
    assert rule.id == "7"
    assert rule.kind == RuleKind.LABEL
    assert isinstance(rule.condition, LabelCondition)
    assert rule.condition.keywords == "ORANGE MOBILE,SFR"
    assert (rule.score, rule.priority, rule.name) == (40, 2, "Telecom")


def test_parse_rule_applies_default_score() -> None:
    rule = parse_rule({"id": "a", "kind": "AMOUNT", "condition": {}}, default_score=15)
    assert rule.score == 15
    assert rule.condition.tolerance == Decimal("0.01")


def test_date_condition_accepts_days_alias() -> None:
    rule = parse_rule({"id": "d", "kind": "DATE", "condition": {"days": 3}})
    assert isinstance(rule.condition, DateCondition)
    assert rule.condition.window_days == 3


def test_monthly_supplier_accepts_legacy_keys() -> None:
    rule = parse_rule(
        {
            "id": "m",
            "kind": "CUSTOM",
            "condition": {"mode": "MONTHLY_SUPPLIER", "fournisseur": "EDF", "sameMonthYear": False},
        }
    )
    assert isinstance(rule.condition, MonthlySupplierCondition)
    assert rule.condition.supplier == "EDF"
    assert rule.condition.same_month_year is False


@pytest.mark.parametrize(
    "raw",
    [
        {"id": "1", "kind": "LABEL", "condition": {}},
        {"id": "2", "kind": "LABEL", "condition": {"keywords": " , "}},
        {"id": "3", "kind": "AMOUNT", "condition": {"tolerance": -1}},
        {"id": "4", "kind": "DATE", "condition": {"window_days": -2}},
        {"id": "5", "kind": "TRANSACTION_TYPE", "condition": {"direction": "SIDEWAYS"}},
        {"id": "6", "kind": "CUSTOM", "condition": {"mode": "MONTHLY_SUPPLIER"}},
        {"id": "7", "kind": "UNKNOWN", "condition": {}},
        {"id": "8", "kind": "AMOUNT", "condition": {}, "score": 150},
        {"id": "9", "kind": "AMOUNT", "condition": "not an object"},
    ],
)
def test_invalid_rules_raise_configuration_error(raw: dict) -> None:
    with pytest.raises(RuleConfigurationError) as exc_info:
        parse_rule(raw)
    assert exc_info.value.rule_id == raw["id"]


def test_configuration_error_carries_pydantic_errors() -> None:
    with pytest.raises(RuleConfigurationError) as exc_info:
        parse_rule({"id": "x", "kind": "AMOUNT", "condition": {"tolerance": "-5"}})
    assert exc_info.value.errors
    assert exc_info.value.errors[0]["loc"][-1] == "tolerance"
