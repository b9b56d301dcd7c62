"""Pydantic schemas for reconciliation rules.

Each rule kind has its own validated condition model. Stored rows are parsed
with :func:`parse_rule`, so a malformed payload is rejected before it reaches
the scoring engine.
"""

from collections.abc import Mapping
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationError,
    model_validator,
)

from rapprochement.services.errors import RuleConfigurationError
from rapprochement.services.keywords import normalize_keywords, parse_expression


class RuleKind(str, Enum):
    """Rule kinds understood by the evaluator."""

    AMOUNT = "AMOUNT"
    DATE = "DATE"
    LABEL = "LABEL"
    TRANSACTION_TYPE = "TRANSACTION_TYPE"
    PARTNER = "PARTNER"
    CUSTOM = "CUSTOM"
    SUBSCRIPTION = "SUBSCRIPTION"
    CHARGE_DECLARATION = "CHARGE_DECLARATION"


# Keyword fields accept the text grammar or a legacy list of OR-groups
KeywordText = Annotated[str | None, BeforeValidator(normalize_keywords)]
Tolerance = Annotated[Decimal, Field(ge=0)]


class _Condition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", coerce_numbers_to_str=True)


class AmountCondition(_Condition):
    kind: Literal["AMOUNT"] = "AMOUNT"
    tolerance: Tolerance = Decimal("0.01")


class DateCondition(_Condition):
    kind: Literal["DATE"] = "DATE"
    window_days: int = Field(default=7, ge=0, validation_alias=AliasChoices("window_days", "days"))


class LabelCondition(_Condition):
    kind: Literal["LABEL"] = "LABEL"
    keywords: KeywordText = None

    @model_validator(mode="after")
    def require_keywords(self) -> "LabelCondition":
        if not parse_expression(self.keywords):
            raise ValueError("LABEL rule requires at least one keyword")
        return self


class TransactionTypeCondition(_Condition):
    kind: Literal["TRANSACTION_TYPE"] = "TRANSACTION_TYPE"
    direction: Literal["DEBIT", "CREDIT", "ANY"] = "ANY"


class PartnerCondition(_Condition):
    kind: Literal["PARTNER"] = "PARTNER"
    partner_id: str | None = Field(default=None, validation_alias=AliasChoices("partner_id", "partenaire_id"))
    partner_name: str | None = None


class MonthlySupplierCondition(_Condition):
    """Recurring supplier invoice paid in the month it was issued."""

    kind: Literal["CUSTOM"] = "CUSTOM"
    mode: Literal["MONTHLY_SUPPLIER"] = "MONTHLY_SUPPLIER"
    supplier: str = Field(min_length=1, validation_alias=AliasChoices("supplier", "fournisseur"))
    keywords: KeywordText = None
    tolerance: Tolerance = Decimal("0.01")
    same_month_year: bool = Field(
        default=True,
        validation_alias=AliasChoices("same_month_year", "sameMonthYear"),
    )


class SubscriptionCondition(_Condition):
    kind: Literal["SUBSCRIPTION"] = "SUBSCRIPTION"
    keywords: KeywordText = None
    subscription_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("subscription_id", "abonnement_id"),
    )


class ChargeDeclarationCondition(_Condition):
    kind: Literal["CHARGE_DECLARATION"] = "CHARGE_DECLARATION"
    keywords: KeywordText = None
    declaration_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("declaration_id", "declaration_charge_id"),
    )


RuleCondition = Annotated[
    AmountCondition
    | DateCondition
    | LabelCondition
    | TransactionTypeCondition
    | PartnerCondition
    | MonthlySupplierCondition
    | SubscriptionCondition
    | ChargeDeclarationCondition,
    Field(discriminator="kind"),
]


class ReconciliationRule(BaseModel):
    """A validated, active-or-not reconciliation rule."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    id: str
    name: str = ""
    kind: RuleKind
    condition: RuleCondition
    score: int = Field(default=10, ge=0, le=100)
    priority: int = 0
    active: bool = True

    @model_validator(mode="after")
    def kind_matches_condition(self) -> "ReconciliationRule":
        if self.condition.kind != self.kind.value:
            raise ValueError(f"Condition kind {self.condition.kind} does not match rule kind {self.kind.value}")
        return self


class RuleValidationResponse(BaseModel):
    """Result of authoring-time rule validation."""

    valid: bool
    rule: ReconciliationRule | None = None
    errors: list[dict[str, Any]] = Field(default_factory=list)


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


def parse_rule(raw: Mapping[str, Any], *, default_score: int = 10) -> ReconciliationRule:
    """Validate a stored rule row.

    Accepts both the API field names (``kind``, ``condition``, ``score``,
    ``priority``, ``active``) and the stored column names (``type_regle``,
    ``condition_json``, ``score_attribue``, ``priorite``, ``actif``).

    Raises:
        RuleConfigurationError: If the row or its condition payload is invalid.
    """
    rule_id = _first(raw, "id")
    score = _first(raw, "score", "score_attribue")
    active = _first(raw, "active", "actif")
    kind = _first(raw, "kind", "type_regle")
    condition = _first(raw, "condition", "condition_json") or {}
    if not isinstance(condition, Mapping):
        raise RuleConfigurationError(
            f"Rule {rule_id}: condition payload must be an object",
            rule_id=rule_id,
        )

    payload = {
        "id": rule_id,
        "name": _first(raw, "name", "nom") or "",
        "kind": kind,
        "condition": {**condition, "kind": str(kind.value if isinstance(kind, Enum) else kind)},
        "score": default_score if score is None else score,
        "priority": _first(raw, "priority", "priorite") or 0,
        "active": True if active is None else active,
    }
    try:
        return ReconciliationRule.model_validate(payload)
    except ValidationError as exc:
        raise RuleConfigurationError(
            f"Rule {rule_id}: invalid configuration ({exc.error_count()} error(s))",
            rule_id=rule_id,
            errors=exc.errors(include_url=False, include_context=False, include_input=False),
        ) from exc
