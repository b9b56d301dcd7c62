"""Evaluation of one reconciliation rule against a transaction/candidate pair."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from rapprochement.schemas.rules import (
    AmountCondition,
    ChargeDeclarationCondition,
    DateCondition,
    LabelCondition,
    MonthlySupplierCondition,
    PartnerCondition,
    ReconciliationRule,
    SubscriptionCondition,
    TransactionTypeCondition,
)
from rapprochement.services import keywords
from rapprochement.services.amounts import within_tolerance
from rapprochement.services.domain import (
    BankTransaction,
    Candidate,
    CandidateKind,
    PartnerRef,
)
from rapprochement.services.errors import RuleConfigurationError
from rapprochement.services.periods import same_month


@dataclass(frozen=True)
class RuleOutcome:
    applies: bool
    score_contribution: int = 0


NOT_APPLIED = RuleOutcome(applies=False)


def _amount(cond: AmountCondition, tx: BankTransaction, candidate: Candidate, partner: PartnerRef | None) -> bool:
    return within_tolerance(tx.absolute_amount, candidate.amount, cond.tolerance)


def _date(cond: DateCondition, tx: BankTransaction, candidate: Candidate, partner: PartnerRef | None) -> bool:
    reference = candidate.reference_date
    if reference is None:
        return False
    return abs((tx.date - reference).days) <= cond.window_days


def _label(cond: LabelCondition, tx: BankTransaction, candidate: Candidate, partner: PartnerRef | None) -> bool:
    return keywords.matches(tx.label, cond.keywords)


def _partner(cond: PartnerCondition, tx: BankTransaction, candidate: Candidate, partner: PartnerRef | None) -> bool:
    detected = partner or tx.partner
    if detected is None or not detected.same_as(candidate.partner):
        return False
    if cond.partner_id and detected.id != cond.partner_id:
        return False
    if cond.partner_name and not detected.same_as(PartnerRef(name=cond.partner_name)):
        return False
    return True


def _transaction_type(
    cond: TransactionTypeCondition, tx: BankTransaction, candidate: Candidate, partner: PartnerRef | None
) -> bool:
    if tx.amount == 0 or tx.is_debit != candidate.expects_debit:
        return False
    if cond.direction == "DEBIT":
        return tx.is_debit
    if cond.direction == "CREDIT":
        return tx.is_credit
    return True


def _monthly_supplier(
    cond: MonthlySupplierCondition, tx: BankTransaction, candidate: Candidate, partner: PartnerRef | None
) -> bool:
    if candidate.kind != CandidateKind.INVOICE:
        return False
    if cond.supplier.strip().casefold() not in tx.label.casefold():
        return False
    if not within_tolerance(tx.absolute_amount, candidate.amount, cond.tolerance):
        return False
    if cond.same_month_year and not same_month(tx.date, candidate.reference_date):
        return False
    if cond.keywords and not keywords.matches(tx.label, cond.keywords):
        return False
    return True


def _subscription(
    cond: SubscriptionCondition, tx: BankTransaction, candidate: Candidate, partner: PartnerRef | None
) -> bool:
    if candidate.kind != CandidateKind.SUBSCRIPTION:
        return False
    if cond.subscription_id and candidate.id != cond.subscription_id:
        return False
    if not keywords.matches(tx.label, candidate.keywords):
        return False
    return not cond.keywords or keywords.matches(tx.label, cond.keywords)


def _charge_declaration(
    cond: ChargeDeclarationCondition, tx: BankTransaction, candidate: Candidate, partner: PartnerRef | None
) -> bool:
    if candidate.kind != CandidateKind.CHARGE_DECLARATION:
        return False
    if cond.declaration_id and candidate.id != cond.declaration_id:
        return False
    if not keywords.matches(tx.label, candidate.keywords):
        return False
    return not cond.keywords or keywords.matches(tx.label, cond.keywords)


_EVALUATORS: dict[type, Callable[[Any, BankTransaction, Candidate, PartnerRef | None], bool]] = {
    AmountCondition: _amount,
    DateCondition: _date,
    LabelCondition: _label,
    PartnerCondition: _partner,
    TransactionTypeCondition: _transaction_type,
    MonthlySupplierCondition: _monthly_supplier,
    SubscriptionCondition: _subscription,
    ChargeDeclarationCondition: _charge_declaration,
}


def evaluate(
    rule: ReconciliationRule,
    transaction: BankTransaction,
    candidate: Candidate,
    partner: PartnerRef | None = None,
) -> RuleOutcome:
    """Apply ``rule`` to one transaction/candidate pair.

    ``partner`` is the counterparty detected for the transaction, when the
    statement line does not carry one itself.

    Raises:
        RuleConfigurationError: If the rule's condition cannot be evaluated.
    """
    handler = _EVALUATORS.get(type(rule.condition))
    if handler is None:
        raise RuleConfigurationError(
            f"Rule {rule.id}: no evaluator for condition {type(rule.condition).__name__}",
            rule_id=rule.id,
        )
    try:
        applies = handler(rule.condition, transaction, candidate, partner)
    except (ArithmeticError, TypeError, ValueError) as exc:
        raise RuleConfigurationError(f"Rule {rule.id}: evaluation failed: {exc}", rule_id=rule.id) from exc
    if not applies:
        return NOT_APPLIED
    return RuleOutcome(applies=True, score_contribution=rule.score)
