"""Tests for single-rule evaluation."""

from datetime import date
from decimal import Decimal

from rapprochement.services.domain import DeclarationPayment, InvoiceDirection, PartnerRef
from rapprochement.services.rules import evaluate
from tests.factories import (
    BankTransactionFactory,
    ChargeDeclarationFactory,
    ChargePaymentFactory,
    InvoiceFactory,
    SubscriptionFactory,
    make_rule,
)


def test_amount_rule_uses_absolute_amount_and_tolerance() -> None:
    rule = make_rule("1", "AMOUNT", {"tolerance": "0.05"}, score=30)
    tx = BankTransactionFactory.build(debit=Decimal("0"), credit=Decimal("100.04"))
    invoice = InvoiceFactory.build(total_ttc=Decimal("100.00"))

    outcome = evaluate(rule, tx, invoice)

    assert outcome.applies
    assert outcome.score_contribution == 30


def test_amount_rule_outside_tolerance() -> None:
    rule = make_rule("1", "AMOUNT")
    tx = BankTransactionFactory.build(debit=Decimal("100.02"))
    assert not evaluate(rule, tx, InvoiceFactory.build(total_ttc=Decimal("100.00"))).applies


def test_date_rule_window() -> None:
    rule = make_rule("1", "DATE", {"window_days": 5})
    invoice = InvoiceFactory.build(issue_date=date(2024, 3, 10))
    assert evaluate(rule, BankTransactionFactory.build(date=date(2024, 3, 15)), invoice).applies
    assert not evaluate(rule, BankTransactionFactory.build(date=date(2024, 3, 16)), invoice).applies


def test_date_rule_never_applies_without_reference_date() -> None:
    rule = make_rule("1", "DATE", {"window_days": 365})
    assert not evaluate(rule, BankTransactionFactory.build(), SubscriptionFactory.build()).applies


def test_label_rule() -> None:
    rule = make_rule("1", "LABEL", {"keywords": "ORANGE ABONNEMENT"})
    invoice = InvoiceFactory.build()
    assert evaluate(rule, BankTransactionFactory.build(label="PRLV ORANGE ABONNEMENT"), invoice).applies
    assert not evaluate(rule, BankTransactionFactory.build(label="PRLV ORANGE"), invoice).applies


def test_transaction_type_rule_follows_invoice_direction() -> None:
    rule = make_rule("1", "TRANSACTION_TYPE", {"direction": "ANY"})
    debit = BankTransactionFactory.build(debit=Decimal("10"))
    credit = BankTransactionFactory.build(debit=Decimal("0"), credit=Decimal("10"))
    purchase = InvoiceFactory.build(direction=InvoiceDirection.PURCHASE)
    sale = InvoiceFactory.build(direction=InvoiceDirection.SALE)

    assert evaluate(rule, debit, purchase).applies
    assert not evaluate(rule, credit, purchase).applies
    assert evaluate(rule, credit, sale).applies

    only_credit = make_rule("2", "TRANSACTION_TYPE", {"direction": "CREDIT"})
    assert not evaluate(only_credit, debit, purchase).applies


def test_partner_rule_uses_detected_partner() -> None:
    rule = make_rule("1", "PARTNER")
    tx = BankTransactionFactory.build(label="PRLV ACME")
    invoice = InvoiceFactory.build(partner_name="acme ")

    assert not evaluate(rule, tx, invoice).applies
    assert evaluate(rule, tx, invoice, PartnerRef(name="ACME")).applies


def test_partner_rule_prefers_ids() -> None:
    rule = make_rule("1", "PARTNER", {"partenaire_id": "p1"})
    tx = BankTransactionFactory.build(partner=PartnerRef(id="p1", name="Other name"))
    assert evaluate(rule, tx, InvoiceFactory.build(partner_id="p1", partner_name="ACME")).applies
    assert not evaluate(rule, tx, InvoiceFactory.build(partner_id="p2", partner_name="Other name")).applies


def test_monthly_supplier_rule() -> None:
    rule = make_rule(
        "1",
        "CUSTOM",
        {"mode": "MONTHLY_SUPPLIER", "supplier": "EDF", "tolerance": "1.00", "same_month_year": True},
    )
    invoice = InvoiceFactory.build(issue_date=date(2024, 3, 2), total_ttc=Decimal("80.00"))

    assert evaluate(rule, BankTransactionFactory.build(label="PRLV EDF", debit=Decimal("80.50")), invoice).applies
    assert not evaluate(
        rule,
        BankTransactionFactory.build(label="PRLV EDF", debit=Decimal("80.50"), date=date(2024, 4, 1)),
        invoice,
    ).applies
    assert not evaluate(rule, BankTransactionFactory.build(label="PRLV GDF", debit=Decimal("80")), invoice).applies
    assert not evaluate(
        rule, BankTransactionFactory.build(label="PRLV EDF", debit=Decimal("80")), SubscriptionFactory.build()
    ).applies


def test_subscription_rule_needs_candidate_keywords() -> None:
    rule = make_rule("1", "SUBSCRIPTION")
    subscription = SubscriptionFactory.build(id="9", keywords="ORANGE")

    assert evaluate(rule, BankTransactionFactory.build(label="PRLV ORANGE"), subscription).applies
    assert not evaluate(rule, BankTransactionFactory.build(label="PRLV SFR"), subscription).applies
    assert not evaluate(rule, BankTransactionFactory.build(label="PRLV ORANGE"), InvoiceFactory.build()).applies

    pinned = make_rule("2", "SUBSCRIPTION", {"abonnement_id": "8"})
    assert not evaluate(pinned, BankTransactionFactory.build(label="PRLV ORANGE"), subscription).applies


def test_charge_declaration_rule() -> None:
    declaration = ChargeDeclarationFactory.build(id="4", keywords="URSSAF")
    candidate = DeclarationPayment(
        declaration=declaration,
        payment=ChargePaymentFactory.build(),
        effective_period=date(2024, 3, 5),
    )
    rule = make_rule("1", "CHARGE_DECLARATION", {"declaration_charge_id": "4"})

    assert evaluate(rule, BankTransactionFactory.build(label="PRLV URSSAF IDF"), candidate).applies
    assert not evaluate(rule, BankTransactionFactory.build(label="PRLV DGFIP"), candidate).applies
