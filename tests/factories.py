"""Test data factories using factory_boy pattern.

Usage:
    tx = BankTransactionFactory.build(label="PRLV ORANGE", debit=Decimal("39.99"))
    invoice = InvoiceFactory.build(total_ttc=Decimal("39.99"), partner_name="Orange")
"""

import datetime
from decimal import Decimal

import factory

from rapprochement.schemas.rules import ReconciliationRule, parse_rule
from rapprochement.services.domain import (
    BankTransaction,
    ChargeDeclaration,
    ChargePayment,
    Invoice,
    InvoiceDirection,
    Partner,
    PartnerKind,
    Subscription,
)


class BankTransactionFactory(factory.Factory):
    class Meta:
        model = BankTransaction

    numero_ligne = factory.Sequence(lambda n: str(n + 1))
    date = datetime.date(2024, 3, 15)
    label = "VIREMENT"
    debit = Decimal("100.00")
    credit = Decimal("0.00")
    partner = None


class PartnerFactory(factory.Factory):
    class Meta:
        model = Partner

    id = factory.Sequence(lambda n: f"p{n + 1}")
    name = factory.Sequence(lambda n: f"Partner {n + 1}")
    kind = PartnerKind.SUPPLIER.value
    keywords = None


class InvoiceFactory(factory.Factory):
    class Meta:
        model = Invoice

    id = factory.Sequence(lambda n: str(n + 1))
    number = factory.Sequence(lambda n: f"F2024-{n + 1:04d}")
    direction = InvoiceDirection.PURCHASE
    issue_date = datetime.date(2024, 3, 10)
    total_ttc = Decimal("100.00")
    total_ht = Decimal("83.33")
    total_tva = Decimal("16.67")
    partner_id = None
    partner_name = "ACME"


class SubscriptionFactory(factory.Factory):
    class Meta:
        model = Subscription

    id = factory.Sequence(lambda n: str(n + 1))
    name = "Forfait mobile"
    monthly_amount = Decimal("39.99")
    vat_label = "normal"
    keywords = "ORANGE"
    partner_id = None
    partner_name = "Orange"


class ChargePaymentFactory(factory.Factory):
    class Meta:
        model = ChargePayment

    id = factory.Sequence(lambda n: str(n + 1))
    date = datetime.date(2024, 3, 5)
    amount = Decimal("450.00")


class ChargeDeclarationFactory(factory.Factory):
    class Meta:
        model = ChargeDeclaration

    id = factory.Sequence(lambda n: str(n + 1))
    name = "URSSAF"
    category = "CHARGES_SOCIALES"
    organism = "URSSAF"
    keywords = "URSSAF"
    payments = ()


def make_rule(rule_id: str, kind: str, condition: dict | None = None, **fields) -> ReconciliationRule:
    """Build a validated rule from a raw stored-row payload."""
    return parse_rule({"id": rule_id, "kind": kind, "condition": condition or {}, **fields})
