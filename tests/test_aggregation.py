"""Tests for many-to-one invoice aggregation."""

from datetime import date
from decimal import Decimal

from rapprochement.services.aggregation import EXHAUSTIVE_LIMIT, eligible_invoices, find_combination
from rapprochement.services.domain import InvoiceDirection, PartnerRef, StatementPeriod
from rapprochement.services.ledger import ClaimLedger
from tests.factories import BankTransactionFactory, InvoiceFactory

TOLERANCE = Decimal("0.01")


def _invoices(*amounts: str):
    return [InvoiceFactory.build(id=str(n + 1), total_ttc=Decimal(amount)) for n, amount in enumerate(amounts)]


def test_exact_combination_prefers_fewest_invoices() -> None:
    invoices = _invoices("100.00", "200.00", "300.00", "50.00", "250.00")

    found = find_combination(Decimal("300.00"), invoices, TOLERANCE)

    assert found.complete
    assert [invoice.id for invoice in found.invoices] == ["3"]


def test_multi_invoice_combination() -> None:
    invoices = _invoices("120.00", "80.50", "99.49")

    found = find_combination(Decimal("299.99"), invoices, TOLERANCE)

    assert found.complete
    assert found.total == Decimal("299.99")
    assert found.residual == Decimal("0.00")
    assert found.candidate_ids == ["invoice:1", "invoice:2", "invoice:3"]


def test_partial_combination_reports_residual() -> None:
    found = find_combination(Decimal("500.00"), _invoices("120.00", "300.00"), TOLERANCE)

    assert not found.complete
    assert found.total == Decimal("420.00")
    assert found.residual == Decimal("80.00")


def test_nothing_fits() -> None:
    assert find_combination(Decimal("10.00"), _invoices("120.00"), TOLERANCE) is None
    assert find_combination(Decimal("10.00"), [], TOLERANCE) is None


def test_large_pools_use_greedy_accumulation() -> None:
    amounts = [str(n * 10) + ".00" for n in range(1, EXHAUSTIVE_LIMIT + 4)]
    invoices = _invoices(*amounts)

    found = find_combination(Decimal("210.00"), invoices, TOLERANCE)

    assert found.complete
    assert found.total == Decimal("210.00")


def test_eligible_invoices_filters_partner_period_direction_and_claims() -> None:
    tx = BankTransactionFactory.build(debit=Decimal("300.00"))
    partner = PartnerRef(id="p1", name="ACME")
    keep = InvoiceFactory.build(id="1", partner_id="p1")
    other_partner = InvoiceFactory.build(id="2", partner_id="p2")
    out_of_period = InvoiceFactory.build(id="3", partner_id="p1", issue_date=date(2023, 12, 1))
    sale = InvoiceFactory.build(id="4", partner_id="p1", direction=InvoiceDirection.SALE)
    claimed = InvoiceFactory.build(id="5", partner_id="p1")
    ledger = ClaimLedger()
    ledger.claim(claimed.candidate_id, "99")
    period = StatementPeriod(date(2024, 1, 1), date(2024, 3, 31))

    pool = eligible_invoices(tx, [claimed, sale, out_of_period, other_partner, keep], partner, period, ledger)

    assert pool == [keep]


def test_eligible_invoices_requires_a_partner() -> None:
    tx = BankTransactionFactory.build()
    assert eligible_invoices(tx, [InvoiceFactory.build()], None, None, ClaimLedger()) == []
