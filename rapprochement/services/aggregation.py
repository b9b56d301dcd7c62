"""Many-to-one aggregation: explain one payment with several invoices."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from itertools import combinations

from rapprochement.services.amounts import ZERO, to_money, within_tolerance
from rapprochement.services.domain import (
    BankTransaction,
    DocumentRef,
    Invoice,
    PartnerRef,
    StatementPeriod,
    id_sort_key,
)
from rapprochement.services.ledger import ClaimLedger

# Above this many invoices the subset search switches to greedy accumulation
EXHAUSTIVE_LIMIT = 8


@dataclass(frozen=True)
class AggregationResult:
    invoices: tuple[Invoice, ...]
    total: Decimal
    residual: Decimal
    complete: bool

    @property
    def candidate_ids(self) -> list[str]:
        return [invoice.candidate_id for invoice in self.invoices]

    @property
    def documents(self) -> tuple[DocumentRef, ...]:
        return tuple(invoice.document() for invoice in self.invoices)


def eligible_invoices(
    transaction: BankTransaction,
    invoices: Iterable[Invoice],
    partner: PartnerRef | None,
    period: StatementPeriod | None,
    ledger: ClaimLedger,
) -> list[Invoice]:
    """Unclaimed invoices of the partner, in the period, in the payment's direction."""
    if partner is None or not partner.is_known:
        return []
    selected = [
        invoice
        for invoice in invoices
        if invoice.amount > 0
        and invoice.expects_debit == transaction.is_debit
        and partner.same_as(invoice.partner)
        and (period is None or period.contains(invoice.issue_date))
        and not ledger.is_claimed(invoice.candidate_id)
    ]
    return sorted(selected, key=lambda invoice: id_sort_key(invoice.id))


def _result(target: Decimal, chosen: Sequence[Invoice], tolerance: Decimal) -> AggregationResult:
    total = sum((invoice.amount for invoice in chosen), ZERO)
    return AggregationResult(
        invoices=tuple(chosen),
        total=total,
        residual=to_money(target - total),
        complete=within_tolerance(total, target, tolerance),
    )


def _exhaustive(target: Decimal, invoices: Sequence[Invoice], tolerance: Decimal) -> AggregationResult | None:
    best_partial: tuple[Invoice, ...] | None = None
    best_partial_total = ZERO
    for size in range(1, len(invoices) + 1):
        for subset in combinations(invoices, size):
            total = sum((invoice.amount for invoice in subset), ZERO)
            if within_tolerance(total, target, tolerance):
                return _result(target, subset, tolerance)
            if total <= target and (best_partial is None or total > best_partial_total):
                best_partial, best_partial_total = subset, total
    if best_partial is None:
        return None
    return _result(target, best_partial, tolerance)


def _greedy(target: Decimal, invoices: Sequence[Invoice], tolerance: Decimal) -> AggregationResult | None:
    chosen: list[Invoice] = []
    total = ZERO
    for invoice in sorted(invoices, key=lambda inv: (-inv.amount, id_sort_key(inv.id))):
        if total + invoice.amount > target + tolerance:
            continue
        chosen.append(invoice)
        total += invoice.amount
        if within_tolerance(total, target, tolerance):
            break
    if not chosen:
        return None
    return _result(target, chosen, tolerance)


def find_combination(
    target: Decimal,
    invoices: Sequence[Invoice],
    tolerance: Decimal,
) -> AggregationResult | None:
    """Find invoices whose tax-inclusive totals sum to ``target``.

    Up to :data:`EXHAUSTIVE_LIMIT` invoices every subset is tried, fewest
    invoices first. Larger pools use largest-amount-first accumulation. When
    no combination is within tolerance, the best sum not exceeding the target
    is returned with ``complete=False``. Returns None when nothing fits.
    """
    if not invoices or target <= 0:
        return None
    if len(invoices) <= EXHAUSTIVE_LIMIT:
        return _exhaustive(target, invoices, tolerance)
    return _greedy(target, invoices, tolerance)
