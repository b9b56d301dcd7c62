"""Annual ledger view: one row per statement line with its documents and totals."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, fields
from datetime import date
from decimal import Decimal

from rapprochement.services.amounts import ZERO
from rapprochement.services.domain import BankTransaction, ReconciliationResult, id_sort_key
from rapprochement.services.partners import PartnerDirectory


@dataclass(frozen=True)
class LedgerRow:
    date: date
    numero_ligne: str
    label: str
    debit: Decimal
    credit: Decimal
    partner_id: str | None
    partner_name: str | None
    partner_kind: str | None
    references: tuple[str, ...]
    total_ht: Decimal | None
    total_tva: Decimal | None
    total_ttc: Decimal | None
    status: str | None
    notes: str | None


@dataclass(frozen=True)
class LedgerTotals:
    count: int
    debit: Decimal
    credit: Decimal
    total_ht: Decimal
    total_tva: Decimal
    total_ttc: Decimal


@dataclass(frozen=True)
class AnnualLedger:
    year: int
    rows: list[LedgerRow]
    totals: LedgerTotals


SORT_COLUMNS = frozenset(f.name for f in fields(LedgerRow))


def build_row(
    transaction: BankTransaction,
    result: ReconciliationResult | None,
    directory: PartnerDirectory,
) -> LedgerRow:
    partner = directory.resolve(transaction)
    documents = result.documents if result else ()
    return LedgerRow(
        date=transaction.date,
        numero_ligne=transaction.numero_ligne,
        label=transaction.label,
        debit=transaction.debit,
        credit=transaction.credit,
        partner_id=partner.id if partner else None,
        partner_name=partner.name if partner else None,
        partner_kind=partner.kind if partner else None,
        references=tuple(doc.reference or doc.candidate_id for doc in documents),
        total_ht=result.total_ht if documents else None,
        total_tva=result.total_tva if documents else None,
        total_ttc=result.total_ttc if documents else None,
        status=result.status.value if result else None,
        notes=result.notes if result else None,
    )


def filter_rows(
    rows: Iterable[LedgerRow],
    *,
    partner: str | None = None,
    search: str | None = None,
) -> list[LedgerRow]:
    """Keep rows of ``partner`` (id or name) whose label, line or partner contains ``search``."""
    selected = list(rows)
    if partner and partner.strip():
        wanted = partner.strip().casefold()
        selected = [
            row
            for row in selected
            if (row.partner_id and row.partner_id.casefold() == wanted)
            or (row.partner_name and row.partner_name.strip().casefold() == wanted)
        ]
    if search and search.strip():
        needle = search.strip().casefold()
        selected = [
            row
            for row in selected
            if needle in row.label.casefold()
            or needle in row.numero_ligne.casefold()
            or (row.partner_name and needle in row.partner_name.casefold())
        ]
    return selected


def _sort_value(row: LedgerRow, column: str):
    value = getattr(row, column)
    if column == "numero_ligne":
        return id_sort_key(value)
    if isinstance(value, str):
        return value.casefold()
    if isinstance(value, tuple):
        return ", ".join(value).casefold() if value else None
    return value


def sort_rows(rows: Iterable[LedgerRow], column: str = "date", *, descending: bool = False) -> list[LedgerRow]:
    """Sort by any column; rows without a value always come last.

    Raises:
        ValueError: If ``column`` is not a ledger column.
    """
    if column not in SORT_COLUMNS:
        raise ValueError(f"Unknown sort column {column!r}")
    present: list[LedgerRow] = []
    missing: list[LedgerRow] = []
    for row in rows:
        (missing if _sort_value(row, column) is None else present).append(row)
    # ties keep ascending line order in both directions
    present.sort(key=lambda row: id_sort_key(row.numero_ligne))
    present.sort(key=lambda row: _sort_value(row, column), reverse=descending)
    return present + missing


def compute_totals(rows: Iterable[LedgerRow]) -> LedgerTotals:
    count = 0
    debit = credit = total_ht = total_tva = total_ttc = ZERO
    for row in rows:
        count += 1
        debit += row.debit
        credit += row.credit
        total_ht += row.total_ht or ZERO
        total_tva += row.total_tva or ZERO
        total_ttc += row.total_ttc or ZERO
    return LedgerTotals(
        count=count,
        debit=debit,
        credit=credit,
        total_ht=total_ht,
        total_tva=total_tva,
        total_ttc=total_ttc,
    )


def build_annual_ledger(
    year: int,
    transactions: Iterable[BankTransaction],
    results: Mapping[str, ReconciliationResult],
    directory: PartnerDirectory,
    *,
    partner: str | None = None,
    search: str | None = None,
    sort: str = "date",
    descending: bool = False,
) -> AnnualLedger:
    rows = [
        build_row(tx, results.get(tx.numero_ligne), directory)
        for tx in transactions
        if tx.date.year == year
    ]
    rows = sort_rows(filter_rows(rows, partner=partner, search=search), sort, descending=descending)
    return AnnualLedger(year=year, rows=rows, totals=compute_totals(rows))
