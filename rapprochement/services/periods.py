"""Effective accounting period of charge payments.

The filing date of a social charge and the month it pays for diverge by
category:

- retirement funds post several monthly debits on the same calendar day;
  ranked by record id they belong to consecutive prior months.
- payroll-related charges paid in the first half of a month belong to the
  previous month.
"""

from __future__ import annotations

import calendar
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date

from rapprochement.services.domain import id_sort_key

RETIREMENT_ALIASES = frozenset({"RETIREMENT", "RETRAITE"})
PAYROLL_ALIASES = frozenset({"PAYROLL", "SALAIRE", "SALAIRES"})
PAYROLL_CUTOFF_DAY = 15


@dataclass(frozen=True)
class PaymentStamp:
    """Minimal view of a sibling payment: record id and payment date."""

    id: str
    date: date


def shift_months(day: date, months: int) -> date:
    """Move ``day`` back by ``months`` (negative moves forward).

    The day of month is kept and clamped to the target month's length.
    """
    index = day.year * 12 + (day.month - 1) - months
    year, month_index = divmod(index, 12)
    month = month_index + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def normalize_category(category: str | None) -> str:
    return (category or "").strip().upper()


def is_retirement(category: str | None) -> bool:
    return normalize_category(category) in RETIREMENT_ALIASES


def is_payroll(category: str | None) -> bool:
    return normalize_category(category) in PAYROLL_ALIASES


def retirement_rank(record_id: str, payment_date: date, siblings: Iterable[PaymentStamp]) -> int:
    """1-based rank of ``record_id`` among same-date siblings sorted by id.

    Returns 1 when the record is not among the siblings.
    """
    same_day = sorted({stamp.id for stamp in siblings if stamp.date == payment_date}, key=id_sort_key)
    if record_id not in same_day:
        return 1
    return same_day.index(record_id) + 1


def effective_period(
    payment_date: date,
    category: str | None,
    record_id: str,
    siblings: Iterable[PaymentStamp] = (),
) -> date:
    """Compute the effective accounting date of a charge payment.

    Pure and deterministic given the same sibling set. ``siblings`` must hold
    the same-category records; records on other dates are ignored.
    """
    if is_retirement(category):
        return shift_months(payment_date, retirement_rank(record_id, payment_date, siblings))
    if is_payroll(category) and 1 <= payment_date.day <= PAYROLL_CUTOFF_DAY:
        return shift_months(payment_date, 1)
    return payment_date


def same_month(a: date, b: date) -> bool:
    return (a.year, a.month) == (b.year, b.month)
