"""Monetary helpers: fixed-point amounts, tolerance comparison, VAT back-calculation.

All monetary comparisons in the engine go through :func:`within_tolerance` so a
single rounding policy applies everywhere. Amounts are ``Decimal`` quantized to
cents; floats are only accepted at the boundary and converted through ``str``.
"""

from __future__ import annotations

import re
import unicodedata
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Label -> rate (%) table, keys are accent-free lowercase
VAT_RATES: dict[str, Decimal] = {
    "normal": Decimal("20"),
    "normale": Decimal("20"),
    "reduit": Decimal("5.5"),
    "reduite": Decimal("5.5"),
    "intermediaire": Decimal("10"),
    "exonere": Decimal("0"),
    "exoneree": Decimal("0"),
    "super": Decimal("2.1"),
    "super reduit": Decimal("2.1"),
    "super-reduit": Decimal("2.1"),
}

_NUMBER_TOKEN = re.compile(r"(\d+(?:[.,]\d+)?)")


def to_money(value: Decimal | int | float | str | None) -> Decimal:
    """Convert a boundary value to a cent-quantized Decimal (None -> 0.00)."""
    if value is None or value == "":
        return ZERO
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value) if not isinstance(value, Decimal) else value
    except InvalidOperation as exc:
        raise ValueError(f"Invalid monetary amount: {value!r}") from exc
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def within_tolerance(a: Decimal, b: Decimal, tolerance: Decimal) -> bool:
    """Return True when ``abs(a - b) <= tolerance``."""
    if tolerance < 0:
        raise ValueError("Tolerance must be >= 0")
    return abs(to_money(a) - to_money(b)) <= tolerance


def strip_accents(text: str) -> str:
    """Remove combining accents (réduit -> reduit)."""
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_vat_label(label: str) -> str:
    return re.sub(r"\s+", " ", strip_accents(label).strip().lower())


def vat_rate_for_label(label: str | None) -> Decimal:
    """Resolve a VAT-rate label to a percentage.

    Known labels are looked up in :data:`VAT_RATES`. Anything else falls back
    to the first number embedded in the label ("TVA 5,5 %" -> 5.5), then 0.
    """
    if label is None:
        return Decimal("0")
    normalized = normalize_vat_label(label)
    if normalized in VAT_RATES:
        return VAT_RATES[normalized]
    match = _NUMBER_TOKEN.search(normalized)
    if match:
        return Decimal(match.group(1).replace(",", "."))
    return Decimal("0")


def to_pre_tax(amount_inclusive: Decimal, vat_label: str | None) -> Decimal:
    """Derive the pre-tax (HT) amount from a tax-inclusive (TTC) amount."""
    amount = to_money(amount_inclusive)
    if vat_label is None:
        return amount
    rate = vat_rate_for_label(vat_label)
    return to_money(amount / (Decimal("1") + rate / Decimal("100")))
