"""Credit-note offsetting: a sales invoice settled by one or more credit notes."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime
from decimal import Decimal
from uuid import uuid4

from rapprochement.logger import get_logger
from rapprochement.services.amounts import CENT, ZERO, to_money
from rapprochement.services.domain import CreditNoteOffset, Invoice, InvoiceDirection, id_sort_key
from rapprochement.services.errors import CreditNoteError

logger = get_logger(__name__)


def new_reference(now: datetime | None = None) -> str:
    """Internal reconciliation id, e.g. ``AVOIR-20240315-101500-3f2a9c``."""
    stamp = (now or datetime.now(UTC)).strftime("%Y%m%d-%H%M%S")
    return f"AVOIR-{stamp}-{uuid4().hex[:6]}"


def balance(invoice: Invoice, credit_notes: Iterable[Invoice]) -> tuple[Decimal, bool]:
    """Return ``(solde, balanced)``: the invoice total plus the (negative) credit notes."""
    solde = to_money(invoice.amount + sum((note.amount for note in credit_notes), ZERO))
    return solde, abs(solde) < CENT


def find_credit_notes(
    invoices: Iterable[Invoice],
    *,
    is_claimed: Callable[[str], bool],
    search: str | None = None,
) -> list[Invoice]:
    """Unreconciled credit notes, newest first, narrowed by number or partner name."""
    needle = search.strip().casefold() if search and search.strip() else None
    found = [
        invoice
        for invoice in invoices
        if invoice.is_credit_note
        and not is_claimed(invoice.candidate_id)
        and (
            needle is None
            or needle in invoice.number.casefold()
            or (invoice.partner_name is not None and needle in invoice.partner_name.casefold())
        )
    ]
    found.sort(key=lambda invoice: id_sort_key(invoice.id))
    found.sort(key=lambda invoice: invoice.issue_date, reverse=True)
    return found


def offset(invoice: Invoice, credit_notes: Sequence[Invoice], reference: str | None = None) -> CreditNoteOffset:
    """Build the offset of ``invoice`` by ``credit_notes``.

    An unbalanced offset is still built; the discrepancy is logged and carried
    in ``solde``.

    Raises:
        CreditNoteError: If the invoice is not a positive sales invoice, no
            credit note is given, one is repeated, or one is not a credit note.
    """
    if invoice.direction != InvoiceDirection.SALE or invoice.amount <= 0:
        raise CreditNoteError(f"Invoice {invoice.number} is not a sales invoice with a positive total")
    if not credit_notes:
        raise CreditNoteError(f"Invoice {invoice.number}: at least one credit note is required")
    seen: set[str] = set()
    for note in credit_notes:
        if note.id == invoice.id or note.id in seen:
            raise CreditNoteError(f"Credit note {note.number} is given more than once")
        if not note.is_credit_note:
            raise CreditNoteError(f"Invoice {note.number} is not a credit note")
        seen.add(note.id)

    solde, balanced = balance(invoice, credit_notes)
    if not balanced:
        logger.warning(
            "Credit note offset is not balanced",
            invoice_id=invoice.id,
            credit_notes=len(credit_notes),
            solde=solde,
        )
    return CreditNoteOffset(
        reference=reference or new_reference(),
        invoice=invoice,
        credit_notes=tuple(credit_notes),
        solde=solde,
        balanced=balanced,
    )
