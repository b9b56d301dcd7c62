"""Engine-side domain records.

These are plain frozen dataclasses, independent of the ORM, so the matching
core can run on an in-memory snapshot and be tested without a database.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from rapprochement.services.amounts import ZERO, to_money, to_pre_tax


def id_sort_key(value: str) -> tuple[int, int | str]:
    """Order numeric ids numerically, others lexicographically after them."""
    if value.isdigit():
        return (0, int(value))
    return (1, value)


class ResultStatus(str, Enum):
    """Outcome of reconciling one statement line."""

    MATCHED = "matched"
    UNCERTAIN = "uncertain"
    UNMATCHED = "unmatched"
    PARTIAL = "partial"


class InvoiceDirection(str, Enum):
    SALE = "sale"
    PURCHASE = "purchase"


class CandidateKind(str, Enum):
    INVOICE = "invoice"
    SUBSCRIPTION = "subscription"
    CHARGE_DECLARATION = "charge_declaration"


class PartnerKind(str, Enum):
    CLIENT = "client"
    SUPPLIER = "supplier"
    PROVIDER = "provider"
    EMPLOYEE = "employee"
    STATE = "state"
    BANK = "bank"


@dataclass(frozen=True)
class PartnerRef:
    """Resolved counterparty identity."""

    id: str | None = None
    name: str | None = None
    kind: str | None = None

    @property
    def is_known(self) -> bool:
        return bool(self.id or self.name)

    def same_as(self, other: PartnerRef | None) -> bool:
        """Identity by id when both sides have one, else case-insensitive name."""
        if other is None:
            return False
        if self.id and other.id:
            return self.id == other.id
        if self.name and other.name:
            return self.name.strip().casefold() == other.name.strip().casefold()
        return False


@dataclass(frozen=True)
class Partner:
    """Directory entry used to detect the counterparty of a line."""

    id: str
    name: str
    kind: str | None = None
    keywords: str | None = None

    @property
    def effective_keywords(self) -> str:
        """Reconciliation keywords, falling back to the partner name when blank."""
        if self.keywords and self.keywords.strip():
            return self.keywords
        return self.name

    def ref(self) -> PartnerRef:
        return PartnerRef(id=self.id, name=self.name, kind=self.kind)


@dataclass(frozen=True)
class BankTransaction:
    """Imported statement line. ``numero_ligne`` is the sole identity key."""

    numero_ligne: str
    date: date
    label: str
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    partner: PartnerRef | None = None

    def __post_init__(self) -> None:
        debit = to_money(self.debit)
        credit = to_money(self.credit)
        if debit < 0 or credit < 0:
            raise ValueError(f"Line {self.numero_ligne}: debit and credit must be >= 0")
        if debit > 0 and credit > 0:
            raise ValueError(f"Line {self.numero_ligne}: at most one of debit/credit may be non-zero")
        object.__setattr__(self, "debit", debit)
        object.__setattr__(self, "credit", credit)

    @property
    def amount(self) -> Decimal:
        """Signed amount: debit when present, otherwise minus the credit."""
        return self.debit if self.debit > 0 else -self.credit

    @property
    def absolute_amount(self) -> Decimal:
        return abs(self.amount)

    @property
    def is_debit(self) -> bool:
        return self.debit > 0

    @property
    def is_credit(self) -> bool:
        return self.credit > 0


@dataclass(frozen=True)
class DocumentRef:
    """Reference to a document linked by a result, with its totals."""

    kind: CandidateKind
    document_id: str
    candidate_id: str
    reference: str
    total_ht: Decimal = ZERO
    total_tva: Decimal = ZERO
    total_ttc: Decimal = ZERO

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "document_id": self.document_id,
            "candidate_id": self.candidate_id,
            "reference": self.reference,
            "total_ht": str(self.total_ht),
            "total_tva": str(self.total_tva),
            "total_ttc": str(self.total_ttc),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> DocumentRef:
        return cls(
            kind=CandidateKind(raw["kind"]),
            document_id=str(raw["document_id"]),
            candidate_id=str(raw["candidate_id"]),
            reference=str(raw.get("reference") or ""),
            total_ht=to_money(raw.get("total_ht")),
            total_tva=to_money(raw.get("total_tva")),
            total_ttc=to_money(raw.get("total_ttc")),
        )


@dataclass(frozen=True)
class Invoice:
    id: str
    number: str
    direction: InvoiceDirection
    issue_date: date
    total_ttc: Decimal
    total_ht: Decimal = ZERO
    total_tva: Decimal = ZERO
    partner_id: str | None = None
    partner_name: str | None = None

    kind = CandidateKind.INVOICE

    @property
    def candidate_id(self) -> str:
        return f"invoice:{self.id}"

    @property
    def amount(self) -> Decimal:
        return to_money(self.total_ttc)

    @property
    def reference_date(self) -> date:
        return self.issue_date

    @property
    def partner(self) -> PartnerRef:
        return PartnerRef(id=self.partner_id, name=self.partner_name)

    @property
    def keywords(self) -> str | None:
        return None

    @property
    def expects_debit(self) -> bool:
        """Purchases leave the account, sales arrive on it."""
        return self.direction == InvoiceDirection.PURCHASE

    @property
    def is_credit_note(self) -> bool:
        """Credit notes are sales invoices with a negative total."""
        return self.direction == InvoiceDirection.SALE and self.amount < 0

    def document(self) -> DocumentRef:
        return DocumentRef(
            kind=self.kind,
            document_id=self.id,
            candidate_id=self.candidate_id,
            reference=self.number,
            total_ht=to_money(self.total_ht),
            total_tva=to_money(self.total_tva),
            total_ttc=to_money(self.total_ttc),
        )


@dataclass(frozen=True)
class Subscription:
    id: str
    name: str
    monthly_amount: Decimal
    vat_label: str | None = None
    keywords: str | None = None
    partner_id: str | None = None
    partner_name: str | None = None
    # first day of the billed month; unset on the stored subscription
    month: date | None = None

    kind = CandidateKind.SUBSCRIPTION

    @property
    def candidate_id(self) -> str:
        if self.month is None:
            return f"subscription:{self.id}"
        return f"subscription:{self.id}:{self.month:%Y-%m}"

    @property
    def amount(self) -> Decimal:
        return to_money(self.monthly_amount)

    @property
    def reference_date(self) -> date | None:
        return None

    @property
    def partner(self) -> PartnerRef:
        return PartnerRef(id=self.partner_id, name=self.partner_name)

    @property
    def expects_debit(self) -> bool:
        return True

    def covers(self, day: date) -> bool:
        """A monthly candidate only pays for lines of its own month."""
        return self.month is None or (day.year, day.month) == (self.month.year, self.month.month)

    def for_month(self, day: date) -> Subscription:
        return replace(self, month=day.replace(day=1))

    def document(self) -> DocumentRef:
        ttc = self.amount
        ht = to_pre_tax(ttc, self.vat_label)
        return DocumentRef(
            kind=self.kind,
            document_id=self.id,
            candidate_id=self.candidate_id,
            reference=self.name if self.month is None else f"{self.name} {self.month:%Y-%m}",
            total_ht=ht,
            total_tva=ttc - ht,
            total_ttc=ttc,
        )


@dataclass(frozen=True)
class ChargePayment:
    id: str
    date: date
    amount: Decimal


@dataclass(frozen=True)
class ChargeDeclaration:
    """Social or fiscal filing with its payment events."""

    id: str
    name: str
    category: str
    organism: str | None = None
    keywords: str | None = None
    payments: tuple[ChargePayment, ...] = ()


@dataclass(frozen=True)
class DeclarationPayment:
    """Matchable unit for a charge declaration: one payment event."""

    declaration: ChargeDeclaration
    payment: ChargePayment
    effective_period: date

    kind = CandidateKind.CHARGE_DECLARATION

    @property
    def id(self) -> str:
        return self.declaration.id

    @property
    def candidate_id(self) -> str:
        return f"declaration:{self.declaration.id}:{self.payment.id}"

    @property
    def amount(self) -> Decimal:
        return to_money(self.payment.amount)

    @property
    def reference_date(self) -> date:
        return self.effective_period

    @property
    def keywords(self) -> str | None:
        return self.declaration.keywords

    @property
    def partner(self) -> PartnerRef:
        return PartnerRef(name=self.declaration.organism, kind=PartnerKind.STATE.value)

    @property
    def expects_debit(self) -> bool:
        return True

    def document(self) -> DocumentRef:
        amount = self.amount
        return DocumentRef(
            kind=self.kind,
            document_id=self.declaration.id,
            candidate_id=self.candidate_id,
            reference=f"{self.declaration.name} {self.effective_period:%Y-%m}",
            total_ht=amount,
            total_tva=ZERO,
            total_ttc=amount,
        )


Candidate = Invoice | Subscription | DeclarationPayment


@dataclass(frozen=True)
class ReconciliationResult:
    """Outcome for one statement line, keyed by ``numero_ligne``."""

    numero_ligne: str
    status: ResultStatus
    score: int = 0
    documents: tuple[DocumentRef, ...] = ()
    matched_amount: Decimal = ZERO
    residual_amount: Decimal | None = None
    notes: str | None = None
    manual: bool = False
    rule_ids: tuple[str, ...] = ()
    partner: PartnerRef | None = None
    inverse_of: str | None = None

    @property
    def candidate_ids(self) -> tuple[str, ...]:
        return tuple(doc.candidate_id for doc in self.documents)

    @property
    def is_aggregated(self) -> bool:
        return len(self.documents) > 1

    @property
    def total_ht(self) -> Decimal:
        return sum((doc.total_ht for doc in self.documents), ZERO)

    @property
    def total_tva(self) -> Decimal:
        return sum((doc.total_tva for doc in self.documents), ZERO)

    @property
    def total_ttc(self) -> Decimal:
        return sum((doc.total_ttc for doc in self.documents), ZERO)

    def same_outcome(self, other: ReconciliationResult) -> bool:
        """True when ``other`` would persist as the same row."""
        return (
            self.status == other.status
            and self.score == other.score
            and self.candidate_ids == other.candidate_ids
            and self.matched_amount == other.matched_amount
            and self.residual_amount == other.residual_amount
            and self.manual == other.manual
            and self.inverse_of == other.inverse_of
            and (self.notes or None) == (other.notes or None)
        )


@dataclass(frozen=True)
class ScoredCandidate:
    candidate_id: str
    score: int
    rule_ids: tuple[str, ...]
    best_priority: int | None
    amount: Decimal
    explains_amount: bool


@dataclass(frozen=True)
class MatchReport:
    """Per-line report consumed by the UI for manual override."""

    result: ReconciliationResult
    candidates: tuple[ScoredCandidate, ...] = ()
    ambiguous: bool = False

    @property
    def rule_ids(self) -> tuple[str, ...]:
        return self.result.rule_ids


@dataclass(frozen=True)
class InverseLink:
    """Bidirectional pairing of two offsetting lines."""

    source_line: str
    target_line: str
    solde: Decimal
    balanced: bool
    manual: bool = False

    def involves(self, numero_ligne: str) -> bool:
        return numero_ligne in (self.source_line, self.target_line)

    def other(self, numero_ligne: str) -> str:
        return self.target_line if numero_ligne == self.source_line else self.source_line


@dataclass(frozen=True)
class CreditNoteOffset:
    """Sales invoice settled against credit notes instead of a bank line.

    ``reference`` is the internal reconciliation id shared by every document
    of the offset; it also stands in for the line in the claim ledger.
    """

    reference: str
    invoice: Invoice
    credit_notes: tuple[Invoice, ...]
    solde: Decimal
    balanced: bool

    @property
    def holder(self) -> str:
        return f"offset:{self.reference}"

    @property
    def candidate_ids(self) -> tuple[str, ...]:
        return (self.invoice.candidate_id, *(note.candidate_id for note in self.credit_notes))


@dataclass(frozen=True)
class StatementPeriod:
    start: date
    end: date

    def contains(self, day: date | None) -> bool:
        return day is not None and self.start <= day <= self.end

