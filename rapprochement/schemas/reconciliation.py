"""Pydantic schemas for reconciliation API."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from rapprochement.services.domain import CandidateKind, ResultStatus
from rapprochement.services.errors import ErrorKind

T = TypeVar("T")


class ListResponse(BaseModel, Generic[T]):  # noqa: UP046
    """Generic list response with item count.

    For paginated responses, use query parameters (limit/offset) at the router level.
    """

    items: list[T]
    total: int  # Total count of items matching the query (may exceed len(items))


class DocumentResponse(BaseModel):
    """Document linked to a statement line."""

    model_config = ConfigDict(from_attributes=True)

    kind: CandidateKind
    document_id: str
    candidate_id: str
    reference: str | None = None
    total_ht: Decimal
    total_tva: Decimal
    total_ttc: Decimal


class PartnerSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str | None = None
    name: str | None = None
    kind: str | None = None


class EngineErrorResponse(BaseModel):
    """Non-fatal error collected during a run."""

    model_config = ConfigDict(from_attributes=True)

    kind: ErrorKind
    message: str
    numero_ligne: str | None = None
    rule_id: int | str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class ReconciliationResultResponse(BaseModel):
    """Reconciliation outcome of one statement line."""

    model_config = ConfigDict(from_attributes=True)

    numero_ligne: str
    status: ResultStatus
    score: int
    documents: list[DocumentResponse] = Field(default_factory=list)
    matched_amount: Decimal
    residual_amount: Decimal | None = None
    notes: str | None = None
    manual: bool = False
    rule_ids: list[str] = Field(default_factory=list)
    inverse_of: str | None = None
    partner: PartnerSummary | None = None


class StoredResultResponse(ReconciliationResultResponse):
    """Persisted, versioned result row."""

    id: UUID
    version: int
    superseded_by_id: UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


ReconciliationResultListResponse = ListResponse[StoredResultResponse]


class ScoredCandidateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    candidate_id: str
    score: int
    rule_ids: list[str]
    best_priority: int | None = None
    amount: Decimal
    explains_amount: bool


class MatchReportResponse(BaseModel):
    """Per-line report: outcome plus the best scored candidates."""

    model_config = ConfigDict(from_attributes=True)

    result: ReconciliationResultResponse
    candidates: list[ScoredCandidateResponse] = Field(default_factory=list)
    ambiguous: bool = False


class ReconciliationRunRequest(BaseModel):
    """Request body to run reconciliation over a statement period."""

    period_start: date | None = None
    period_end: date | None = None

    @model_validator(mode="after")
    def period_in_order(self) -> "ReconciliationRunRequest":
        if self.period_start and self.period_end and self.period_start > self.period_end:
            raise ValueError("period_start must not be after period_end")
        return self


class ReconciliationRunResponse(BaseModel):
    """Response for reconciliation run."""

    processed: int
    matched: int
    uncertain: int
    unmatched: int
    partial: int
    inverse_links: int
    cancelled: bool = False
    errors: list[EngineErrorResponse] = Field(default_factory=list)


class ManualLinkRequest(BaseModel):
    """Documents to link by hand, as ``invoice:<id>``, ``subscription:<id>:<YYYY-MM>`` or ``declaration:<id>:<payment>``."""

    candidate_ids: list[str] = Field(min_length=1)
    notes: str | None = None


class InverseCandidateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    numero_ligne: str
    date: date
    label: str
    amount: Decimal
    partner: PartnerSummary | None = None
    solde: Decimal
    balanced: bool
    day_distance: int


class InverseLinkRequest(BaseModel):
    source_line: str
    target_line: str

    @model_validator(mode="after")
    def distinct_lines(self) -> "InverseLinkRequest":
        if self.source_line == self.target_line:
            raise ValueError("A line cannot be its own inverse")
        return self


class InverseLinkResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    source_line: str
    target_line: str
    solde: Decimal
    balanced: bool
    manual: bool


class CreditNoteSummary(BaseModel):
    """Unreconciled credit note: a sales invoice with a negative total."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    number: str
    issue_date: date
    partner_name: str | None = None
    total_ht: Decimal
    total_tva: Decimal
    total_ttc: Decimal


class CreditNoteLinkRequest(BaseModel):
    credit_note_ids: list[str] = Field(min_length=1)


class CreditNoteOffsetResponse(BaseModel):
    reference: str
    invoice_id: str
    credit_note_ids: list[str]
    solde: Decimal
    balanced: bool


class StatementLineSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    numero_ligne: str
    date: date
    label: str
    debit: Decimal
    credit: Decimal


class LedgerRowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: date
    numero_ligne: str
    label: str
    debit: Decimal
    credit: Decimal
    partner_id: str | None = None
    partner_name: str | None = None
    partner_kind: str | None = None
    references: list[str] = Field(default_factory=list)
    total_ht: Decimal | None = None
    total_tva: Decimal | None = None
    total_ttc: Decimal | None = None
    status: str | None = None
    notes: str | None = None


class LedgerTotalsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    count: int
    debit: Decimal
    credit: Decimal
    total_ht: Decimal
    total_tva: Decimal
    total_ttc: Decimal


class AnnualLedgerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    year: int
    rows: list[LedgerRowResponse]
    totals: LedgerTotalsResponse


class RuleValidationRequest(BaseModel):
    """Rule payload submitted for authoring-time validation."""

    id: str | None = None
    name: str = ""
    kind: str
    condition: dict[str, Any] = Field(default_factory=dict)
    score: int | None = None
    priority: int = 0
    active: bool = True
