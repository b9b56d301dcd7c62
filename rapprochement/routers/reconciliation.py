"""Reconciliation API router."""

from fastapi import APIRouter, Query

from rapprochement.deps import DbSession
from rapprochement.logger import get_logger
from rapprochement.schemas.reconciliation import (
    AnnualLedgerResponse,
    CreditNoteLinkRequest,
    CreditNoteOffsetResponse,
    CreditNoteSummary,
    EngineErrorResponse,
    InverseCandidateResponse,
    InverseLinkRequest,
    InverseLinkResponse,
    ManualLinkRequest,
    MatchReportResponse,
    PartnerSummary,
    ReconciliationResultListResponse,
    ReconciliationResultResponse,
    ReconciliationRunRequest,
    ReconciliationRunResponse,
    RuleValidationRequest,
    StatementLineSummary,
    StoredResultResponse,
)
from rapprochement.schemas.rules import RuleValidationResponse, parse_rule
from rapprochement.services import store
from rapprochement.services.domain import ResultStatus
from rapprochement.services.errors import (
    ClaimConflict,
    InverseLinkError,
    PersistenceConflict,
    ReconciliationError,
    RuleConfigurationError,
)
from rapprochement.services.inverse import InverseCandidate
from rapprochement.services.reconciliation import load_reconciliation_config
from rapprochement.utils import raise_bad_request, raise_conflict, raise_not_found

router = APIRouter(prefix="/reconciliation", tags=["reconciliation"])
logger = get_logger(__name__)


def _raise_for(exc: ReconciliationError) -> None:
    """Translate a service exception into an HTTP error."""
    if isinstance(exc, store.LineNotFound):
        raise_not_found("Statement line", cause=exc)
    if isinstance(exc, store.DocumentNotFound):
        raise_not_found("Invoice", cause=exc)
    if isinstance(exc, PersistenceConflict | ClaimConflict | InverseLinkError):
        raise_conflict(str(exc), cause=exc)
    raise_bad_request(str(exc), cause=exc)


def _inverse_candidate_response(candidate: InverseCandidate) -> InverseCandidateResponse:
    tx = candidate.transaction
    return InverseCandidateResponse(
        numero_ligne=tx.numero_ligne,
        date=tx.date,
        label=tx.label,
        amount=tx.amount,
        partner=PartnerSummary.model_validate(candidate.partner) if candidate.partner else None,
        solde=candidate.solde,
        balanced=candidate.balanced,
        day_distance=candidate.day_distance,
    )


@router.post("/run", response_model=ReconciliationRunResponse)
async def run_reconciliation(
    payload: ReconciliationRunRequest,
    db: DbSession,
) -> ReconciliationRunResponse:
    run = await store.execute_reconciliation(db, payload.period_start, payload.period_end)
    counts = run.counts()
    return ReconciliationRunResponse(
        processed=len(run.results),
        matched=counts[ResultStatus.MATCHED.value],
        uncertain=counts[ResultStatus.UNCERTAIN.value],
        unmatched=counts[ResultStatus.UNMATCHED.value],
        partial=counts[ResultStatus.PARTIAL.value],
        inverse_links=len(run.inverse_links),
        cancelled=run.cancelled,
        errors=[EngineErrorResponse.model_validate(error) for error in run.errors],
    )


@router.get("/results", response_model=ReconciliationResultListResponse)
async def list_results(
    db: DbSession,
    status: ResultStatus | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> ReconciliationResultListResponse:
    rows, total = await store.list_results(db, status=status, limit=limit, offset=offset)
    items = [StoredResultResponse.model_validate(row) for row in rows]
    return ReconciliationResultListResponse(items=items, total=total)


@router.get("/lines/{numero_ligne}/report", response_model=MatchReportResponse)
async def line_report(numero_ligne: str, db: DbSession) -> MatchReportResponse:
    try:
        report = await store.line_report(db, numero_ligne)
    except ReconciliationError as exc:
        _raise_for(exc)
    return MatchReportResponse.model_validate(report)


@router.post("/lines/{numero_ligne}/manual-link", response_model=ReconciliationResultResponse)
async def manual_link(
    numero_ligne: str,
    payload: ManualLinkRequest,
    db: DbSession,
) -> ReconciliationResultResponse:
    try:
        result = await store.record_manual_link(db, numero_ligne, payload.candidate_ids, payload.notes)
    except ReconciliationError as exc:
        await db.rollback()
        _raise_for(exc)
    return ReconciliationResultResponse.model_validate(result)


@router.post("/lines/{numero_ligne}/aggregate", response_model=MatchReportResponse)
async def aggregate_line(numero_ligne: str, db: DbSession) -> MatchReportResponse:
    try:
        report = await store.aggregate_line(db, numero_ligne)
    except ReconciliationError as exc:
        await db.rollback()
        _raise_for(exc)
    return MatchReportResponse.model_validate(report)


@router.get("/lines/{numero_ligne}/inverse-candidates", response_model=list[InverseCandidateResponse])
async def inverse_candidates(
    numero_ligne: str,
    db: DbSession,
    search: str | None = Query(default=None),
) -> list[InverseCandidateResponse]:
    try:
        candidates = await store.inverse_candidates_for(db, numero_ligne, search)
    except ReconciliationError as exc:
        _raise_for(exc)
    return [_inverse_candidate_response(candidate) for candidate in candidates]


@router.post("/inverse-links", response_model=InverseLinkResponse)
async def create_inverse_link(payload: InverseLinkRequest, db: DbSession) -> InverseLinkResponse:
    try:
        link = await store.create_inverse_link(db, payload.source_line, payload.target_line)
    except ReconciliationError as exc:
        await db.rollback()
        _raise_for(exc)
    if not link.balanced:
        logger.warning(
            "Unbalanced inverse link recorded",
            source_line=link.source_line,
            target_line=link.target_line,
            solde=str(link.solde),
        )
    return InverseLinkResponse.model_validate(link)


@router.get("/credit-notes", response_model=list[CreditNoteSummary])
async def list_credit_notes(
    db: DbSession,
    search: str | None = Query(default=None),
) -> list[CreditNoteSummary]:
    notes = await store.list_credit_notes(db, search)
    return [CreditNoteSummary.model_validate(note) for note in notes]


@router.post("/invoices/{invoice_id}/credit-notes", response_model=CreditNoteOffsetResponse)
async def link_credit_notes(
    invoice_id: str,
    payload: CreditNoteLinkRequest,
    db: DbSession,
) -> CreditNoteOffsetResponse:
    try:
        offset = await store.link_credit_notes(db, invoice_id, payload.credit_note_ids)
    except ReconciliationError as exc:
        await db.rollback()
        _raise_for(exc)
    return CreditNoteOffsetResponse(
        reference=offset.reference,
        invoice_id=offset.invoice.id,
        credit_note_ids=[note.id for note in offset.credit_notes],
        solde=offset.solde,
        balanced=offset.balanced,
    )


@router.get("/search", response_model=list[StatementLineSummary])
async def search_pending(
    db: DbSession,
    keywords: str = Query(min_length=1),
    limit: int = Query(default=100, ge=1, le=500),
) -> list[StatementLineSummary]:
    lines = await store.search_pending_lines(db, keywords, limit=limit)
    return [StatementLineSummary.model_validate(line) for line in lines]


@router.get("/annual-ledger", response_model=AnnualLedgerResponse)
async def annual_ledger(
    db: DbSession,
    year: int = Query(ge=1900, le=9999),
    partner: str | None = Query(default=None),
    search: str | None = Query(default=None),
    sort: str = Query(default="date"),
    descending: bool = Query(default=False),
) -> AnnualLedgerResponse:
    try:
        ledger = await store.load_annual_ledger(
            db,
            year,
            partner=partner,
            search=search,
            sort=sort,
            descending=descending,
        )
    except ValueError as exc:
        raise_bad_request(str(exc), cause=exc)
    return AnnualLedgerResponse.model_validate(ledger)


@router.post("/rules/validate", response_model=RuleValidationResponse)
async def validate_rule(payload: RuleValidationRequest) -> RuleValidationResponse:
    config = load_reconciliation_config()
    raw = payload.model_dump()
    raw["id"] = raw["id"] or "draft"
    try:
        rule = parse_rule(raw, default_score=config.default_rule_score)
    except RuleConfigurationError as exc:
        raise_bad_request(exc.errors or [{"msg": str(exc)}], cause=exc)
    return RuleValidationResponse(valid=True, rule=rule)
