"""Persistence of reconciliation inputs and results.

Loads engine snapshots from PostgreSQL and writes results back as versioned
rows keyed by ``numero_ligne``: a new outcome supersedes the active row, an
identical one is a no-op, and an automatic outcome never replaces a manual one.
"""

from __future__ import annotations

import threading
from collections.abc import Collection, Sequence
from dataclasses import replace
from datetime import date, timedelta
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from rapprochement.logger import get_logger
from rapprochement.models import (
    ChargeDeclarationRecord,
    ChargePaymentRecord,
    CreditNoteOffsetRecord,
    InverseLinkRecord,
    InvoiceRecord,
    PartnerRecord,
    ReconciliationResultRecord,
    ReconciliationRuleRecord,
    StatementLine,
    SubscriptionRecord,
)
from rapprochement.schemas.rules import parse_rule
from rapprochement.services import results
from rapprochement.services.amounts import to_money
from rapprochement.services.annual_ledger import AnnualLedger, build_annual_ledger
from rapprochement.services.domain import (
    BankTransaction,
    ChargeDeclaration,
    ChargePayment,
    CreditNoteOffset,
    DocumentRef,
    InverseLink,
    Invoice,
    InvoiceDirection,
    MatchReport,
    Partner,
    PartnerRef,
    ReconciliationResult,
    ResultStatus,
    StatementPeriod,
    Subscription,
)
from rapprochement.services.engine import (
    ReconciliationEngine,
    ReconciliationRun,
    ReconciliationSnapshot,
    declaration_payments,
)
from rapprochement.services.errors import (
    ClaimConflict,
    EngineError,
    ErrorKind,
    PersistenceConflict,
    ReconciliationError,
    RuleConfigurationError,
)
from rapprochement.services.inverse import InverseCandidate
from rapprochement.services.partners import PartnerDirectory
from rapprochement.services.periods import shift_months
from rapprochement.services.reconciliation import ReconciliationConfig, load_reconciliation_config

logger = get_logger(__name__)

# Invoices are usually paid after issue; look back this far for candidates
CANDIDATE_LOOKBACK_DAYS = 92
CANDIDATE_LOOKAHEAD_DAYS = 31


class LineNotFound(ReconciliationError):
    """Statement line does not exist."""


class DocumentNotFound(ReconciliationError):
    """Invoice or other document does not exist."""


# =============================================================================
# Row <-> domain conversion
# =============================================================================


def to_transaction(row: StatementLine) -> BankTransaction:
    partner = None
    if row.partner_id or row.partner_name:
        partner = PartnerRef(id=str(row.partner_id) if row.partner_id else None, name=row.partner_name)
    return BankTransaction(
        numero_ligne=row.numero_ligne,
        date=row.date,
        label=row.label,
        debit=row.debit,
        credit=row.credit,
        partner=partner,
    )


def to_partner(row: PartnerRecord) -> Partner:
    return Partner(id=str(row.id), name=row.name, kind=row.kind.value if row.kind else None, keywords=row.keywords)


def to_invoice(row: InvoiceRecord) -> Invoice:
    return Invoice(
        id=str(row.id),
        number=row.number,
        direction=row.direction,
        issue_date=row.issue_date,
        total_ttc=row.total_ttc,
        total_ht=row.total_ht,
        total_tva=row.total_tva,
        partner_id=str(row.partner_id) if row.partner_id else None,
        partner_name=row.partner_name or (row.partner.name if row.partner else None),
    )


def to_subscription(row: SubscriptionRecord) -> Subscription:
    return Subscription(
        id=str(row.id),
        name=row.name,
        monthly_amount=row.monthly_amount,
        vat_label=row.vat_label,
        keywords=row.keywords,
        partner_id=str(row.partner_id) if row.partner_id else None,
        partner_name=row.partner.name if row.partner else None,
    )


def to_declaration(row: ChargeDeclarationRecord, payments: Sequence[ChargePaymentRecord] | None = None) -> ChargeDeclaration:
    return ChargeDeclaration(
        id=str(row.id),
        name=row.name,
        category=row.category,
        organism=row.organism,
        keywords=row.keywords,
        payments=tuple(
            ChargePayment(id=str(p.id), date=p.payment_date, amount=p.amount)
            for p in (row.payments if payments is None else payments)
        ),
    )


def to_result(row: ReconciliationResultRecord) -> ReconciliationResult:
    return ReconciliationResult(
        numero_ligne=row.numero_ligne,
        status=row.status,
        score=row.score,
        documents=tuple(DocumentRef.from_dict(doc) for doc in row.documents or []),
        matched_amount=to_money(row.matched_amount),
        residual_amount=to_money(row.residual_amount) if row.residual_amount is not None else None,
        notes=row.notes,
        manual=row.manual,
        rule_ids=tuple(row.rule_ids or []),
        inverse_of=row.inverse_of,
    )


def to_inverse_link(row: InverseLinkRecord) -> InverseLink:
    return InverseLink(
        source_line=row.source_line,
        target_line=row.target_line,
        solde=to_money(row.solde),
        balanced=row.balanced,
        manual=row.manual,
    )


# =============================================================================
# Snapshot loading
# =============================================================================


async def load_rules(
    db: AsyncSession,
    config: ReconciliationConfig,
) -> tuple[list, list[EngineError]]:
    """Active rules in priority order; invalid rows are skipped and reported."""
    rows = (
        await db.execute(
            select(ReconciliationRuleRecord)
            .where(ReconciliationRuleRecord.active.is_(True))
            .order_by(ReconciliationRuleRecord.priority, ReconciliationRuleRecord.id)
        )
    ).scalars()
    rules = []
    errors: list[EngineError] = []
    for row in rows:
        raw = {
            "id": str(row.id),
            "name": row.name,
            "kind": row.kind,
            "condition": row.condition,
            "score": row.score,
            "priority": row.priority,
            "active": row.active,
        }
        try:
            rules.append(parse_rule(raw, default_score=config.default_rule_score))
        except RuleConfigurationError as exc:
            logger.warning("Skipping invalid reconciliation rule", rule_id=str(row.id), error=str(exc))
            errors.append(
                EngineError(
                    kind=ErrorKind.RULE_CONFIGURATION,
                    message=str(exc),
                    rule_id=str(row.id),
                    details={"errors": exc.errors},
                )
            )
    return rules, errors


async def load_snapshot(
    db: AsyncSession,
    period_start: date | None = None,
    period_end: date | None = None,
    *,
    config: ReconciliationConfig | None = None,
) -> ReconciliationSnapshot:
    """Load every input of a run for the statement period, before scoring begins."""
    config = config or load_reconciliation_config()

    line_query = select(StatementLine).order_by(StatementLine.date, StatementLine.numero_ligne)
    if period_start:
        line_query = line_query.where(StatementLine.date >= period_start)
    if period_end:
        line_query = line_query.where(StatementLine.date <= period_end)
    lines = (await db.execute(line_query)).scalars().all()
    transactions = tuple(to_transaction(row) for row in lines)
    line_ids = [tx.numero_ligne for tx in transactions]

    window_start = period_start - timedelta(days=CANDIDATE_LOOKBACK_DAYS) if period_start else None
    window_end = period_end + timedelta(days=CANDIDATE_LOOKAHEAD_DAYS) if period_end else None

    rules, rule_errors = await load_rules(db, config)

    partners = (await db.execute(select(PartnerRecord).order_by(PartnerRecord.name))).scalars().all()

    invoice_query = select(InvoiceRecord).options(selectinload(InvoiceRecord.partner))
    if window_start:
        invoice_query = invoice_query.where(InvoiceRecord.issue_date >= window_start)
    if window_end:
        invoice_query = invoice_query.where(InvoiceRecord.issue_date <= window_end)
    invoices = (await db.execute(invoice_query.order_by(InvoiceRecord.issue_date))).scalars().all()

    subscriptions = (
        await db.execute(
            select(SubscriptionRecord)
            .where(SubscriptionRecord.active.is_(True))
            .options(selectinload(SubscriptionRecord.partner))
        )
    ).scalars().all()

    declarations = (
        await db.execute(
            select(ChargeDeclarationRecord)
            .where(ChargeDeclarationRecord.active.is_(True))
            .options(selectinload(ChargeDeclarationRecord.payments))
        )
    ).scalars().all()

    def in_window(day: date) -> bool:
        return (window_start is None or day >= window_start) and (window_end is None or day <= window_end)

    prior_results: list[ReconciliationResult] = []
    prior_links: list[InverseLink] = []
    if line_ids:
        result_rows = (
            await db.execute(
                select(ReconciliationResultRecord)
                .where(ReconciliationResultRecord.numero_ligne.in_(line_ids))
                .where(ReconciliationResultRecord.superseded_by_id.is_(None))
            )
        ).scalars().all()
        prior_results = [to_result(row) for row in result_rows]
        link_rows = (
            await db.execute(
                select(InverseLinkRecord).where(
                    or_(
                        InverseLinkRecord.source_line.in_(line_ids),
                        InverseLinkRecord.target_line.in_(line_ids),
                    )
                )
            )
        ).scalars().all()
        prior_links = [to_inverse_link(row) for row in link_rows]

    period = StatementPeriod(period_start, period_end) if period_start and period_end else None
    snapshot = ReconciliationSnapshot(
        transactions=transactions,
        rules=tuple(rules),
        invoices=tuple(to_invoice(row) for row in invoices),
        subscriptions=tuple(to_subscription(row) for row in subscriptions),
        declarations=tuple(
            to_declaration(row, [p for p in row.payments if in_window(p.payment_date)]) for row in declarations
        ),
        partners=tuple(to_partner(row) for row in partners),
        prior_results=tuple(prior_results),
        prior_links=tuple(prior_links),
        period=period,
        errors=tuple(rule_errors),
    )
    # documents in the candidate window may already be paid by lines of another period
    if line_ids:
        pool = [candidate.candidate_id for candidate in snapshot.candidate_pool()]
        snapshot = replace(snapshot, outside_claims=await held_documents(db, pool, excluding=line_ids))
    return snapshot


# =============================================================================
# Result persistence
# =============================================================================


async def get_active_result(db: AsyncSession, numero_ligne: str) -> ReconciliationResultRecord | None:
    """Get the active (non-superseded) result of a line."""
    result = await db.execute(
        select(ReconciliationResultRecord)
        .where(ReconciliationResultRecord.numero_ligne == numero_ligne)
        .where(ReconciliationResultRecord.superseded_by_id.is_(None))
        .order_by(ReconciliationResultRecord.version.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _lock_line(db: AsyncSession, numero_ligne: str) -> StatementLine:
    result = await db.execute(
        select(StatementLine).where(StatementLine.numero_ligne == numero_ligne).with_for_update()
    )
    line = result.scalar_one_or_none()
    if line is None:
        raise LineNotFound(f"Statement line {numero_ligne} not found")
    return line


async def persist_result(db: AsyncSession, result: ReconciliationResult) -> ReconciliationResultRecord | None:
    """Write ``result`` as the active row of its line.

    Returns the new row, or None when the active row already holds the same
    outcome.

    Raises:
        PersistenceConflict: If an automatic result would replace a manual one.
    """
    await _lock_line(db, result.numero_ligne)
    existing = await get_active_result(db, result.numero_ligne)
    if existing is not None:
        if existing.manual and not result.manual:
            raise PersistenceConflict(result.numero_ligne)
        if to_result(existing).same_outcome(result):
            return None

    record = ReconciliationResultRecord(
        numero_ligne=result.numero_ligne,
        status=result.status,
        score=result.score,
        documents=[doc.to_dict() for doc in result.documents],
        matched_amount=result.matched_amount,
        residual_amount=result.residual_amount,
        notes=result.notes,
        manual=result.manual,
        rule_ids=list(result.rule_ids),
        inverse_of=result.inverse_of,
        version=existing.version + 1 if existing else 1,
    )
    db.add(record)
    await db.flush()
    if existing is not None:
        existing.superseded_by_id = record.id
        await db.flush()
    return record


async def persist_inverse_link(db: AsyncSession, link: InverseLink) -> InverseLinkRecord:
    """Insert an inverse link unless the pair is already recorded."""
    result = await db.execute(
        select(InverseLinkRecord).where(
            or_(
                (InverseLinkRecord.source_line == link.source_line)
                & (InverseLinkRecord.target_line == link.target_line),
                (InverseLinkRecord.source_line == link.target_line)
                & (InverseLinkRecord.target_line == link.source_line),
            )
        )
    )
    existing = result.scalar_one_or_none()
    if existing is not None:
        return existing
    record = InverseLinkRecord(
        source_line=link.source_line,
        target_line=link.target_line,
        solde=link.solde,
        balanced=link.balanced,
        manual=link.manual,
    )
    db.add(record)
    await db.flush()
    return record


async def _persist_report(db: AsyncSession, engine: ReconciliationEngine, report: MatchReport) -> None:
    try:
        await persist_result(db, report.result)
    except PersistenceConflict as exc:
        logger.warning(
            "Automatic result discarded over manual result",
            numero_ligne=exc.numero_ligne,
        )
        engine.errors.append(
            EngineError(kind=ErrorKind.PERSISTENCE_CONFLICT, message=str(exc), numero_ligne=exc.numero_ligne)
        )


async def execute_reconciliation(
    db: AsyncSession,
    period_start: date | None = None,
    period_end: date | None = None,
    *,
    cancel_event: threading.Event | None = None,
    config: ReconciliationConfig | None = None,
) -> ReconciliationRun:
    """Re-run entrypoint: load, match, persist each line as produced, commit."""
    config = config or load_reconciliation_config()
    snapshot = await load_snapshot(db, period_start, period_end, config=config)
    engine = ReconciliationEngine(snapshot, config)

    latest: dict[str, MatchReport] = {}
    for report in engine.iter_reports(cancel_event):
        await _persist_report(db, engine, report)
        latest[report.result.numero_ligne] = report

    links = engine.ledger.inverse_links()
    for link in links:
        await persist_inverse_link(db, link)

    await db.commit()

    run = ReconciliationRun(
        results=[report.result for report in latest.values()],
        reports=list(latest.values()),
        errors=list(engine.errors),
        inverse_links=links,
        ledger=engine.ledger,
        cancelled=engine.cancelled,
    )
    logger.info(
        "Reconciliation run persisted",
        period_start=str(period_start) if period_start else None,
        period_end=str(period_end) if period_end else None,
        errors=len(run.errors),
        cancelled=run.cancelled,
        **run.counts(),
    )
    return run


# =============================================================================
# Interactive operations
# =============================================================================


def interactive_window(day: date) -> tuple[date, date]:
    """Months before, of and after ``day``: the scope of single-line operations."""
    start = shift_months(day.replace(day=1), 1)
    end = shift_months(day.replace(day=1), -2) - timedelta(days=1)
    return start, end


async def _line_engine(db: AsyncSession, numero_ligne: str) -> ReconciliationEngine:
    row = await db.get(StatementLine, numero_ligne)
    if row is None:
        raise LineNotFound(f"Statement line {numero_ligne} not found")
    start, end = interactive_window(row.date)
    snapshot = await load_snapshot(db, start, end)
    engine = ReconciliationEngine(snapshot)
    engine.adopt_prior_results()
    return engine


async def line_report(db: AsyncSession, numero_ligne: str) -> MatchReport:
    """Per-transaction match report for manual review."""
    engine = await _line_engine(db, numero_ligne)
    return engine.explain(numero_ligne)


async def resolve_documents(db: AsyncSession, candidate_ids: Sequence[str]) -> list[DocumentRef]:
    """Resolve ``invoice:<id>``, ``subscription:<id>[:<YYYY-MM>]`` and ``declaration:<id>:<payment>``."""
    documents: list[DocumentRef] = []
    for candidate_id in candidate_ids:
        kind, _, rest = candidate_id.partition(":")
        try:
            if kind == "invoice":
                row = (
                    await db.execute(
                        select(InvoiceRecord)
                        .where(InvoiceRecord.id == UUID(rest))
                        .options(selectinload(InvoiceRecord.partner))
                    )
                ).scalar_one_or_none()
                document = to_invoice(row).document() if row else None
            elif kind == "subscription":
                subscription_id, _, month = rest.partition(":")
                row = (
                    await db.execute(
                        select(SubscriptionRecord)
                        .where(SubscriptionRecord.id == UUID(subscription_id))
                        .options(selectinload(SubscriptionRecord.partner))
                    )
                ).scalar_one_or_none()
                subscription = to_subscription(row) if row else None
                if subscription is not None and month:
                    subscription = subscription.for_month(date.fromisoformat(f"{month}-01"))
                document = subscription.document() if subscription else None
            elif kind == "declaration":
                declaration_id, _, payment_id = rest.partition(":")
                document = await _resolve_declaration(db, UUID(declaration_id), UUID(payment_id))
            else:
                document = None
        except ValueError as exc:
            raise ReconciliationError(f"Invalid document reference {candidate_id}") from exc
        if document is None:
            raise ReconciliationError(f"Document {candidate_id} not found")
        documents.append(document)
    return documents


async def _resolve_declaration(db: AsyncSession, declaration_id: UUID, payment_id: UUID) -> DocumentRef | None:
    row = (
        await db.execute(
            select(ChargeDeclarationRecord)
            .where(ChargeDeclarationRecord.id == declaration_id)
            .options(selectinload(ChargeDeclarationRecord.payments))
        )
    ).scalar_one_or_none()
    if row is None:
        return None
    # effective periods depend on same-category siblings
    siblings = (
        await db.execute(
            select(ChargeDeclarationRecord)
            .where(ChargeDeclarationRecord.category == row.category)
            .options(selectinload(ChargeDeclarationRecord.payments))
        )
    ).scalars().all()
    expanded = declaration_payments(tuple(to_declaration(sibling) for sibling in siblings))
    wanted = f"declaration:{declaration_id}:{payment_id}"
    return next((c.document() for c in expanded if c.candidate_id == wanted), None)


async def held_documents(
    db: AsyncSession,
    candidate_ids: Collection[str],
    *,
    excluding: Collection[str] = (),
) -> dict[str, str]:
    """Candidate id -> holder for documents already reconciled.

    Holders are lines with an active matched or partial result (other than
    ``excluding``) and credit note offsets, as ``offset:<reference>``.
    """
    wanted = set(candidate_ids)
    if not wanted:
        return {}
    query = (
        select(ReconciliationResultRecord)
        .where(ReconciliationResultRecord.superseded_by_id.is_(None))
        .where(ReconciliationResultRecord.status.in_([ResultStatus.MATCHED, ResultStatus.PARTIAL]))
    )
    if excluding:
        query = query.where(ReconciliationResultRecord.numero_ligne.not_in(list(excluding)))
    rows = (await db.execute(query)).scalars()
    held: dict[str, str] = {}
    for row in rows:
        for doc in row.documents or []:
            if doc.get("candidate_id") in wanted:
                held[doc["candidate_id"]] = row.numero_ligne
    offsets = (await db.execute(select(CreditNoteOffsetRecord))).scalars()
    for offset_row in offsets:
        for document_id in [str(offset_row.invoice_id), *offset_row.credit_note_ids]:
            if f"invoice:{document_id}" in wanted:
                held[f"invoice:{document_id}"] = f"offset:{offset_row.reference}"
    return held


async def record_manual_link(
    db: AsyncSession,
    numero_ligne: str,
    candidate_ids: Sequence[str],
    notes: str | None = None,
) -> ReconciliationResult:
    """Link documents to a line by hand; always a ``matched`` manual result.

    Raises:
        LineNotFound: If the line does not exist.
        ClaimConflict: If a document is already linked to another line.
        ReconciliationError: If a document reference cannot be resolved.
    """
    line = await _lock_line(db, numero_ligne)
    documents = await resolve_documents(db, candidate_ids)
    held = await held_documents(db, [doc.candidate_id for doc in documents], excluding=[numero_ligne])
    if held:
        raise ClaimConflict(f"Documents already linked to other lines: {held}")

    transaction = to_transaction(line)
    result = results.manual_link(numero_ligne, documents, notes=notes, partner=transaction.partner)
    await persist_result(db, result)
    await db.commit()
    logger.info("Manual link recorded", numero_ligne=numero_ligne, documents=len(documents))
    return result


async def aggregate_line(db: AsyncSession, numero_ligne: str) -> MatchReport:
    """Manual many-to-one aggregation of one line."""
    engine = await _line_engine(db, numero_ligne)
    report = engine.aggregate(numero_ligne)
    if report.result.documents:
        await persist_result(db, report.result)
        await db.commit()
    return report


async def inverse_candidates_for(
    db: AsyncSession,
    numero_ligne: str,
    search: str | None = None,
) -> list[InverseCandidate]:
    engine = await _line_engine(db, numero_ligne)
    return engine.inverse_candidates(numero_ligne, search)


async def create_inverse_link(db: AsyncSession, source_line: str, target_line: str) -> InverseLink:
    """Pair two lines as inverses and persist both results.

    Raises:
        InverseLinkError: If the lines cannot be paired.
    """
    engine = await _line_engine(db, source_line)
    engine.transaction(target_line)
    link = engine.link_inverse(source_line, target_line)
    await persist_inverse_link(db, link)
    for line in (source_line, target_line):
        await persist_result(db, engine.result_for(line))
    await db.commit()
    return link


def _invoice_ids(raw_ids: Sequence[str]) -> list[str]:
    try:
        return [str(UUID(raw_id)) for raw_id in raw_ids]
    except ValueError as exc:
        raise DocumentNotFound(f"Invalid invoice id in {list(raw_ids)}") from exc


async def _invoices_by_id(db: AsyncSession, invoice_ids: Sequence[str], *, lock: bool = False) -> list[Invoice]:
    query = (
        select(InvoiceRecord)
        .where(InvoiceRecord.id.in_([UUID(invoice_id) for invoice_id in invoice_ids]))
        .options(selectinload(InvoiceRecord.partner))
    )
    if lock:
        query = query.with_for_update(of=InvoiceRecord)
    rows = (await db.execute(query)).scalars().all()
    found = {str(row.id) for row in rows}
    missing = [invoice_id for invoice_id in invoice_ids if invoice_id not in found]
    if missing:
        raise DocumentNotFound(f"Invoices not found: {missing}")
    return [to_invoice(row) for row in rows]


async def list_credit_notes(db: AsyncSession, search: str | None = None) -> list[Invoice]:
    """Credit notes not yet reconciled, newest first."""
    rows = (
        await db.execute(
            select(InvoiceRecord)
            .where(InvoiceRecord.direction == InvoiceDirection.SALE)
            .where(InvoiceRecord.total_ttc < 0)
            .options(selectinload(InvoiceRecord.partner))
        )
    ).scalars().all()
    notes = tuple(to_invoice(row) for row in rows)
    held = await held_documents(db, [note.candidate_id for note in notes])
    engine = ReconciliationEngine(ReconciliationSnapshot(transactions=(), invoices=notes, outside_claims=held))
    return engine.credit_note_candidates(search)


async def link_credit_notes(
    db: AsyncSession,
    invoice_id: str,
    credit_note_ids: Sequence[str],
) -> CreditNoteOffset:
    """Offset a sales invoice against credit notes under one internal reference.

    Raises:
        DocumentNotFound: If an invoice does not exist.
        ClaimConflict: If a document is already reconciled.
        CreditNoteError: If the documents cannot be offset.
    """
    invoice_id, *note_ids = _invoice_ids([invoice_id, *credit_note_ids])
    invoices = await _invoices_by_id(db, [invoice_id, *note_ids], lock=True)
    held = await held_documents(db, [invoice.candidate_id for invoice in invoices])
    engine = ReconciliationEngine(
        ReconciliationSnapshot(transactions=(), invoices=tuple(invoices), outside_claims=held)
    )
    offset = engine.link_credit_notes(invoice_id, note_ids)
    db.add(
        CreditNoteOffsetRecord(
            reference=offset.reference,
            invoice_id=UUID(invoice_id),
            credit_note_ids=[note.id for note in offset.credit_notes],
            solde=offset.solde,
            balanced=offset.balanced,
        )
    )
    await db.flush()
    await db.commit()
    logger.info(
        "Credit note offset recorded",
        reference=offset.reference,
        invoice_id=invoice_id,
        credit_notes=len(offset.credit_notes),
        balanced=offset.balanced,
    )
    return offset


async def list_results(
    db: AsyncSession,
    *,
    status: ResultStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[ReconciliationResultRecord], int]:
    """Active results, newest first, with the total count."""
    query = select(ReconciliationResultRecord).where(ReconciliationResultRecord.superseded_by_id.is_(None))
    if status is not None:
        query = query.where(ReconciliationResultRecord.status == status)
    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
    rows = (
        await db.execute(
            query.order_by(ReconciliationResultRecord.numero_ligne).limit(limit).offset(offset)
        )
    ).scalars().all()
    return list(rows), total


async def search_pending_lines(db: AsyncSession, expression: str, limit: int = 100) -> list[BankTransaction]:
    """Pending lines (unmatched, uncertain or never reconciled) matching the keywords."""
    snapshot = await load_snapshot(db)
    engine = ReconciliationEngine(snapshot)
    engine.adopt_prior_results()
    return engine.search_pending(expression)[:limit]


async def load_annual_ledger(
    db: AsyncSession,
    year: int,
    *,
    partner: str | None = None,
    search: str | None = None,
    sort: str = "date",
    descending: bool = False,
) -> AnnualLedger:
    """Ledger rows of ``year`` with their active results and partner."""
    lines = (
        await db.execute(
            select(StatementLine)
            .where(StatementLine.date >= date(year, 1, 1))
            .where(StatementLine.date <= date(year, 12, 31))
            .order_by(StatementLine.date, StatementLine.numero_ligne)
        )
    ).scalars().all()
    line_ids = [line.numero_ligne for line in lines]
    active: dict[str, ReconciliationResult] = {}
    if line_ids:
        rows = (
            await db.execute(
                select(ReconciliationResultRecord)
                .where(ReconciliationResultRecord.numero_ligne.in_(line_ids))
                .where(ReconciliationResultRecord.superseded_by_id.is_(None))
            )
        ).scalars()
        active = {row.numero_ligne: to_result(row) for row in rows}
    partners = (await db.execute(select(PartnerRecord))).scalars().all()
    return build_annual_ledger(
        year,
        [to_transaction(line) for line in lines],
        active,
        PartnerDirectory(to_partner(row) for row in partners),
        partner=partner,
        search=search,
        sort=sort,
        descending=descending,
    )
