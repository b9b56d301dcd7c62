"""Classification of engine outcomes into reconciliation results."""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from rapprochement.services.aggregation import AggregationResult
from rapprochement.services.amounts import ZERO, to_money, within_tolerance
from rapprochement.services.domain import (
    BankTransaction,
    Candidate,
    DocumentRef,
    InverseLink,
    PartnerRef,
    ReconciliationResult,
    ResultStatus,
)
from rapprochement.services.scoring import CandidateScore, ScoringOutcome

MANUAL_SCORE = 100


def explains_amount(transaction: BankTransaction, candidate: Candidate, tolerance: Decimal) -> bool:
    """True when the candidate alone accounts for the whole line amount."""
    return within_tolerance(transaction.absolute_amount, candidate.amount, tolerance)


def matched_single(
    transaction: BankTransaction,
    entry: CandidateScore,
    partner: PartnerRef | None,
) -> ReconciliationResult:
    document = entry.candidate.document()
    return ReconciliationResult(
        numero_ligne=transaction.numero_ligne,
        status=ResultStatus.MATCHED,
        score=entry.score,
        documents=(document,),
        matched_amount=document.total_ttc,
        rule_ids=tuple(entry.rule_ids),
        partner=partner,
    )


def aggregated(
    transaction: BankTransaction,
    found: AggregationResult,
    partner: PartnerRef | None,
    *,
    score: int = 0,
    rule_ids: Sequence[str] = (),
    manual: bool = False,
) -> ReconciliationResult:
    """``matched`` when the combination explains the amount, else ``partial``."""
    documents = found.documents
    if found.complete:
        status, residual, notes = ResultStatus.MATCHED, None, None
    else:
        status, residual = ResultStatus.PARTIAL, found.residual
        notes = f"Residual {residual} not explained"
    return ReconciliationResult(
        numero_ligne=transaction.numero_ligne,
        status=status,
        score=score,
        documents=documents,
        matched_amount=found.total,
        residual_amount=residual,
        notes=notes,
        manual=manual,
        rule_ids=tuple(rule_ids),
        partner=partner,
    )


def unresolved(
    transaction: BankTransaction,
    scoring: ScoringOutcome,
    partner: PartnerRef | None,
    *,
    uncertain_threshold: int,
    notes: str | None = None,
) -> ReconciliationResult:
    """``uncertain`` when some candidate scored enough, else ``unmatched``.

    Uncertain results link no document: the scored candidates stay available
    to other lines and are only reported as suggestions.
    """
    best = scoring.best
    if best is not None and best.score >= uncertain_threshold:
        suggestion = f"Suggested: {best.candidate.candidate_id} (score {best.score})"
        return ReconciliationResult(
            numero_ligne=transaction.numero_ligne,
            status=ResultStatus.UNCERTAIN,
            score=best.score,
            notes=f"{notes}. {suggestion}" if notes else suggestion,
            rule_ids=tuple(best.rule_ids),
            partner=partner,
        )
    return ReconciliationResult(
        numero_ligne=transaction.numero_ligne,
        status=ResultStatus.UNMATCHED,
        score=best.score if best else 0,
        notes=notes,
        partner=partner,
    )


def inverse_linked(
    transaction: BankTransaction,
    link: InverseLink,
    partner: PartnerRef | None,
) -> ReconciliationResult:
    other = link.other(transaction.numero_ligne)
    notes = f"Inverse: {other}"
    if not link.balanced:
        notes = f"{notes} (solde {link.solde})"
    return ReconciliationResult(
        numero_ligne=transaction.numero_ligne,
        status=ResultStatus.MATCHED,
        matched_amount=transaction.absolute_amount,
        notes=notes,
        partner=partner,
        inverse_of=other,
    )


def manual_link(
    numero_ligne: str,
    documents: Sequence[DocumentRef],
    *,
    notes: str | None = None,
    partner: PartnerRef | None = None,
) -> ReconciliationResult:
    """Explicit operator link: always ``matched``, bypasses scoring."""
    return ReconciliationResult(
        numero_ligne=numero_ligne,
        status=ResultStatus.MATCHED,
        score=MANUAL_SCORE,
        documents=tuple(documents),
        matched_amount=to_money(sum((doc.total_ttc for doc in documents), ZERO)),
        notes=notes,
        manual=True,
        partner=partner,
    )


def failed(transaction: BankTransaction, message: str) -> ReconciliationResult:
    return ReconciliationResult(
        numero_ligne=transaction.numero_ligne,
        status=ResultStatus.UNMATCHED,
        notes=f"Processing failed: {message}",
        partner=transaction.partner,
    )
