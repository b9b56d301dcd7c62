"""Reconciliation engine: scores, aggregates and pairs statement lines.

The engine works on an immutable :class:`ReconciliationSnapshot` loaded once
per run; it performs no I/O. Lines are processed one at a time so callers can
persist each result as it is produced and cancel between lines.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import date

from rapprochement.logger import get_logger, log_exception, log_timing
from rapprochement.schemas.rules import ReconciliationRule
from rapprochement.services import credit_notes, keywords, results
from rapprochement.services.aggregation import eligible_invoices, find_combination
from rapprochement.services.domain import (
    BankTransaction,
    Candidate,
    ChargeDeclaration,
    CreditNoteOffset,
    DeclarationPayment,
    InverseLink,
    Invoice,
    MatchReport,
    Partner,
    PartnerRef,
    ReconciliationResult,
    ResultStatus,
    StatementPeriod,
    Subscription,
)
from rapprochement.services.errors import (
    ClaimConflict,
    CreditNoteError,
    EngineError,
    ErrorKind,
    InverseLinkError,
    PersistenceConflict,
    ReconciliationError,
)
from rapprochement.services.inverse import InverseCandidate, find_inverse_candidates, link, pair_balanced
from rapprochement.services.ledger import ClaimLedger
from rapprochement.services.partners import PartnerDirectory
from rapprochement.services.periods import PaymentStamp, effective_period, normalize_category
from rapprochement.services.reconciliation import ReconciliationConfig, load_reconciliation_config
from rapprochement.services.scoring import ScoringOutcome, score_candidates

logger = get_logger(__name__)

PENDING_STATUSES = frozenset({ResultStatus.UNMATCHED, ResultStatus.UNCERTAIN})


def declaration_payments(declarations: tuple[ChargeDeclaration, ...]) -> list[DeclarationPayment]:
    """Expand declarations into one candidate per payment with its effective period."""
    siblings: dict[str, list[PaymentStamp]] = {}
    for declaration in declarations:
        stamps = siblings.setdefault(normalize_category(declaration.category), [])
        stamps.extend(PaymentStamp(id=payment.id, date=payment.date) for payment in declaration.payments)

    expanded: list[DeclarationPayment] = []
    for declaration in declarations:
        same_category = siblings[normalize_category(declaration.category)]
        for payment in declaration.payments:
            period = effective_period(payment.date, declaration.category, payment.id, same_category)
            expanded.append(DeclarationPayment(declaration=declaration, payment=payment, effective_period=period))
    return expanded


def subscription_months(subscriptions: tuple[Subscription, ...], days: list[date]) -> list[Subscription]:
    """One candidate per subscription and statement month, so each month is claimed once."""
    months = sorted({day.replace(day=1) for day in days})
    expanded: list[Subscription] = []
    for subscription in subscriptions:
        if subscription.month is not None:
            expanded.append(subscription)
            continue
        expanded.extend(subscription.for_month(month) for month in months)
    return expanded


@dataclass(frozen=True)
class ReconciliationSnapshot:
    """Everything one run needs, loaded before scoring begins."""

    transactions: tuple[BankTransaction, ...]
    rules: tuple[ReconciliationRule, ...] = ()
    invoices: tuple[Invoice, ...] = ()
    subscriptions: tuple[Subscription, ...] = ()
    declarations: tuple[ChargeDeclaration, ...] = ()
    partners: tuple[Partner, ...] = ()
    prior_results: tuple[ReconciliationResult, ...] = ()
    prior_links: tuple[InverseLink, ...] = ()
    # candidate id -> line outside the snapshot that holds it
    outside_claims: Mapping[str, str] = field(default_factory=dict)
    period: StatementPeriod | None = None
    errors: tuple[EngineError, ...] = ()

    def candidate_pool(self) -> list[Candidate]:
        pool: list[Candidate] = [*self.invoices]
        pool.extend(subscription_months(self.subscriptions, [tx.date for tx in self.transactions]))
        pool.extend(declaration_payments(self.declarations))
        return pool


@dataclass
class ReconciliationRun:
    """Outcome of one engine run."""

    results: list[ReconciliationResult] = field(default_factory=list)
    reports: list[MatchReport] = field(default_factory=list)
    errors: list[EngineError] = field(default_factory=list)
    inverse_links: list[InverseLink] = field(default_factory=list)
    ledger: ClaimLedger = field(default_factory=ClaimLedger)
    cancelled: bool = False

    def count(self, status: ResultStatus) -> int:
        return sum(1 for result in self.results if result.status == status)

    def counts(self) -> dict[str, int]:
        return {status.value: self.count(status) for status in ResultStatus}

    def result_for(self, numero_ligne: str) -> ReconciliationResult | None:
        return next((r for r in self.results if r.numero_ligne == numero_ligne), None)


class ReconciliationEngine:
    """Matches statement lines of a snapshot against its candidate pool."""

    def __init__(
        self,
        snapshot: ReconciliationSnapshot,
        config: ReconciliationConfig | None = None,
        *,
        ledger: ClaimLedger | None = None,
    ) -> None:
        self.snapshot = snapshot
        self.config = config or load_reconciliation_config()
        self.ledger = ledger or ClaimLedger()
        self.partners = PartnerDirectory(snapshot.partners)
        self.errors: list[EngineError] = list(snapshot.errors)
        self.cancelled = False
        self._candidates = snapshot.candidate_pool()
        self._transactions = {tx.numero_ligne: tx for tx in snapshot.transactions}
        self._results: dict[str, ReconciliationResult] = {}
        self._manual_lines: set[str] = set()
        self._seeded = False
        self._seed_lock = threading.Lock()

    # -- seeding ------------------------------------------------------------

    def adopt_prior_results(self) -> None:
        """Seed with every prior result, not only manual ones.

        Used by interactive operations that act on the persisted state rather
        than on a fresh run.
        """
        self._seed(include_automatic=True)

    def _seed(self, include_automatic: bool = False) -> None:
        with self._seed_lock:
            if self._seeded:
                return
            self._seeded = True
            for candidate_id, holder in self.snapshot.outside_claims.items():
                if holder not in self._transactions:
                    self.ledger.claim(candidate_id, holder)
            for prior in self.snapshot.prior_results:
                if prior.numero_ligne not in self._transactions:
                    continue
                if not prior.manual and not include_automatic:
                    continue
                if prior.candidate_ids and not self.ledger.claim_many(prior.candidate_ids, prior.numero_ligne):
                    self._record(
                        ErrorKind.PERSISTENCE_CONFLICT,
                        f"Line {prior.numero_ligne}: prior result documents already claimed",
                        numero_ligne=prior.numero_ligne,
                    )
                    continue
                self._results[prior.numero_ligne] = prior
                if prior.manual:
                    self._manual_lines.add(prior.numero_ligne)
            for prior_link in self.snapshot.prior_links:
                if prior_link.source_line in self._manual_lines or prior_link.target_line in self._manual_lines:
                    continue
                try:
                    self.ledger.link_inverse(prior_link)
                except InverseLinkError as exc:
                    self._record(ErrorKind.PERSISTENCE_CONFLICT, str(exc), numero_ligne=prior_link.source_line)
                    continue
                for line in (prior_link.source_line, prior_link.target_line):
                    tx = self._transactions.get(line)
                    if tx is not None:
                        self._results[line] = results.inverse_linked(tx, prior_link, self.partners.resolve(tx))

    def _record(self, kind: ErrorKind, message: str, **context) -> None:
        self.errors.append(EngineError(kind=kind, message=message, **context))

    # -- lookups ------------------------------------------------------------

    def transaction(self, numero_ligne: str) -> BankTransaction:
        try:
            return self._transactions[numero_ligne]
        except KeyError as exc:
            raise ReconciliationError(f"Unknown statement line {numero_ligne}") from exc

    def result_for(self, numero_ligne: str) -> ReconciliationResult | None:
        return self._results.get(numero_ligne)

    def partner_of(self, transaction: BankTransaction) -> PartnerRef | None:
        return self.partners.resolve(transaction)

    def _available(self, numero_ligne: str) -> list[Candidate]:
        day = self._transactions[numero_ligne].date
        return [
            candidate
            for candidate in self._candidates
            if self.ledger.holder_of(candidate.candidate_id) in (None, numero_ligne)
            and (not isinstance(candidate, Subscription) or candidate.covers(day))
        ]

    # -- per-line matching --------------------------------------------------

    def _report(
        self,
        transaction: BankTransaction,
        result: ReconciliationResult,
        scoring: ScoringOutcome | None = None,
    ) -> MatchReport:
        if scoring is None:
            return MatchReport(result=result)
        top = scoring.ranked[: self.config.report_top_candidates]
        scored = tuple(
            entry.to_scored(results.explains_amount(transaction, entry.candidate, self.config.amount_tolerance))
            for entry in top
        )
        return MatchReport(result=result, candidates=scored, ambiguous=scoring.ambiguous)

    def _classify(
        self,
        transaction: BankTransaction,
        partner: PartnerRef | None,
        scoring: ScoringOutcome,
        *,
        commit: bool,
    ) -> tuple[ReconciliationResult, list[EngineError]]:
        """Decide the status of a line; claims are only taken when ``commit``."""
        line = transaction.numero_ligne
        errors: list[EngineError] = []
        best = scoring.best

        if scoring.ambiguous:
            tied = [entry.candidate.candidate_id for entry in scoring.tied]
            errors.append(
                EngineError(
                    kind=ErrorKind.AMBIGUOUS_MATCH,
                    message=f"Line {line}: {len(tied)} candidates share the best score {scoring.top_score}",
                    numero_ligne=line,
                    details={"candidates": tied, "score": scoring.top_score},
                )
            )
            result = results.unresolved(
                transaction,
                scoring,
                partner,
                uncertain_threshold=self.config.uncertain_threshold,
                notes=f"Ambiguous: {', '.join(tied)}",
            )
            return result, errors

        if (
            best is not None
            and best.score >= self.config.matched_threshold
            and results.explains_amount(transaction, best.candidate, self.config.amount_tolerance)
        ):
            if not commit or self.ledger.claim(best.candidate.candidate_id, line):
                return results.matched_single(transaction, best, partner), errors
            logger.info(
                "Best candidate claimed concurrently",
                numero_ligne=line,
                candidate_id=best.candidate.candidate_id,
            )

        if self.config.auto_aggregate:
            aggregated = self._aggregate(transaction, partner, scoring, commit=commit, manual=False)
            if aggregated is not None:
                result, aggregation_errors = aggregated
                return result, errors + aggregation_errors

        result = results.unresolved(
            transaction,
            scoring,
            partner,
            uncertain_threshold=self.config.uncertain_threshold,
        )
        return result, errors

    def _aggregate(
        self,
        transaction: BankTransaction,
        partner: PartnerRef | None,
        scoring: ScoringOutcome | None,
        *,
        commit: bool,
        manual: bool,
    ) -> tuple[ReconciliationResult, list[EngineError]] | None:
        line = transaction.numero_ligne
        pool = eligible_invoices(transaction, self.snapshot.invoices, partner, self.snapshot.period, self.ledger)
        found = find_combination(transaction.absolute_amount, pool, self.config.amount_tolerance)
        if found is None:
            return None
        if commit and not self.ledger.claim_many(found.candidate_ids, line):
            return None
        result = results.aggregated(
            transaction,
            found,
            partner,
            score=scoring.top_score if scoring else results.MANUAL_SCORE,
            rule_ids=scoring.best.rule_ids if scoring and scoring.best else (),
            manual=manual,
        )
        errors: list[EngineError] = []
        if not found.complete:
            errors.append(
                EngineError(
                    kind=ErrorKind.AGGREGATION_UNRESOLVED,
                    message=f"Line {line}: {found.residual} left unexplained after aggregation",
                    numero_ligne=line,
                    details={"residual": str(found.residual), "candidates": found.candidate_ids},
                )
            )
        return result, errors

    def _process(self, transaction: BankTransaction) -> MatchReport:
        line = transaction.numero_ligne
        if line in self._manual_lines:
            return self._report(transaction, self._results[line])
        prior_link = self.ledger.inverse_of(line)
        if prior_link is not None:
            return self._report(transaction, results.inverse_linked(transaction, prior_link, self.partner_of(transaction)))

        partner = self.partner_of(transaction)
        scoring = score_candidates(transaction, self._available(line), self.snapshot.rules, partner)
        self.errors.extend(scoring.errors)
        result, errors = self._classify(transaction, partner, scoring, commit=True)
        self.errors.extend(errors)
        return self._report(transaction, result, scoring)

    # -- runs ---------------------------------------------------------------

    def iter_reports(self, cancel_event: threading.Event | None = None) -> Iterator[MatchReport]:
        """Process lines in statement order, yielding one report per line.

        Failures are isolated per line. When ``cancel_event`` is set, the run
        stops before the next line. The automatic inverse pass, when enabled,
        yields updated reports for the lines it pairs.
        """
        self._seed()
        for transaction in self.snapshot.transactions:
            if cancel_event is not None and cancel_event.is_set():
                self.cancelled = True
                logger.info("Reconciliation run cancelled", numero_ligne=transaction.numero_ligne)
                return
            line = transaction.numero_ligne
            try:
                report = self._process(transaction)
            except Exception as exc:
                log_exception(logger, exc, "Line reconciliation failed", numero_ligne=line)
                self.ledger.release_line(line)
                self._record(ErrorKind.TRANSACTION_FAILURE, str(exc), numero_ligne=line)
                report = MatchReport(result=results.failed(transaction, str(exc)))
            self._results[line] = report.result
            yield report

        if self.config.auto_inverse:
            for inverse_link in self.pair_inverses():
                for line in (inverse_link.source_line, inverse_link.target_line):
                    yield MatchReport(result=self._results[line])

    def run(self, cancel_event: threading.Event | None = None) -> ReconciliationRun:
        """Process every line and return results, reports and non-fatal errors."""
        with log_timing("reconciliation_run", logger=logger, lines=len(self.snapshot.transactions)) as ctx:
            latest: dict[str, MatchReport] = {}
            for report in self.iter_reports(cancel_event):
                latest[report.result.numero_ligne] = report
            run = ReconciliationRun(
                results=[report.result for report in latest.values()],
                reports=list(latest.values()),
                errors=list(self.errors),
                inverse_links=self.ledger.inverse_links(),
                ledger=self.ledger,
                cancelled=self.cancelled,
            )
            ctx.update(run.counts())
            ctx["errors"] = len(run.errors)
        return run

    # -- interactive operations --------------------------------------------

    def explain(self, numero_ligne: str) -> MatchReport:
        """Dry-run scoring for one line; takes no claims."""
        self._seed()
        transaction = self.transaction(numero_ligne)
        partner = self.partner_of(transaction)
        scoring = score_candidates(transaction, self._available(numero_ligne), self.snapshot.rules, partner)
        current = self._results.get(numero_ligne)
        if current is None:
            current, _ = self._classify(transaction, partner, scoring, commit=False)
        return self._report(transaction, current, scoring)

    def aggregate(self, numero_ligne: str) -> MatchReport:
        """Manual many-to-one aggregation for one line.

        Raises:
            PersistenceConflict: If the line carries a manual result.
            ClaimConflict: If the line is paired as an inverse.
        """
        self._seed()
        transaction = self.transaction(numero_ligne)
        if numero_ligne in self._manual_lines:
            raise PersistenceConflict(numero_ligne)
        if self.ledger.inverse_of(numero_ligne) is not None:
            raise ClaimConflict(f"Line {numero_ligne} is paired as an inverse")

        released = self.ledger.release_line(numero_ligne)
        partner = self.partner_of(transaction)
        aggregated = self._aggregate(transaction, partner, None, commit=True, manual=True)
        if aggregated is None:
            self.ledger.claim_many(released, numero_ligne)
            self._record(
                ErrorKind.AGGREGATION_UNRESOLVED,
                f"Line {numero_ligne}: no invoice combination found",
                numero_ligne=numero_ligne,
            )
            current = self._results.get(numero_ligne) or results.unresolved(
                transaction,
                ScoringOutcome(),
                partner,
                uncertain_threshold=self.config.uncertain_threshold,
                notes="No invoice combination found",
            )
            return MatchReport(result=current)
        result, errors = aggregated
        self.errors.extend(errors)
        self._results[numero_ligne] = result
        return MatchReport(result=result)

    def _inverse_excluded(self) -> set[str]:
        excluded = {line for line, result in self._results.items() if result.status == ResultStatus.MATCHED}
        excluded.update(self._manual_lines)
        for inverse_link in self.ledger.inverse_links():
            excluded.update({inverse_link.source_line, inverse_link.target_line})
        return excluded

    def inverse_candidates(self, numero_ligne: str, search: str | None = None) -> list[InverseCandidate]:
        """Lines that could offset ``numero_ligne``, optionally narrowed by ``search``."""
        self._seed()
        source = self.transaction(numero_ligne)
        return find_inverse_candidates(
            source,
            self.snapshot.transactions,
            partner_of=self.partner_of,
            excluded=self._inverse_excluded(),
            search=search,
            tolerance=self.config.inverse_tolerance,
        )

    def _apply_link(self, inverse_link: InverseLink) -> None:
        self.ledger.link_inverse(inverse_link)
        for line in (inverse_link.source_line, inverse_link.target_line):
            tx = self._transactions[line]
            self._results[line] = results.inverse_linked(tx, inverse_link, self.partner_of(tx))

    def link_inverse(self, source_line: str, target_line: str) -> InverseLink:
        """User-triggered inverse pairing; unbalanced pairs are linked with a warning.

        Raises:
            InverseLinkError: If either line is matched, manual or already paired.
        """
        self._seed()
        source = self.transaction(source_line)
        target = self.transaction(target_line)
        for line in (source_line, target_line):
            if line in self._manual_lines:
                raise InverseLinkError(f"Line {line} carries a manual result")
            current = self._results.get(line)
            if current is not None and current.status == ResultStatus.MATCHED and current.inverse_of is None:
                raise InverseLinkError(f"Line {line} is already matched")
        inverse_link = link(source, target, manual=True)
        self._apply_link(inverse_link)
        logger.info(
            "Inverse link created",
            source_line=source_line,
            target_line=target_line,
            solde=str(inverse_link.solde),
            balanced=inverse_link.balanced,
        )
        return inverse_link

    def pair_inverses(self) -> list[InverseLink]:
        """Automatic inverse pass over lines holding no claim; balanced pairs only."""
        self._seed()
        excluded = self._inverse_excluded()
        excluded.update(line for line, result in self._results.items() if result.status == ResultStatus.PARTIAL)
        links = pair_balanced(
            self.snapshot.transactions,
            partner_of=self.partner_of,
            excluded=excluded,
            tolerance=self.config.inverse_tolerance,
        )
        for inverse_link in links:
            self._apply_link(inverse_link)
        if links:
            logger.info("Automatic inverse pass paired lines", pairs=len(links))
        return links

    def search_pending(self, expression: str | None) -> list[BankTransaction]:
        """Unmatched or uncertain lines whose label matches the keyword expression."""
        self._seed()
        pending = [
            tx
            for tx in self.snapshot.transactions
            if tx.numero_ligne not in self._results or self._results[tx.numero_ligne].status in PENDING_STATUSES
        ]
        return keywords.search(pending, expression, label_of=lambda tx: tx.label)

    def credit_note_candidates(self, search: str | None = None) -> list[Invoice]:
        """Credit notes of the snapshot not yet reconciled, newest first."""
        self._seed()
        return credit_notes.find_credit_notes(self.snapshot.invoices, is_claimed=self.ledger.is_claimed, search=search)

    def link_credit_notes(
        self,
        invoice_id: str,
        credit_note_ids: list[str],
        reference: str | None = None,
    ) -> CreditNoteOffset:
        """Offset a sales invoice against credit notes; unbalanced offsets are kept with a warning.

        Raises:
            CreditNoteError: If a document is unknown or is not of the expected kind.
            ClaimConflict: If a document is already reconciled.
        """
        self._seed()
        by_id = {invoice.id: invoice for invoice in self.snapshot.invoices}
        missing = [doc_id for doc_id in (invoice_id, *credit_note_ids) if doc_id not in by_id]
        if missing:
            raise CreditNoteError(f"Unknown invoices {missing}")
        built = credit_notes.offset(by_id[invoice_id], [by_id[doc_id] for doc_id in credit_note_ids], reference)
        self.ledger.require_claim(built.candidate_ids, built.holder)
        logger.info(
            "Credit note offset created",
            reference=built.reference,
            invoice_id=invoice_id,
            credit_notes=len(built.credit_notes),
            solde=built.solde,
            balanced=built.balanced,
        )
        return built
