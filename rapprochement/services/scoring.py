"""Accumulated rule scoring of candidates for one transaction."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from rapprochement.logger import get_logger
from rapprochement.schemas.rules import ReconciliationRule
from rapprochement.services.domain import (
    BankTransaction,
    Candidate,
    PartnerRef,
    ScoredCandidate,
    id_sort_key,
)
from rapprochement.services.errors import EngineError, ErrorKind, RuleConfigurationError
from rapprochement.services.rules import evaluate

logger = get_logger(__name__)

MAX_SCORE = 100


@dataclass
class CandidateScore:
    candidate: Candidate
    score: int = 0
    rule_ids: list[str] = field(default_factory=list)
    best_priority: int | None = None

    def sort_key(self) -> tuple:
        priority = self.best_priority if self.best_priority is not None else float("inf")
        return (-self.score, priority, id_sort_key(self.candidate.candidate_id))

    def to_scored(self, explains_amount: bool) -> ScoredCandidate:
        return ScoredCandidate(
            candidate_id=self.candidate.candidate_id,
            score=self.score,
            rule_ids=tuple(self.rule_ids),
            best_priority=self.best_priority,
            amount=self.candidate.amount,
            explains_amount=explains_amount,
        )


@dataclass(frozen=True)
class ScoringOutcome:
    """Candidates with a positive score, best first, plus rule errors."""

    ranked: tuple[CandidateScore, ...] = ()
    errors: tuple[EngineError, ...] = ()

    @property
    def best(self) -> CandidateScore | None:
        return self.ranked[0] if self.ranked else None

    @property
    def top_score(self) -> int:
        return self.ranked[0].score if self.ranked else 0

    @property
    def tied(self) -> tuple[CandidateScore, ...]:
        """Candidates indistinguishable from the best by score and priority."""
        if not self.ranked:
            return ()
        head = self.ranked[0]
        return tuple(
            entry
            for entry in self.ranked
            if entry.score == head.score and entry.best_priority == head.best_priority
        )

    @property
    def ambiguous(self) -> bool:
        return len(self.tied) > 1


def sort_rules(rules: Iterable[ReconciliationRule]) -> list[ReconciliationRule]:
    """Active rules in ascending priority, ties broken by rule id."""
    return sorted(
        (rule for rule in rules if rule.active),
        key=lambda rule: (rule.priority, id_sort_key(rule.id)),
    )


def score_candidates(
    transaction: BankTransaction,
    candidates: Sequence[Candidate],
    rules: Sequence[ReconciliationRule],
    partner: PartnerRef | None = None,
) -> ScoringOutcome:
    """Score every candidate against every active rule.

    All applicable rules contribute, capped at 100. A rule that fails to
    evaluate contributes nothing to that pair only; each failing rule is
    reported once per transaction.
    """
    ordered = sort_rules(rules)
    reported: set[str] = set()
    errors: list[EngineError] = []
    scores: list[CandidateScore] = []

    for candidate in candidates:
        entry = CandidateScore(candidate=candidate)
        for rule in ordered:
            try:
                outcome = evaluate(rule, transaction, candidate, partner)
            except RuleConfigurationError as exc:
                if rule.id in reported:
                    continue
                reported.add(rule.id)
                logger.warning(
                    "Rule evaluation failed - rule skipped",
                    rule_id=rule.id,
                    numero_ligne=transaction.numero_ligne,
                    candidate_id=candidate.candidate_id,
                    error=str(exc),
                )
                errors.append(
                    EngineError(
                        kind=ErrorKind.RULE_CONFIGURATION,
                        message=str(exc),
                        numero_ligne=transaction.numero_ligne,
                        rule_id=rule.id,
                    )
                )
                continue
            if not outcome.applies:
                continue
            entry.score = min(MAX_SCORE, entry.score + outcome.score_contribution)
            entry.rule_ids.append(rule.id)
            if entry.best_priority is None or rule.priority < entry.best_priority:
                entry.best_priority = rule.priority
        if entry.score > 0:
            scores.append(entry)

    scores.sort(key=CandidateScore.sort_key)
    return ScoringOutcome(ranked=tuple(scores), errors=tuple(errors))
