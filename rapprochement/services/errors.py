"""Reconciliation engine errors.

Exceptions are raised inside the engine and translated at the run boundary
into :class:`EngineError` records, so one bad rule or line never aborts a batch.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Category of a non-fatal error collected during a run."""

    RULE_CONFIGURATION = "rule_configuration"
    AMBIGUOUS_MATCH = "ambiguous_match"
    AGGREGATION_UNRESOLVED = "aggregation_unresolved"
    PERSISTENCE_CONFLICT = "persistence_conflict"
    TRANSACTION_FAILURE = "transaction_failure"


class ReconciliationError(Exception):
    """Base class for reconciliation engine errors."""


class RuleConfigurationError(ReconciliationError):
    """Rule condition payload is malformed or violates its schema."""

    def __init__(
        self,
        message: str,
        *,
        rule_id: int | str | None = None,
        errors: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(message)
        self.rule_id = rule_id
        self.errors = errors or []


class ClaimConflict(ReconciliationError):
    """A candidate or line is already consumed by another match."""


class InverseLinkError(ReconciliationError):
    """Two lines cannot be paired as inverse transactions."""


class CreditNoteError(ReconciliationError):
    """An invoice cannot be offset against the given credit notes."""


class PersistenceConflict(ReconciliationError):
    """An automatic result would overwrite a manual one."""

    def __init__(self, numero_ligne: str) -> None:
        super().__init__(f"Line {numero_ligne} carries a manual result; automatic result discarded")
        self.numero_ligne = numero_ligne


@dataclass(frozen=True)
class EngineError:
    """Non-fatal error surfaced to operators alongside run results."""

    kind: ErrorKind
    message: str
    numero_ligne: str | None = None
    rule_id: int | str | None = None
    details: dict[str, Any] = field(default_factory=dict)
