"""Counterparty detection from statement labels."""

from __future__ import annotations

from collections.abc import Iterable

from rapprochement.services import keywords
from rapprochement.services.domain import BankTransaction, Partner, PartnerRef, id_sort_key


def detect_partner(label: str, partners: Iterable[Partner]) -> Partner | None:
    """Partner whose effective keyword expression matches ``label``.

    The most specific expression wins, then the lowest partner id.
    """
    matching = [partner for partner in partners if keywords.matches(label, partner.effective_keywords)]
    if not matching:
        return None
    matching.sort(key=lambda p: (-keywords.specificity(p.effective_keywords), id_sort_key(p.id)))
    return matching[0]


class PartnerDirectory:
    """Resolves the partner of each statement line, with caching."""

    def __init__(self, partners: Iterable[Partner]) -> None:
        self._partners = tuple(partners)
        self._by_id = {partner.id: partner for partner in self._partners}
        self._cache: dict[str, PartnerRef | None] = {}

    def __len__(self) -> int:
        return len(self._partners)

    def get(self, partner_id: str) -> Partner | None:
        return self._by_id.get(partner_id)

    def resolve(self, transaction: BankTransaction) -> PartnerRef | None:
        """Recorded partner of the line, completed from the directory, else detected."""
        if transaction.numero_ligne in self._cache:
            return self._cache[transaction.numero_ligne]
        resolved = self._resolve(transaction)
        self._cache[transaction.numero_ligne] = resolved
        return resolved

    def _resolve(self, transaction: BankTransaction) -> PartnerRef | None:
        recorded = transaction.partner
        if recorded is not None and recorded.is_known:
            known = self._by_id.get(recorded.id) if recorded.id else None
            if known is not None:
                return PartnerRef(id=known.id, name=recorded.name or known.name, kind=recorded.kind or known.kind)
            return recorded
        detected = detect_partner(transaction.label, self._partners)
        return detected.ref() if detected else None
