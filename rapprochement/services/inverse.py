"""Inverse matching: pairs of statement lines whose amounts cancel out."""

from __future__ import annotations

from collections.abc import Callable, Container, Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal

from rapprochement.logger import get_logger
from rapprochement.services.amounts import CENT, to_money, within_tolerance
from rapprochement.services.domain import BankTransaction, InverseLink, PartnerRef, id_sort_key
from rapprochement.services.errors import InverseLinkError

logger = get_logger(__name__)

PartnerLookup = Callable[[BankTransaction], PartnerRef | None]


@dataclass(frozen=True)
class InverseCandidate:
    transaction: BankTransaction
    partner: PartnerRef | None
    solde: Decimal
    balanced: bool
    day_distance: int


def balance(source: BankTransaction, target: BankTransaction) -> tuple[Decimal, bool]:
    """Return ``(solde, balanced)`` where balanced means ``abs(solde) < 0.01``."""
    solde = to_money(source.amount + target.amount)
    return solde, abs(solde) < CENT


def partners_compatible(a: PartnerRef | None, b: PartnerRef | None) -> bool:
    """Same partner by id when both have one, else by name when both are named.

    Lines without a resolved partner on either side are unconstrained.
    """
    if a is None or b is None:
        return True
    if a.id and b.id:
        return a.id == b.id
    if a.name and b.name:
        return a.name.strip().casefold() == b.name.strip().casefold()
    return True


def _matches_search(tx: BankTransaction, partner: PartnerRef | None, search: str | None) -> bool:
    if not search or not search.strip():
        return True
    needle = search.strip().casefold()
    fields = [tx.label, tx.numero_ligne, partner.name if partner else None]
    return any(needle in value.casefold() for value in fields if value)


def find_inverse_candidates(
    source: BankTransaction,
    pool: Iterable[BankTransaction],
    *,
    partner_of: PartnerLookup,
    excluded: Container[str] = (),
    search: str | None = None,
    tolerance: Decimal = CENT,
) -> list[InverseCandidate]:
    """Lines of ``pool`` that could offset ``source``, closest date first.

    ``excluded`` holds line numbers that are already matched or paired.
    """
    if source.amount == 0:
        return []
    source_partner = partner_of(source)
    found: list[InverseCandidate] = []
    for candidate in pool:
        if candidate.numero_ligne == source.numero_ligne or candidate.numero_ligne in excluded:
            continue
        if candidate.amount == 0 or (candidate.amount > 0) == (source.amount > 0):
            continue
        if not within_tolerance(source.absolute_amount, candidate.absolute_amount, tolerance):
            continue
        candidate_partner = partner_of(candidate)
        if not partners_compatible(source_partner, candidate_partner):
            continue
        if not _matches_search(candidate, candidate_partner, search):
            continue
        solde, balanced = balance(source, candidate)
        found.append(
            InverseCandidate(
                transaction=candidate,
                partner=candidate_partner,
                solde=solde,
                balanced=balanced,
                day_distance=abs((candidate.date - source.date).days),
            )
        )
    found.sort(key=lambda c: (not c.balanced, c.day_distance, id_sort_key(c.transaction.numero_ligne)))
    return found


def link(source: BankTransaction, target: BankTransaction, *, manual: bool = False) -> InverseLink:
    """Build the link between two lines.

    An unbalanced pair is still linked; the discrepancy is logged and carried
    in ``solde``.

    Raises:
        InverseLinkError: If the lines are the same or do not have opposite signs.
    """
    if source.numero_ligne == target.numero_ligne:
        raise InverseLinkError(f"Line {source.numero_ligne} cannot be paired with itself")
    if source.amount == 0 or target.amount == 0 or (source.amount > 0) == (target.amount > 0):
        raise InverseLinkError(
            f"Lines {source.numero_ligne} and {target.numero_ligne} do not have opposite amounts"
        )
    solde, balanced = balance(source, target)
    if not balanced:
        logger.warning(
            "Inverse link is not balanced",
            source_line=source.numero_ligne,
            target_line=target.numero_ligne,
            solde=str(solde),
        )
    return InverseLink(
        source_line=source.numero_ligne,
        target_line=target.numero_ligne,
        solde=solde,
        balanced=balanced,
        manual=manual,
    )


def pair_balanced(
    transactions: Sequence[BankTransaction],
    *,
    partner_of: PartnerLookup,
    excluded: Iterable[str] = (),
    tolerance: Decimal = CENT,
) -> list[InverseLink]:
    """Automatic pass: pair each remaining line with its closest balanced inverse."""
    skip = set(excluded)
    links: list[InverseLink] = []
    for source in transactions:
        if source.numero_ligne in skip:
            continue
        candidates = find_inverse_candidates(
            source,
            transactions,
            partner_of=partner_of,
            excluded=skip,
            tolerance=tolerance,
        )
        balanced = next((c for c in candidates if c.balanced), None)
        if balanced is None:
            continue
        links.append(link(source, balanced.transaction))
        skip.update({source.numero_ligne, balanced.transaction.numero_ligne})
    return links
