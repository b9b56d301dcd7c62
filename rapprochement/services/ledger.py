"""Claim ledger: at-most-one consumption of candidates and lines.

The ledger is an explicit object passed to and returned from each engine
invocation. Every mutation happens under a lock as a compare-and-claim, so
concurrent workers can never award one candidate to two lines.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable

from rapprochement.services.domain import InverseLink
from rapprochement.services.errors import ClaimConflict, InverseLinkError


class ClaimLedger:
    """Tracks which candidates and which lines are already consumed."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._holders: dict[str, str] = {}
        self._claims: dict[str, set[str]] = {}
        self._inverse: dict[str, InverseLink] = {}

    # -- candidates ---------------------------------------------------------

    def claim(self, candidate_id: str, numero_ligne: str) -> bool:
        """Claim one candidate for a line. Returns False if held elsewhere."""
        return self.claim_many([candidate_id], numero_ligne)

    def claim_many(self, candidate_ids: Iterable[str], numero_ligne: str) -> bool:
        """Claim all candidates for one line, or none of them."""
        wanted = list(dict.fromkeys(candidate_ids))
        with self._lock:
            if numero_ligne in self._inverse:
                return False
            for candidate_id in wanted:
                holder = self._holders.get(candidate_id)
                if holder is not None and holder != numero_ligne:
                    return False
            for candidate_id in wanted:
                self._holders[candidate_id] = numero_ligne
            self._claims.setdefault(numero_ligne, set()).update(wanted)
            return True

    def require_claim(self, candidate_ids: Iterable[str], numero_ligne: str) -> None:
        """Like :meth:`claim_many` but raises :class:`ClaimConflict` on failure."""
        wanted = list(candidate_ids)
        if not self.claim_many(wanted, numero_ligne):
            held = {cid: self.holder_of(cid) for cid in wanted if self.holder_of(cid) not in (None, numero_ligne)}
            raise ClaimConflict(f"Line {numero_ligne}: candidates already claimed {held}")

    def release_line(self, numero_ligne: str) -> set[str]:
        """Release every candidate held by a line and return them."""
        with self._lock:
            released = self._claims.pop(numero_ligne, set())
            for candidate_id in released:
                if self._holders.get(candidate_id) == numero_ligne:
                    del self._holders[candidate_id]
            return released

    def holder_of(self, candidate_id: str) -> str | None:
        with self._lock:
            return self._holders.get(candidate_id)

    def is_claimed(self, candidate_id: str) -> bool:
        return self.holder_of(candidate_id) is not None

    def claims_of(self, numero_ligne: str) -> frozenset[str]:
        with self._lock:
            return frozenset(self._claims.get(numero_ligne, ()))

    # -- lines --------------------------------------------------------------

    def link_inverse(self, link: InverseLink) -> None:
        """Register an inverse pair; both lines leave the automatic pool.

        Raises:
            InverseLinkError: If either line is already paired elsewhere.
        """
        if link.source_line == link.target_line:
            raise InverseLinkError(f"Line {link.source_line} cannot be paired with itself")
        with self._lock:
            for line in (link.source_line, link.target_line):
                existing = self._inverse.get(line)
                if existing is not None and existing.other(line) != link.other(line):
                    raise InverseLinkError(f"Line {line} is already paired with {existing.other(line)}")
            for line in (link.source_line, link.target_line):
                self._inverse[line] = link
                for candidate_id in self._claims.pop(line, set()):
                    if self._holders.get(candidate_id) == line:
                        del self._holders[candidate_id]

    def inverse_of(self, numero_ligne: str) -> InverseLink | None:
        with self._lock:
            return self._inverse.get(numero_ligne)

    def is_line_consumed(self, numero_ligne: str) -> bool:
        """True when the line is inverse-paired or holds at least one claim."""
        with self._lock:
            return numero_ligne in self._inverse or bool(self._claims.get(numero_ligne))

    def inverse_links(self) -> list[InverseLink]:
        with self._lock:
            unique = {(link.source_line, link.target_line): link for link in self._inverse.values()}
        return list(unique.values())

    def snapshot(self) -> dict[str, str]:
        """Copy of the candidate -> line claim map."""
        with self._lock:
            return dict(self._holders)
