"""Tests for the claim ledger."""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from rapprochement.services.domain import InverseLink
from rapprochement.services.errors import ClaimConflict, InverseLinkError
from rapprochement.services.ledger import ClaimLedger


def _link(source: str, target: str) -> InverseLink:
    return InverseLink(source_line=source, target_line=target, solde=Decimal("0.00"), balanced=True)


def test_claim_is_exclusive() -> None:
    ledger = ClaimLedger()
    assert ledger.claim("invoice:1", "10")
    assert ledger.claim("invoice:1", "10")
    assert not ledger.claim("invoice:1", "11")
    assert ledger.holder_of("invoice:1") == "10"


def test_claim_many_is_all_or_nothing() -> None:
    ledger = ClaimLedger()
    ledger.claim("invoice:2", "10")
    assert not ledger.claim_many(["invoice:1", "invoice:2"], "11")
    assert not ledger.is_claimed("invoice:1")


def test_require_claim_raises_conflict() -> None:
    ledger = ClaimLedger()
    ledger.claim("invoice:1", "10")
    with pytest.raises(ClaimConflict):
        ledger.require_claim(["invoice:1"], "11")


def test_release_line_frees_candidates() -> None:
    ledger = ClaimLedger()
    ledger.claim_many(["invoice:1", "invoice:2"], "10")
    assert ledger.release_line("10") == {"invoice:1", "invoice:2"}
    assert ledger.claim("invoice:1", "11")
    assert ledger.claims_of("10") == frozenset()


def test_inverse_link_consumes_both_lines() -> None:
    ledger = ClaimLedger()
    ledger.claim("invoice:1", "10")
    ledger.link_inverse(_link("10", "11"))

    assert ledger.is_line_consumed("10")
    assert ledger.is_line_consumed("11")
    assert not ledger.is_claimed("invoice:1")
    assert not ledger.claim("invoice:5", "11")
    assert ledger.inverse_of("11").other("11") == "10"
    assert len(ledger.inverse_links()) == 1


def test_inverse_link_rejects_self_and_double_pairing() -> None:
    ledger = ClaimLedger()
    with pytest.raises(InverseLinkError):
        ledger.link_inverse(_link("10", "10"))
    ledger.link_inverse(_link("10", "11"))
    ledger.link_inverse(_link("11", "10"))
    with pytest.raises(InverseLinkError):
        ledger.link_inverse(_link("10", "12"))


def test_concurrent_claims_award_each_candidate_once() -> None:
    ledger = ClaimLedger()
    candidates = [f"invoice:{n}" for n in range(50)]

    def worker(line: str) -> list[str]:
        return [cid for cid in candidates if ledger.claim(cid, line)]

    with ThreadPoolExecutor(max_workers=8) as pool:
        won = list(pool.map(worker, [str(n) for n in range(8)]))

    awarded = [cid for claims in won for cid in claims]
    assert sorted(awarded) == sorted(candidates)
    assert ledger.snapshot().keys() == set(candidates)
