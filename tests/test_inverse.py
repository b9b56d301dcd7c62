"""Tests for inverse (offsetting) line matching."""

from datetime import date
from decimal import Decimal

import pytest

from rapprochement.services.domain import PartnerRef
from rapprochement.services.errors import InverseLinkError
from rapprochement.services.inverse import find_inverse_candidates, link, pair_balanced
from tests.factories import BankTransactionFactory


def _no_partner(tx):
    return None


def _debit(line: str, amount: str, **kwargs):
    return BankTransactionFactory.build(numero_ligne=line, debit=Decimal(amount), credit=Decimal("0"), **kwargs)


def _credit(line: str, amount: str, **kwargs):
    return BankTransactionFactory.build(numero_ligne=line, debit=Decimal("0"), credit=Decimal(amount), **kwargs)


def test_candidates_have_opposite_sign_and_close_amount() -> None:
    source = _debit("1", "50.00")
    pool = [source, _debit("2", "50.00"), _credit("3", "50.00"), _credit("4", "49.00"), _credit("5", "50.01")]

    found = find_inverse_candidates(source, pool, partner_of=_no_partner)

    assert [c.transaction.numero_ligne for c in found] == ["3", "5"]
    assert found[0].balanced
    assert not found[1].balanced
    assert found[1].solde == Decimal("-0.01")


def test_candidates_sorted_by_date_distance() -> None:
    source = _debit("1", "50.00", date=date(2024, 3, 15))
    pool = [_credit("2", "50.00", date=date(2024, 3, 25)), _credit("3", "50.00", date=date(2024, 3, 14))]

    found = find_inverse_candidates(source, pool, partner_of=_no_partner)

    assert [c.transaction.numero_ligne for c in found] == ["3", "2"]
    assert found[0].day_distance == 1


def test_candidates_exclude_lines_and_filter_search() -> None:
    source = _debit("1", "50.00")
    pool = [_credit("2", "50.00", label="ANNUL PRLV"), _credit("3", "50.00", label="REMB CB")]

    assert [c.transaction.numero_ligne for c in find_inverse_candidates(source, pool, partner_of=_no_partner, excluded={"2"})] == ["3"]
    assert [c.transaction.numero_ligne for c in find_inverse_candidates(source, pool, partner_of=_no_partner, search="annul")] == ["2"]


def test_candidates_respect_partner_identity() -> None:
    partners = {"1": PartnerRef(id="p1"), "2": PartnerRef(id="p2"), "3": PartnerRef(id="p1")}
    source = _debit("1", "50.00")
    pool = [_credit("2", "50.00"), _credit("3", "50.00")]

    found = find_inverse_candidates(source, pool, partner_of=lambda tx: partners.get(tx.numero_ligne))

    assert [c.transaction.numero_ligne for c in found] == ["3"]


def test_link_rejects_same_sign_and_self() -> None:
    with pytest.raises(InverseLinkError):
        link(_debit("1", "10.00"), _debit("2", "10.00"))
    source = _debit("1", "10.00")
    with pytest.raises(InverseLinkError):
        link(source, source)


def test_unbalanced_link_is_kept_with_solde() -> None:
    created = link(_debit("1", "10.00"), _credit("2", "9.00"), manual=True)
    assert not created.balanced
    assert created.solde == Decimal("1.00")
    assert created.manual


def test_pair_balanced_pairs_each_line_once() -> None:
    lines = [_debit("1", "50.00"), _credit("2", "50.00"), _credit("3", "50.00"), _debit("4", "20.00")]

    links = pair_balanced(lines, partner_of=_no_partner)

    assert [(l.source_line, l.target_line) for l in links] == [("1", "2")]
    assert links[0].balanced
    assert not links[0].manual


def test_pair_balanced_skips_excluded_lines() -> None:
    lines = [_debit("1", "50.00"), _credit("2", "50.00")]
    assert pair_balanced(lines, partner_of=_no_partner, excluded=["2"]) == []
