"""Keyword grammar for matching statement labels.

Grammar: the expression is split on commas into OR-groups, each group is
split on whitespace into AND-terms. A label matches when at least one group
has all of its terms present as case-insensitive substrings.

    "ORANGE ABONNEMENT"  -> both tokens required
    "ORANGE,SFR"         -> either token alone

An empty expression matches nothing.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import TypeVar

T = TypeVar("T")


def parse_expression(expression: str | None) -> list[list[str]]:
    """Split an expression into OR-groups of casefolded AND-terms."""
    if not expression:
        return []
    groups: list[list[str]] = []
    for raw_group in expression.split(","):
        terms = [term.casefold() for term in raw_group.split()]
        if terms:
            groups.append(terms)
    return groups


def matches(label: str | None, expression: str | None) -> bool:
    """Return True when ``label`` satisfies the keyword ``expression``."""
    groups = parse_expression(expression)
    if not groups or not label:
        return False
    haystack = label.casefold()
    return any(all(term in haystack for term in group) for group in groups)


def matches_any_term(label: str | None, expression: str | None) -> bool:
    """OR over every term of the expression, ignoring AND grouping."""
    if not label:
        return False
    haystack = label.casefold()
    return any(term in haystack for group in parse_expression(expression) for term in group)


def normalize_keywords(value: str | Sequence[str] | None) -> str | None:
    """Normalize stored keywords to the text grammar.

    Legacy rows store a list of strings, each item being one OR-group.
    Blank input normalizes to None.
    """
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        return text or None
    items = [str(item).strip() for item in value if str(item).strip()]
    return ",".join(items) or None


def specificity(expression: str | None) -> int:
    """Rough measure of how specific an expression is (longest OR-group length)."""
    groups = parse_expression(expression)
    if not groups:
        return 0
    return max(sum(len(term) for term in group) for group in groups)


def search(items: Iterable[T], expression: str | None, *, label_of) -> list[T]:
    """Filter ``items`` whose label (as returned by ``label_of``) matches."""
    if not parse_expression(expression):
        return []
    return [item for item in items if matches(label_of(item), expression)]
