"""Tests for effective accounting periods of charge payments."""

from datetime import date

from rapprochement.services.periods import PaymentStamp, effective_period, retirement_rank, shift_months


def test_shift_months_clamps_day() -> None:
    assert shift_months(date(2024, 3, 31), 1) == date(2024, 2, 29)
    assert shift_months(date(2024, 4, 30), 3) == date(2024, 1, 30)
    assert shift_months(date(2024, 1, 15), 1) == date(2023, 12, 15)
    assert shift_months(date(2024, 11, 30), -3) == date(2025, 2, 28)


def test_retirement_payments_on_same_day_map_to_consecutive_months() -> None:
    paid = date(2024, 4, 10)
    siblings = [PaymentStamp("12", paid), PaymentStamp("3", paid), PaymentStamp("40", paid)]

    periods = [effective_period(paid, "RETIREMENT", record_id, siblings) for record_id in ("3", "12", "40")]

    assert periods == [date(2024, 3, 10), date(2024, 2, 10), date(2024, 1, 10)]


def test_retirement_alias_and_case() -> None:
    paid = date(2024, 4, 10)
    assert effective_period(paid, "retraite", "1", [PaymentStamp("1", paid)]) == date(2024, 3, 10)


def test_retirement_rank_ignores_other_dates_and_missing_records() -> None:
    siblings = [PaymentStamp("1", date(2024, 4, 10)), PaymentStamp("2", date(2024, 4, 11))]
    assert retirement_rank("2", date(2024, 4, 11), siblings) == 1
    assert retirement_rank("99", date(2024, 4, 10), siblings) == 1


def test_payroll_in_first_half_belongs_to_previous_month() -> None:
    assert effective_period(date(2024, 5, 15), "PAYROLL", "1") == date(2024, 4, 15)
    assert effective_period(date(2024, 5, 1), "salaire", "1") == date(2024, 4, 1)
    assert effective_period(date(2024, 5, 16), "PAYROLL", "1") == date(2024, 5, 16)


def test_other_categories_are_unchanged() -> None:
    assert effective_period(date(2024, 5, 3), "MUTUELLE", "1") == date(2024, 5, 3)
    assert effective_period(date(2024, 5, 3), None, "1") == date(2024, 5, 3)


def test_effective_period_is_deterministic() -> None:
    paid = date(2024, 4, 10)
    siblings = [PaymentStamp("2", paid), PaymentStamp("1", paid)]
    first = effective_period(paid, "RETIREMENT", "2", siblings)
    assert all(effective_period(paid, "RETIREMENT", "2", list(reversed(siblings))) == first for _ in range(3))
