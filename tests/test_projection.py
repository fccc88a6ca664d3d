from datetime import date
from decimal import Decimal
from typing import Optional

import pytest

from errors import ValidationFailed
from models import Income, IncomeType
from projection import expand, expand_all, matches, monthly_income_totals


def _income(
    type: IncomeType,
    on: date,
    amount: str = "1000.00",
    end: Optional[date] = None,
    income_id: int = 1,
    description: str = "Salário",
) -> Income:
    return Income(
        id=income_id,
        user_id=1,
        description=description,
        amount=Decimal(amount),
        date=on,
        type=type,
        start_date=on if type == IncomeType.intervalo else None,
        end_date=end,
    )


def test_monthly_income_counts_from_its_start_month_on():
    salary = _income(IncomeType.mensal, date(2024, 1, 15))

    assert matches(salary, date(2024, 3, 1), date(2024, 3, 31))
    assert matches(salary, date(2030, 6, 1), date(2030, 6, 30))
    assert not matches(salary, date(2023, 12, 1), date(2023, 12, 31))


def test_monthly_income_started_mid_month_counts_for_that_month():
    salary = _income(IncomeType.mensal, date(2024, 3, 20))
    assert matches(salary, date(2024, 3, 1), date(2024, 3, 31))


def test_monthly_income_expands_to_remaining_months_of_start_year():
    salary = _income(IncomeType.mensal, date(2024, 4, 10))

    events = expand(salary, 2024)

    assert len(events) == 12 - 4 + 1
    assert [e.id for e in events[:2]] == ["1:2024-04", "1:2024-05"]
    assert all(e.date.day == 10 for e in events)
    assert len(expand(salary, 2025)) == 12
    assert expand(salary, 2023) == []


def test_monthly_income_day_is_clamped_in_short_months():
    rent = _income(IncomeType.mensal, date(2024, 1, 31))

    dates = {e.date.month: e.date for e in expand(rent, 2024)}

    assert dates[2] == date(2024, 2, 29)
    assert dates[4] == date(2024, 4, 30)
    assert dates[12] == date(2024, 12, 31)


def test_interval_income_expands_one_event_per_month():
    gig = _income(
        IncomeType.intervalo,
        date(2024, 6, 5),
        amount="500.00",
        end=date(2024, 8, 20),
        description="Freela",
    )

    events = expand(gig, 2024)

    assert [e.date for e in events] == [
        date(2024, 6, 5),
        date(2024, 7, 5),
        date(2024, 8, 5),
    ]
    assert sum(e.amount for e in events) == Decimal("1500.00")
    assert events[1].description == "Freela (Mês 7)"
    assert events[1].type == IncomeType.intervalo


def test_interval_income_matches_overlapping_windows_only():
    gig = _income(IncomeType.intervalo, date(2024, 6, 5), end=date(2024, 8, 20))

    assert matches(gig, date(2024, 7, 1), date(2024, 7, 31))
    assert matches(gig, date(2024, 8, 1), date(2024, 8, 31))
    assert not matches(gig, date(2024, 5, 1), date(2024, 5, 31))
    assert not matches(gig, date(2024, 9, 1), date(2024, 9, 30))


def test_interval_income_spanning_years_is_cut_at_year_bounds():
    gig = _income(IncomeType.intervalo, date(2024, 11, 10), end=date(2025, 2, 1))

    assert [e.date.month for e in expand(gig, 2024)] == [11, 12]
    assert [e.date.month for e in expand(gig, 2025)] == [1, 2]
    assert expand(gig, 2026) == []


def test_interval_income_without_end_date_is_rejected():
    gig = _income(IncomeType.intervalo, date(2024, 6, 5))

    with pytest.raises(ValidationFailed) as excinfo:
        expand(gig, 2024)
    assert "end_date" in excinfo.value.errors


def test_single_income_keeps_record_id_and_month():
    bonus = _income(IncomeType.unica, date(2024, 3, 5), amount="250.00", income_id=7)

    events = expand(bonus, 2024)

    assert len(events) == 1
    assert events[0].id == "7"
    assert events[0].date == date(2024, 3, 5)
    assert matches(bonus, date(2024, 3, 1), date(2024, 3, 31))
    assert not matches(bonus, date(2024, 4, 1), date(2024, 4, 30))
    assert expand(bonus, 2025) == []


def test_expand_all_orders_events_and_totals_by_month():
    incomes = [
        _income(IncomeType.unica, date(2024, 2, 20), amount="100.00", income_id=2),
        _income(IncomeType.mensal, date(2024, 2, 1), amount="1000.00", income_id=1),
    ]

    events = expand_all(incomes, 2024)
    totals = monthly_income_totals(events)

    assert (events[0].income_id, events[0].date) == (1, date(2024, 2, 1))
    assert events[1].income_id == 2
    assert totals[0] == Decimal("0")
    assert totals[1] == Decimal("1100.00")
    assert totals[11] == Decimal("1000.00")
    assert sum(totals) == sum(e.amount for e in events)
