"""Income projection.

Incomes are stored once and projected on read. Each persisted ``Income`` is
turned into one of three schedules, and every schedule knows how to answer
two questions: does it contribute to a date window, and which concrete
occurrences does it produce inside a calendar year.

Occurrence dates keep the day of month of the income's first date. When that
day does not exist in a target month it is clamped to the month's last day.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import ClassVar, Iterable, Optional, Union

from errors import ValidationFailed
from models import Income, IncomeType
from periods import Period, clamped_date


@dataclass(frozen=True)
class IncomeEvent:
    id: str
    income_id: int
    description: str
    amount: Decimal
    date: date
    type: IncomeType

    @property
    def month(self) -> int:
        return self.date.month


@dataclass(frozen=True)
class _Schedule:
    income_id: int
    description: str
    amount: Decimal

    type: ClassVar[IncomeType]

    def _event(
        self, event_id: str, on: date, description: Optional[str] = None
    ) -> IncomeEvent:
        return IncomeEvent(
            id=event_id,
            income_id=self.income_id,
            description=description or self.description,
            amount=self.amount,
            date=on,
            type=self.type,
        )

    def _occurrence_id(self, year: int, month: int) -> str:
        return f"{self.income_id}:{year:04d}-{month:02d}"


@dataclass(frozen=True)
class SingleIncome(_Schedule):
    date: date

    type: ClassVar[IncomeType] = IncomeType.unica

    def matches(self, window: Period) -> bool:
        return window.start <= self.date <= window.end

    def expand(self, year: int) -> list[IncomeEvent]:
        if self.date.year != year:
            return []
        return [self._event(str(self.income_id), self.date)]


@dataclass(frozen=True)
class MonthlyIncome(_Schedule):
    start_date: date

    type: ClassVar[IncomeType] = IncomeType.mensal

    def matches(self, window: Period) -> bool:
        # Open ended: once started it counts for every later window.
        return self.start_date <= window.end

    def expand(self, year: int) -> list[IncomeEvent]:
        if self.start_date.year > year:
            return []
        first = self.start_date.month if self.start_date.year == year else 1
        return [
            self._event(
                self._occurrence_id(year, month),
                clamped_date(year, month, self.start_date.day),
            )
            for month in range(first, 13)
        ]


@dataclass(frozen=True)
class RangedIncome(_Schedule):
    start_date: date
    end_date: date

    type: ClassVar[IncomeType] = IncomeType.intervalo

    def matches(self, window: Period) -> bool:
        return self.start_date <= window.end and self.end_date >= window.start

    def expand(self, year: int) -> list[IncomeEvent]:
        if self.start_date.year > year or self.end_date.year < year:
            return []
        first = self.start_date.month if self.start_date.year == year else 1
        last = self.end_date.month if self.end_date.year == year else 12
        return [
            self._event(
                self._occurrence_id(year, month),
                clamped_date(year, month, self.start_date.day),
                f"{self.description} (Mês {month})",
            )
            for month in range(first, last + 1)
        ]


IncomeSchedule = Union[SingleIncome, MonthlyIncome, RangedIncome]


def schedule_for(income: Income) -> IncomeSchedule:
    amount = Decimal(str(income.amount))
    if income.type == IncomeType.unica:
        return SingleIncome(income.id, income.description, amount, income.date)
    if income.type == IncomeType.mensal:
        return MonthlyIncome(income.id, income.description, amount, income.date)
    if income.type == IncomeType.intervalo:
        start = income.start_date or income.date
        if income.end_date is None:
            raise ValidationFailed(
                "Interval income requires an end date",
                {"end_date": "End date is required for interval incomes"},
            )
        if income.end_date < start:
            raise ValidationFailed(
                "Interval end date must not precede its start date",
                {"end_date": "End date must be on or after the start date"},
            )
        return RangedIncome(
            income.id, income.description, amount, start, income.end_date
        )
    raise ValidationFailed(
        f"Unknown income type: {income.type}", {"type": "Invalid income type"}
    )


def matches(income: Income, start: date, end: date) -> bool:
    return schedule_for(income).matches(Period("window", start, end))


def expand(income: Income, year: int) -> list[IncomeEvent]:
    return schedule_for(income).expand(year)


def expand_all(incomes: Iterable[Income], year: int) -> list[IncomeEvent]:
    """Every occurrence of ``incomes`` in ``year``, ordered by date."""
    events: list[IncomeEvent] = []
    for income in incomes:
        events.extend(expand(income, year))
    events.sort(key=lambda event: (event.date, event.income_id))
    return events


def monthly_income_totals(events: Iterable[IncomeEvent]) -> list[Decimal]:
    totals = [Decimal("0")] * 12
    for event in events:
        totals[event.month - 1] += event.amount
    return totals
