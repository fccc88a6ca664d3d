"""Installment purchases.

A purchase paid in N installments is persisted as N ``Expense`` rows that
share a ``purchase_id``. ``Purchase`` is the aggregate those rows belong to:
it is the only place that decides how the rows look, and every change to a
group goes through it (build a new ``Purchase``, drop the old rows, insert the
rows it produces).

Every installment carries the same value, ``round(total / N, 2)``. Rounding
drift is not pushed into the last installment, so the rows of a group can sum
to up to ``N * 0.005`` away from the purchase total; ``Purchase.drift``
reports the exact difference.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Sequence

from errors import InternalFailure, ValidationFailed
from models import Expense, ExpenseCategory, ExpenseType
from periods import add_months

CENT = Decimal("0.01")
_SUFFIX_RE = re.compile(r"\s\(\d+/\d+\)$")


def new_purchase_id() -> str:
    return uuid.uuid4().hex


def split_amount(total: Decimal, count: int) -> Decimal:
    if count < 1:
        raise ValidationFailed(
            "Installment count must be positive",
            {"installments": "Must be at least 1"},
        )
    return (Decimal(str(total)) / count).quantize(CENT, rounding=ROUND_HALF_UP)


def payment_dates(first: date, count: int) -> list[date]:
    return [add_months(first, offset, desired_day=first.day) for offset in range(count)]


def installment_description(description: str, current: int, total: int) -> str:
    return f"{description} ({current}/{total})"


def base_description(description: str) -> str:
    return _SUFFIX_RE.sub("", description)


@dataclass(frozen=True)
class Purchase:
    purchase_id: str
    description: str
    total_amount: Decimal
    first_payment_date: date
    installment_count: int
    category: ExpenseCategory
    account_id: Optional[int] = None

    @classmethod
    def new(
        cls,
        description: str,
        total_amount: Decimal,
        first_payment_date: date,
        installment_count: int,
        category: ExpenseCategory,
        account_id: Optional[int] = None,
        *,
        purchase_id: Optional[str] = None,
    ) -> "Purchase":
        if installment_count < 2:
            raise ValidationFailed(
                "A purchase needs at least two installments",
                {"installments": "Must be at least 2 for an installment purchase"},
            )
        return cls(
            purchase_id=purchase_id or new_purchase_id(),
            description=description.strip(),
            total_amount=Decimal(str(total_amount)),
            first_payment_date=first_payment_date,
            installment_count=installment_count,
            category=category,
            account_id=account_id,
        )

    @property
    def installment_value(self) -> Decimal:
        return split_amount(self.total_amount, self.installment_count)

    @property
    def drift(self) -> Decimal:
        """Sum of the installments minus the purchase total."""
        return self.installment_value * self.installment_count - self.total_amount

    def payment_dates(self) -> list[date]:
        return payment_dates(self.first_payment_date, self.installment_count)

    def build_installments(self, user_id: int) -> list[Expense]:
        value = self.installment_value
        rows: list[Expense] = []
        for index, due in enumerate(self.payment_dates(), start=1):
            rows.append(
                Expense(
                    user_id=user_id,
                    description=installment_description(
                        self.description, index, self.installment_count
                    ),
                    amount=value,
                    payment_date=due,
                    category=self.category,
                    type=ExpenseType.pontual,
                    account_id=self.account_id,
                    is_installment=True,
                    purchase_id=self.purchase_id,
                    current_installment=index,
                    total_installments=self.installment_count,
                    total_amount=self.total_amount,
                )
            )
        return rows

    @classmethod
    def from_installments(cls, rows: Sequence[Expense]) -> "Purchase":
        """Rebuild the aggregate from its stored rows, checking the group."""
        if not rows:
            raise InternalFailure("Installment group is empty")
        ordered = sorted(rows, key=lambda row: row.current_installment or 0)
        first = ordered[0]
        purchase = cls(
            purchase_id=first.purchase_id or "",
            description=base_description(first.description),
            total_amount=Decimal(str(first.total_amount)),
            first_payment_date=first.payment_date,
            installment_count=first.total_installments or len(ordered),
            category=first.category,
            account_id=first.account_id,
        )
        expected = purchase.build_installments(first.user_id)
        if len(expected) != len(ordered):
            raise InternalFailure(
                f"Installment group {purchase.purchase_id} has {len(ordered)} "
                f"rows, expected {len(expected)}"
            )
        for stored, wanted in zip(ordered, expected):
            if (
                stored.purchase_id != wanted.purchase_id
                or stored.current_installment != wanted.current_installment
                or stored.payment_date != wanted.payment_date
                or stored.account_id != wanted.account_id
                or stored.category != wanted.category
                or base_description(stored.description) != purchase.description
            ):
                raise InternalFailure(
                    f"Installment group {purchase.purchase_id} is inconsistent "
                    f"at installment {stored.current_installment}"
                )
        return purchase
