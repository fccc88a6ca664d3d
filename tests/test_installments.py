from datetime import date
from decimal import Decimal

import pytest

from errors import InternalFailure, ValidationFailed
from installments import Purchase, base_description, payment_dates, split_amount
from models import ExpenseCategory, ExpenseType


def _purchase(total: str = "299.99", count: int = 3) -> Purchase:
    return Purchase.new(
        "Notebook",
        Decimal(total),
        date(2024, 1, 31),
        count,
        ExpenseCategory.compras_internet,
        account_id=4,
    )


def test_installment_value_is_rounded_half_up():
    assert split_amount(Decimal("299.99"), 3) == Decimal("100.00")
    assert split_amount(Decimal("100.00"), 3) == Decimal("33.33")
    assert split_amount(Decimal("0.05"), 2) == Decimal("0.03")


def test_rounding_drift_is_not_redistributed():
    purchase = _purchase("299.99", 3)
    assert purchase.drift == Decimal("0.01")

    rows = purchase.build_installments(user_id=1)
    assert {row.amount for row in rows} == {Decimal("100.00")}

    assert _purchase("100.00", 3).drift == Decimal("-0.01")


def test_payment_dates_advance_monthly_with_clamping():
    assert payment_dates(date(2024, 1, 31), 4) == [
        date(2024, 1, 31),
        date(2024, 2, 29),
        date(2024, 3, 31),
        date(2024, 4, 30),
    ]


def test_build_installments_shares_purchase_fields():
    purchase = _purchase()

    rows = purchase.build_installments(user_id=9)

    assert [row.description for row in rows] == [
        "Notebook (1/3)",
        "Notebook (2/3)",
        "Notebook (3/3)",
    ]
    assert {row.purchase_id for row in rows} == {purchase.purchase_id}
    assert [row.current_installment for row in rows] == [1, 2, 3]
    for row in rows:
        assert row.is_installment is True
        assert row.type == ExpenseType.pontual
        assert row.total_installments == 3
        assert row.total_amount == Decimal("299.99")
        assert row.account_id == 4
        assert row.user_id == 9


def test_purchase_requires_two_or_more_installments():
    with pytest.raises(ValidationFailed):
        _purchase(count=1)


def test_from_installments_rebuilds_the_purchase():
    purchase = _purchase()
    rows = purchase.build_installments(user_id=1)

    rebuilt = Purchase.from_installments(list(reversed(rows)))

    assert rebuilt == purchase


def test_from_installments_rejects_broken_groups():
    rows = _purchase().build_installments(user_id=1)

    with pytest.raises(InternalFailure):
        Purchase.from_installments(rows[:2])

    rows[1].payment_date = date(2024, 5, 1)
    with pytest.raises(InternalFailure):
        Purchase.from_installments(rows)


def test_base_description_strips_installment_suffix():
    assert base_description("TV (2/10)") == "TV"
    assert base_description("Plano (anual)") == "Plano (anual)"
