from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import Base
from errors import InstallmentRegenerationFailed, InternalFailure, NotFound
from models import AccountType, Expense, ExpenseCategory, User, UserRole
from schemas import AccountIn, ExpenseIn
from services import AccountService, ExpenseService


def _user(session: Session, email: str = "ana@example.com") -> User:
    user = User(name="Ana", email=email, password_hash="x", role=UserRole.member)
    session.add(user)
    session.commit()
    return user


def _expense(
    description: str,
    total: str,
    on: date,
    installments: int = 1,
    account_id=None,
    category: ExpenseCategory = ExpenseCategory.compras_internet,
) -> ExpenseIn:
    return ExpenseIn(
        description=description,
        total_amount=Decimal(total),
        payment_date=on,
        category=category,
        installments=installments,
        account_id=account_id,
    )


def test_installment_purchase_creates_one_row_per_month() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session)
        service = ExpenseService(session, user.id)

        rows = service.create(_expense("Notebook", "299.99", date(2024, 1, 10), 3))

        assert len(rows) == 3
        assert len({row.purchase_id for row in rows}) == 1
        assert [row.amount for row in rows] == [Decimal("100.00")] * 3
        for month in (1, 2, 3):
            listed = service.list_for_month(month, 2024)
            assert [e.description for e in listed] == [f"Notebook ({month}/3)"]
        assert service.list_for_month(4, 2024) == []


def test_deleting_any_installment_removes_the_whole_group() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session)
        service = ExpenseService(session, user.id)
        notebook = service.create(_expense("Notebook", "299.99", date(2024, 1, 10), 3))
        phone = service.create(_expense("Celular", "1200.00", date(2024, 1, 15), 2))
        service.create(_expense("Livro", "45.00", date(2024, 1, 20)))
        purchase_id = notebook[0].purchase_id

        deleted = service.delete(notebook[1].id)

        assert deleted == 3
        remaining = session.scalars(select(Expense)).all()
        assert len(remaining) == 3
        assert purchase_id not in {e.purchase_id for e in remaining}
        assert len(service.group(phone[0].purchase_id)) == 2


def test_deleting_single_expense_removes_only_that_row() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session)
        service = ExpenseService(session, user.id)
        first = service.create(_expense("Livro", "45.00", date(2024, 1, 20)))[0]
        service.create(_expense("Pizza", "60.00", date(2024, 1, 21)))

        assert service.delete(first.id) == 1
        assert [e.description for e in service.list_for_month(1, 2024)] == ["Pizza"]


def test_editing_an_installment_regenerates_the_group() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session)
        service = ExpenseService(session, user.id)
        rows = service.create(_expense("Notebook", "299.99", date(2024, 1, 10), 3))
        purchase_id = rows[0].purchase_id

        new_rows = service.update(
            rows[1].id,
            _expense("Notebook (2/3)", "400.00", date(2024, 2, 5), 4),
        )

        assert len(new_rows) == 4
        assert {row.purchase_id for row in new_rows} == {purchase_id}
        stored = service.group(purchase_id)
        assert len(stored) == 4
        assert stored[0].description == "Notebook (1/4)"
        assert stored[0].payment_date == date(2024, 2, 5)
        assert stored[-1].payment_date == date(2024, 5, 5)
        assert {row.amount for row in stored} == {Decimal("100.00")}
        assert session.scalar(select(Expense).where(Expense.total_installments == 3)) is None


def test_single_expense_can_become_an_installment_purchase() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session)
        service = ExpenseService(session, user.id)
        single = service.create(_expense("Geladeira", "3000.00", date(2024, 3, 1)))[0]

        rows = service.update(single.id, _expense("Geladeira", "3000.00", date(2024, 3, 1), 3))

        stored = session.scalars(select(Expense)).all()
        assert len(rows) == 3
        assert len(stored) == 3
        assert all(e.is_installment for e in stored)
        assert {e.amount for e in stored} == {Decimal("1000.00")}


def test_installment_purchase_can_become_a_single_expense() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session)
        service = ExpenseService(session, user.id)
        rows = service.create(_expense("Notebook", "299.99", date(2024, 1, 10), 3))

        result = service.update(rows[2].id, _expense("Notebook (3/3)", "299.99", date(2024, 1, 10)))

        stored = session.scalars(select(Expense)).all()
        assert len(result) == 1
        assert len(stored) == 1
        assert stored[0].is_installment is False
        assert stored[0].purchase_id is None
        assert stored[0].description == "Notebook"
        assert stored[0].amount == Decimal("299.99")


def test_editing_single_expense_without_account_unlinks_it() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session)
        account = AccountService(session, user.id).create(
            AccountIn(name="Nubank", type=AccountType.credit_card)
        )
        service = ExpenseService(session, user.id)
        expense = service.create(
            _expense("Mercado", "120.00", date(2024, 1, 5), account_id=account.id)
        )[0]
        assert expense.account_id == account.id

        updated = service.update(expense.id, _expense("Mercado", "130.00", date(2024, 1, 5)))

        assert updated[0].id == expense.id
        assert updated[0].account_id is None
        assert updated[0].amount == Decimal("130.00")


def test_failed_regeneration_keeps_the_previous_group(monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session)
        service = ExpenseService(session, user.id)
        rows = service.create(_expense("Notebook", "299.99", date(2024, 1, 10), 3))
        purchase_id = rows[0].purchase_id

        def broken_add_all(instances):
            raise SQLAlchemyError("disk I/O error")

        monkeypatch.setattr(session, "add_all", broken_add_all)
        with pytest.raises(InstallmentRegenerationFailed) as excinfo:
            service.update(rows[0].id, _expense("Notebook", "500.00", date(2024, 1, 10), 5))
        monkeypatch.undo()

        assert excinfo.value.purchase_id == purchase_id
        stored = service.group(purchase_id)
        assert len(stored) == 3
        assert {row.amount for row in stored} == {Decimal("100.00")}


def test_expenses_are_scoped_to_their_owner() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        ana = _user(session)
        bia = _user(session, "bia@example.com")
        foreign_account = AccountService(session, bia.id).create(
            AccountIn(name="Inter", type=AccountType.bank_account)
        )
        expense = ExpenseService(session, ana.id).create(
            _expense("Livro", "45.00", date(2024, 1, 20))
        )[0]

        with pytest.raises(NotFound):
            ExpenseService(session, bia.id).delete(expense.id)
        with pytest.raises(NotFound):
            ExpenseService(session, ana.id).create(
                _expense("Livro", "45.00", date(2024, 1, 20), account_id=foreign_account.id)
            )
        assert ExpenseService(session, bia.id).list_for_month(1, 2024) == []


def test_upcoming_installments_and_monthly_schedule() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session)
        account = AccountService(session, user.id).create(
            AccountIn(name="Nubank", type=AccountType.credit_card)
        )
        service = ExpenseService(session, user.id)
        service.create(
            _expense("Notebook", "300.00", date(2024, 1, 10), 3, account_id=account.id)
        )
        service.create(_expense("Curso", "50.00", date(2024, 1, 20), 2))
        service.create(_expense("Mercado", "80.00", date(2024, 2, 2), account_id=account.id))

        linked = service.list_installments_from(date(2024, 2, 1))
        everything = service.list_installments_from(date(2024, 2, 1), linked_only=False)
        schedule = service.installment_schedule(date(2024, 2, 15))

        assert [e.description for e in linked] == ["Notebook (2/3)", "Notebook (3/3)"]
        assert [e.description for e in everything] == [
            "Notebook (2/3)",
            "Curso (2/2)",
            "Notebook (3/3)",
        ]
        assert schedule == [
            {"year": 2024, "month": 2, "total": Decimal("125.00")},
            {"year": 2024, "month": 3, "total": Decimal("100.00")},
        ]


def test_purchase_rebuilds_the_stored_group() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session)
        service = ExpenseService(session, user.id)
        rows = service.create(_expense("Notebook", "299.99", date(2024, 1, 31), 3))

        purchase = service.purchase(rows[0].purchase_id)

        assert purchase.description == "Notebook"
        assert purchase.installment_count == 3
        assert purchase.total_amount == Decimal("299.99")
        assert purchase.first_payment_date == date(2024, 1, 31)
        with pytest.raises(NotFound):
            service.purchase("missing")


def test_inconsistent_group_is_not_regenerated() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _user(session)
        service = ExpenseService(session, user.id)
        rows = service.create(_expense("Notebook", "299.99", date(2024, 1, 10), 3))
        purchase_id = rows[0].purchase_id
        rows[2].payment_date = date(2024, 6, 10)
        session.commit()

        with pytest.raises(InternalFailure):
            service.update(rows[0].id, _expense("Notebook", "500.00", date(2024, 1, 10), 5))

        stored = service.group(purchase_id)
        assert len(stored) == 3
        assert stored[2].payment_date == date(2024, 6, 10)
