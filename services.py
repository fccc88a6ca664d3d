from __future__ import annotations

import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import ValidationError
from rapidfuzz.distance import Levenshtein
from sqlalchemy import delete, extract, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from auth import hash_password, verify_password
from backup import BackupDecryptError, Cipher, PasswordCipher
from errors import (
    Forbidden,
    InstallmentRegenerationFailed,
    InternalFailure,
    NotFound,
    Unauthorized,
    ValidationFailed,
)
from installments import CENT, Purchase, base_description, new_purchase_id
from models import (
    DEFAULT_ACCOUNT_COLOR,
    Account,
    AccountType,
    Expense,
    ExpenseCategory,
    ExpenseType,
    Income,
    IncomeType,
    Savings,
    User,
    UserRole,
)
from periods import Period, local_today, month_start, month_window, year_window
from projection import IncomeEvent, expand_all, monthly_income_totals, schedule_for
from schemas import (
    AccountIn,
    ExpenseImportRow,
    ExpenseIn,
    IncomeIn,
    SavingsIn,
    UserIn,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
UNLINKED_ACCOUNT_NAME = "Sem conta"
TOP_EXPENSES_LIMIT = 5
BACKUP_VERSION = 1
IMPORT_KINDS = ("expenses", "incomes", "savings", "accounts")


def money(value: Any) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENT)


def _require_user_id(user_id: Optional[int]) -> int:
    if not user_id:
        raise Unauthorized("Not authenticated")
    return user_id


def _validation_errors(exc: ValidationError, prefix: str = "") -> dict[str, str]:
    errors: dict[str, str] = {}
    for err in exc.errors():
        field = ".".join(str(part) for part in err["loc"]) or "__all__"
        errors[f"{prefix}{field}"] = err["msg"]
    return errors


class IncomeService:
    def __init__(self, session: Session, user_id: Optional[int]) -> None:
        self.session = session
        self.user_id = _require_user_id(user_id)

    def get(self, income_id: int) -> Income:
        income = self.session.get(Income, income_id)
        if not income or income.user_id != self.user_id:
            raise NotFound("Income not found")
        return income

    def list_all(self) -> list[Income]:
        stmt = (
            select(Income)
            .where(Income.user_id == self.user_id)
            .order_by(Income.date.desc(), Income.id.desc())
        )
        return self.session.scalars(stmt).all()

    def started_by(self, until: date) -> list[Income]:
        # Every income type starts on ``date``; later ones cannot contribute.
        stmt = (
            select(Income)
            .where(Income.user_id == self.user_id, Income.date <= until)
            .order_by(Income.date.desc(), Income.id.desc())
        )
        return self.session.scalars(stmt).all()

    def list_for_period(self, period: Period) -> list[Income]:
        return [
            income
            for income in self.started_by(period.end)
            if schedule_for(income).matches(period)
        ]

    def list_for_month(self, month: int, year: int) -> list[Income]:
        return self.list_for_period(month_window(year, month))

    def create(self, data: IncomeIn) -> Income:
        income = Income(
            user_id=self.user_id,
            description=data.description,
            amount=data.amount,
            date=data.date,
            type=data.type,
            start_date=data.start_date,
            end_date=data.end_date,
        )
        self.session.add(income)
        self.session.commit()
        self.session.refresh(income)
        return income

    def update(self, income_id: int, data: IncomeIn) -> Income:
        income = self.get(income_id)
        for field, value in data.model_dump().items():
            setattr(income, field, value)
        self.session.commit()
        self.session.refresh(income)
        return income

    def delete(self, income_id: int) -> None:
        income = self.get(income_id)
        self.session.execute(
            update(Savings)
            .where(
                Savings.user_id == self.user_id,
                Savings.source_income_id == income.id,
            )
            .values(source_income_id=None)
        )
        self.session.delete(income)
        self.session.commit()


class ExpenseService:
    def __init__(self, session: Session, user_id: Optional[int]) -> None:
        self.session = session
        self.user_id = _require_user_id(user_id)

    def get(self, expense_id: int) -> Expense:
        stmt = (
            select(Expense)
            .options(joinedload(Expense.account))
            .where(Expense.user_id == self.user_id, Expense.id == expense_id)
        )
        expense = self.session.scalar(stmt)
        if not expense:
            raise NotFound("Expense not found")
        return expense

    def list_for_period(self, period: Period) -> list[Expense]:
        stmt = (
            select(Expense)
            .options(joinedload(Expense.account))
            .where(
                Expense.user_id == self.user_id,
                Expense.payment_date.between(period.start, period.end),
            )
            .order_by(Expense.payment_date.asc(), Expense.id.asc())
        )
        return self.session.scalars(stmt).all()

    def list_for_month(self, month: int, year: int) -> list[Expense]:
        return self.list_for_period(month_window(year, month))

    def group(self, purchase_id: str) -> list[Expense]:
        stmt = (
            select(Expense)
            .options(joinedload(Expense.account))
            .where(
                Expense.user_id == self.user_id,
                Expense.purchase_id == purchase_id,
            )
            .order_by(Expense.current_installment.asc(), Expense.id.asc())
        )
        return self.session.scalars(stmt).all()

    def purchase(self, purchase_id: str) -> Purchase:
        rows = self.group(purchase_id)
        if not rows:
            raise NotFound("Purchase not found")
        return Purchase.from_installments(rows)

    def _check_account(self, account_id: Optional[int]) -> None:
        if account_id is None:
            return
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.user_id:
            raise NotFound("Account not found")

    def _single(self, data: ExpenseIn) -> Expense:
        return Expense(
            user_id=self.user_id,
            description=data.description,
            amount=data.total_amount,
            payment_date=data.payment_date,
            category=data.category,
            type=data.type,
            account_id=data.account_id,
            is_installment=False,
        )

    def _purchase_rows(self, data: ExpenseIn, purchase_id: str) -> list[Expense]:
        purchase = Purchase.new(
            data.description,
            data.total_amount,
            data.payment_date,
            data.installments,
            data.category,
            data.account_id,
            purchase_id=purchase_id,
        )
        return purchase.build_installments(self.user_id)

    def create(self, data: ExpenseIn) -> list[Expense]:
        """Store an expense; purchases with N > 1 installments become N rows."""
        self._check_account(data.account_id)
        if data.installments > 1:
            rows = self._purchase_rows(data, new_purchase_id())
        else:
            rows = [self._single(data)]
        self.session.add_all(rows)
        self.session.commit()
        for row in rows:
            self.session.refresh(row)
        if data.installments > 1:
            logger.info(
                f"installments_created: user_id={self.user_id} "
                f"purchase_id={rows[0].purchase_id} count={len(rows)}"
            )
        return rows

    def update(self, expense_id: int, data: ExpenseIn) -> list[Expense]:
        original = self.get(expense_id)
        self._check_account(data.account_id)
        if original.is_installment or data.installments > 1:
            return self._regenerate(original, data)

        original.description = data.description
        original.amount = data.total_amount
        original.payment_date = data.payment_date
        original.category = data.category
        original.type = data.type
        # Omitted account unlinks the expense.
        original.account_id = data.account_id
        self.session.commit()
        self.session.refresh(original)
        return [original]

    def _regenerate(self, original: Expense, data: ExpenseIn) -> list[Expense]:
        """Replace the whole group (or single row) behind ``original``.

        Delete and insert share one transaction; if either step fails the
        transaction is rolled back and the old rows stay in place.
        """
        old_purchase_id = original.purchase_id if original.is_installment else None
        purchase_id = old_purchase_id or new_purchase_id()
        if old_purchase_id:
            # Refuse to rebuild from a group whose rows disagree.
            self.purchase(old_purchase_id)
        if original.is_installment:
            data = data.model_copy(
                update={"description": base_description(data.description)}
            )
        if data.installments > 1:
            rows = self._purchase_rows(data, purchase_id)
        else:
            rows = [self._single(data)]

        try:
            if old_purchase_id:
                result = self.session.execute(
                    delete(Expense).where(
                        Expense.user_id == self.user_id,
                        Expense.purchase_id == old_purchase_id,
                    )
                )
                removed = result.rowcount
            else:
                self.session.delete(original)
                removed = 1
            self.session.flush()
            self.session.add_all(rows)
            self.session.flush()
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(
                f"installments_regenerate_failed: user_id={self.user_id} "
                f"purchase_id={purchase_id} error={exc}"
            )
            raise InstallmentRegenerationFailed(
                purchase_id, "Could not replace installment group"
            ) from exc

        for row in rows:
            self.session.refresh(row)
        logger.info(
            f"installments_regenerated: user_id={self.user_id} "
            f"purchase_id={purchase_id} removed={removed} inserted={len(rows)}"
        )
        return rows

    def delete(self, expense_id: int) -> int:
        """Delete an expense; any installment takes its whole purchase along."""
        expense = self.get(expense_id)
        if expense.is_installment and expense.purchase_id:
            return self.delete_group(expense.purchase_id)
        self.session.delete(expense)
        self.session.commit()
        return 1

    def delete_group(self, purchase_id: str) -> int:
        result = self.session.execute(
            delete(Expense).where(
                Expense.user_id == self.user_id,
                Expense.purchase_id == purchase_id,
            )
        )
        count = result.rowcount or 0
        if not count:
            self.session.rollback()
            raise NotFound("Purchase not found")
        self.session.commit()
        logger.info(
            f"installments_deleted: user_id={self.user_id} "
            f"purchase_id={purchase_id} count={count}"
        )
        return count

    def list_installments_from(
        self, from_date: Optional[date] = None, *, linked_only: bool = True
    ) -> list[Expense]:
        from_date = from_date or local_today()
        stmt = (
            select(Expense)
            .options(joinedload(Expense.account))
            .where(
                Expense.user_id == self.user_id,
                Expense.is_installment.is_(True),
                Expense.payment_date >= from_date,
            )
            .order_by(Expense.payment_date.asc(), Expense.id.asc())
        )
        if linked_only:
            stmt = stmt.where(Expense.account_id.is_not(None))
        return self.session.scalars(stmt).all()

    def installment_schedule(
        self, from_date: Optional[date] = None
    ) -> list[dict[str, object]]:
        """Installment totals per month, from the month of ``from_date`` on."""
        from_date = from_date or local_today()
        start = month_start(from_date.year, from_date.month)
        year_col = extract("year", Expense.payment_date)
        month_col = extract("month", Expense.payment_date)
        stmt = (
            select(
                year_col.label("year"),
                month_col.label("month"),
                func.sum(Expense.amount).label("total"),
            )
            .where(
                Expense.user_id == self.user_id,
                Expense.is_installment.is_(True),
                Expense.payment_date >= start,
            )
            .group_by(year_col, month_col)
            .order_by(year_col, month_col)
        )
        return [
            {"year": int(row.year), "month": int(row.month), "total": money(row.total)}
            for row in self.session.execute(stmt).all()
        ]


class AccountService:
    def __init__(self, session: Session, user_id: Optional[int]) -> None:
        self.session = session
        self.user_id = _require_user_id(user_id)

    def list_all(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.created_at.asc(), Account.id.asc())
        )
        return self.session.scalars(stmt).all()

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.user_id:
            raise NotFound("Account not found")
        return account

    def _apply(self, account: Account, data: AccountIn) -> None:
        account.name = data.name
        account.type = data.type
        account.color = data.color or DEFAULT_ACCOUNT_COLOR
        if data.type == AccountType.credit_card:
            account.holder_name = data.holder_name
            account.last4_digits = data.last4_digits
        else:
            account.holder_name = None
            account.last4_digits = None

    def create(self, data: AccountIn) -> Account:
        account = Account(user_id=self.user_id)
        self._apply(account, data)
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def update(self, account_id: int, data: AccountIn) -> Account:
        account = self.get(account_id)
        self._apply(account, data)
        self.session.commit()
        self.session.refresh(account)
        return account

    def delete(self, account_id: int) -> int:
        """Delete the account and unlink its expenses; returns unlinked count."""
        account = self.get(account_id)
        result = self.session.execute(
            update(Expense)
            .where(Expense.user_id == self.user_id, Expense.account_id == account.id)
            .values(account_id=None)
        )
        unlinked = result.rowcount or 0
        self.session.delete(account)
        self.session.commit()
        logger.info(
            f"account_deleted: user_id={self.user_id} account_id={account_id} "
            f"unlinked_expenses={unlinked}"
        )
        return unlinked


class SavingsService:
    def __init__(self, session: Session, user_id: Optional[int]) -> None:
        self.session = session
        self.user_id = _require_user_id(user_id)

    def list_all(self) -> list[Savings]:
        stmt = (
            select(Savings)
            .where(Savings.user_id == self.user_id)
            .order_by(Savings.date.desc(), Savings.id.desc())
        )
        return self.session.scalars(stmt).all()

    def get(self, savings_id: int) -> Savings:
        entry = self.session.get(Savings, savings_id)
        if not entry or entry.user_id != self.user_id:
            raise NotFound("Savings entry not found")
        return entry

    def _check_income(self, income_id: Optional[int]) -> None:
        if income_id is not None:
            IncomeService(self.session, self.user_id).get(income_id)

    def create(self, data: SavingsIn) -> Savings:
        self._check_income(data.source_income_id)
        entry = Savings(
            user_id=self.user_id,
            amount=data.amount,
            date=data.date or local_today(),
            source_description=data.source_description,
            source_income_id=data.source_income_id,
        )
        self.session.add(entry)
        self.session.commit()
        self.session.refresh(entry)
        return entry

    def update(self, savings_id: int, data: SavingsIn) -> Savings:
        entry = self.get(savings_id)
        self._check_income(data.source_income_id)
        entry.amount = data.amount
        if data.date is not None:
            entry.date = data.date
        entry.source_description = data.source_description
        entry.source_income_id = data.source_income_id
        self.session.commit()
        self.session.refresh(entry)
        return entry

    def delete(self, savings_id: int) -> None:
        entry = self.get(savings_id)
        self.session.delete(entry)
        self.session.commit()

    def evolution(self) -> list[dict[str, object]]:
        stmt = (
            select(Savings)
            .where(Savings.user_id == self.user_id)
            .order_by(Savings.date.asc(), Savings.id.asc())
        )
        running = ZERO
        points: list[dict[str, object]] = []
        for entry in self.session.scalars(stmt):
            running += money(entry.amount)
            points.append({"date": entry.date, "total": running})
        return points


class SummaryService:
    def __init__(self, session: Session, user_id: Optional[int]) -> None:
        self.session = session
        self.user_id = _require_user_id(user_id)

    def _expense_filter(self, period: Period) -> tuple:
        return (
            Expense.user_id == self.user_id,
            Expense.payment_date.between(period.start, period.end),
        )

    def summarize(self, month: int, year: int) -> dict[str, object]:
        period = month_window(year, month)
        incomes = IncomeService(self.session, self.user_id).list_for_period(period)
        total_income = sum((money(income.amount) for income in incomes), ZERO)

        total_expenses = money(
            self.session.execute(
                select(func.coalesce(func.sum(Expense.amount), 0)).where(
                    *self._expense_filter(period)
                )
            ).scalar_one()
        )

        total_col = func.sum(Expense.amount)
        by_category = self.session.execute(
            select(Expense.category, total_col.label("total"))
            .where(*self._expense_filter(period))
            .group_by(Expense.category)
            .order_by(total_col.desc(), Expense.category)
        ).all()

        top_expenses = self.session.scalars(
            select(Expense)
            .options(joinedload(Expense.account))
            .where(*self._expense_filter(period))
            .order_by(Expense.amount.desc(), Expense.id.asc())
            .limit(TOP_EXPENSES_LIMIT)
        ).all()

        return {
            "month": month,
            "year": year,
            "total_income": total_income,
            "total_expenses": total_expenses,
            "balance": total_income - total_expenses,
            "expenses_by_category": [
                {"category": row.category, "total": money(row.total)}
                for row in by_category
            ],
            "top_expenses": top_expenses,
        }


class AnnualReportService:
    def __init__(self, session: Session, user_id: Optional[int]) -> None:
        self.session = session
        self.user_id = _require_user_id(user_id)

    def income_events(self, year: int) -> list[IncomeEvent]:
        stmt = (
            select(Income)
            .where(Income.user_id == self.user_id, Income.date <= year_window(year).end)
            .order_by(Income.date.asc(), Income.id.asc())
        )
        return expand_all(self.session.scalars(stmt).all(), year)

    def expenses_by_month(self, year: int) -> list[Decimal]:
        period = year_window(year)
        month_col = extract("month", Expense.payment_date)
        rows = self.session.execute(
            select(month_col.label("month"), func.sum(Expense.amount).label("total"))
            .where(
                Expense.user_id == self.user_id,
                Expense.payment_date.between(period.start, period.end),
            )
            .group_by(month_col)
        ).all()
        totals = [ZERO] * 12
        for row in rows:
            totals[int(row.month) - 1] += money(row.total)
        return totals

    def expenses_by_account(self, year: int) -> list[dict[str, object]]:
        period = year_window(year)
        rows = self.session.execute(
            select(
                Expense.account_id,
                Account.name,
                Account.color,
                func.sum(Expense.amount).label("total"),
            )
            .outerjoin(Account, Account.id == Expense.account_id)
            .where(
                Expense.user_id == self.user_id,
                Expense.payment_date.between(period.start, period.end),
            )
            .group_by(Expense.account_id, Account.name, Account.color)
        ).all()

        linked: list[dict[str, object]] = []
        unlinked_total: Optional[Decimal] = None
        for row in rows:
            if row.account_id is None or row.name is None:
                unlinked_total = (unlinked_total or ZERO) + money(row.total)
                continue
            linked.append(
                {
                    "account_id": row.account_id,
                    "name": row.name,
                    "color": row.color,
                    "total": money(row.total),
                }
            )
        linked.sort(key=lambda item: (-item["total"], item["name"]))
        if unlinked_total is not None:
            # Always last, whatever its total.
            linked.append(
                {
                    "account_id": None,
                    "name": UNLINKED_ACCOUNT_NAME,
                    "color": DEFAULT_ACCOUNT_COLOR,
                    "total": unlinked_total,
                }
            )
        return linked

    def project(self, year: int) -> dict[str, object]:
        events = self.income_events(year)
        incomes = monthly_income_totals(events)
        expenses = self.expenses_by_month(year)
        monthly_data = [
            {"month": index + 1, "income": money(incomes[index]), "expense": expenses[index]}
            for index in range(12)
        ]
        # Totals come from the monthly rows so both views always agree.
        total_income = sum((item["income"] for item in monthly_data), ZERO)
        total_expense = sum((item["expense"] for item in monthly_data), ZERO)
        return {
            "year": year,
            "total_annual_income": total_income,
            "total_annual_expense": total_expense,
            "annual_balance": total_income - total_expense,
            "monthly_data": monthly_data,
            "detailed_income_events": events,
            "expenses_by_account": self.expenses_by_account(year),
        }

    def available_years(self) -> list[int]:
        income_years = self.session.scalars(
            select(extract("year", Income.date))
            .where(Income.user_id == self.user_id)
            .distinct()
        ).all()
        expense_years = self.session.scalars(
            select(extract("year", Expense.payment_date))
            .where(Expense.user_id == self.user_id)
            .distinct()
        ).all()
        return sorted({int(y) for y in [*income_years, *expense_years]}, reverse=True)


def _purge_user_data(session: Session, user_id: int) -> None:
    session.execute(delete(Expense).where(Expense.user_id == user_id))
    session.execute(delete(Savings).where(Savings.user_id == user_id))
    session.execute(delete(Income).where(Income.user_id == user_id))
    session.execute(delete(Account).where(Account.user_id == user_id))


class UserService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFound("User not found")
        return user

    def current(self) -> User:
        user_id = _require_user_id(self.user_id)
        user = self.session.get(User, user_id)
        if not user:
            raise Unauthorized("Not authenticated")
        return user

    def require_admin(self) -> User:
        user = self.current()
        if user.role != UserRole.admin:
            raise Forbidden("Access denied")
        return user

    def _by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(
            select(User).where(func.lower(User.email) == email.strip().lower())
        )

    def authenticate(self, email: str, password: str) -> User:
        user = self._by_email(email)
        # Same message for unknown email and wrong password.
        if not user or not verify_password(password, user.password_hash):
            raise Unauthorized("Invalid credentials")
        return user

    def _create(self, data: UserIn) -> User:
        if self._by_email(data.email):
            raise ValidationFailed(
                "Email already in use", {"email": "Email already in use"}
            )
        user = User(
            name=data.name.strip(),
            email=data.email,
            password_hash=hash_password(data.password),
            role=data.role,
        )
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def register(self, data: UserIn) -> User:
        self.require_admin()
        user = self._create(data)
        logger.info(f"user_registered: by={self.user_id} user_id={user.id}")
        return user

    def list_users(self) -> list[User]:
        admin = self.require_admin()
        stmt = (
            select(User)
            .where(User.id != admin.id)
            .order_by(User.created_at.asc(), User.id.asc())
        )
        return self.session.scalars(stmt).all()

    def delete_user(self, user_id: int) -> None:
        admin = self.require_admin()
        if user_id == admin.id:
            raise ValidationFailed(
                "Admin cannot delete itself", {"id": "Admin cannot delete itself"}
            )
        user = self.get(user_id)
        _purge_user_data(self.session, user.id)
        self.session.delete(user)
        self.session.commit()
        logger.info(f"user_deleted: by={admin.id} user_id={user_id}")

    def ensure_admin(
        self, email: str, password: str, name: str = "Administrador"
    ) -> tuple[User, bool]:
        existing = self._by_email(email)
        if existing:
            return existing, False
        user = self._create(
            UserIn(name=name, email=email, password=password, role=UserRole.admin)
        )
        logger.info(f"admin_seeded: user_id={user.id}")
        return user, True


def _date_value(raw: Any) -> Optional[date]:
    if raw in (None, ""):
        return None
    return date.fromisoformat(str(raw)[:10])


def _remapped(ids: dict[Any, int], old_id: Any) -> Optional[int]:
    if old_id is None:
        return None
    return ids.get(old_id)


class BackupService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int],
        cipher: Optional[Cipher] = None,
    ) -> None:
        self.session = session
        self.user_id = _require_user_id(user_id)
        self.cipher = cipher or PasswordCipher()

    def _confirm_admin(self, password: str) -> User:
        admin = UserService(self.session, self.user_id).require_admin()
        if not verify_password(password, admin.password_hash):
            raise Unauthorized("Invalid password")
        return admin

    def snapshot(self) -> dict[str, object]:
        uid = self.user_id
        accounts = self.session.scalars(
            select(Account).where(Account.user_id == uid).order_by(Account.id)
        ).all()
        incomes = self.session.scalars(
            select(Income).where(Income.user_id == uid).order_by(Income.id)
        ).all()
        expenses = self.session.scalars(
            select(Expense).where(Expense.user_id == uid).order_by(Expense.id)
        ).all()
        savings = self.session.scalars(
            select(Savings).where(Savings.user_id == uid).order_by(Savings.id)
        ).all()
        return {
            "version": BACKUP_VERSION,
            "exported_at": datetime.utcnow().isoformat(),
            "accounts": [
                {
                    "id": a.id,
                    "name": a.name,
                    "type": a.type.value,
                    "color": a.color,
                    "holder_name": a.holder_name,
                    "last4_digits": a.last4_digits,
                }
                for a in accounts
            ],
            "incomes": [
                {
                    "id": i.id,
                    "description": i.description,
                    "amount": str(money(i.amount)),
                    "date": i.date.isoformat(),
                    "type": i.type.value,
                    "start_date": i.start_date.isoformat() if i.start_date else None,
                    "end_date": i.end_date.isoformat() if i.end_date else None,
                }
                for i in incomes
            ],
            "expenses": [
                {
                    "id": e.id,
                    "description": e.description,
                    "amount": str(money(e.amount)),
                    "payment_date": e.payment_date.isoformat(),
                    "category": e.category.value,
                    "type": e.type.value,
                    "account_id": e.account_id,
                    "is_installment": e.is_installment,
                    "purchase_id": e.purchase_id,
                    "current_installment": e.current_installment,
                    "total_installments": e.total_installments,
                    "total_amount": (
                        str(money(e.total_amount))
                        if e.total_amount is not None
                        else None
                    ),
                }
                for e in expenses
            ],
            "savings": [
                {
                    "id": s.id,
                    "amount": str(money(s.amount)),
                    "date": s.date.isoformat(),
                    "source_description": s.source_description,
                    "source_income_id": s.source_income_id,
                }
                for s in savings
            ],
        }

    def export(self, password: str) -> str:
        self._confirm_admin(password)
        data = self.snapshot()
        payload = self.cipher.encrypt(json.dumps(data), password)
        logger.info(
            f"backup_exported: user_id={self.user_id} "
            f"incomes={len(data['incomes'])} expenses={len(data['expenses'])} "
            f"savings={len(data['savings'])} accounts={len(data['accounts'])}"
        )
        return payload

    def restore(self, password: str, content: str) -> dict[str, int]:
        """Replace the caller's data with the backup; ids are remapped."""
        self._confirm_admin(password)
        try:
            data = json.loads(self.cipher.decrypt(content, password))
        except (BackupDecryptError, json.JSONDecodeError) as exc:
            raise ValidationFailed(
                "Wrong password or corrupted backup file",
                {"file_content": "Wrong password or corrupted backup file"},
            ) from exc
        if not isinstance(data, dict):
            raise ValidationFailed(
                "Backup content is not an object",
                {"file_content": "Unexpected backup layout"},
            )

        try:
            counts = self._load(data)
            self.session.commit()
        except (KeyError, TypeError, ValueError) as exc:
            self.session.rollback()
            raise ValidationFailed(
                "Backup file has invalid records",
                {"file_content": f"Invalid record: {exc}"},
            ) from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(f"backup_restore_failed: user_id={self.user_id} error={exc}")
            raise InternalFailure("Could not restore backup") from exc

        logger.info(
            f"backup_restored: user_id={self.user_id} "
            + " ".join(f"{key}={value}" for key, value in counts.items())
        )
        return counts

    def _load(self, data: dict[str, Any]) -> dict[str, int]:
        uid = self.user_id
        _purge_user_data(self.session, uid)
        self.session.flush()

        account_rows = data.get("accounts") or []
        account_ids: dict[Any, int] = {}
        for raw in account_rows:
            account = Account(
                user_id=uid,
                name=raw["name"],
                type=AccountType(raw["type"]),
                color=raw.get("color") or DEFAULT_ACCOUNT_COLOR,
                holder_name=raw.get("holder_name"),
                last4_digits=raw.get("last4_digits"),
            )
            self.session.add(account)
            self.session.flush()
            if raw.get("id") is not None:
                account_ids[raw["id"]] = account.id

        income_rows = data.get("incomes") or []
        income_ids: dict[Any, int] = {}
        for raw in income_rows:
            income = Income(
                user_id=uid,
                description=raw["description"],
                amount=money(raw["amount"]),
                date=_date_value(raw["date"]),
                type=IncomeType(raw["type"]),
                start_date=_date_value(raw.get("start_date")),
                end_date=_date_value(raw.get("end_date")),
            )
            schedule_for(income)
            self.session.add(income)
            self.session.flush()
            if raw.get("id") is not None:
                income_ids[raw["id"]] = income.id

        expense_rows = data.get("expenses") or []
        for raw in expense_rows:
            is_installment = bool(raw.get("is_installment"))
            self.session.add(
                Expense(
                    user_id=uid,
                    description=raw["description"],
                    amount=money(raw["amount"]),
                    payment_date=_date_value(raw["payment_date"]),
                    category=ExpenseCategory(raw["category"]),
                    type=ExpenseType(raw["type"]),
                    account_id=_remapped(account_ids, raw.get("account_id")),
                    is_installment=is_installment,
                    purchase_id=raw.get("purchase_id") if is_installment else None,
                    current_installment=raw.get("current_installment"),
                    total_installments=raw.get("total_installments"),
                    total_amount=(
                        money(raw["total_amount"])
                        if raw.get("total_amount") is not None
                        else None
                    ),
                )
            )

        savings_rows = data.get("savings") or []
        for raw in savings_rows:
            self.session.add(
                Savings(
                    user_id=uid,
                    amount=money(raw["amount"]),
                    date=_date_value(raw["date"]),
                    source_description=raw.get("source_description")
                    or "Entrada manual na reserva",
                    source_income_id=_remapped(
                        income_ids, raw.get("source_income_id")
                    ),
                )
            )
        self.session.flush()
        return {
            "accounts": len(account_rows),
            "incomes": len(income_rows),
            "expenses": len(expense_rows),
            "savings": len(savings_rows),
        }


class ImportService:
    def __init__(self, session: Session, user_id: Optional[int]) -> None:
        self.session = session
        self.user_id = _require_user_id(user_id)

    def _account_resolver(self):
        accounts = AccountService(self.session, self.user_id).list_all()

        def resolve(name: Optional[str]) -> Optional[int]:
            clean = (name or "").strip().lower()
            if not clean:
                return None
            for account in accounts:
                if account.name.strip().lower() == clean:
                    return account.id
            best_distance: Optional[int] = None
            best: list[Account] = []
            for account in accounts:
                dist = int(Levenshtein.distance(clean, account.name.strip().lower()))
                if best_distance is None or dist < best_distance:
                    best_distance = dist
                    best = [account]
                elif dist == best_distance:
                    best.append(account)
            if best_distance is not None and best_distance <= 1:
                if len(best) > 1:
                    options = ", ".join(sorted({a.name for a in best}))
                    raise ValueError(
                        f"Account '{name}' is ambiguous; matches: {options}"
                    )
                return best[0].id
            return None

        return resolve

    def _build(self, kind: str, raw: dict[str, Any], resolve_account) -> object:
        if kind == "expenses":
            row = ExpenseImportRow.model_validate(raw)
            return Expense(
                user_id=self.user_id,
                description=row.description,
                amount=row.amount,
                payment_date=row.payment_date,
                category=row.category,
                type=row.type,
                account_id=resolve_account(row.account_name),
                is_installment=False,
            )
        if kind == "incomes":
            row = IncomeIn.model_validate(raw)
            return Income(user_id=self.user_id, **row.model_dump())
        if kind == "savings":
            row = SavingsIn.model_validate(raw)
            if row.source_income_id is not None:
                IncomeService(self.session, self.user_id).get(row.source_income_id)
            return Savings(
                user_id=self.user_id,
                amount=row.amount,
                date=row.date or local_today(),
                source_description=row.source_description,
                source_income_id=row.source_income_id,
            )
        if kind == "accounts":
            row = AccountIn.model_validate(raw)
            account = Account(user_id=self.user_id)
            AccountService(self.session, self.user_id)._apply(account, row)
            return account
        raise ValueError(f"Unsupported import type: {kind}")

    def import_records(self, kind: str, rows: list[dict[str, Any]]) -> int:
        UserService(self.session, self.user_id).require_admin()
        if kind not in IMPORT_KINDS:
            raise ValidationFailed("Invalid import type", {"type": "Invalid import type"})
        if not rows:
            raise ValidationFailed("Nothing to import", {"data": "No rows given"})
        resolve_account = self._account_resolver() if kind == "expenses" else None

        records: list[object] = []
        errors: dict[str, str] = {}
        for idx, raw in enumerate(rows, start=1):
            try:
                records.append(self._build(kind, raw, resolve_account))
            except ValidationError as exc:
                errors.update(_validation_errors(exc, prefix=f"row {idx}."))
            except ValueError as exc:
                errors[f"row {idx}"] = str(exc)
        if errors:
            raise ValidationFailed("Invalid import data", errors)

        self.session.add_all(records)
        self.session.commit()
        logger.info(
            f"records_imported: user_id={self.user_id} kind={kind} count={len(records)}"
        )
        return len(records)
