from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base

MONEY = Numeric(12, 2, asdecimal=True)
DEFAULT_ACCOUNT_COLOR = "#718096"
DEFAULT_SAVINGS_SOURCE = "Entrada manual na reserva"


class UserRole(str, Enum):
    admin = "admin"
    member = "member"


class AccountType(str, Enum):
    bank_account = "bank_account"
    credit_card = "credit_card"


class IncomeType(str, Enum):
    unica = "unica"
    mensal = "mensal"
    intervalo = "intervalo"


class ExpenseType(str, Enum):
    recorrente = "recorrente"
    pontual = "pontual"


class ExpenseCategory(str, Enum):
    compras_internet = "compras_internet"
    mercado = "mercado"
    assinaturas = "assinaturas"
    dividas = "dividas"
    contas_casa = "contas_casa"
    medico_saude = "medico_saude"
    entretenimento = "entretenimento"
    outros = "outros"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        SAEnum(UserRole), nullable=False, default=UserRole.member
    )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    type: Mapped[AccountType] = mapped_column(SAEnum(AccountType), nullable=False)
    color: Mapped[str] = mapped_column(
        String(9), nullable=False, default=DEFAULT_ACCOUNT_COLOR
    )
    holder_name: Mapped[Optional[str]] = mapped_column(String(120))
    last4_digits: Mapped[Optional[str]] = mapped_column(String(4))

    expenses: Mapped[list["Expense"]] = relationship(
        "Expense", back_populates="account"
    )

    __table_args__ = (Index("ix_accounts_user", "user_id"),)

    @property
    def card_details(self) -> Optional[dict[str, Optional[str]]]:
        if self.type != AccountType.credit_card:
            return None
        return {"holder_name": self.holder_name, "last4_digits": self.last4_digits}


class Income(Base, TimestampMixin):
    __tablename__ = "incomes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    type: Mapped[IncomeType] = mapped_column(SAEnum(IncomeType), nullable=False)
    start_date: Mapped[Optional[date]] = mapped_column(Date)
    end_date: Mapped[Optional[date]] = mapped_column(Date)

    __table_args__ = (
        Index("ix_incomes_user_date", "user_id", "date"),
        CheckConstraint("amount >= 0", name="ck_incomes_amount_positive"),
    )


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    category: Mapped[ExpenseCategory] = mapped_column(
        SAEnum(ExpenseCategory), nullable=False
    )
    type: Mapped[ExpenseType] = mapped_column(SAEnum(ExpenseType), nullable=False)
    account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("accounts.id", ondelete="SET NULL")
    )
    is_installment: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    purchase_id: Mapped[Optional[str]] = mapped_column(String(32))
    current_installment: Mapped[Optional[int]] = mapped_column(Integer)
    total_installments: Mapped[Optional[int]] = mapped_column(Integer)
    total_amount: Mapped[Optional[Decimal]] = mapped_column(MONEY)

    account: Mapped[Optional["Account"]] = relationship(
        "Account", back_populates="expenses"
    )

    __table_args__ = (
        Index("ix_expenses_user_payment_date", "user_id", "payment_date"),
        Index("ix_expenses_user_purchase", "user_id", "purchase_id"),
        CheckConstraint("amount >= 0", name="ck_expenses_amount_positive"),
    )

    @property
    def installment_details(self) -> Optional[dict[str, object]]:
        if not self.is_installment:
            return None
        return {
            "purchase_id": self.purchase_id,
            "current_installment": self.current_installment,
            "total_installments": self.total_installments,
            "total_amount": self.total_amount,
        }


class Savings(Base, TimestampMixin):
    __tablename__ = "savings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    source_description: Mapped[str] = mapped_column(
        String(200), nullable=False, default=DEFAULT_SAVINGS_SOURCE
    )
    source_income_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("incomes.id", ondelete="SET NULL")
    )

    __table_args__ = (Index("ix_savings_user_date", "user_id", "date"),)
