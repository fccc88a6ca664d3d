from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Annotated, Any, Literal, Optional

from pydantic import (
    BaseModel,
    PlainSerializer,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)

from models import (
    DEFAULT_ACCOUNT_COLOR,
    DEFAULT_SAVINGS_SOURCE,
    AccountType,
    ExpenseCategory,
    ExpenseType,
    IncomeType,
    UserRole,
)

Money = Decimal
MoneyOut = Annotated[
    Decimal, PlainSerializer(float, return_type=float, when_used="json")
]


class IncomeIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=200)
    amount: Money = Field(..., ge=0, decimal_places=2)
    date: dt.date
    type: IncomeType
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = Field(default=None, validate_default=True)

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Description is required")
        return value

    @field_validator("end_date")
    @classmethod
    def _check_interval_end(
        cls, value: Optional[dt.date], info: ValidationInfo
    ) -> Optional[dt.date]:
        if info.data.get("type") != IncomeType.intervalo:
            return value
        if value is None:
            raise ValueError("End date is required for interval incomes")
        start = info.data.get("start_date") or info.data.get("date")
        if start is not None and value < start:
            raise ValueError("End date must be on or after the start date")
        return value

    @model_validator(mode="after")
    def _normalize_interval(self) -> "IncomeIn":
        if self.type == IncomeType.intervalo:
            self.start_date = self.start_date or self.date
            self.date = self.start_date
        else:
            self.start_date = None
            self.end_date = None
        return self


class ExpenseIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=180)
    total_amount: Money = Field(..., ge=0, decimal_places=2)
    payment_date: dt.date
    category: ExpenseCategory
    type: ExpenseType = ExpenseType.pontual
    installments: int = Field(default=1, ge=1, le=420)
    account_id: Optional[int] = None

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Description is required")
        return value

    @field_validator("account_id", mode="before")
    @classmethod
    def _blank_account_is_none(cls, value: Any) -> Any:
        if value in ("", 0):
            return None
        return value


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    type: AccountType
    color: str = Field(default=DEFAULT_ACCOUNT_COLOR, max_length=9)
    holder_name: Optional[str] = Field(default=None, max_length=120)
    last4_digits: Optional[str] = Field(default=None, pattern=r"^\d{4}$")

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Name is required")
        return value


class SavingsIn(BaseModel):
    amount: Money = Field(..., decimal_places=2)
    date: Optional[dt.date] = None
    source_description: str = Field(
        default=DEFAULT_SAVINGS_SOURCE, min_length=1, max_length=200
    )
    source_income_id: Optional[int] = None


class UserIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    email: str = Field(..., max_length=255, pattern=r".+@.+\..+")
    password: str = Field(..., min_length=6, max_length=72)
    role: UserRole = UserRole.member

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class LoginIn(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class BackupExportIn(BaseModel):
    password: str = Field(..., min_length=1)


class BackupImportIn(BaseModel):
    password: str = Field(..., min_length=1)
    file_content: str = Field(..., min_length=1)


class ExpenseImportRow(BaseModel):
    description: str = Field(..., min_length=1, max_length=200)
    amount: Money = Field(..., ge=0, decimal_places=2)
    payment_date: dt.date
    category: ExpenseCategory
    type: ExpenseType = ExpenseType.pontual
    account_name: Optional[str] = None


class ImportIn(BaseModel):
    type: Literal["expenses", "incomes", "savings", "accounts"]
    data: list[dict[str, Any]] = Field(..., min_length=1)


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: AccountType
    color: str
    card_details: Optional[dict[str, Optional[str]]] = None


class IncomeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    description: str
    amount: MoneyOut
    date: dt.date
    type: IncomeType
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None


class InstallmentDetailsOut(BaseModel):
    purchase_id: str
    current_installment: int
    total_installments: int
    total_amount: MoneyOut


class ExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    description: str
    amount: MoneyOut
    payment_date: dt.date
    category: ExpenseCategory
    type: ExpenseType
    account_id: Optional[int] = None
    account: Optional[AccountOut] = None
    is_installment: bool
    installment_details: Optional[InstallmentDetailsOut] = None


class SavingsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount: MoneyOut
    date: dt.date
    source_description: str
    source_income_id: Optional[int] = None


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    role: UserRole
    created_at: dt.datetime


class IncomeEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    income_id: int
    description: str
    amount: MoneyOut
    date: dt.date
    type: IncomeType
