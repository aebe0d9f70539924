from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from models import MonthName, TransactionType, UserRole, UserStatus

BUDGET_YEAR_MIN = 2020
BUDGET_YEAR_MAX = 2030


def to_cents(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value())


class TransactionIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    type: TransactionType
    description: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., gt=0)
    category: str = Field(..., min_length=1, max_length=100)
    date: date


class BudgetIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    category: str = Field(..., min_length=1, max_length=100)
    month: MonthName
    year: int = Field(..., ge=BUDGET_YEAR_MIN, le=BUDGET_YEAR_MAX)
    budget_cents: int = Field(..., gt=0)


class CategoryIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=50)
    type: TransactionType
    color: str = Field(default="#3b82f6", pattern=r"^#[0-9A-Fa-f]{6}$")


class UserIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    role: UserRole = UserRole.user


class UserRoleIn(BaseModel):
    role: UserRole


class UserStatusIn(BaseModel):
    status: UserStatus


# Request bodies of the JSON API. Amounts arrive as decimals in major units.


class TransactionPayload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    category: str = Field(..., min_length=1, max_length=100)
    date: date

    def to_transaction_in(self, txn_type: TransactionType) -> TransactionIn:
        return TransactionIn(
            type=txn_type,
            description=self.description,
            amount_cents=to_cents(self.amount),
            category=self.category,
            date=self.date,
        )


class BudgetPayload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    category: str = Field(..., min_length=1, max_length=100)
    budget_amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    month: MonthName
    year: int = Field(..., ge=BUDGET_YEAR_MIN, le=BUDGET_YEAR_MAX)

    def to_budget_in(self) -> BudgetIn:
        return BudgetIn(
            category=self.category,
            month=self.month,
            year=self.year,
            budget_cents=to_cents(self.budget_amount),
        )
