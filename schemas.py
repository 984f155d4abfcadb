"""Pydantic/SQLModel schemas for API payloads and validation."""
from typing import Literal, Optional
from decimal import Decimal
from datetime import datetime
import datetime as dt

from sqlmodel import SQLModel, Field
from pydantic import field_validator, model_validator, BaseModel, conlist, constr

from config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from utils import normalize_iso_date

TEXT_MAX_LEN = 300
MAX_AMOUNT = Decimal("999999999.99")

PaymentMethod = Literal["credit_card", "debit_card", "cash", "bank_transfer", "other"]
Theme = Literal["light", "dark", "system"]


def _check_amount(v):
    if v is None:
        return v
    if v <= 0:
        raise ValueError("Amount must be greater than 0")
    if v > MAX_AMOUNT:
        raise ValueError("Amount is too large")
    return v


# Category schemas

class CategoryCreate(BaseModel):
    """Payload for creating a custom category."""
    name: constr(strip_whitespace=True, min_length=1, max_length=50)
    icon: constr(strip_whitespace=True, min_length=1, max_length=16) = "📁"
    color: constr(pattern=r"^#[0-9a-fA-F]{6}$") = "#64748b"
    sort_order: int = 0


class CategoryUpdate(BaseModel):
    """Partial update for a custom category."""
    name: Optional[constr(strip_whitespace=True, min_length=1, max_length=50)] = None
    icon: Optional[constr(strip_whitespace=True, min_length=1, max_length=16)] = None
    color: Optional[constr(pattern=r"^#[0-9a-fA-F]{6}$")] = None
    sort_order: Optional[int] = None


class CategoryRead(BaseModel):
    id: int
    name: str
    icon: str
    color: str
    is_default: bool
    sort_order: int

    class Config:
        from_attributes = True


# Expense schemas

class ExpenseFieldsMixin:
    """Shared validators: trim text, normalize the date, bound the amount."""
    @field_validator("description", "notes", mode="before")
    @classmethod
    def strip_text(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("expense_date", mode="before")
    @classmethod
    def normalize_date(cls, v):
        if v is None:
            return None
        return normalize_iso_date(v)

    @field_validator("amount")
    @classmethod
    def check_amount(cls, v):
        return _check_amount(v)


class ExpenseCreate(ExpenseFieldsMixin, SQLModel):
    """Form payload for recording an expense."""
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    category_id: int
    expense_date: dt.date
    currency: Optional[constr(to_upper=True, min_length=3, max_length=3)] = None
    description: Optional[str] = Field(default=None, max_length=TEXT_MAX_LEN)
    payment_method: Optional[PaymentMethod] = None
    notes: Optional[str] = Field(default=None, max_length=TEXT_MAX_LEN)


class ExpenseUpdate(ExpenseFieldsMixin, SQLModel):
    """Partial update payload from the edit dialog."""
    amount: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=2)
    category_id: Optional[int] = None
    expense_date: Optional[dt.date] = None
    currency: Optional[constr(to_upper=True, min_length=3, max_length=3)] = None
    description: Optional[str] = Field(default=None, max_length=TEXT_MAX_LEN)
    payment_method: Optional[PaymentMethod] = None
    notes: Optional[str] = Field(default=None, max_length=TEXT_MAX_LEN)


class ExpenseRead(SQLModel):
    id: int
    amount: Decimal
    currency: str
    expense_date: dt.date
    category_id: Optional[int]
    description: Optional[str]
    payment_method: Optional[str]
    notes: Optional[str]
    receipt_url: Optional[str]
    created_at: datetime
    updated_at: datetime


class ExpenseWithCategory(ExpenseRead):
    """An expense flattened with its category's display fields."""
    category_name: str
    category_icon: str
    category_color: str


class BulkDeleteRequest(BaseModel):
    ids: conlist(int, min_length=1)


class BulkDeleteResult(BaseModel):
    requested: int
    deleted: int


class ExpenseFilters(BaseModel):
    """Filter predicates for the expense history list; every one is optional."""
    search: Optional[str] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    category_ids: Optional[list[int]] = None
    payment_methods: Optional[list[PaymentMethod]] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    @field_validator("search", mode="before")
    @classmethod
    def strip_search(cls, v):
        if isinstance(v, str):
            return v.strip() or None
        return v

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def normalize_dates(cls, v):
        if v is None or v == "":
            return None
        return normalize_iso_date(v)

    @field_validator("page", mode="after")
    @classmethod
    def clamp_page(cls, v):
        return max(v, 1)

    @field_validator("page_size", mode="after")
    @classmethod
    def clamp_page_size(cls, v):
        return min(max(v, 1), MAX_PAGE_SIZE)


class PaginatedExpenses(BaseModel):
    data: list[ExpenseWithCategory]
    total_count: int
    page: int
    page_size: int
    total_pages: int
    page_total: float


# Budget & stats schemas

class BudgetSet(BaseModel):
    amount: Decimal

    @field_validator("amount")
    @classmethod
    def check_amount(cls, v):
        return _check_amount(v)


class BudgetRead(SQLModel):
    id: int
    month: str
    amount: Decimal
    created_at: datetime
    updated_at: datetime


class BudgetStatus(BaseModel):
    month: str
    budget: float
    spent: float
    remaining: float
    percentage: float
    progress: float
    has_budget: bool
    over_budget: bool


class CategoryTotal(BaseModel):
    category_id: Optional[int]
    category_name: str
    category_icon: str
    category_color: str
    total: float
    count: int


class MonthSummary(BaseModel):
    month: str
    total: float
    transaction_count: int
    average_daily: float


class Dashboard(BaseModel):
    month: str
    summary: MonthSummary
    budget: Optional[BudgetRead]
    budget_status: BudgetStatus
    category_totals: list[CategoryTotal]
    recent_transactions: list[ExpenseWithCategory]


# Settings schemas

class SettingsRead(SQLModel):
    currency: str
    theme: str
    language: str
    notifications_enabled: bool
    onboarding_completed: bool


class SettingsUpdate(BaseModel):
    currency: Optional[constr(to_upper=True, min_length=3, max_length=3)] = None
    theme: Optional[Theme] = None
    language: Optional[constr(strip_whitespace=True, min_length=2, max_length=10)] = None
    notifications_enabled: Optional[bool] = None
    onboarding_completed: Optional[bool] = None


# User & Auth schemas

class UserRead(SQLModel):
    id: int
    username: str


class UserCreate(BaseModel):
    username: constr(strip_whitespace=True, min_length=1, max_length=50)
    password: constr(min_length=1, max_length=256)


class UserLogin(BaseModel):
    username: constr(min_length=1, max_length=256)
    password: constr(min_length=1, max_length=256)


class Token(BaseModel):
    access_token: str
    token_type: str


class UsernameChange(BaseModel):
    new_username: constr(strip_whitespace=True, min_length=1, max_length=50)


class PasswordChange(BaseModel):
    current_password: str
    new_password: constr(min_length=1, max_length=256)

    @model_validator(mode="after")
    def passwords_differ(self):
        if self.current_password == self.new_password:
            raise ValueError("New password must be different from the current one")
        return self
