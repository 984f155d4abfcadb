from typing import Optional
from decimal import Decimal
import datetime as dt
from datetime import datetime, timezone

from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint

from config import DEFAULT_CURRENCY


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# These classes describe what data will be stored in the database.
# Each class = one table.
class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    hashed_password: str
    created_at: datetime = Field(default_factory=utcnow)


class Category(SQLModel, table=True):
    """Table for expense categories.
    Default categories have no owner (user_id is NULL) and are visible to everyone.
    Custom categories belong to exactly one user; names are unique per owner.
    """
    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_category_user_name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(min_length=1, max_length=50)
    icon: str = Field(default="📁", max_length=16)  # emoji
    color: str = Field(default="#64748b", max_length=7)  # hex color
    user_id: Optional[int] = Field(default=None, foreign_key="user.id", index=True)
    is_default: bool = Field(default=False)
    sort_order: int = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Expense(SQLModel, table=True):
    """Main table that stores expenses.
    - 'amount' is always positive, stored with 2 decimal places
    - 'category_id' is required when creating, but old rows may point nowhere
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    currency: str = Field(default=DEFAULT_CURRENCY, max_length=3)
    expense_date: dt.date = Field(index=True)
    category_id: Optional[int] = Field(default=None, foreign_key="category.id", index=True)
    description: Optional[str] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    receipt_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Budget(SQLModel, table=True):
    """One spending ceiling per (user, month); month is 'YYYY-MM'."""
    __table_args__ = (UniqueConstraint("user_id", "month", name="uq_budget_user_month"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    month: str = Field(max_length=7)
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class UserSettings(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", unique=True)
    currency: str = Field(default=DEFAULT_CURRENCY, max_length=3)
    theme: str = Field(default="system")
    language: str = Field(default="en")
    notifications_enabled: bool = Field(default=True)
    onboarding_completed: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
