"""
Write-side operations.

Each mutation first checks that the row belongs to the current user, then
commits a single change. Database errors are rolled back and turned into a
400 with a short message; there is no retry.
"""
import logging
from contextlib import contextmanager
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, col, select

from models import Budget, Category, Expense, User, UserSettings, utcnow
from queries import (
    get_budget_for_month,
    get_expense,
    get_user_settings,
    get_visible_category,
    visible_categories_clause,
)
from schemas import (
    BudgetSet,
    CategoryCreate,
    CategoryUpdate,
    ExpenseCreate,
    ExpenseUpdate,
    SettingsUpdate,
)

logger = logging.getLogger(__name__)


@contextmanager
def platform_errors(session: Session, message: str):
    """Roll back and report database failures as a 400 with `message`."""
    try:
        yield
    except SQLAlchemyError:
        session.rollback()
        logger.exception(message)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


def save_and_refresh(session: Session, instance):
    """Persist and refresh an instance in the current session."""
    session.add(instance)
    session.commit()
    session.refresh(instance)
    return instance


def get_category_or_400(session: Session, user: User, category_id: int) -> Category:
    """Fetch a category the user can see or raise a 400 if missing."""
    category = get_visible_category(session, user, category_id)
    if not category:
        raise HTTPException(status_code=400, detail="Category not found")
    return category


def get_expense_or_404(session: Session, user: User, expense_id: int) -> Expense:
    expense = get_expense(session, user, expense_id)
    if not expense:
        raise HTTPException(status_code=404, detail="Expense not found")
    return expense


def get_own_category_or_404(session: Session, user: User, category_id: int) -> Category:
    """Fetch a category the user may edit. Defaults are read-only (403)."""
    category = get_visible_category(session, user, category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    if category.is_default or category.user_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Default categories cannot be modified",
        )
    return category


# EXPENSES

def create_expense(session: Session, user: User, payload: ExpenseCreate) -> Expense:
    get_category_or_400(session, user, payload.category_id)

    data = payload.model_dump(exclude_unset=True)
    data["currency"] = data.get("currency") or get_user_settings(session, user).currency
    row = Expense(user_id=user.id, **data)

    with platform_errors(session, "Failed to create expense"):
        return save_and_refresh(session, row)


def update_expense(session: Session, user: User, expense_id: int, payload: ExpenseUpdate) -> Expense:
    expense = get_expense_or_404(session, user, expense_id)

    data = payload.model_dump(exclude_unset=True)
    if data.get("category_id") is not None:
        get_category_or_400(session, user, data["category_id"])
    # required columns cannot be cleared
    for field in ("amount", "expense_date", "category_id", "currency"):
        if field in data and data[field] is None:
            data.pop(field)

    for field, value in data.items():
        setattr(expense, field, value)
    expense.updated_at = utcnow()

    with platform_errors(session, "Failed to update expense"):
        return save_and_refresh(session, expense)


def delete_expense(session: Session, user: User, expense_id: int) -> None:
    expense = get_expense_or_404(session, user, expense_id)
    with platform_errors(session, "Failed to delete expense"):
        session.delete(expense)
        session.commit()


def bulk_delete_expenses(session: Session, user: User, expense_ids: list[int]) -> int:
    """Delete the listed expenses that belong to the user; return how many went."""
    stmt = select(Expense).where(
        col(Expense.id).in_(set(expense_ids)),
        Expense.user_id == user.id,
    )
    rows = session.exec(stmt).all()
    with platform_errors(session, "Failed to delete expenses"):
        for row in rows:
            session.delete(row)
        session.commit()
    return len(rows)


# CATEGORIES

def _name_taken(session: Session, user: User, name: str, exclude_id: Optional[int] = None) -> bool:
    stmt = select(Category).where(
        Category.name == name,
        visible_categories_clause(user),
    )
    if exclude_id is not None:
        stmt = stmt.where(Category.id != exclude_id)
    return session.exec(stmt).first() is not None


def create_category(session: Session, user: User, payload: CategoryCreate) -> Category:
    if _name_taken(session, user, payload.name):
        raise HTTPException(status_code=400, detail="Category already exists")

    row = Category(user_id=user.id, is_default=False, **payload.model_dump())
    with platform_errors(session, "Failed to create category"):
        return save_and_refresh(session, row)


def update_category(session: Session, user: User, category_id: int, payload: CategoryUpdate) -> Category:
    category = get_own_category_or_404(session, user, category_id)

    data = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "name" in data and _name_taken(session, user, data["name"], exclude_id=category_id):
        raise HTTPException(status_code=400, detail="Category with this name already exists")

    for field, value in data.items():
        setattr(category, field, value)
    category.updated_at = utcnow()

    with platform_errors(session, "Failed to update category"):
        return save_and_refresh(session, category)


def delete_category(session: Session, user: User, category_id: int) -> None:
    category = get_own_category_or_404(session, user, category_id)

    in_use = session.exec(
        select(Expense).where(Expense.category_id == category_id)
    ).first()
    if in_use:
        raise HTTPException(
            status_code=400,
            detail="Category is in use and cannot be deleted",
        )

    with platform_errors(session, "Failed to delete category"):
        session.delete(category)
        session.commit()


# BUDGETS

def set_budget(session: Session, user: User, month: str, payload: BudgetSet) -> Budget:
    """
    Create or update the user's budget for `month`.

    If another request inserts the same (user, month) between our lookup and
    our insert, the unique constraint rejects ours and we update theirs.
    """
    existing = get_budget_for_month(session, user, month)
    if existing:
        return _update_budget(session, existing, payload)

    row = Budget(user_id=user.id, month=month, amount=payload.amount)
    try:
        return save_and_refresh(session, row)
    except IntegrityError:
        session.rollback()
        logger.info("Budget for %s/%s created concurrently, updating instead", user.id, month)
        existing = get_budget_for_month(session, user, month)
        if existing is None:
            raise HTTPException(status_code=400, detail="Failed to set budget")
        return _update_budget(session, existing, payload)
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Failed to set budget")
        raise HTTPException(status_code=400, detail="Failed to set budget")


def _update_budget(session: Session, budget: Budget, payload: BudgetSet) -> Budget:
    budget.amount = payload.amount
    budget.updated_at = utcnow()
    with platform_errors(session, "Failed to set budget"):
        return save_and_refresh(session, budget)


def delete_budget(session: Session, user: User, month: str) -> None:
    budget = get_budget_for_month(session, user, month)
    if not budget:
        raise HTTPException(status_code=404, detail="Budget not found")
    with platform_errors(session, "Failed to delete budget"):
        session.delete(budget)
        session.commit()


# SETTINGS

def create_user_settings(session: Session, user: User) -> UserSettings:
    with platform_errors(session, "Failed to create settings"):
        return save_and_refresh(session, UserSettings(user_id=user.id))


def update_user_settings(session: Session, user: User, payload: SettingsUpdate) -> UserSettings:
    settings = get_user_settings(session, user)
    for field, value in payload.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(settings, field, value)
    settings.updated_at = utcnow()
    with platform_errors(session, "Failed to update settings"):
        return save_and_refresh(session, settings)
