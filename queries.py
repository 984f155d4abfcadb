"""
Read-side queries.

Every function takes the request's Session and the current User and only
ever returns rows owned by that user (plus the shared default categories).
"""
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import func, or_
from sqlmodel import Session, col, select

from models import Budget, Category, Expense, User, UserSettings
from schemas import ExpenseFilters
from utils import (
    aggregate_category_totals,
    category_fields,
    compute_total_pages,
    month_bounds,
    page_offset,
    sum_amounts,
    round_money,
)


def visible_categories_clause(user: User):
    """Own categories plus the shared defaults."""
    return or_(Category.user_id == user.id, col(Category.is_default).is_(True))


def get_categories(session: Session, user: User) -> list[Category]:
    stmt = (
        select(Category)
        .where(visible_categories_clause(user))
        .order_by(Category.sort_order, Category.name)
    )
    return list(session.exec(stmt).all())


def get_visible_category(session: Session, user: User, category_id: int) -> Optional[Category]:
    stmt = select(Category).where(
        Category.id == category_id,
        visible_categories_clause(user),
    )
    return session.exec(stmt).first()


def get_expense(session: Session, user: User, expense_id: int) -> Optional[Expense]:
    stmt = select(Expense).where(Expense.id == expense_id, Expense.user_id == user.id)
    return session.exec(stmt).first()


def expense_with_category(expense: Expense, category: Optional[Category]) -> dict[str, Any]:
    row = expense.model_dump()
    row.update(category_fields(category))
    # keep the stored reference even when the category row is gone
    row["category_id"] = expense.category_id
    return row


def _month_rows(user: User, month: str):
    first, last = month_bounds(month)
    return (
        select(Expense, Category)
        .join(Category, Expense.category_id == Category.id, isouter=True)
        .where(
            Expense.user_id == user.id,
            Expense.expense_date >= first,
            Expense.expense_date <= last,
        )
    )


def get_expenses_for_month(session: Session, user: User, month: str) -> list[Expense]:
    first, last = month_bounds(month)
    stmt = (
        select(Expense)
        .where(
            Expense.user_id == user.id,
            Expense.expense_date >= first,
            Expense.expense_date <= last,
        )
        .order_by(col(Expense.expense_date).desc(), col(Expense.created_at).desc())
    )
    return list(session.exec(stmt).all())


def get_total_for_month(session: Session, user: User, month: str) -> Decimal:
    return sum_amounts(get_expenses_for_month(session, user, month))


def get_category_totals_for_month(session: Session, user: User, month: str) -> list[dict[str, Any]]:
    rows = session.exec(_month_rows(user, month)).all()
    return aggregate_category_totals(rows)


def get_transactions_with_categories(
    session: Session,
    user: User,
    month: str,
    limit: Optional[int] = 10,
) -> list[dict[str, Any]]:
    """Most recent expenses of the month, flattened with their category fields."""
    stmt = _month_rows(user, month).order_by(
        col(Expense.expense_date).desc(), col(Expense.created_at).desc()
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    return [expense_with_category(e, c) for e, c in session.exec(stmt).all()]


def contains_pattern(text: str) -> str:
    """LIKE pattern matching `text` literally anywhere in the value."""
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _filter_conditions(user: User, filters: ExpenseFilters) -> list:
    conditions = [Expense.user_id == user.id]

    if filters.start_date:
        conditions.append(Expense.expense_date >= filters.start_date)
    if filters.end_date:
        conditions.append(Expense.expense_date <= filters.end_date)
    if filters.category_ids:
        conditions.append(col(Expense.category_id).in_(filters.category_ids))
    if filters.payment_methods:
        conditions.append(col(Expense.payment_method).in_(filters.payment_methods))
    if filters.min_amount is not None:
        conditions.append(Expense.amount >= filters.min_amount)
    if filters.max_amount is not None:
        conditions.append(Expense.amount <= filters.max_amount)
    if filters.search:
        pattern = contains_pattern(filters.search)
        conditions.append(
            or_(
                col(Expense.description).ilike(pattern, escape="\\"),
                col(Expense.notes).ilike(pattern, escape="\\"),
                col(Category.name).ilike(pattern, escape="\\"),
            )
        )
    return conditions


def get_filtered_expenses(session: Session, user: User, filters: ExpenseFilters) -> dict[str, Any]:
    """
    One page of the user's expenses matching every filter that is set.

    The text search runs in the same query as the other predicates, so
    total_count and total_pages always describe the filtered set.
    """
    conditions = _filter_conditions(user, filters)

    count_stmt = (
        select(func.count(Expense.id))
        .select_from(Expense)
        .join(Category, Expense.category_id == Category.id, isouter=True)
        .where(*conditions)
    )
    total_count = session.exec(count_stmt).one()

    page_stmt = (
        select(Expense, Category)
        .join(Category, Expense.category_id == Category.id, isouter=True)
        .where(*conditions)
        .order_by(
            col(Expense.expense_date).desc(),
            col(Expense.created_at).desc(),
            col(Expense.id).desc(),
        )
        .offset(page_offset(filters.page, filters.page_size))
        .limit(filters.page_size)
    )
    rows = session.exec(page_stmt).all()
    data = [expense_with_category(e, c) for e, c in rows]

    return {
        "data": data,
        "total_count": total_count,
        "page": filters.page,
        "page_size": filters.page_size,
        "total_pages": compute_total_pages(total_count, filters.page_size),
        "page_total": round_money(sum_amounts(e for e, _ in rows)),
    }


def get_budget_for_month(session: Session, user: User, month: str) -> Optional[Budget]:
    stmt = select(Budget).where(Budget.user_id == user.id, Budget.month == month)
    return session.exec(stmt).first()


def get_user_by_username(session: Session, username: str) -> Optional[User]:
    stmt = select(User).where(User.username == username)
    return session.exec(stmt).first()


def get_user_settings(session: Session, user: User) -> UserSettings:
    """Return the user's settings row, creating the defaults on first read."""
    settings = session.exec(
        select(UserSettings).where(UserSettings.user_id == user.id)
    ).first()
    if settings is None:
        settings = UserSettings(user_id=user.id)
        session.add(settings)
        session.commit()
        session.refresh(settings)
    return settings
