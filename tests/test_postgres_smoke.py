# tests/test_postgres_smoke.py

import os
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import text
from sqlmodel import SQLModel, Session, create_engine, select

from models import Budget, Category, Expense, User
from auth import get_password_hash
from schemas import BudgetSet
import mutations

# URL for real Postgres instance; test is skipped if this is not set
POSTGRES_URL = os.getenv("POSTGRES_TEST_URL")

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        not POSTGRES_URL,
        reason="POSTGRES_TEST_URL not set, skipping Postgres smoke test.",
    ),
]


def _get_or_create_user(session: Session, username: str) -> User:
    user = session.exec(select(User).where(User.username == username)).first()
    if user is None:
        user = User(username=username, hashed_password=get_password_hash("SmokePass123!"))
        session.add(user)
        session.commit()
        session.refresh(user)
    return user


def test_postgres_basic_crud():
    """
    Postgres smoke test that is SAFE to run multiple times.

    It checks:
      - We can connect to Postgres and create the schema if needed
      - We can insert-or-get a user, a private category and an expense
      - Decimal amounts come back exactly
    """
    engine = create_engine(POSTGRES_URL, echo=False, pool_pre_ping=True)
    SQLModel.metadata.create_all(engine)

    with Session(engine) as session:
        row = session.exec(text("SELECT 1")).first()
        assert row[0] == 1

        user = _get_or_create_user(session, "pg_smoke_user")
        assert user.id is not None

        cat_name = "PG_Smoke_Category"
        category = session.exec(
            select(Category).where(Category.name == cat_name, Category.user_id == user.id)
        ).first()
        if category is None:
            category = Category(name=cat_name, user_id=user.id)
            session.add(category)
            session.commit()
            session.refresh(category)
        assert category.id is not None
        assert category.is_default is False

        description = "PG Smoke Expense"
        expense = session.exec(
            select(Expense).where(
                Expense.user_id == user.id,
                Expense.description == description,
            )
        ).first()
        if expense is None:
            expense = Expense(
                user_id=user.id,
                amount=Decimal("42.50"),
                expense_date=date(2025, 1, 1),
                category_id=category.id,
                description=description,
                notes="postgres-smoke",
            )
            session.add(expense)
            session.commit()
            session.refresh(expense)

        assert expense.id is not None
        assert expense.amount == Decimal("42.50")
        assert expense.category_id == category.id


def test_postgres_budget_upsert_keeps_one_row():
    engine = create_engine(POSTGRES_URL, echo=False, pool_pre_ping=True)
    SQLModel.metadata.create_all(engine)

    with Session(engine) as session:
        user = _get_or_create_user(session, "pg_smoke_user")

        first = mutations.set_budget(session, user, "2025-01", BudgetSet(amount=Decimal("100")))
        second = mutations.set_budget(session, user, "2025-01", BudgetSet(amount=Decimal("250.75")))

        assert first.id == second.id
        rows = session.exec(
            select(Budget).where(Budget.user_id == user.id, Budget.month == "2025-01")
        ).all()
        assert len(rows) == 1
        assert rows[0].amount == Decimal("250.75")
