"""Main FastAPI application for the Expense Tracker."""
import logging
import time
import datetime as dt
from decimal import Decimal
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, RedirectResponse
from fastapi.security import OAuth2PasswordBearer
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError
from sqlmodel import SQLModel, create_engine, Session, col, select
from sqlalchemy.exc import OperationalError

from prometheus_fastapi_instrumentator import Instrumentator

import mutations
import queries
from auth import create_access_token, decode_access_token, get_password_hash, verify_password
from config import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    DATABASE_URL,
    DEFAULT_PAGE_SIZE,
    LOG_LEVEL,
    STARTUP_DB_DELAY,
    STARTUP_DB_RETRIES,
    STATIC_DIR,
)
from models import Category, User
from schemas import (
    BudgetRead,
    BudgetSet,
    BudgetStatus,
    BulkDeleteRequest,
    BulkDeleteResult,
    CategoryCreate,
    CategoryRead,
    CategoryTotal,
    CategoryUpdate,
    Dashboard,
    ExpenseCreate,
    ExpenseFilters,
    ExpenseRead,
    ExpenseUpdate,
    MonthSummary,
    PaginatedExpenses,
    PasswordChange,
    SettingsRead,
    SettingsUpdate,
    Token,
    UserCreate,
    UserLogin,
    UserRead,
    UsernameChange,
)
from utils import (
    compute_average_daily,
    compute_budget_status,
    current_month_key,
    normalize_month_key,
    parse_csv_param,
    round_money,
    sum_amounts,
)

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("expense_tracker")

APP_VERSION = "0.2.0"
ACCESS_TOKEN_COOKIE = "access_token"
RECENT_TRANSACTIONS_LIMIT = 10

app = FastAPI(title="Expense Tracker", version=APP_VERSION)
Instrumentator().instrument(app).expose(app)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

if DATABASE_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False}
else:
    connect_args = {}

engine = create_engine(DATABASE_URL, connect_args=connect_args, echo=False)

# (name, icon, color) in display order; visible to every user.
DEFAULT_CATEGORIES = [
    ("Food & Dining", "🍔", "#f97316"),
    ("Groceries", "🛒", "#22c55e"),
    ("Transportation", "🚗", "#3b82f6"),
    ("Shopping", "🛍️", "#ec4899"),
    ("Bills & Utilities", "💡", "#eab308"),
    ("Entertainment", "🎬", "#8b5cf6"),
    ("Healthcare", "🏥", "#ef4444"),
    ("Education", "📚", "#14b8a6"),
    ("Travel", "✈️", "#06b6d4"),
    ("Personal Care", "💅", "#f43f5e"),
    ("Subscriptions", "🔁", "#6366f1"),
    ("Other", "📁", "#64748b"),
]


def get_session():
    """Provide a database session per request."""
    with Session(engine) as session:
        yield session


def issue_token(user: User) -> str:
    # identity is the immutable id; the username can change
    return create_access_token({"sub": user.username, "user_id": user.id})


def get_optional_user(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    session: Session = Depends(get_session),
) -> Optional[User]:
    """Resolve the user from a bearer token or the login cookie, if any."""
    token = token or request.cookies.get(ACCESS_TOKEN_COOKIE)
    if not token:
        return None
    user_id = decode_access_token(token)
    if user_id is None:
        return None
    return session.get(User, user_id)


def get_current_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def month_or_422(month: Optional[str]) -> str:
    """Validate a YYYY-MM key; missing means the current month."""
    if month is None:
        return current_month_key()
    try:
        return normalize_month_key(month)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


def seed_default_categories(session: Session) -> None:
    """Seed default categories if none exist."""
    existing = session.exec(select(Category).where(col(Category.is_default).is_(True))).first()
    if existing:
        logger.info("Default categories already exist, skipping seed")
        return

    session.add_all(
        [
            Category(name=name, icon=icon, color=color, is_default=True, sort_order=i)
            for i, (name, icon, color) in enumerate(DEFAULT_CATEGORIES)
        ]
    )
    session.commit()
    logger.info("Added %d default categories", len(DEFAULT_CATEGORIES))


@app.on_event("startup")
def on_startup() -> None:
    """Wait for the database, create tables and seed default categories."""
    last_exc: Exception | None = None

    for attempt in range(1, STARTUP_DB_RETRIES + 1):
        try:
            SQLModel.metadata.create_all(engine)
            with Session(engine) as session:
                seed_default_categories(session)
            logger.info("Database ready, tables created, categories seeded")
            return
        except OperationalError as exc:
            last_exc = exc
            logger.warning(
                "DB not ready yet (attempt %d/%d); waiting %ss...",
                attempt, STARTUP_DB_RETRIES, STARTUP_DB_DELAY,
            )
            time.sleep(STARTUP_DB_DELAY)

    logger.error("Giving up connecting to the database")
    if last_exc:
        raise last_exc
    raise RuntimeError("Database not reachable on startup.")


@app.get("/")
def root():
    return {"message": "Expense Tracker API is running. See /health for status."}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "timestamp": dt.datetime.now(dt.timezone.utc).isoformat(),
        "app": "expense-tracker",
        "version": APP_VERSION,
    }


# AUTH ENDPOINTS
@app.post("/auth/register", response_model=UserRead, status_code=201)
def register_user(user_in: UserCreate, session: Session = Depends(get_session)):
    """Register a new user if the username is free, with default settings."""
    if queries.get_user_by_username(session, user_in.username):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Username already registered",
        )

    user = User(username=user_in.username, hashed_password=get_password_hash(user_in.password))
    with mutations.platform_errors(session, "Failed to register user"):
        user = mutations.save_and_refresh(session, user)
    mutations.create_user_settings(session, user)
    logger.info("Registered user %s", user.id)
    return user


@app.post("/auth/login", response_model=Token)
def login(user_in: UserLogin, response: Response, session: Session = Depends(get_session)):
    """Authenticate a user; return a bearer token and set it as a cookie for pages."""
    user = queries.get_user_by_username(session, user_in.username)
    if not user or not verify_password(user_in.password, user.hashed_password):
        logger.warning("Failed login attempt")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Incorrect username or password",
        )

    access_token = issue_token(user)
    response.set_cookie(
        ACCESS_TOKEN_COOKIE,
        access_token,
        max_age=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        httponly=True,
        samesite="lax",
    )
    return {"access_token": access_token, "token_type": "bearer"}


@app.post("/auth/logout", status_code=204)
def logout(response: Response):
    response.delete_cookie(ACCESS_TOKEN_COOKIE)
    return None


@app.get("/auth/me")
def read_current_user(current_user: User = Depends(get_current_user)):
    return {
        "id": current_user.id,
        "username": current_user.username,
        "created_at": current_user.created_at,
    }


@app.post("/auth/change-username")
def change_username(
    payload: UsernameChange,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Change the current user's username and return a fresh token."""
    taken = queries.get_user_by_username(session, payload.new_username)
    if taken and taken.id != current_user.id:
        raise HTTPException(status_code=400, detail="Username already in use.")

    current_user.username = payload.new_username
    with mutations.platform_errors(session, "Failed to change username"):
        mutations.save_and_refresh(session, current_user)

    return {
        "message": "username-updated",
        "access_token": issue_token(current_user),
        "token_type": "bearer",
    }


@app.post("/auth/change-password")
def change_password(
    payload: PasswordChange,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    if not verify_password(payload.current_password, current_user.hashed_password):
        raise HTTPException(status_code=400, detail="Current password is incorrect.")

    current_user.hashed_password = get_password_hash(payload.new_password)
    with mutations.platform_errors(session, "Failed to change password"):
        mutations.save_and_refresh(session, current_user)
    return {"message": "password-updated"}


# CATEGORY ENDPOINTS
@app.get("/api/categories", response_model=list[CategoryRead])
def list_categories(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """The user's own categories plus the defaults, in display order."""
    return queries.get_categories(session, current_user)


@app.post("/api/categories", response_model=CategoryRead, status_code=201)
def create_category(
    payload: CategoryCreate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return mutations.create_category(session, current_user, payload)


@app.patch("/api/categories/{category_id}", response_model=CategoryRead)
def update_category(
    category_id: int,
    payload: CategoryUpdate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return mutations.update_category(session, current_user, category_id, payload)


@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(
    category_id: int,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    mutations.delete_category(session, current_user, category_id)
    return None


# EXPENSE ENDPOINTS
# Filters arrive as query params; categories and payment_methods are comma separated.
@app.get("/api/expenses", response_model=PaginatedExpenses)
def list_expenses(
    search: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    categories: Optional[str] = None,
    payment_methods: Optional[str] = None,
    min_amount: Optional[Decimal] = None,
    max_amount: Optional[Decimal] = None,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    try:
        filters = ExpenseFilters(
            search=search,
            start_date=start_date,
            end_date=end_date,
            category_ids=parse_csv_param(categories),
            payment_methods=parse_csv_param(payment_methods),
            min_amount=min_amount,
            max_amount=max_amount,
            page=page,
            page_size=page_size,
        )
    except ValidationError as exc:
        raise RequestValidationError(
            exc.errors(include_url=False, include_context=False, include_input=False)
        )
    return queries.get_filtered_expenses(session, current_user, filters)


@app.post("/api/expenses", response_model=ExpenseRead, status_code=201)
def create_expense(
    payload: ExpenseCreate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Create an expense in one of the user's visible categories."""
    return mutations.create_expense(session, current_user, payload)


@app.post("/api/expenses/bulk-delete", response_model=BulkDeleteResult)
def bulk_delete_expenses(
    payload: BulkDeleteRequest,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    deleted = mutations.bulk_delete_expenses(session, current_user, payload.ids)
    return {"requested": len(set(payload.ids)), "deleted": deleted}


@app.get("/api/expenses/{expense_id}", response_model=ExpenseRead)
def read_expense(
    expense_id: int,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return mutations.get_expense_or_404(session, current_user, expense_id)


# Partially update an expense. Only the fields provided in the request are changed.
@app.patch("/api/expenses/{expense_id}", response_model=ExpenseRead)
def update_expense(
    expense_id: int,
    payload: ExpenseUpdate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return mutations.update_expense(session, current_user, expense_id, payload)


@app.delete("/api/expenses/{expense_id}", status_code=204)
def delete_expense(
    expense_id: int,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    mutations.delete_expense(session, current_user, expense_id)
    return None


# BUDGET ENDPOINTS
@app.get("/api/budgets/{month}", response_model=BudgetRead)
def read_budget(
    month: str,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    budget = queries.get_budget_for_month(session, current_user, month_or_422(month))
    if not budget:
        raise HTTPException(status_code=404, detail="Budget not found")
    return budget


@app.put("/api/budgets/{month}", response_model=BudgetRead)
def set_budget(
    month: str,
    payload: BudgetSet,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Create the month's budget, or replace its amount if it already exists."""
    return mutations.set_budget(session, current_user, month_or_422(month), payload)


@app.delete("/api/budgets/{month}", status_code=204)
def delete_budget(
    month: str,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    mutations.delete_budget(session, current_user, month_or_422(month))
    return None


def _budget_status(session: Session, user: User, month: str) -> dict:
    budget = queries.get_budget_for_month(session, user, month)
    total = queries.get_total_for_month(session, user, month)
    result = compute_budget_status(total, budget.amount if budget else None)
    result["month"] = month
    return result


@app.get("/api/budgets/{month}/status", response_model=BudgetStatus)
def read_budget_status(
    month: str,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return _budget_status(session, current_user, month_or_422(month))


# SUMMARY / STATS
def _month_summary(month: str, expenses: list) -> dict:
    total = sum_amounts(expenses)
    return {
        "month": month,
        "total": round_money(total),
        "transaction_count": len(expenses),
        "average_daily": compute_average_daily(total, month),
    }


@app.get("/api/stats/month", response_model=MonthSummary)
def month_summary(
    month: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    month = month_or_422(month)
    return _month_summary(month, queries.get_expenses_for_month(session, current_user, month))


@app.get("/api/stats/categories", response_model=list[CategoryTotal])
def category_totals(
    month: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Spending per category for the month, largest first."""
    return queries.get_category_totals_for_month(session, current_user, month_or_422(month))


@app.get("/api/dashboard", response_model=Dashboard)
def dashboard_data(
    month: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Everything the dashboard shows for one month, in a single response."""
    month = month_or_422(month)

    budget = queries.get_budget_for_month(session, current_user, month)
    expenses = queries.get_expenses_for_month(session, current_user, month)
    category_totals = queries.get_category_totals_for_month(session, current_user, month)
    recent = queries.get_transactions_with_categories(
        session, current_user, month, limit=RECENT_TRANSACTIONS_LIMIT
    )

    status_ = compute_budget_status(sum_amounts(expenses), budget.amount if budget else None)
    status_["month"] = month

    return {
        "month": month,
        "summary": _month_summary(month, expenses),
        "budget": BudgetRead.model_validate(budget) if budget else None,
        "budget_status": status_,
        "category_totals": category_totals,
        "recent_transactions": recent,
    }


# SETTINGS
@app.get("/api/settings", response_model=SettingsRead)
def read_settings(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return queries.get_user_settings(session, current_user)


@app.patch("/api/settings", response_model=SettingsRead)
def update_settings(
    payload: SettingsUpdate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return mutations.update_user_settings(session, current_user, payload)


# PAGES
# Protected pages send anonymous visitors to /login and remember where they were going.
def _protected_page(user: Optional[User], path: str, filename: str):
    if user is None:
        return RedirectResponse(
            url=f"/login?redirect_to={path}",
            status_code=status.HTTP_303_SEE_OTHER,
        )
    return FileResponse(STATIC_DIR / filename)


@app.get("/login")
def login_page(user: Optional[User] = Depends(get_optional_user)):
    if user is not None:
        return RedirectResponse(url="/dashboard", status_code=status.HTTP_303_SEE_OTHER)
    return FileResponse(STATIC_DIR / "login.html")


@app.get("/dashboard")
def dashboard_page(user: Optional[User] = Depends(get_optional_user)):
    return _protected_page(user, "/dashboard", "dashboard.html")


@app.get("/expenses")
def expenses_page(user: Optional[User] = Depends(get_optional_user)):
    return _protected_page(user, "/expenses", "expenses.html")
