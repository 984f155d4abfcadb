"""Utility functions for money, dates, month keys, aggregation and budget status."""
import calendar
import datetime as dt
import math
import re
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, Optional

from models import Category, Expense

MONTH_KEY_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")

UNCATEGORIZED = {
    "category_id": None,
    "category_name": "Uncategorized",
    "category_icon": "📁",
    "category_color": "#64748b",
}


def round_money(dec: Decimal) -> float:
    """Round a Decimal to 2 decimal places with HALF_UP (normal money rounding)."""
    return float(dec.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def sum_amounts(expenses: Iterable[Any]) -> Decimal:
    """Sum .amount over expenses (or raw numbers) as a Decimal."""
    total = Decimal("0")
    for e in expenses:
        amount = getattr(e, "amount", e)
        total += to_decimal(amount)
    return total


def normalize_iso_date(value: Any) -> dt.date:
    """Normalize a value to a date or raise a ValueError."""
    if isinstance(value, dt.date):
        return value

    if isinstance(value, str):
        try:
            return dt.date.fromisoformat(value)
        except Exception:
            raise ValueError("Invalid date format. Expected YYYY-MM-DD.")

    raise ValueError("Invalid date format. Expected YYYY-MM-DD.")


def normalize_month_key(value: Any) -> str:
    """Validate a 'YYYY-MM' month key and return it stripped."""
    if isinstance(value, str) and MONTH_KEY_RE.match(value.strip()):
        return value.strip()
    raise ValueError("Invalid month format. Expected YYYY-MM.")


def current_month_key(today: Optional[dt.date] = None) -> str:
    today = today or dt.datetime.now(dt.timezone.utc).date()
    return today.strftime("%Y-%m")


def month_bounds(month: str) -> tuple[dt.date, dt.date]:
    """Return the first and last day of a 'YYYY-MM' month, both inclusive."""
    month = normalize_month_key(month)
    year, month_num = int(month[:4]), int(month[5:])
    last_day = calendar.monthrange(year, month_num)[1]
    return dt.date(year, month_num, 1), dt.date(year, month_num, last_day)


def days_elapsed_in_month(month: str, today: Optional[dt.date] = None) -> int:
    """Days of the month that have happened so far (0 for future months)."""
    today = today or dt.datetime.now(dt.timezone.utc).date()
    first, last = month_bounds(month)
    if today < first:
        return 0
    if today > last:
        return last.day
    return today.day


def compute_average_daily(total: Decimal, month: str, today: Optional[dt.date] = None) -> float:
    days = days_elapsed_in_month(month, today)
    if days == 0 or total == 0:
        return 0.0
    return round_money(to_decimal(total) / Decimal(days))


def compute_total_pages(total_count: int, page_size: int) -> int:
    """ceil(total_count / page_size); 0 when there is nothing to show."""
    if page_size <= 0:
        raise ValueError("page_size must be positive")
    return math.ceil(total_count / page_size)


def page_offset(page: int, page_size: int) -> int:
    return (max(page, 1) - 1) * page_size


def category_fields(category: Optional[Category]) -> dict[str, Any]:
    """Flatten a category into the name/icon/color fields shown next to an expense."""
    if category is None:
        return dict(UNCATEGORIZED)
    return {
        "category_id": category.id,
        "category_name": category.name,
        "category_icon": category.icon,
        "category_color": category.color,
    }


def aggregate_category_totals(
    rows: Iterable[tuple[Expense, Optional[Category]]],
) -> list[dict[str, Any]]:
    """
    Group expenses by category and sum their amounts.

    `rows` are (expense, category) pairs as produced by an outer join; a missing
    category falls into the "Uncategorized" group. Groups come back sorted by
    descending total. Equal totals keep the order in which they were first seen.
    """
    groups: dict[Optional[int], dict[str, Any]] = {}

    for expense, category in rows:
        key = category.id if category is not None else None
        group = groups.get(key)
        if group is None:
            group = category_fields(category)
            group["total"] = Decimal("0")
            group["count"] = 0
            groups[key] = group
        group["total"] += to_decimal(expense.amount)
        group["count"] += 1

    ordered = sorted(groups.values(), key=lambda g: g["total"], reverse=True)
    for group in ordered:
        group["total"] = round_money(group["total"])
    return ordered


def compute_budget_status(total: Any, budget: Any = None) -> dict[str, Any]:
    """
    Compare a month's spending against its budget.

    percentage is left unclamped (134.5 means 34.5% over); progress is the same
    value capped at 100 for the progress bar. remaining may be negative.
    With no budget (None or 0) the percentage is 0.
    """
    total_dec = to_decimal(total or 0)
    budget_dec = to_decimal(budget or 0)

    if budget_dec > 0:
        percentage_dec = total_dec / budget_dec * Decimal("100")
    else:
        percentage_dec = Decimal("0")
    percentage = round_money(percentage_dec)

    return {
        "budget": round_money(budget_dec),
        "spent": round_money(total_dec),
        "remaining": round_money(budget_dec - total_dec),
        "percentage": percentage,
        "progress": min(percentage, 100.0),
        "has_budget": budget_dec > 0,
        "over_budget": budget_dec > 0 and total_dec > budget_dec,
    }


def parse_csv_param(value: Optional[str]) -> Optional[list[str]]:
    """Split a comma-separated query parameter, dropping empty items."""
    if value is None:
        return None
    items = [item.strip() for item in value.split(",") if item.strip()]
    return items or None
