"""Monthly series, period net and category breakdown for the analytics charts."""

from datetime import date, timedelta
from typing import Any, Optional
from uuid import UUID

from .. import formulas
from ..dates import add_months, day_start_utc, month_bounds, month_key
from ..persistence import Persistence, storage_errors
from .finance import get_budget, list_categories
from .finance_dashboard import month_totals

UNCATEGORIZED = "Uncategorized"


def get_monthly_series(db: Persistence, user_id: UUID, last_month: str, months_back: int = 12) -> list[dict[str, Any]]:
    """Income, expense and net for ``months_back`` months ending at ``last_month``, oldest first.

    Months without movement are present with zeros. Transfers are not counted.
    """
    first, _ = month_bounds(last_month)
    series = []
    for offset in range(months_back - 1, -1, -1):
        key = month_key(add_months(first, -offset))
        income, expense = month_totals(db, user_id, key)
        series.append({"month": key, "income_cents": income, "expense_cents": expense, "net_cents": income - expense})
    return series


def _period_transactions(db: Persistence, user_id: UUID, date_from: date, date_to: date, types: list[str]) -> list[dict]:
    if date_from > date_to:
        raise ValueError("dateFrom must not be after dateTo")
    with storage_errors("load period transactions"):
        return db.select(
            "transactions",
            user_id,
            in_={"type": types},
            gte={"occurred_at": day_start_utc(date_from)},
            lt={"occurred_at": day_start_utc(date_to + timedelta(days=1))},
        )


def get_net_by_period(db: Persistence, user_id: UUID, date_from: date, date_to: date) -> dict[str, Any]:
    """Cash-basis totals: card purchases are left to the card invoice."""
    rows = _period_transactions(db, user_id, date_from, date_to, ["income", "expense"])
    income = sum(int(row["amount_cents"] or 0) for row in rows if row["type"] == "income")
    expense = sum(
        int(row["amount_cents"] or 0) for row in rows if row["type"] == "expense" and row.get("card_id") is None
    )
    return {
        "date_from": date_from,
        "date_to": date_to,
        "income_cents": income,
        "expense_cents": expense,
        "net_cents": income - expense,
    }


def _budget_comparison(db: Persistence, user_id: UUID, month: str) -> dict[str, Any]:
    _, actual = month_totals(db, user_id, month)
    budget = get_budget(db, user_id, month)
    variance = actual - budget
    variance_pct: Optional[float] = None
    if budget > 0:
        variance_pct = round(variance / budget * 100, 1)
    return {
        "month": month,
        "actual_cents": actual,
        "budget_cents": budget,
        "variance_cents": variance,
        "variance_pct": variance_pct,
    }


def get_category_breakdown(db: Persistence, user_id: UUID, date_from: date, date_to: date) -> dict[str, Any]:
    rows = _period_transactions(db, user_id, date_from, date_to, ["expense"])
    grouped: dict[Optional[UUID], dict[str, int]] = {}
    for row in rows:
        bucket = grouped.setdefault(row.get("category_id"), {"total_cents": 0, "count": 0})
        bucket["total_cents"] += int(row["amount_cents"] or 0)
        bucket["count"] += 1

    names = {category["id"]: category["name"] for category in list_categories(db, user_id, include_archived=True)}
    total = sum(bucket["total_cents"] for bucket in grouped.values())
    pareto = [
        {
            "category_id": category_id,
            "category_name": names.get(category_id, UNCATEGORIZED) if category_id else UNCATEGORIZED,
            "total_cents": bucket["total_cents"],
            "count": bucket["count"],
            "percentage": round(formulas.share(bucket["total_cents"], total), 1),
        }
        for category_id, bucket in grouped.items()
    ]
    pareto.sort(key=lambda item: (-item["total_cents"], item["category_name"].lower()))
    for item, cumulative in zip(pareto, formulas.cumulative_percentages([item["total_cents"] for item in pareto])):
        item["cumulative_percentage"] = round(cumulative, 1)

    return {
        "date_from": date_from,
        "date_to": date_to,
        "total_expense_cents": total,
        "pareto": pareto,
        "budget": _budget_comparison(db, user_id, month_key(date_from)),
    }
