import logging
from datetime import date
from typing import Any, Optional
from uuid import UUID

from .. import formulas
from ..dates import add_months, month_bounds, month_datetime_bounds, month_key
from ..persistence import Persistence, storage_errors
from .finance import get_budget, list_accounts, list_cards
from .fixed_bills import list_fixed_bills, next_fixed_bill
from .invoices import card_open_balance, get_card_cycles

logger = logging.getLogger(__name__)

RUNWAY_WINDOW_MONTHS = 3


def month_totals(db: Persistence, user_id: UUID, month: str) -> tuple[int, int]:
    start, end = month_datetime_bounds(month)
    with storage_errors("load month transactions"):
        rows = db.select(
            "transactions",
            user_id,
            in_={"type": ["income", "expense"]},
            gte={"occurred_at": start},
            lt={"occurred_at": end},
        )
    income = sum(int(row["amount_cents"] or 0) for row in rows if row["type"] == "income")
    expense = sum(int(row["amount_cents"] or 0) for row in rows if row["type"] == "expense")
    return income, expense


def average_monthly_expense(db: Persistence, user_id: UUID, month: str, window: int = RUNWAY_WINDOW_MONTHS) -> float:
    """Average expense of ``month`` and the ``window - 1`` months before it."""
    first, _ = month_bounds(month)
    total = 0
    for offset in range(window):
        _, expense = month_totals(db, user_id, month_key(add_months(first, -offset)))
        total += expense
    return total / window


def get_pf_month_summary(db: Persistence, user_id: UUID, month: str) -> dict[str, Any]:
    income, expense = month_totals(db, user_id, month)
    fixed_total = sum(int(bill["amount_cents"] or 0) for bill in list_fixed_bills(db, user_id, only_active=True))
    budget = get_budget(db, user_id, month)
    liquid = sum(account["balance_cents"] for account in list_accounts(db, user_id))
    runway = formulas.runway_months(liquid, average_monthly_expense(db, user_id, month))
    return {
        "month": month,
        "income_cents": income,
        "expense_cents": expense,
        "net_cents": income - expense,
        "fixed_bills_cents": fixed_total,
        "budget_cents": budget,
        "budget_consumed_pct": formulas.round_optional(formulas.budget_consumption(expense, budget)),
        "runway_months": formulas.round_optional(runway),
    }


def get_current_invoices(db: Persistence, user_id: UUID, today: date) -> list[dict[str, Any]]:
    rows = []
    for item in get_card_cycles(db, user_id, today):
        card, current, closed = item["card"], item["current"], item["closed"]
        rows.append(
            {
                "card_id": card["id"],
                "card_name": card["name"],
                "amount_cents": item["current_amount_cents"],
                "due_date": current.due,
                "days_to_due": current.days_to_due,
                "cycle_start": current.start,
                "cycle_end": current.end,
                "closed_amount_cents": item["closed_amount_cents"],
                "closed_due_date": closed.due,
            }
        )
    rows.sort(key=lambda row: (row["due_date"], row["card_name"].lower()))
    return rows


def get_next_fixed_bill(db: Persistence, user_id: UUID, today: date) -> Optional[dict[str, Any]]:
    return next_fixed_bill(db, user_id, today)


def get_kpis(db: Persistence, user_id: UUID, month: str) -> dict[str, Any]:
    """Savings ratio, runway, budget use, credit use and expense month over month."""
    income, expense = month_totals(db, user_id, month)
    first, _ = month_bounds(month)
    _, previous_expense = month_totals(db, user_id, month_key(add_months(first, -1)))
    budget = get_budget(db, user_id, month)
    liquid = sum(account["balance_cents"] for account in list_accounts(db, user_id))

    used = limit = 0
    for card in list_cards(db, user_id):
        if card.get("limit_cents"):
            used += max(card_open_balance(db, user_id, card["id"]), 0)
            limit += int(card["limit_cents"])

    return {
        "month": month,
        "savings_ratio_pct": round(formulas.savings_ratio(income, income - expense), 1),
        "runway_months": formulas.round_optional(
            formulas.runway_months(liquid, average_monthly_expense(db, user_id, month))
        ),
        "budget_consumed_pct": formulas.round_optional(formulas.budget_consumption(expense, budget)),
        "credit_utilization_pct": round(formulas.credit_utilization(used, limit), 1),
        "expense_mom_pct": round(formulas.month_over_month(expense, previous_expense), 1),
    }
