"""Dashboard views with ``{data, error}`` envelopes.

A failing service never breaks the page: ``data`` falls back to the empty
default and ``error`` carries the message.
"""

import logging
from datetime import date
from uuid import UUID

from fastapi import HTTPException

from ..persistence import Persistence, StorageError
from ..schemas import (
    ActivityItem,
    ActivityView,
    DigitalDashboardData,
    DigitalDashboardView,
    DigitalSummary,
    FinanceDashboardData,
    FinanceDashboardView,
    InvoiceRow,
    NextFixedBillResponse,
    OfferRankingRow,
    PfSummary,
)
from .digital_dashboard import get_digital_month_summary, get_offer_ranking
from .finance_dashboard import get_current_invoices, get_next_fixed_bill, get_pf_month_summary
from .recent_activity import get_recent_activity

logger = logging.getLogger(__name__)


def _error_message(exc: Exception) -> str:
    if isinstance(exc, HTTPException):
        return str(exc.detail)
    return str(exc)


def invoice_row(row: dict) -> InvoiceRow:
    return InvoiceRow(
        cardId=row["card_id"],
        cardName=row["card_name"],
        amountCents=row["amount_cents"],
        dueDate=row["due_date"],
        daysToDue=row["days_to_due"],
        cycleStart=row["cycle_start"],
        cycleEnd=row["cycle_end"],
        closedAmountCents=row["closed_amount_cents"],
        closedDueDate=row["closed_due_date"],
    )


def finance_dashboard_view(db: Persistence, user_id: UUID, month: str, today: date) -> FinanceDashboardView:
    try:
        summary = get_pf_month_summary(db, user_id, month)
        invoices = get_current_invoices(db, user_id, today)
        upcoming = get_next_fixed_bill(db, user_id, today)
    except (HTTPException, StorageError) as exc:
        logger.warning("finance dashboard failed for %s: %s", user_id, exc)
        return FinanceDashboardView(data=FinanceDashboardData(summary=PfSummary(month=month)), error=_error_message(exc))
    return FinanceDashboardView(
        data=FinanceDashboardData(
            summary=PfSummary(
                month=summary["month"],
                incomeCents=summary["income_cents"],
                expenseCents=summary["expense_cents"],
                netCents=summary["net_cents"],
                fixedBillsCents=summary["fixed_bills_cents"],
                budgetCents=summary["budget_cents"],
                budgetConsumedPct=summary["budget_consumed_pct"],
                runwayMonths=summary["runway_months"],
            ),
            invoices=[invoice_row(row) for row in invoices],
            nextFixedBill=(
                NextFixedBillResponse(
                    id=upcoming["id"],
                    name=upcoming["name"],
                    amountCents=upcoming["amount_cents"],
                    dueDate=upcoming["due_date"],
                    daysUntil=upcoming["days_until"],
                )
                if upcoming
                else None
            ),
        )
    )


def digital_dashboard_view(db: Persistence, user_id: UUID, month: str) -> DigitalDashboardView:
    try:
        summary = get_digital_month_summary(db, user_id, month)
        ranking = get_offer_ranking(db, user_id, month)
    except (HTTPException, StorageError) as exc:
        logger.warning("digital dashboard failed for %s: %s", user_id, exc)
        return DigitalDashboardView(data=DigitalDashboardData(summary=DigitalSummary(month=month)), error=_error_message(exc))
    return DigitalDashboardView(
        data=DigitalDashboardData(
            summary=DigitalSummary(
                month=summary["month"],
                spendCents=summary["spend_cents"],
                revenueCents=summary["revenue_cents"],
                salesCount=summary["sales_count"],
                hours=summary["hours"],
                roi=summary["roi"],
                cacCents=summary["cac_cents"],
                ticketCents=summary["ticket_cents"],
            ),
            ranking=[
                OfferRankingRow(
                    offerId=row["offer_id"],
                    name=row["name"],
                    spendCents=row["spend_cents"],
                    revenueCents=row["revenue_cents"],
                    profitCents=row["profit_cents"],
                    roi=row["roi"],
                    salesCount=row["sales_count"],
                    hours=row["hours"],
                )
                for row in ranking
            ],
        )
    )


def activity_view(db: Persistence, user_id: UUID, limit: int) -> ActivityView:
    try:
        items = get_recent_activity(db, user_id, limit)
    except (HTTPException, StorageError) as exc:
        logger.warning("recent activity failed for %s: %s", user_id, exc)
        return ActivityView(data=[], error=_error_message(exc))
    return ActivityView(
        data=[
            ActivityItem(
                id=item["id"],
                kind=item["kind"],
                title=item["title"],
                amountCents=item["amount_cents"],
                occurredAt=item["occurred_at"],
                meta=item["meta"],
            )
            for item in items
        ]
    )
