"""Credit-card billing cycles and invoice payments.

A cycle ends on the card's closing day. While today is past the closing day
the current cycle already runs to next month's closing day. The due date sits
in the cycle end's month, or in the following month when the due day comes
before the closing day.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Optional
from uuid import UUID

from ..dates import add_months, day_start_utc, diff_days, make_date, now_utc
from ..persistence import Persistence, StorageError, storage_errors
from ..schemas import InvoicePaymentCreate
from .finance import get_account, get_card, insert_transfer_pair, list_cards

logger = logging.getLogger(__name__)

DEFAULT_CLOSING_DAY = 25


@dataclass
class Cycle:
    start: date
    end: date
    due: date
    days_to_due: int


@dataclass
class CardCycles:
    current: Cycle
    closed: Cycle


def default_due_day(closing_day: int) -> int:
    return min(max(closing_day + 10, 1), 28)


def _cycle_end(reference: date, closing_day: int) -> date:
    if reference.day > closing_day:
        following = add_months(reference.replace(day=1), 1)
        return make_date(following.year, following.month, closing_day)
    return make_date(reference.year, reference.month, closing_day)


def _due_date(end: date, closing_day: int, due_day: int) -> date:
    if due_day < closing_day:
        following = add_months(end.replace(day=1), 1)
        return make_date(following.year, following.month, due_day)
    return make_date(end.year, end.month, due_day)


def _cycle(reference: date, closing_day: int, due_day: int, today: date) -> Cycle:
    end = _cycle_end(reference, closing_day)
    start = add_months(end, -1) + timedelta(days=1)
    due = _due_date(end, closing_day, due_day)
    return Cycle(start=start, end=end, due=due, days_to_due=diff_days(today, due))


def compute_card_cycles(closing_day: Optional[int], due_day: Optional[int], today: date) -> CardCycles:
    closing = int(closing_day or DEFAULT_CLOSING_DAY)
    due = int(due_day or default_due_day(closing))
    current = _cycle(today, closing, due, today)
    closed_end = current.start - timedelta(days=1)
    closed = _cycle(closed_end, closing, due, today)
    # Clamped month ends can shorten the closed cycle, never stretch it past the current one.
    if closed.end != closed_end:
        closed_due = _due_date(closed_end, closing, due)
        closed = Cycle(start=closed.start, end=closed_end, due=closed_due, days_to_due=diff_days(today, closed_due))
    return CardCycles(current=current, closed=closed)


def card_expense_total(db: Persistence, user_id: UUID, card_id: UUID, start: date, end: date) -> int:
    rows = db.select(
        "transactions",
        user_id,
        eq={"card_id": card_id, "type": "expense"},
        gte={"occurred_at": day_start_utc(start)},
        lt={"occurred_at": day_start_utc(end + timedelta(days=1))},
    )
    return sum(int(row["amount_cents"] or 0) for row in rows)


def get_card_cycles(db: Persistence, user_id: UUID, today: date) -> list[dict[str, Any]]:
    results: list[dict[str, Any]] = []
    for card in list_cards(db, user_id):
        try:
            cycles = compute_card_cycles(card.get("closing_day"), card.get("due_day"), today)
            results.append(
                {
                    "card": card,
                    "current": cycles.current,
                    "current_amount_cents": card_expense_total(
                        db, user_id, card["id"], cycles.current.start, cycles.current.end
                    ),
                    "closed": cycles.closed,
                    "closed_amount_cents": card_expense_total(
                        db, user_id, card["id"], cycles.closed.start, cycles.closed.end
                    ),
                }
            )
        except (StorageError, ValueError) as exc:
            logger.warning("skipping cycles for card %s: %s", card.get("id"), exc)
    return results


def card_open_balance(db: Persistence, user_id: UUID, card_id: UUID) -> int:
    """Card charges minus payments received by the card."""
    with storage_errors("compute card balance"):
        charges = db.select("transactions", user_id, eq={"card_id": card_id, "type": "expense"})
        payments = db.select("transactions", user_id, eq={"card_id": card_id, "type": "transfer", "transfer_leg": "in"})
    return sum(int(r["amount_cents"] or 0) for r in charges) - sum(int(r["amount_cents"] or 0) for r in payments)


def pay_card_invoice(db: Persistence, user_id: UUID, payload: InvoicePaymentCreate) -> dict[str, Any]:
    card = get_card(db, user_id, payload.cardId)
    account = get_account(db, user_id, payload.accountId)
    open_balance = card_open_balance(db, user_id, card["id"])
    if open_balance <= 0:
        raise ValueError("card has no open balance to pay")
    if payload.amountCents > open_balance:
        raise ValueError(f"payment exceeds open balance of {open_balance} cents")
    paid_at: datetime = payload.paidAt or now_utc()
    group_id, _, _ = insert_transfer_pair(
        db,
        user_id,
        payload.amountCents,
        paid_at,
        f"Invoice payment - {card['name']}",
        {"account_id": account["id"]},
        {"card_id": card["id"]},
    )
    logger.info("card %s paid %s cents from account %s", card["id"], payload.amountCents, account["id"])
    return {
        "transfer_group_id": group_id,
        "paid_cents": payload.amountCents,
        "open_balance_cents": open_balance - payload.amountCents,
    }
