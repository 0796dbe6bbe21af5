import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Optional
from uuid import UUID

from fastapi import HTTPException

from ..dates import add_months, day_start_utc, diff_days, make_date, parse_month_key
from ..persistence import Persistence, StorageError, storage_errors
from ..schemas import FixedBillCreate, FixedBillUpdate
from .finance import get_account, get_card

logger = logging.getLogger(__name__)

FIXED_TAG = "[FIXA]"


@dataclass
class FixedRunStats:
    created: int = 0
    skipped: int = 0
    failed: int = 0


def fixed_bill_description(name: str) -> str:
    return f"{FIXED_TAG} {name}"


def _check_destination(db: Persistence, user_id: UUID, account_id: Optional[UUID], card_id: Optional[UUID]) -> None:
    if bool(account_id) == bool(card_id):
        raise ValueError("fixed bill needs exactly one of accountId or cardId")
    if account_id:
        get_account(db, user_id, account_id)
    if card_id:
        get_card(db, user_id, card_id)


def list_fixed_bills(db: Persistence, user_id: UUID, only_active: bool = False) -> list[dict[str, Any]]:
    eq = {"is_active": True} if only_active else None
    with storage_errors("list fixed bills"):
        return db.select("fixed_bills", user_id, eq=eq, order_by="name")


def create_fixed_bill(db: Persistence, user_id: UUID, payload: FixedBillCreate) -> dict[str, Any]:
    _check_destination(db, user_id, payload.accountId, payload.cardId)
    with storage_errors("create fixed bill"):
        return db.insert(
            "fixed_bills",
            user_id,
            {
                "name": payload.name,
                "amount_cents": payload.amountCents,
                "day_of_month": payload.dayOfMonth,
                "account_id": payload.accountId,
                "card_id": payload.cardId,
                "is_active": payload.isActive,
                "last_run_month": None,
            },
        )


def update_fixed_bill(db: Persistence, user_id: UUID, bill_id: UUID, payload: FixedBillUpdate) -> dict[str, Any]:
    with storage_errors("load fixed bill"):
        current = db.get("fixed_bills", user_id, bill_id)
    if current is None:
        raise HTTPException(status_code=404, detail=f"fixed bill not found: {bill_id}")

    changes: dict[str, Any] = {}
    if payload.name is not None:
        changes["name"] = payload.name
    if payload.amountCents is not None:
        changes["amount_cents"] = payload.amountCents
    if payload.dayOfMonth is not None:
        changes["day_of_month"] = payload.dayOfMonth
    if payload.isActive is not None:
        changes["is_active"] = payload.isActive
    # Switching destination clears the other side.
    if payload.accountId is not None:
        changes["account_id"] = payload.accountId
        changes["card_id"] = None
    elif payload.cardId is not None:
        changes["card_id"] = payload.cardId
        changes["account_id"] = None
    if "account_id" in changes:
        _check_destination(db, user_id, changes["account_id"], changes["card_id"])

    with storage_errors("update fixed bill"):
        row = db.update("fixed_bills", user_id, bill_id, changes)
    if row is None:
        raise HTTPException(status_code=404, detail=f"fixed bill not found: {bill_id}")
    return row


def delete_fixed_bill(db: Persistence, user_id: UUID, bill_id: UUID) -> None:
    with storage_errors("delete fixed bill"):
        deleted = db.delete("fixed_bills", user_id, bill_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"fixed bill not found: {bill_id}")


def _run_bill(db: Persistence, user_id: UUID, bill: dict[str, Any], year: int, month: int, key: str) -> bool:
    occurred_on = make_date(year, month, bill["day_of_month"])
    description = fixed_bill_description(bill["name"])
    day_start = day_start_utc(occurred_on)
    existing = db.select(
        "transactions",
        user_id,
        eq={"description": description},
        gte={"occurred_at": day_start},
        lt={"occurred_at": day_start_utc(occurred_on + timedelta(days=1))},
        limit=1,
    )
    created = False
    if not existing:
        db.insert(
            "transactions",
            user_id,
            {
                "type": "expense",
                "occurred_at": day_start,
                "amount_cents": bill["amount_cents"],
                "account_id": bill.get("account_id"),
                "card_id": bill.get("card_id"),
                "category_id": None,
                "description": description,
            },
        )
        created = True
    db.update("fixed_bills", user_id, bill["id"], {"last_run_month": key})
    return created


def run_fixed_for_month(db: Persistence, user_id: UUID, month: str) -> FixedRunStats:
    """Post one expense per active fixed bill for ``month`` (``YYYY-MM``).

    A bill already posted on its date is skipped, so running the same month
    twice creates nothing new.
    """
    year, month_number = parse_month_key(month)
    bills = list_fixed_bills(db, user_id, only_active=True)
    stats = FixedRunStats()
    for bill in bills:
        try:
            if _run_bill(db, user_id, bill, year, month_number, month):
                stats.created += 1
            else:
                stats.skipped += 1
        except StorageError as exc:
            stats.failed += 1
            logger.warning("fixed bill %s failed for %s: %s", bill["id"], month, exc)
    logger.info(
        "fixed bills for %s: created=%s skipped=%s failed=%s", month, stats.created, stats.skipped, stats.failed
    )
    return stats


def upcoming_bill_date(day_of_month: int, today: date) -> date:
    this_month = make_date(today.year, today.month, day_of_month)
    if this_month >= today:
        return this_month
    following = add_months(today.replace(day=1), 1)
    return make_date(following.year, following.month, day_of_month)


def next_fixed_bill(db: Persistence, user_id: UUID, today: date) -> Optional[dict[str, Any]]:
    best: Optional[dict[str, Any]] = None
    for bill in list_fixed_bills(db, user_id, only_active=True):
        due = upcoming_bill_date(bill["day_of_month"], today)
        if best is None or (due, bill["name"]) < (best["due_date"], best["name"]):
            best = {**bill, "due_date": due, "days_until": diff_days(today, due)}
    return best
