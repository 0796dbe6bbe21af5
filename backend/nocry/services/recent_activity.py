"""Merged activity feed across finance and digital tables."""

import logging
from collections.abc import Callable
from typing import Any
from uuid import UUID

from ..dates import day_start_utc
from ..persistence import Persistence, StorageError
from ..schemas import TransactionFilters
from .finance import list_transactions

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10
UNKNOWN_OFFER = "Unknown offer"


def _names(db: Persistence, user_id: UUID, table: str) -> dict[UUID, str]:
    try:
        return {row["id"]: row["name"] for row in db.select(table, user_id)}
    except StorageError as exc:
        logger.warning("could not load %s names: %s", table, exc)
        return {}


def _transactions(db: Persistence, user_id: UUID, limit: int) -> list[dict[str, Any]]:
    categories = _names(db, user_id, "categories")
    rows = db.select("transactions", user_id, order_by="created_at", descending=True, limit=limit)
    items = []
    for row in rows:
        category = categories.get(row.get("category_id"))
        items.append(
            {
                "id": row["id"],
                "kind": row["type"],
                "title": row.get("description") or category or f"Transaction #{str(row['id'])[:4]}",
                "amount_cents": int(row["amount_cents"] or 0),
                "occurred_at": row["created_at"],
                "meta": {"category": category, "transferLeg": row.get("transfer_leg")},
            }
        )
    return items


def _sales(db: Persistence, user_id: UUID, limit: int) -> list[dict[str, Any]]:
    offers = _names(db, user_id, "offers")
    rows = db.select("sales", user_id, eq={"status": "approved"}, order_by="date", descending=True, limit=limit)
    return [
        {
            "id": row["id"],
            "kind": "sale",
            "title": f"Sale - {offers.get(row['offer_id'], UNKNOWN_OFFER)}",
            "amount_cents": int(row["amount_cents"] or 0),
            "occurred_at": row["date"],
            "meta": {"source": row.get("source"), "orderId": row.get("order_id")},
        }
        for row in rows
    ]


def _spends(db: Persistence, user_id: UUID, limit: int) -> list[dict[str, Any]]:
    rows = db.select("spend_events", user_id, order_by="date", descending=True, limit=limit)
    return [
        {
            "id": row["id"],
            "kind": "spend",
            "title": "Marketing spend",
            "amount_cents": int(row["amount_cents"] or 0),
            "occurred_at": day_start_utc(row["date"]),
            "meta": {"offerId": str(row["offer_id"])},
        }
        for row in rows
    ]


def _works(db: Persistence, user_id: UUID, limit: int) -> list[dict[str, Any]]:
    offers = _names(db, user_id, "offers")
    rows = db.select("work_sessions", user_id, order_by="started_at", descending=True, limit=limit)
    return [
        {
            "id": row["id"],
            "kind": "work",
            "title": f"Work - {offers.get(row['offer_id'], UNKNOWN_OFFER)}",
            "amount_cents": 0,
            "occurred_at": row["started_at"],
            "meta": {"durationMinutes": row.get("duration_minutes")},
        }
        for row in rows
    ]


SOURCES: dict[str, Callable[[Persistence, UUID, int], list[dict[str, Any]]]] = {
    "transactions": _transactions,
    "sales": _sales,
    "spend_events": _spends,
    "work_sessions": _works,
}


def get_recent_activity(db: Persistence, user_id: UUID, limit: int = DEFAULT_LIMIT) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    for name, fetch in SOURCES.items():
        try:
            items.extend(fetch(db, user_id, limit))
        except StorageError as exc:
            logger.warning("recent activity source %s failed: %s", name, exc)
    items.sort(key=lambda item: item["occurred_at"], reverse=True)
    return items[:limit]


def get_recent_finance_activity(db: Persistence, user_id: UUID, filters: TransactionFilters) -> list[dict[str, Any]]:
    if filters.limit is None:
        filters = filters.model_copy(update={"limit": DEFAULT_LIMIT})
    return list_transactions(db, user_id, filters)
