import logging
from datetime import timedelta
from typing import Any, Optional
from uuid import UUID, uuid4

from fastapi import HTTPException

from ..dates import as_utc, month_bounds, month_datetime_bounds, now_utc
from ..persistence import Persistence, storage_errors
from ..schemas import (
    OfferCreate,
    OfferStatus,
    OfferUpdate,
    SaleCreate,
    SpendCreate,
    WorkSessionLog,
    WorkSessionStart,
)

logger = logging.getLogger(__name__)

MANUAL_SOURCE = "manual"
SALE_CONFLICT_KEY = ("user_id", "source", "order_id")


def get_offer(db: Persistence, user_id: UUID, offer_id: UUID) -> dict[str, Any]:
    with storage_errors("load offer"):
        row = db.get("offers", user_id, offer_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"offer not found: {offer_id}")
    return row


def list_offers(db: Persistence, user_id: UUID, status: Optional[OfferStatus] = None) -> list[dict[str, Any]]:
    eq = {"status": status.value} if status else None
    with storage_errors("list offers"):
        return db.select("offers", user_id, eq=eq, order_by="name")


def create_offer(db: Persistence, user_id: UUID, payload: OfferCreate) -> dict[str, Any]:
    with storage_errors("create offer"):
        return db.insert(
            "offers",
            user_id,
            {"name": payload.name, "status": payload.status.value, "external_id": payload.externalId},
        )


def update_offer(db: Persistence, user_id: UUID, offer_id: UUID, payload: OfferUpdate) -> dict[str, Any]:
    get_offer(db, user_id, offer_id)
    changes: dict[str, Any] = {}
    if payload.name is not None:
        changes["name"] = payload.name
    if payload.status is not None:
        changes["status"] = payload.status.value
    if payload.externalId is not None:
        changes["external_id"] = payload.externalId
    with storage_errors("update offer"):
        row = db.update("offers", user_id, offer_id, changes)
    if row is None:
        raise HTTPException(status_code=404, detail=f"offer not found: {offer_id}")
    return row


def find_or_create_offer(db: Persistence, user_id: UUID, external_id: Optional[str], name: str) -> UUID:
    """Match by external id, then by case-insensitive name, else create an active offer."""
    if external_id:
        rows = db.select("offers", user_id, eq={"external_id": external_id}, limit=1)
        if rows:
            return rows[0]["id"]
    rows = db.select("offers", user_id, ieq={"name": name}, limit=1)
    if rows:
        return rows[0]["id"]
    logger.info("creating offer %r for external id %r", name, external_id)
    row = db.insert("offers", user_id, {"name": name, "status": "active", "external_id": external_id})
    return row["id"]


# Sales


def upsert_sale(db: Persistence, user_id: UUID, values: dict[str, Any]) -> dict[str, Any]:
    """Insert or refresh a sale keyed on ``(user_id, source, order_id)``."""
    return db.upsert("sales", user_id, values, conflict=SALE_CONFLICT_KEY)


def make_manual_order_id() -> str:
    return f"MAN-{uuid4().hex[:12].upper()}"


def create_manual_sale(db: Persistence, user_id: UUID, payload: SaleCreate) -> dict[str, Any]:
    get_offer(db, user_id, payload.offerId)
    with storage_errors("save sale"):
        return upsert_sale(
            db,
            user_id,
            {
                "offer_id": payload.offerId,
                "source": MANUAL_SOURCE,
                "order_id": payload.orderId or make_manual_order_id(),
                "date": as_utc(payload.date),
                "amount_cents": payload.amountCents,
                "status": payload.status.value,
                "customer_email": payload.customerEmail,
                "payment_method": payload.paymentMethod,
            },
        )


def list_sales(
    db: Persistence, user_id: UUID, month: Optional[str] = None, offer_id: Optional[UUID] = None
) -> list[dict[str, Any]]:
    eq = {"offer_id": offer_id} if offer_id else None
    gte = lt = None
    if month:
        start, end = month_datetime_bounds(month)
        gte, lt = {"date": start}, {"date": end}
    with storage_errors("list sales"):
        return db.select("sales", user_id, eq=eq, gte=gte, lt=lt, order_by="date", descending=True)


# Spend events


def create_spend(db: Persistence, user_id: UUID, payload: SpendCreate) -> dict[str, Any]:
    get_offer(db, user_id, payload.offerId)
    with storage_errors("save spend"):
        return db.insert(
            "spend_events",
            user_id,
            {
                "offer_id": payload.offerId,
                "date": payload.date,
                "amount_cents": payload.amountCents,
                "note": (payload.note or "").strip() or None,
            },
        )


def list_spend(
    db: Persistence, user_id: UUID, month: Optional[str] = None, offer_id: Optional[UUID] = None
) -> list[dict[str, Any]]:
    eq = {"offer_id": offer_id} if offer_id else None
    gte = lte = None
    if month:
        first, last = month_bounds(month)
        gte, lte = {"date": first}, {"date": last}
    with storage_errors("list spend"):
        return db.select("spend_events", user_id, eq=eq, gte=gte, lte=lte, order_by="date", descending=True)


# Work sessions


def start_work_session(db: Persistence, user_id: UUID, payload: WorkSessionStart) -> dict[str, Any]:
    get_offer(db, user_id, payload.offerId)
    with storage_errors("start work session"):
        return db.insert(
            "work_sessions",
            user_id,
            {"offer_id": payload.offerId, "started_at": now_utc(), "note": payload.note},
        )


def end_work_session(db: Persistence, user_id: UUID, session_id: UUID) -> dict[str, Any]:
    with storage_errors("load work session"):
        row = db.get("work_sessions", user_id, session_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"work session not found: {session_id}")
    if row.get("ended_at") is not None:
        raise HTTPException(status_code=409, detail="work session already ended")
    ended_at = now_utc()
    minutes = max(0, round((ended_at - row["started_at"]).total_seconds() / 60))
    with storage_errors("end work session"):
        return db.update(
            "work_sessions", user_id, session_id, {"ended_at": ended_at, "duration_minutes": minutes}
        ) or row


def log_work_session(db: Persistence, user_id: UUID, payload: WorkSessionLog) -> dict[str, Any]:
    get_offer(db, user_id, payload.offerId)
    started_at = as_utc(payload.startedAt)
    with storage_errors("log work session"):
        return db.insert(
            "work_sessions",
            user_id,
            {
                "offer_id": payload.offerId,
                "started_at": started_at,
                "ended_at": started_at + timedelta(minutes=payload.durationMinutes),
                "duration_minutes": payload.durationMinutes,
                "note": payload.note,
            },
        )


def list_work_sessions(
    db: Persistence, user_id: UUID, month: Optional[str] = None, offer_id: Optional[UUID] = None
) -> list[dict[str, Any]]:
    eq = {"offer_id": offer_id} if offer_id else None
    gte = lt = None
    if month:
        start, end = month_datetime_bounds(month)
        gte, lt = {"started_at": start}, {"started_at": end}
    with storage_errors("list work sessions"):
        return db.select("work_sessions", user_id, eq=eq, gte=gte, lt=lt, order_by="started_at", descending=True)
