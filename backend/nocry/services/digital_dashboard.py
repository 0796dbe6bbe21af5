import logging
from typing import Any
from uuid import UUID

from .. import formulas
from ..persistence import Persistence
from .digital import list_offers, list_sales, list_spend, list_work_sessions

logger = logging.getLogger(__name__)

RANKING_SIZE = 5


def _approved(sales: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [sale for sale in sales if sale.get("status") == "approved"]


def get_digital_month_summary(db: Persistence, user_id: UUID, month: str) -> dict[str, Any]:
    spend_cents = sum(int(row["amount_cents"] or 0) for row in list_spend(db, user_id, month=month))
    sales = _approved(list_sales(db, user_id, month=month))
    revenue_cents = sum(int(row["amount_cents"] or 0) for row in sales)
    sales_count = len(sales)
    minutes = sum(int(row.get("duration_minutes") or 0) for row in list_work_sessions(db, user_id, month=month))
    return {
        "month": month,
        "spend_cents": spend_cents,
        "revenue_cents": revenue_cents,
        "sales_count": sales_count,
        "hours": formulas.minutes_to_hours(minutes),
        "roi": formulas.round_optional(formulas.roi_percent(revenue_cents, spend_cents)),
        "cac_cents": formulas.round_optional(formulas.cac(spend_cents, sales_count)),
        "ticket_cents": formulas.round_optional(formulas.average_ticket(revenue_cents, sales_count)),
    }


def get_offer_ranking(db: Persistence, user_id: UUID, month: str, size: int = RANKING_SIZE) -> list[dict[str, Any]]:
    """Offers with activity in ``month`` ordered by profit (revenue - spend)."""
    totals: dict[UUID, dict[str, int]] = {}

    def bucket(offer_id: UUID) -> dict[str, int]:
        return totals.setdefault(offer_id, {"spend": 0, "revenue": 0, "sales": 0, "minutes": 0})

    for row in list_spend(db, user_id, month=month):
        bucket(row["offer_id"])["spend"] += int(row["amount_cents"] or 0)
    for row in _approved(list_sales(db, user_id, month=month)):
        entry = bucket(row["offer_id"])
        entry["revenue"] += int(row["amount_cents"] or 0)
        entry["sales"] += 1
    for row in list_work_sessions(db, user_id, month=month):
        bucket(row["offer_id"])["minutes"] += int(row.get("duration_minutes") or 0)

    names = {offer["id"]: offer["name"] for offer in list_offers(db, user_id)}
    ranking = []
    for offer_id, entry in totals.items():
        if offer_id not in names:
            logger.warning("activity for unknown offer %s ignored", offer_id)
            continue
        ranking.append(
            {
                "offer_id": offer_id,
                "name": names[offer_id],
                "spend_cents": entry["spend"],
                "revenue_cents": entry["revenue"],
                "profit_cents": entry["revenue"] - entry["spend"],
                "roi": formulas.round_optional(formulas.roi_percent(entry["revenue"], entry["spend"])),
                "sales_count": entry["sales"],
                "hours": formulas.minutes_to_hours(entry["minutes"]),
            }
        )
    ranking.sort(key=lambda item: (-item["profit_cents"], item["name"].lower()))
    return ranking[:size]
