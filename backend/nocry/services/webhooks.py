"""Kiwify payment webhook.

The HMAC is computed over the raw body, so the body is verified before it is
parsed. Sales are upserted on ``(user_id, source, order_id)`` which makes
repeated deliveries of one order update a single row.
"""

import json
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import ValidationError

from ..config import settings
from ..dates import as_utc
from ..persistence import Persistence
from ..schemas import KiwifyPayload
from ..security import is_signature_valid
from .digital import find_or_create_offer, upsert_sale

logger = logging.getLogger(__name__)

KIWIFY_SOURCE = "kiwify"
SIGNATURE_HEADER = "x-kiwify-signature"
APPROVED_EVENTS = {"purchase_approved", "pix_approved", "charge_approved"}


def map_kiwify_status(event: str) -> str:
    if event in APPROVED_EVENTS:
        return "approved"
    if event == "refund":
        return "refunded"
    if event == "chargeback":
        return "chargeback"
    return "ignored"


def total_to_cents(total: str) -> int:
    return int((Decimal(total) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _validation_details(exc: ValidationError) -> list[dict[str, str]]:
    return [
        {"field": ".".join(str(item) for item in err.get("loc", [])) or "body", "message": err.get("msg", "invalid")}
        for err in exc.errors()
    ]


def handle_kiwify_webhook(
    db: Persistence, raw_body: bytes, signature: Optional[str], dev_requested: bool
) -> tuple[int, dict[str, Any]]:
    """Return ``(status_code, body)`` for one delivery."""
    secret = settings.kiwify_webhook_secret
    if not secret:
        logger.error("KIWIFY_WEBHOOK_SECRET is not configured")
        return 500, {"error": "server configuration incomplete"}

    dev_bypass = settings.dev_tools and dev_requested
    if dev_bypass:
        logger.warning("kiwify signature check bypassed by dev flag")
    elif not is_signature_valid(signature, raw_body, secret):
        logger.warning("invalid kiwify webhook signature")
        return 401, {"error": "invalid signature"}

    try:
        data = json.loads(raw_body.decode("utf-8") or "null")
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("kiwify payload is not JSON: %s", exc)
        return 400, {"error": "invalid payload", "details": [{"field": "body", "message": "body must be JSON"}]}
    try:
        payload = KiwifyPayload.model_validate(data)
    except ValidationError as exc:
        logger.warning("invalid kiwify payload: %s", exc.error_count())
        return 400, {"error": "invalid payload", "details": _validation_details(exc)}

    status = map_kiwify_status(payload.event)
    if status == "ignored":
        logger.info("kiwify event %s ignored", payload.event)
        return 200, {"message": "event ignored", "event": payload.event}

    try:
        if not settings.webhook_default_user_id:
            raise RuntimeError("WEBHOOK_DEFAULT_USER_ID is not configured")
        user_id = UUID(settings.webhook_default_user_id)
        offer_id = find_or_create_offer(db, user_id, payload.product_id or payload.product_name, payload.product_name)
        sale = upsert_sale(
            db,
            user_id,
            {
                "offer_id": offer_id,
                "source": KIWIFY_SOURCE,
                "order_id": payload.order_id,
                "amount_cents": total_to_cents(payload.total),
                "status": status,
                "date": as_utc(payload.paid_at),
                "customer_email": payload.customer_email,
                "payment_method": payload.payment_method,
            },
        )
    except Exception as exc:
        logger.exception("failed to process kiwify order %s", payload.order_id)
        return 500, {"error": "internal server error", "message": str(exc)}

    logger.info("kiwify order %s stored as %s (%s)", payload.order_id, sale["id"], status)
    return 200, {"ok": True, "saleId": str(sale["id"])}
