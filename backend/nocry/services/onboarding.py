import logging
from typing import Any
from uuid import UUID

from ..auth import display_name, get_or_create_profile
from ..dates import now_utc
from ..persistence import Persistence, storage_errors
from ..schemas import AccountCreate, CardCreate, OnboardingSubmit
from .finance import create_account, create_card, list_accounts, list_cards

logger = logging.getLogger(__name__)


def get_onboarding_state(db: Persistence, user: dict[str, Any]) -> dict[str, Any]:
    profile = get_or_create_profile(db, user)
    return {
        "onboarding_done": bool(profile.get("onboarding_done")),
        "display_name": display_name(profile, user.get("email")),
        "accounts_count": len(list_accounts(db, user["id"], include_archived=True)),
        "cards_count": len(list_cards(db, user["id"], include_archived=True)),
    }


def submit_onboarding(db: Persistence, user: dict[str, Any], payload: OnboardingSubmit) -> dict[str, Any]:
    user_id: UUID = user["id"]
    profile = get_or_create_profile(db, user)
    for account in payload.accounts:
        create_account(db, user_id, AccountCreate(name=account.name, initialBalanceCents=account.initialBalanceCents))
    for card in payload.cards:
        create_card(
            db,
            user_id,
            CardCreate(name=card.name, closingDay=card.closingDay, dueDay=card.dueDay, limitCents=card.limitCents),
        )
    changes: dict[str, Any] = {"onboarding_done": True, "onboarding_completed_at": now_utc()}
    if payload.displayName and payload.displayName.strip():
        changes["display_name"] = payload.displayName.strip()
    with storage_errors("complete onboarding"):
        db.update("profiles", user_id, profile["id"], changes)
    logger.info(
        "onboarding done for %s: %s account(s), %s card(s)", user_id, len(payload.accounts), len(payload.cards)
    )
    return get_onboarding_state(db, user)
