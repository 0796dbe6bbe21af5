"""Session tokens, the request guard and the user profile.

A request is resolved in two steps: the ``Authorization: Bearer`` token is
tried first and, when it yields no user, the session cookie is tried next.
Protected API paths answer 401 when both fail; nothing here redirects.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from uuid import UUID

from fastapi import HTTPException, Request

from .config import settings
from .persistence import Persistence, storage_errors
from .schemas import ProfileUpdate, SessionSource
from .security import make_session_token

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "nocry_session"
active_sessions: dict[str, dict[str, Any]] = {}


@dataclass
class SessionResolution:
    user_id: Optional[UUID]
    source: SessionSource
    error_reason: Optional[str] = None


def create_session(user_id: UUID) -> str:
    token = make_session_token()
    active_sessions[token] = {"user_id": user_id, "last_seen": datetime.now(timezone.utc)}
    return token


def drop_session(token: str | None) -> None:
    if token and token in active_sessions:
        del active_sessions[token]


def _session_user_id(token: str | None) -> UUID | None:
    if not token:
        return None
    session = active_sessions.get(token)
    if session is None:
        return None
    now = datetime.now(timezone.utc)
    user_id = session.get("user_id")
    timeout = settings.session_timeout_minutes
    if user_id is None or (timeout > 0 and now - session["last_seen"] > timedelta(minutes=timeout)):
        del active_sessions[token]
        return None
    session["last_seen"] = now
    return user_id


def _bearer_token(request: Request) -> tuple[str | None, str | None]:
    auth = request.headers.get("Authorization")
    if not auth:
        return None, None
    parts = auth.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        return None, "invalid Authorization header"
    return parts[1].strip(), None


def request_token(request: Request) -> str | None:
    token, _ = _bearer_token(request)
    return token or request.cookies.get(SESSION_COOKIE_NAME)


def resolve_session(request: Request) -> SessionResolution:
    token, reason = _bearer_token(request)
    if token:
        user_id = _session_user_id(token)
        if user_id is not None:
            return SessionResolution(user_id=user_id, source=SessionSource.bearer)
        reason = "invalid or expired bearer token"

    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if cookie:
        user_id = _session_user_id(cookie)
        if user_id is not None:
            return SessionResolution(user_id=user_id, source=SessionSource.cookie)
        reason = reason or "invalid or expired session cookie"

    return SessionResolution(user_id=None, source=SessionSource.none, error_reason=reason or "missing session token")


def require_user(request: Request) -> UUID:
    resolution = resolve_session(request)
    if resolution.user_id is None:
        raise HTTPException(status_code=401, detail=resolution.error_reason)
    return resolution.user_id


def display_name(profile: dict[str, Any] | None, email: str | None) -> str:
    profile = profile or {}
    for candidate in (profile.get("display_name"), profile.get("full_name")):
        if candidate and candidate.strip():
            return candidate.strip()
    if email and "@" in email:
        local_part = email.split("@", 1)[0].strip()
        if local_part:
            return local_part
    return "Member"


def get_or_create_profile(db: Persistence, user: dict[str, Any]) -> dict[str, Any]:
    with storage_errors("load profile"):
        rows = db.select("profiles", user["id"], limit=1)
        if rows:
            return rows[0]
        logger.info("creating profile for user %s", user["id"])
        return db.insert(
            "profiles",
            user["id"],
            {"full_name": user.get("full_name"), "display_name": None, "onboarding_done": False},
        )


def update_profile(db: Persistence, user: dict[str, Any], payload: ProfileUpdate) -> dict[str, Any]:
    profile = get_or_create_profile(db, user)
    changes: dict[str, Any] = {}
    if payload.fullName is not None:
        changes["full_name"] = payload.fullName.strip() or None
    if payload.displayName is not None:
        changes["display_name"] = payload.displayName.strip() or None
    if not changes:
        return profile
    with storage_errors("update profile"):
        return db.update("profiles", user["id"], profile["id"], changes) or profile
