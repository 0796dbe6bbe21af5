from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from fastapi import HTTPException
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .config import settings
from .security import hash_password, verify_password
from .store import store

logger = logging.getLogger(__name__)

TABLE_COLUMNS: dict[str, tuple[str, ...]] = {
    "profiles": ("id", "user_id", "full_name", "display_name", "onboarding_done", "onboarding_completed_at", "created_at"),
    "accounts": ("id", "user_id", "name", "notes", "initial_balance_cents", "archived", "created_at"),
    "cards": ("id", "user_id", "name", "closing_day", "due_day", "limit_cents", "archived", "created_at"),
    "categories": ("id", "user_id", "name", "type", "archived", "created_at"),
    "transactions": (
        "id", "user_id", "type", "occurred_at", "amount_cents", "account_id", "card_id", "category_id",
        "description", "transfer_group_id", "transfer_leg", "created_at",
    ),
    "fixed_bills": (
        "id", "user_id", "name", "amount_cents", "day_of_month", "account_id", "card_id", "is_active",
        "last_run_month", "created_at",
    ),
    "budgets": ("id", "user_id", "month", "amount_cents", "created_at", "updated_at"),
    "offers": ("id", "user_id", "name", "status", "external_id", "created_at"),
    "spend_events": ("id", "user_id", "offer_id", "date", "amount_cents", "note", "created_at"),
    "sales": (
        "id", "user_id", "offer_id", "source", "order_id", "date", "amount_cents", "status",
        "customer_email", "payment_method", "created_at", "updated_at",
    ),
    "work_sessions": ("id", "user_id", "offer_id", "started_at", "ended_at", "duration_minutes", "note", "created_at"),
}

UNIQUE_KEYS: dict[str, tuple[str, ...]] = {
    "sales": ("user_id", "source", "order_id"),
    "budgets": ("user_id", "month"),
}

_READ_ONLY = {"id", "user_id", "created_at"}


class StorageError(Exception):
    """Raised when the backing store rejects or fails a query."""


def _columns(table: str) -> tuple[str, ...]:
    try:
        return TABLE_COLUMNS[table]
    except KeyError as exc:
        raise StorageError(f"unknown table: {table}") from exc


def _check_columns(table: str, names: Iterable[str]) -> None:
    known = _columns(table)
    unknown = [name for name in names if name not in known]
    if unknown:
        raise StorageError(f"unknown column(s) for {table}: {', '.join(unknown)}")


def _order_columns(order_by: str | Sequence[str] | None) -> list[str]:
    if order_by is None:
        return []
    if isinstance(order_by, str):
        return [order_by]
    return list(order_by)


def _sort_key(value: Any) -> tuple[bool, Any]:
    return (value is not None, value)


class Persistence:
    """User-scoped table gateway.

    Every call takes the owner id; rows that belong to another user are never
    returned or touched.
    """

    def insert(self, table: str, user_id: UUID, values: Mapping[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def select(
        self,
        table: str,
        user_id: UUID,
        *,
        eq: Mapping[str, Any] | None = None,
        ieq: Mapping[str, str] | None = None,
        in_: Mapping[str, Sequence[Any]] | None = None,
        gte: Mapping[str, Any] | None = None,
        lte: Mapping[str, Any] | None = None,
        lt: Mapping[str, Any] | None = None,
        order_by: str | Sequence[str] | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        raise NotImplementedError

    def get(self, table: str, user_id: UUID, entity_id: UUID) -> dict[str, Any] | None:
        rows = self.select(table, user_id, eq={"id": entity_id}, limit=1)
        return rows[0] if rows else None

    def update(self, table: str, user_id: UUID, entity_id: UUID, values: Mapping[str, Any]) -> dict[str, Any] | None:
        raise NotImplementedError

    def delete(self, table: str, user_id: UUID, entity_id: UUID) -> bool:
        raise NotImplementedError

    def upsert(self, table: str, user_id: UUID, values: Mapping[str, Any], conflict: Sequence[str]) -> dict[str, Any]:
        raise NotImplementedError

    def register_user(self, email: str, password: str, full_name: str | None) -> dict[str, Any]:
        raise NotImplementedError

    def authenticate_user(self, email: str, password: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def get_user_by_id(self, user_id: UUID) -> dict[str, Any] | None:
        raise NotImplementedError

    def debug_counts(self) -> dict[str, int]:
        raise NotImplementedError


class InMemoryPersistence(Persistence):
    def _owned(self, table: str, user_id: UUID) -> list[dict[str, Any]]:
        return [row for row in store.table(table).values() if row.get("user_id") == user_id]

    def _find_conflict(self, table: str, row: Mapping[str, Any], keys: Sequence[str], skip_id: UUID | None = None) -> dict[str, Any] | None:
        for existing in store.table(table).values():
            if skip_id is not None and existing["id"] == skip_id:
                continue
            if all(existing.get(key) == row.get(key) for key in keys):
                return existing
        return None

    def insert(self, table: str, user_id: UUID, values: Mapping[str, Any]) -> dict[str, Any]:
        _check_columns(table, values.keys())
        row = {column: None for column in _columns(table)}
        row.update(values)
        row["id"] = values.get("id") or uuid4()
        row["user_id"] = user_id
        row["created_at"] = store.now()
        if "updated_at" in row:
            row["updated_at"] = row["created_at"]
        keys = UNIQUE_KEYS.get(table)
        if keys and self._find_conflict(table, row, keys):
            raise StorageError(f"duplicate key on {table} ({', '.join(keys)})")
        store.table(table)[row["id"]] = row
        return dict(row)

    def select(
        self,
        table: str,
        user_id: UUID,
        *,
        eq: Mapping[str, Any] | None = None,
        ieq: Mapping[str, str] | None = None,
        in_: Mapping[str, Sequence[Any]] | None = None,
        gte: Mapping[str, Any] | None = None,
        lte: Mapping[str, Any] | None = None,
        lt: Mapping[str, Any] | None = None,
        order_by: str | Sequence[str] | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        eq, ieq, in_ = eq or {}, ieq or {}, in_ or {}
        gte, lte, lt = gte or {}, lte or {}, lt or {}
        order_cols = _order_columns(order_by)
        _check_columns(table, [*eq, *ieq, *in_, *gte, *lte, *lt, *order_cols])

        def matches(row: dict[str, Any]) -> bool:
            for col, val in eq.items():
                if val is None:
                    if row.get(col) is not None:
                        return False
                elif row.get(col) != val:
                    return False
            for col, val in ieq.items():
                if (row.get(col) or "").lower() != (val or "").lower():
                    return False
            for col, options in in_.items():
                if row.get(col) not in options:
                    return False
            for bounds, check in ((gte, lambda a, b: a >= b), (lte, lambda a, b: a <= b), (lt, lambda a, b: a < b)):
                for col, val in bounds.items():
                    current = row.get(col)
                    if current is None or not check(current, val):
                        return False
            return True

        rows = [dict(row) for row in self._owned(table, user_id) if matches(row)]
        for col in reversed(order_cols):
            rows.sort(key=lambda r, c=col: _sort_key(r.get(c)), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return rows

    def update(self, table: str, user_id: UUID, entity_id: UUID, values: Mapping[str, Any]) -> dict[str, Any] | None:
        _check_columns(table, values.keys())
        row = store.table(table).get(entity_id)
        if row is None or row.get("user_id") != user_id:
            return None
        changes = {key: val for key, val in values.items() if key not in _READ_ONLY}
        keys = UNIQUE_KEYS.get(table)
        if keys and any(key in changes for key in keys):
            if self._find_conflict(table, {**row, **changes}, keys, skip_id=entity_id):
                raise StorageError(f"duplicate key on {table} ({', '.join(keys)})")
        row.update(changes)
        if "updated_at" in row:
            row["updated_at"] = store.now()
        return dict(row)

    def delete(self, table: str, user_id: UUID, entity_id: UUID) -> bool:
        rows = store.table(table)
        row = rows.get(entity_id)
        if row is None or row.get("user_id") != user_id:
            return False
        del rows[entity_id]
        return True

    def upsert(self, table: str, user_id: UUID, values: Mapping[str, Any], conflict: Sequence[str]) -> dict[str, Any]:
        _check_columns(table, [*values.keys(), *conflict])
        probe = {**values, "user_id": user_id}
        existing = self._find_conflict(table, probe, conflict)
        if existing is None:
            return self.insert(table, user_id, values)
        updated = self.update(table, user_id, existing["id"], values)
        if updated is None:
            raise StorageError(f"conflicting {table} row belongs to another owner")
        return updated

    def register_user(self, email: str, password: str, full_name: str | None) -> dict[str, Any]:
        for row in store.users.values():
            if row["email"] == email:
                raise HTTPException(status_code=409, detail="email already registered")
        user_id = uuid4()
        user_row = {"id": user_id, "email": email, "full_name": full_name, "created_at": store.now()}
        store.users[user_id] = user_row
        store.user_credentials[user_id] = hash_password(password)
        return dict(user_row)

    def authenticate_user(self, email: str, password: str) -> dict[str, Any] | None:
        for user_id, row in store.users.items():
            if row["email"] == email:
                stored_hash = store.user_credentials.get(user_id)
                if stored_hash and verify_password(password, stored_hash):
                    return dict(row)
                return None
        return None

    def get_user_by_id(self, user_id: UUID) -> dict[str, Any] | None:
        row = store.users.get(user_id)
        return dict(row) if row else None

    def debug_counts(self) -> dict[str, int]:
        counts = {"users": len(store.users)}
        counts.update({name: len(rows) for name, rows in store.tables.items()})
        return counts


class PostgresPersistence(Persistence):
    def __init__(self, database_url: str) -> None:
        self.engine: Engine = create_engine(database_url, future=True, pool_pre_ping=True)

    def _run(self, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        try:
            with self.engine.begin() as conn:
                result = conn.execute(text(sql), params or {})
                if result.returns_rows:
                    return [dict(row._mapping) for row in result.fetchall()]
                return []
        except IntegrityError as exc:
            raise StorageError(f"constraint violation: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            logger.error("postgres error: %s", exc.__class__.__name__)
            raise StorageError(f"postgres error: {exc.__class__.__name__}") from exc

    def insert(self, table: str, user_id: UUID, values: Mapping[str, Any]) -> dict[str, Any]:
        _check_columns(table, values.keys())
        row = {key: val for key, val in values.items() if key not in _READ_ONLY}
        row["id"] = values.get("id") or uuid4()
        row["user_id"] = user_id
        cols = ", ".join(row)
        binds = ", ".join(f":{col}" for col in row)
        return self._run(f"insert into {table} ({cols}) values ({binds}) returning *", row)[0]

    def select(
        self,
        table: str,
        user_id: UUID,
        *,
        eq: Mapping[str, Any] | None = None,
        ieq: Mapping[str, str] | None = None,
        in_: Mapping[str, Sequence[Any]] | None = None,
        gte: Mapping[str, Any] | None = None,
        lte: Mapping[str, Any] | None = None,
        lt: Mapping[str, Any] | None = None,
        order_by: str | Sequence[str] | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        eq, ieq, in_ = eq or {}, ieq or {}, in_ or {}
        gte, lte, lt = gte or {}, lte or {}, lt or {}
        order_cols = _order_columns(order_by)
        _check_columns(table, [*eq, *ieq, *in_, *gte, *lte, *lt, *order_cols])
        clauses = ["user_id = :user_id"]
        params: dict[str, Any] = {"user_id": user_id}
        for col, val in eq.items():
            if val is None:
                clauses.append(f"{col} is null")
            else:
                clauses.append(f"{col} = :eq_{col}")
                params[f"eq_{col}"] = val
        for col, val in ieq.items():
            clauses.append(f"lower({col}) = lower(:ieq_{col})")
            params[f"ieq_{col}"] = val
        for col, options in in_.items():
            clauses.append(f"{col} = any(:in_{col})")
            params[f"in_{col}"] = list(options)
        for prefix, op, bounds in (("gte", ">=", gte), ("lte", "<=", lte), ("lt", "<", lt)):
            for col, val in bounds.items():
                clauses.append(f"{col} {op} :{prefix}_{col}")
                params[f"{prefix}_{col}"] = val
        sql = f"select * from {table} where {' and '.join(clauses)}"
        if order_cols:
            direction = "desc" if descending else "asc"
            sql += " order by " + ", ".join(f"{col} {direction}" for col in order_cols)
        if limit is not None:
            sql += " limit :limit"
            params["limit"] = int(limit)
        return self._run(sql, params)

    def update(self, table: str, user_id: UUID, entity_id: UUID, values: Mapping[str, Any]) -> dict[str, Any] | None:
        _check_columns(table, values.keys())
        changes = {key: val for key, val in values.items() if key not in _READ_ONLY}
        if "updated_at" in _columns(table):
            changes["updated_at"] = datetime.now(timezone.utc)
        if not changes:
            return self.get(table, user_id, entity_id)
        assignments = ", ".join(f"{col} = :{col}" for col in changes)
        rows = self._run(
            f"update {table} set {assignments} where id = :_id and user_id = :_user_id returning *",
            {**changes, "_id": entity_id, "_user_id": user_id},
        )
        return rows[0] if rows else None

    def delete(self, table: str, user_id: UUID, entity_id: UUID) -> bool:
        _columns(table)
        rows = self._run(
            f"delete from {table} where id = :id and user_id = :user_id returning id",
            {"id": entity_id, "user_id": user_id},
        )
        return bool(rows)

    def upsert(self, table: str, user_id: UUID, values: Mapping[str, Any], conflict: Sequence[str]) -> dict[str, Any]:
        _check_columns(table, [*values.keys(), *conflict])
        row = {key: val for key, val in values.items() if key not in _READ_ONLY}
        row["id"] = uuid4()
        row["user_id"] = user_id
        if "updated_at" in _columns(table):
            row["updated_at"] = datetime.now(timezone.utc)
        cols = ", ".join(row)
        binds = ", ".join(f":{col}" for col in row)
        updatable = [col for col in row if col not in _READ_ONLY and col not in conflict]
        assignments = ", ".join(f"{col} = excluded.{col}" for col in updatable)
        sql = (
            f"insert into {table} ({cols}) values ({binds}) "
            f"on conflict ({', '.join(conflict)}) do update set {assignments} returning *"
        )
        return self._run(sql, row)[0]

    def register_user(self, email: str, password: str, full_name: str | None) -> dict[str, Any]:
        existing = self._run("select id from users where lower(email) = lower(:email) limit 1", {"email": email})
        if existing:
            raise HTTPException(status_code=409, detail="email already registered")
        return self._run(
            """
            insert into users (id, email, full_name, password_hash)
            values (:id, :email, :full_name, :password_hash)
            returning id, email, full_name, created_at
            """,
            {"id": uuid4(), "email": email, "full_name": full_name, "password_hash": hash_password(password)},
        )[0]

    def authenticate_user(self, email: str, password: str) -> dict[str, Any] | None:
        rows = self._run(
            "select id, email, full_name, created_at, password_hash from users where lower(email) = lower(:email) limit 1",
            {"email": email},
        )
        if not rows:
            return None
        row = rows[0]
        stored_hash = row.pop("password_hash", None)
        if not stored_hash or not verify_password(password, stored_hash):
            return None
        return row

    def get_user_by_id(self, user_id: UUID) -> dict[str, Any] | None:
        rows = self._run("select id, email, full_name, created_at from users where id = :id", {"id": user_id})
        return rows[0] if rows else None

    def debug_counts(self) -> dict[str, int]:
        counts = {"users": int(self._run("select count(*)::integer as total from users")[0]["total"])}
        for table in TABLE_COLUMNS:
            counts[table] = int(self._run(f"select count(*)::integer as total from {table}")[0]["total"])
        return counts


def get_persistence() -> Persistence:
    if settings.storage_backend == "postgres":
        return PostgresPersistence(settings.database_url)
    return InMemoryPersistence()


@contextmanager
def storage_errors(action: str) -> Iterator[None]:
    """Turn a ``StorageError`` into a 502 carrying ``failed to <action>``."""
    try:
        yield
    except StorageError as exc:
        logger.error("failed to %s: %s", action, exc)
        raise HTTPException(status_code=502, detail=f"failed to {action}: {exc}") from exc
