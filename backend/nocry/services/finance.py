import logging
from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID, uuid4

from fastapi import HTTPException

from ..dates import as_utc, day_start_utc, now_utc
from ..persistence import Persistence, storage_errors
from ..schemas import (
    AccountCreate,
    AccountUpdate,
    BudgetSet,
    CardCreate,
    CardUpdate,
    CategoryCreate,
    CategoryType,
    CategoryUpdate,
    TransactionCreate,
    TransactionFilters,
    TransferCreate,
)

logger = logging.getLogger(__name__)


def _require_row(db: Persistence, table: str, user_id: UUID, entity_id: UUID, label: str) -> dict[str, Any]:
    with storage_errors(f"load {label}"):
        row = db.get(table, user_id, entity_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"{label} not found: {entity_id}")
    return row


def get_account(db: Persistence, user_id: UUID, account_id: UUID) -> dict[str, Any]:
    return _require_row(db, "accounts", user_id, account_id, "account")


def get_card(db: Persistence, user_id: UUID, card_id: UUID) -> dict[str, Any]:
    return _require_row(db, "cards", user_id, card_id, "card")


def get_category(db: Persistence, user_id: UUID, category_id: UUID) -> dict[str, Any]:
    return _require_row(db, "categories", user_id, category_id, "category")


# Accounts


def account_balances(db: Persistence, user_id: UUID) -> dict[UUID, int]:
    """Movement per account: income - expense - transfer out + transfer in."""
    with storage_errors("compute account balances"):
        rows = db.select("transactions", user_id, in_={"type": ["income", "expense", "transfer"]})
    movement: dict[UUID, int] = {}
    for row in rows:
        account_id = row.get("account_id")
        if account_id is None:
            continue
        amount = int(row["amount_cents"] or 0)
        if row["type"] == "income" or (row["type"] == "transfer" and row.get("transfer_leg") == "in"):
            movement[account_id] = movement.get(account_id, 0) + amount
        else:
            movement[account_id] = movement.get(account_id, 0) - amount
    return movement


def _with_balance(account: dict[str, Any], movement: dict[UUID, int]) -> dict[str, Any]:
    return {**account, "balance_cents": int(account["initial_balance_cents"] or 0) + movement.get(account["id"], 0)}


def list_accounts(
    db: Persistence, user_id: UUID, include_archived: bool = False, search: Optional[str] = None
) -> list[dict[str, Any]]:
    eq = {} if include_archived else {"archived": False}
    with storage_errors("list accounts"):
        rows = db.select("accounts", user_id, eq=eq, order_by="name")
    if search:
        needle = search.strip().lower()
        rows = [row for row in rows if needle in row["name"].lower()]
    movement = account_balances(db, user_id)
    return [_with_balance(row, movement) for row in rows]


def create_account(db: Persistence, user_id: UUID, payload: AccountCreate) -> dict[str, Any]:
    with storage_errors("create account"):
        row = db.insert(
            "accounts",
            user_id,
            {
                "name": payload.name,
                "notes": payload.notes,
                "initial_balance_cents": payload.initialBalanceCents,
                "archived": False,
            },
        )
    return _with_balance(row, {})


def update_account(db: Persistence, user_id: UUID, account_id: UUID, payload: AccountUpdate) -> dict[str, Any]:
    get_account(db, user_id, account_id)
    changes: dict[str, Any] = {}
    if payload.name is not None:
        changes["name"] = payload.name
    if payload.notes is not None:
        changes["notes"] = payload.notes
    if payload.initialBalanceCents is not None:
        changes["initial_balance_cents"] = payload.initialBalanceCents
    if payload.archived is not None:
        changes["archived"] = payload.archived
    with storage_errors("update account"):
        row = db.update("accounts", user_id, account_id, changes)
    if row is None:
        raise HTTPException(status_code=404, detail=f"account not found: {account_id}")
    return _with_balance(row, account_balances(db, user_id))


def archive_account(db: Persistence, user_id: UUID, account_id: UUID) -> dict[str, Any]:
    return update_account(db, user_id, account_id, AccountUpdate(archived=True))


# Cards


def list_cards(db: Persistence, user_id: UUID, include_archived: bool = False) -> list[dict[str, Any]]:
    eq = {} if include_archived else {"archived": False}
    with storage_errors("list cards"):
        return db.select("cards", user_id, eq=eq, order_by="name")


def create_card(db: Persistence, user_id: UUID, payload: CardCreate) -> dict[str, Any]:
    with storage_errors("create card"):
        return db.insert(
            "cards",
            user_id,
            {
                "name": payload.name,
                "closing_day": payload.closingDay,
                "due_day": payload.dueDay,
                "limit_cents": payload.limitCents,
                "archived": False,
            },
        )


def update_card(db: Persistence, user_id: UUID, card_id: UUID, payload: CardUpdate) -> dict[str, Any]:
    get_card(db, user_id, card_id)
    mapping = {
        "name": "name",
        "closingDay": "closing_day",
        "dueDay": "due_day",
        "limitCents": "limit_cents",
        "archived": "archived",
    }
    changes = {column: getattr(payload, field) for field, column in mapping.items() if getattr(payload, field) is not None}
    with storage_errors("update card"):
        row = db.update("cards", user_id, card_id, changes)
    if row is None:
        raise HTTPException(status_code=404, detail=f"card not found: {card_id}")
    return row


def archive_card(db: Persistence, user_id: UUID, card_id: UUID) -> dict[str, Any]:
    return update_card(db, user_id, card_id, CardUpdate(archived=True))


# Categories


def list_categories(
    db: Persistence, user_id: UUID, include_archived: bool = False, category_type: Optional[CategoryType] = None
) -> list[dict[str, Any]]:
    eq: dict[str, Any] = {} if include_archived else {"archived": False}
    if category_type is not None:
        eq["type"] = category_type.value
    with storage_errors("list categories"):
        return db.select("categories", user_id, eq=eq, order_by="name")


def create_category(db: Persistence, user_id: UUID, payload: CategoryCreate) -> dict[str, Any]:
    with storage_errors("create category"):
        existing = db.select("categories", user_id, ieq={"name": payload.name}, eq={"type": payload.type.value}, limit=1)
        if existing:
            raise HTTPException(status_code=409, detail=f"category already exists: {payload.name}")
        return db.insert("categories", user_id, {"name": payload.name, "type": payload.type.value, "archived": False})


def update_category(db: Persistence, user_id: UUID, category_id: UUID, payload: CategoryUpdate) -> dict[str, Any]:
    get_category(db, user_id, category_id)
    changes: dict[str, Any] = {}
    if payload.name is not None:
        changes["name"] = payload.name
    if payload.type is not None:
        changes["type"] = payload.type.value
    if payload.archived is not None:
        changes["archived"] = payload.archived
    with storage_errors("update category"):
        row = db.update("categories", user_id, category_id, changes)
    if row is None:
        raise HTTPException(status_code=404, detail=f"category not found: {category_id}")
    return row


def delete_category(db: Persistence, user_id: UUID, category_id: UUID) -> None:
    with storage_errors("delete category"):
        deleted = db.delete("categories", user_id, category_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"category not found: {category_id}")


# Transactions


def create_transaction(db: Persistence, user_id: UUID, payload: TransactionCreate) -> dict[str, Any]:
    if payload.accountId:
        get_account(db, user_id, payload.accountId)
    if payload.cardId:
        get_card(db, user_id, payload.cardId)
    if payload.categoryId:
        category = get_category(db, user_id, payload.categoryId)
        if category["type"] != payload.type.value:
            raise ValueError(f"category type {category['type']} does not match transaction type {payload.type.value}")
    with storage_errors("create transaction"):
        return db.insert(
            "transactions",
            user_id,
            {
                "type": payload.type.value,
                "occurred_at": as_utc(payload.occurredAt),
                "amount_cents": payload.amountCents,
                "account_id": payload.accountId,
                "card_id": payload.cardId,
                "category_id": payload.categoryId,
                "description": (payload.description or "").strip() or None,
            },
        )


def insert_transfer_pair(
    db: Persistence,
    user_id: UUID,
    amount_cents: int,
    occurred_at: datetime,
    description: Optional[str],
    source: dict[str, Any],
    destination: dict[str, Any],
) -> tuple[UUID, dict[str, Any], dict[str, Any]]:
    """Write both legs of a transfer under one group id.

    ``source`` and ``destination`` carry the ``account_id``/``card_id`` of each
    leg. When the second insert fails the first leg is removed again.
    """
    group_id = uuid4()
    base = {
        "type": "transfer",
        "occurred_at": as_utc(occurred_at),
        "amount_cents": amount_cents,
        "category_id": None,
        "description": description,
        "transfer_group_id": group_id,
    }
    with storage_errors("create transfer"):
        outgoing = db.insert(
            "transactions",
            user_id,
            {**base, "account_id": source.get("account_id"), "card_id": source.get("card_id"), "transfer_leg": "out"},
        )
        try:
            incoming = db.insert(
                "transactions",
                user_id,
                {
                    **base,
                    "account_id": destination.get("account_id"),
                    "card_id": destination.get("card_id"),
                    "transfer_leg": "in",
                },
            )
        except Exception:
            logger.warning("rolling back outgoing leg of transfer %s", group_id)
            db.delete("transactions", user_id, outgoing["id"])
            raise
    return group_id, outgoing, incoming


def create_transfer(db: Persistence, user_id: UUID, payload: TransferCreate) -> tuple[UUID, dict[str, Any], dict[str, Any]]:
    get_account(db, user_id, payload.fromAccountId)
    get_account(db, user_id, payload.toAccountId)
    return insert_transfer_pair(
        db,
        user_id,
        payload.amountCents,
        payload.occurredAt,
        (payload.description or "").strip() or None,
        {"account_id": payload.fromAccountId},
        {"account_id": payload.toAccountId},
    )


def list_transactions(db: Persistence, user_id: UUID, filters: TransactionFilters) -> list[dict[str, Any]]:
    eq: dict[str, Any] = {}
    if filters.accountId:
        eq["account_id"] = filters.accountId
    if filters.cardId:
        eq["card_id"] = filters.cardId
    if filters.categoryId:
        eq["category_id"] = filters.categoryId
    gte = {"occurred_at": day_start_utc(filters.dateFrom)} if filters.dateFrom else None
    lt = {"occurred_at": day_start_utc(filters.dateTo + timedelta(days=1))} if filters.dateTo else None
    with storage_errors("list transactions"):
        rows = db.select(
            "transactions",
            user_id,
            eq=eq,
            gte=gte,
            lt=lt,
            order_by=("occurred_at", "created_at"),
            descending=True,
        )
    if filters.search:
        needle = filters.search.strip().lower()
        rows = [row for row in rows if needle in (row.get("description") or "").lower()]
    if filters.limit:
        rows = rows[: filters.limit]
    return rows


def delete_transaction(db: Persistence, user_id: UUID, transaction_id: UUID) -> int:
    row = _require_row(db, "transactions", user_id, transaction_id, "transaction")
    with storage_errors("delete transaction"):
        if row.get("transfer_group_id"):
            legs = db.select("transactions", user_id, eq={"transfer_group_id": row["transfer_group_id"]})
            return sum(1 for leg in legs if db.delete("transactions", user_id, leg["id"]))
        return 1 if db.delete("transactions", user_id, transaction_id) else 0


# Budgets


def get_budget(db: Persistence, user_id: UUID, month: str) -> int:
    with storage_errors("load budget"):
        rows = db.select("budgets", user_id, eq={"month": month}, limit=1)
    return int(rows[0]["amount_cents"]) if rows else 0


def set_budget(db: Persistence, user_id: UUID, payload: BudgetSet) -> dict[str, Any]:
    with storage_errors("save budget"):
        return db.upsert(
            "budgets",
            user_id,
            {"month": payload.month, "amount_cents": payload.amountCents, "updated_at": now_utc()},
            conflict=("user_id", "month"),
        )
