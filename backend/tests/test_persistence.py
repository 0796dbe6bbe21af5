from uuid import uuid4

import pytest
from fastapi import HTTPException

from nocry.persistence import InMemoryPersistence, StorageError, storage_errors

db = InMemoryPersistence()


def _offer(user_id, name: str) -> dict:
    return db.insert("offers", user_id, {"name": name, "status": "active"})


def test_rows_are_scoped_to_their_owner() -> None:
    alice, bob = uuid4(), uuid4()
    offer = _offer(alice, "Course")

    assert db.get("offers", alice, offer["id"])["name"] == "Course"
    assert db.get("offers", bob, offer["id"]) is None
    assert db.select("offers", bob) == []
    assert db.update("offers", bob, offer["id"], {"name": "Stolen"}) is None
    assert db.delete("offers", bob, offer["id"]) is False
    assert db.get("offers", alice, offer["id"])["name"] == "Course"


def test_insert_fills_missing_columns_and_timestamps() -> None:
    row = _offer(uuid4(), "Ebook")
    assert row["external_id"] is None
    assert row["created_at"].tzinfo is not None


def test_duplicate_sale_key_is_rejected_and_upsert_updates() -> None:
    user_id = uuid4()
    offer = _offer(user_id, "Course")
    values = {"offer_id": offer["id"], "source": "kiwify", "order_id": "O-1", "amount_cents": 100, "status": "approved"}
    first = db.insert("sales", user_id, values)

    with pytest.raises(StorageError):
        db.insert("sales", user_id, values)

    updated = db.upsert("sales", user_id, {**values, "status": "refunded"}, conflict=("user_id", "source", "order_id"))
    assert updated["id"] == first["id"]
    assert updated["status"] == "refunded"
    assert len(db.select("sales", user_id)) == 1

    # The same order id under another user is a different sale.
    other = db.upsert("sales", uuid4(), values, conflict=("user_id", "source", "order_id"))
    assert other["id"] != first["id"]


def test_select_filters_and_ordering() -> None:
    user_id = uuid4()
    for name, status in (("beta", "active"), ("Alpha", "paused"), ("gamma", "active")):
        db.insert("offers", user_id, {"name": name, "status": status, "external_id": None if name == "beta" else name})

    names = [r["name"] for r in db.select("offers", user_id, order_by="external_id")]
    assert names[0] == "beta"

    active = db.select("offers", user_id, eq={"status": "active"}, order_by="name", descending=True)
    assert [r["name"] for r in active] == ["gamma", "beta"]

    assert len(db.select("offers", user_id, ieq={"name": "ALPHA"})) == 1
    assert len(db.select("offers", user_id, in_={"name": ["beta", "gamma"]})) == 2
    assert len(db.select("offers", user_id, limit=1)) == 1


def test_unknown_table_or_column_is_a_storage_error() -> None:
    with pytest.raises(StorageError):
        db.select("offers", uuid4(), eq={"drop table": 1})
    with pytest.raises(StorageError):
        db.insert("offers", uuid4(), {"name": "x", "secret": True})
    with pytest.raises(StorageError):
        db.select("ledger", uuid4())


def test_storage_errors_become_502() -> None:
    with pytest.raises(HTTPException) as caught:
        with storage_errors("list offers"):
            raise StorageError("connection reset")
    assert caught.value.status_code == 502
    assert caught.value.detail == "failed to list offers: connection reset"
