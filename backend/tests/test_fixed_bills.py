from fastapi.testclient import TestClient

import nocry.services.fixed_bills as fixed_bills
from nocry.main import app
from nocry.persistence import StorageError

client = TestClient(app)


def _account(headers: dict[str, str]) -> str:
    return client.post("/api/v1/accounts", json={"name": "Checking"}, headers=headers).json()["id"]


def _bill(headers: dict[str, str], **payload) -> dict:
    res = client.post("/api/v1/fixed-bills", json=payload, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()


def test_run_month_is_idempotent_and_clamps_day(auth_headers) -> None:
    account = _account(auth_headers)
    rent = _bill(auth_headers, name="Rent", amountCents=150000, dayOfMonth=31, accountId=account)
    _bill(auth_headers, name="Gym", amountCents=9000, dayOfMonth=5, accountId=account, isActive=False)

    first = client.post("/api/v1/fixed-bills/run", json={"month": "2024-02"}, headers=auth_headers)
    assert first.status_code == 200
    assert first.json() == {"month": "2024-02", "created": 1, "skipped": 0, "failed": 0}

    second = client.post("/api/v1/fixed-bills/run", json={"month": "2024-02"}, headers=auth_headers).json()
    assert second["created"] == 0
    assert second["skipped"] == 1

    posted = client.get(
        "/api/v1/transactions", params={"dateFrom": "2024-02-29", "dateTo": "2024-02-29"}, headers=auth_headers
    ).json()
    assert len(posted) == 1
    assert posted[0]["description"] == "[FIXA] Rent"
    assert posted[0]["type"] == "expense"
    assert posted[0]["amountCents"] == 150000
    assert posted[0]["accountId"] == account

    bills = {b["id"]: b for b in client.get("/api/v1/fixed-bills", headers=auth_headers).json()}
    assert bills[rent["id"]]["lastRunMonth"] == "2024-02"


def test_run_other_month_creates_again(auth_headers) -> None:
    account = _account(auth_headers)
    _bill(auth_headers, name="Internet", amountCents=12000, dayOfMonth=10, accountId=account)

    client.post("/api/v1/fixed-bills/run", json={"month": "2024-02"}, headers=auth_headers)
    res = client.post("/api/v1/fixed-bills/run", json={"month": "2024-03"}, headers=auth_headers).json()
    assert res["created"] == 1
    assert len(client.get("/api/v1/transactions", headers=auth_headers).json()) == 2


def test_next_fixed_bill(auth_headers) -> None:
    account = _account(auth_headers)
    assert client.get("/api/v1/fixed-bills/next", params={"today": "2024-03-20"}, headers=auth_headers).json() is None

    _bill(auth_headers, name="Water", amountCents=8000, dayOfMonth=10, accountId=account)
    _bill(auth_headers, name="Power", amountCents=20000, dayOfMonth=25, accountId=account)
    _bill(auth_headers, name="Old", amountCents=100, dayOfMonth=21, accountId=account, isActive=False)

    res = client.get("/api/v1/fixed-bills/next", params={"today": "2024-03-20"}, headers=auth_headers).json()
    assert res["name"] == "Power"
    assert res["dueDate"] == "2024-03-25"
    assert res["daysUntil"] == 5

    res = client.get("/api/v1/fixed-bills/next", params={"today": "2024-03-26"}, headers=auth_headers).json()
    assert res["name"] == "Water"
    assert res["dueDate"] == "2024-04-10"
    assert res["daysUntil"] == 15


def test_update_switches_destination(auth_headers) -> None:
    account = _account(auth_headers)
    card = client.post(
        "/api/v1/cards", json={"name": "Visa", "closingDay": 25, "dueDay": 5}, headers=auth_headers
    ).json()["id"]
    bill = _bill(auth_headers, name="Streaming", amountCents=3990, dayOfMonth=15, accountId=account)

    res = client.put(f"/api/v1/fixed-bills/{bill['id']}", json={"cardId": card, "amount": "44,90"}, headers=auth_headers)
    assert res.status_code == 200
    body = res.json()
    assert body["cardId"] == card
    assert body["accountId"] is None
    assert body["amountCents"] == 4490

    both = client.put(
        f"/api/v1/fixed-bills/{bill['id']}", json={"cardId": card, "accountId": account}, headers=auth_headers
    )
    assert both.status_code == 422


def test_fixed_bill_needs_one_destination(auth_headers) -> None:
    res = client.post(
        "/api/v1/fixed-bills", json={"name": "Rent", "amountCents": 1000, "dayOfMonth": 5}, headers=auth_headers
    )
    assert res.status_code == 422


def test_delete_fixed_bill(auth_headers) -> None:
    bill = _bill(auth_headers, name="Rent", amountCents=1000, dayOfMonth=5, accountId=_account(auth_headers))
    assert client.delete(f"/api/v1/fixed-bills/{bill['id']}", headers=auth_headers).json() == {"deleted": True}
    assert client.delete(f"/api/v1/fixed-bills/{bill['id']}", headers=auth_headers).status_code == 404


def test_failing_bill_is_counted_and_the_rest_still_run(auth_headers, monkeypatch) -> None:
    account = _account(auth_headers)
    _bill(auth_headers, name="A", amountCents=1000, dayOfMonth=5, accountId=account)
    _bill(auth_headers, name="B", amountCents=2000, dayOfMonth=6, accountId=account)
    original = fixed_bills._run_bill

    def flaky(db, user_id, bill, *args):
        if bill["name"] == "A":
            raise StorageError("insert rejected")
        return original(db, user_id, bill, *args)

    monkeypatch.setattr(fixed_bills, "_run_bill", flaky)
    res = client.post("/api/v1/fixed-bills/run", json={"month": "2024-07"}, headers=auth_headers)
    assert res.status_code == 200
    assert res.json() == {"month": "2024-07", "created": 1, "skipped": 0, "failed": 1}

    posted = client.get(
        "/api/v1/transactions", params={"dateFrom": "2024-07-01", "dateTo": "2024-07-31"}, headers=auth_headers
    ).json()
    assert [row["description"] for row in posted] == ["[FIXA] B"]
