from fastapi.testclient import TestClient

from nocry.main import app

client = TestClient(app)


def _account(headers: dict[str, str], name: str = "Checking", initial: int = 0) -> str:
    res = client.post("/api/v1/accounts", json={"name": name, "initialBalanceCents": initial}, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()["id"]


def _card(headers: dict[str, str]) -> str:
    res = client.post("/api/v1/cards", json={"name": "Visa", "closingDay": 25, "dueDay": 5}, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()["id"]


def _tx(headers: dict[str, str], **payload) -> dict:
    body = {"occurredAt": "2024-03-10T12:00:00", **payload}
    res = client.post("/api/v1/transactions", json=body, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()


def _balances(headers: dict[str, str]) -> dict[str, int]:
    res = client.get("/api/v1/accounts", headers=headers)
    assert res.status_code == 200
    return {row["id"]: row["balanceCents"] for row in res.json()}


def test_account_balance_tracks_income_expense_and_transfers(auth_headers) -> None:
    main = _account(auth_headers, "Main", initial=100000)
    savings = _account(auth_headers, "Savings")
    card = _card(auth_headers)

    _tx(auth_headers, type="income", amountCents=50000, accountId=main)
    _tx(auth_headers, type="expense", amountCents=20000, accountId=main)
    _tx(auth_headers, type="expense", amountCents=9999, cardId=card)
    res = client.post(
        "/api/v1/transfers",
        json={"fromAccountId": main, "toAccountId": savings, "amountCents": 10000, "occurredAt": "2024-03-11T09:00:00"},
        headers=auth_headers,
    )
    assert res.status_code == 201
    transfer = res.json()
    assert transfer["outgoing"]["transferLeg"] == "out"
    assert transfer["incoming"]["transferLeg"] == "in"
    assert transfer["outgoing"]["transferGroupId"] == transfer["incoming"]["transferGroupId"]

    balances = _balances(auth_headers)
    assert balances[main] == 120000
    assert balances[savings] == 10000


def test_deleting_one_transfer_leg_removes_both(auth_headers) -> None:
    a = _account(auth_headers, "A", initial=5000)
    b = _account(auth_headers, "B")
    transfer = client.post(
        "/api/v1/transfers",
        json={"fromAccountId": a, "toAccountId": b, "amount": "20,00", "occurredAt": "2024-03-11T09:00:00"},
        headers=auth_headers,
    ).json()
    assert transfer["outgoing"]["amountCents"] == 2000

    res = client.delete(f"/api/v1/transactions/{transfer['incoming']['id']}", headers=auth_headers)
    assert res.status_code == 200
    assert res.json() == {"deleted": 2}
    assert client.get("/api/v1/transactions", headers=auth_headers).json() == []
    assert _balances(auth_headers) == {a: 5000, b: 0}


def test_transfer_to_unknown_account_returns_404(auth_headers, register_user) -> None:
    mine = _account(auth_headers)
    theirs = _account(register_user())
    res = client.post(
        "/api/v1/transfers",
        json={"fromAccountId": mine, "toAccountId": theirs, "amountCents": 100, "occurredAt": "2024-03-11T09:00:00"},
        headers=auth_headers,
    )
    assert res.status_code == 404


def test_brl_amount_string_is_converted(auth_headers) -> None:
    account = _account(auth_headers)
    tx = _tx(auth_headers, type="income", amount="R$ 1.234,56", accountId=account)
    assert tx["amountCents"] == 123456


def test_category_type_must_match_transaction(auth_headers) -> None:
    account = _account(auth_headers)
    salary = client.post("/api/v1/categories", json={"name": "Salary", "type": "income"}, headers=auth_headers).json()
    res = client.post(
        "/api/v1/transactions",
        json={
            "type": "expense",
            "occurredAt": "2024-03-10T12:00:00",
            "amountCents": 100,
            "accountId": account,
            "categoryId": salary["id"],
        },
        headers=auth_headers,
    )
    assert res.status_code == 422
    assert "does not match" in res.json()["error"]["details"][0]["message"]


def test_category_crud(auth_headers) -> None:
    res = client.post("/api/v1/categories", json={"name": "Food", "type": "expense"}, headers=auth_headers)
    assert res.status_code == 201
    food = res.json()

    dup = client.post("/api/v1/categories", json={"name": "food", "type": "expense"}, headers=auth_headers)
    assert dup.status_code == 409
    other_type = client.post("/api/v1/categories", json={"name": "Food", "type": "income"}, headers=auth_headers)
    assert other_type.status_code == 201

    expense_only = client.get("/api/v1/categories", params={"type": "expense"}, headers=auth_headers).json()
    assert [c["name"] for c in expense_only] == ["Food"]

    renamed = client.put(f"/api/v1/categories/{food['id']}", json={"name": "Groceries"}, headers=auth_headers)
    assert renamed.json()["name"] == "Groceries"

    archived = client.post(f"/api/v1/categories/{food['id']}/archive", headers=auth_headers)
    assert archived.json()["archived"] is True
    assert len(client.get("/api/v1/categories", headers=auth_headers).json()) == 1
    assert len(client.get("/api/v1/categories", params={"includeArchived": "true"}, headers=auth_headers).json()) == 2

    assert client.delete(f"/api/v1/categories/{food['id']}", headers=auth_headers).json() == {"deleted": True}
    assert client.delete(f"/api/v1/categories/{food['id']}", headers=auth_headers).status_code == 404


def test_accounts_search_and_archive(auth_headers) -> None:
    wallet = _account(auth_headers, "Wallet")
    _account(auth_headers, "Nubank")

    found = client.get("/api/v1/accounts", params={"search": "NU"}, headers=auth_headers).json()
    assert [a["name"] for a in found] == ["Nubank"]

    client.post(f"/api/v1/accounts/{wallet}/archive", headers=auth_headers)
    names = [a["name"] for a in client.get("/api/v1/accounts", headers=auth_headers).json()]
    assert names == ["Nubank"]


def test_accounts_are_scoped_to_their_owner(auth_headers, register_user) -> None:
    other = register_user()
    account = _account(other, "Hidden")
    assert client.get("/api/v1/accounts", headers=auth_headers).json() == []
    res = client.put(f"/api/v1/accounts/{account}", json={"name": "Mine now"}, headers=auth_headers)
    assert res.status_code == 404


def test_transaction_filters(auth_headers) -> None:
    account = _account(auth_headers)
    _tx(auth_headers, type="expense", amountCents=100, accountId=account, occurredAt="2024-03-01T08:00:00", description="Mercado")
    _tx(auth_headers, type="expense", amountCents=200, accountId=account, occurredAt="2024-03-15T08:00:00", description="Farmácia")
    _tx(auth_headers, type="expense", amountCents=300, accountId=account, occurredAt="2024-04-01T08:00:00", description="Mercado")

    march = client.get(
        "/api/v1/transactions", params={"dateFrom": "2024-03-01", "dateTo": "2024-03-31"}, headers=auth_headers
    ).json()
    assert [t["amountCents"] for t in march] == [200, 100]

    searched = client.get("/api/v1/transactions", params={"search": "mercado"}, headers=auth_headers).json()
    assert [t["amountCents"] for t in searched] == [300, 100]

    limited = client.get("/api/v1/transactions", params={"limit": 1}, headers=auth_headers).json()
    assert [t["amountCents"] for t in limited] == [300]


def test_budget_defaults_to_zero_and_upserts(auth_headers) -> None:
    res = client.get("/api/v1/budgets/2024-06", headers=auth_headers)
    assert res.json() == {"month": "2024-06", "amountCents": 0}

    client.put("/api/v1/budgets", json={"month": "2024-06", "amount": "4.000,00"}, headers=auth_headers)
    client.put("/api/v1/budgets", json={"month": "2024-06", "amountCents": 500000}, headers=auth_headers)

    assert client.get("/api/v1/budgets/2024-06", headers=auth_headers).json()["amountCents"] == 500000
    assert client.get("/api/v1/budgets/2024-6", headers=auth_headers).status_code == 422
