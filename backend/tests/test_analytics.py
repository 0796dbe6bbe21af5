import pytest
from fastapi.testclient import TestClient

from nocry.main import app

client = TestClient(app)


def _post(path: str, payload: dict, headers: dict[str, str]) -> dict:
    res = client.post(path, json=payload, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()


def _expense(headers: dict[str, str], when: str, amount: int, **destination) -> None:
    _post(
        "/api/v1/transactions",
        {"type": "expense", "occurredAt": f"{when}T12:00:00", "amountCents": amount, **destination},
        headers,
    )


def _may(headers: dict[str, str]) -> None:
    account = _post("/api/v1/accounts", {"name": "Main"}, headers)["id"]
    card = _post("/api/v1/cards", {"name": "Visa", "closingDay": 25, "dueDay": 5}, headers)["id"]
    food = _post("/api/v1/categories", {"name": "Food", "type": "expense"}, headers)["id"]
    rent = _post("/api/v1/categories", {"name": "Rent", "type": "expense"}, headers)["id"]

    _post(
        "/api/v1/transactions",
        {"type": "income", "occurredAt": "2024-05-05T12:00:00", "amountCents": 500000, "accountId": account},
        headers,
    )
    _expense(headers, "2024-05-10", 100000, accountId=account, categoryId=rent)
    _expense(headers, "2024-05-12", 30000, cardId=card, categoryId=food)
    _expense(headers, "2024-05-13", 20000, accountId=account, categoryId=food)
    _expense(headers, "2024-05-14", 10000, accountId=account)
    _expense(headers, "2024-04-20", 40000, accountId=account, categoryId=food)
    savings = _post("/api/v1/accounts", {"name": "Savings"}, headers)["id"]
    _post(
        "/api/v1/transfers",
        {"fromAccountId": account, "toAccountId": savings, "amountCents": 7000, "occurredAt": "2024-05-15T12:00:00"},
        headers,
    )
    res = client.put("/api/v1/budgets", json={"month": "2024-05", "amountCents": 200000}, headers=headers)
    assert res.status_code == 200


def test_monthly_series_fills_empty_months(auth_headers) -> None:
    _may(auth_headers)
    res = client.get(
        "/api/v1/analytics/monthly-series", params={"month": "2024-05", "monthsBack": 3}, headers=auth_headers
    )
    assert res.status_code == 200
    assert res.json() == [
        {"month": "2024-03", "incomeCents": 0, "expenseCents": 0, "netCents": 0},
        {"month": "2024-04", "incomeCents": 0, "expenseCents": 40000, "netCents": -40000},
        {"month": "2024-05", "incomeCents": 500000, "expenseCents": 160000, "netCents": 340000},
    ]


def test_monthly_series_crosses_the_year(auth_headers) -> None:
    res = client.get(
        "/api/v1/analytics/monthly-series", params={"month": "2024-02", "monthsBack": 4}, headers=auth_headers
    )
    assert [point["month"] for point in res.json()] == ["2023-11", "2023-12", "2024-01", "2024-02"]

    res = client.get("/api/v1/analytics/monthly-series", params={"monthsBack": 0}, headers=auth_headers)
    assert res.status_code == 422


def test_net_by_period_leaves_card_purchases_out(auth_headers) -> None:
    _may(auth_headers)
    res = client.get(
        "/api/v1/analytics/net", params={"dateFrom": "2024-05-01", "dateTo": "2024-05-31"}, headers=auth_headers
    )
    assert res.status_code == 200
    assert res.json() == {
        "dateFrom": "2024-05-01",
        "dateTo": "2024-05-31",
        "incomeCents": 500000,
        "expenseCents": 130000,
        "netCents": 370000,
    }


def test_category_breakdown_is_a_pareto(auth_headers) -> None:
    _may(auth_headers)
    res = client.get(
        "/api/v1/analytics/categories", params={"dateFrom": "2024-05-01", "dateTo": "2024-05-31"}, headers=auth_headers
    )
    assert res.status_code == 200
    body = res.json()
    assert body["totalExpenseCents"] == 160000

    pareto = body["pareto"]
    assert [(item["categoryName"], item["totalCents"], item["count"]) for item in pareto] == [
        ("Rent", 100000, 1),
        ("Food", 50000, 2),
        ("Uncategorized", 10000, 1),
    ]
    assert pareto[0]["percentage"] == 62.5
    assert pareto[1]["cumulativePercentage"] == pytest.approx(93.75, abs=0.1)
    assert pareto[2]["cumulativePercentage"] == 100.0
    assert pareto[2]["categoryId"] is None

    assert body["budget"] == {
        "month": "2024-05",
        "actualCents": 160000,
        "budgetCents": 200000,
        "varianceCents": -40000,
        "variancePct": -20.0,
    }


def test_category_breakdown_without_expenses(auth_headers) -> None:
    res = client.get(
        "/api/v1/analytics/categories", params={"dateFrom": "2024-01-01", "dateTo": "2024-01-31"}, headers=auth_headers
    )
    body = res.json()
    assert body["pareto"] == []
    assert body["totalExpenseCents"] == 0
    assert body["budget"]["variancePct"] is None


def test_reversed_period_returns_422(auth_headers) -> None:
    res = client.get(
        "/api/v1/analytics/categories", params={"dateFrom": "2024-05-31", "dateTo": "2024-05-01"}, headers=auth_headers
    )
    assert res.status_code == 422
    assert "dateFrom" in res.json()["error"]["details"][0]["message"]
