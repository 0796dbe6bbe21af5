from fastapi.testclient import TestClient

from nocry.main import app

client = TestClient(app)


def _offer(headers: dict[str, str], name: str) -> str:
    res = client.post("/api/v1/offers", json={"name": name}, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()["id"]


def _sale(headers: dict[str, str], offer: str, amount: int, when: str, status: str = "approved") -> dict:
    res = client.post(
        "/api/v1/sales",
        json={"offerId": offer, "date": when, "amountCents": amount, "status": status},
        headers=headers,
    )
    assert res.status_code == 201, res.text
    return res.json()


def _spend(headers: dict[str, str], offer: str, amount: int, day: str) -> None:
    res = client.post(
        "/api/v1/spend-events", json={"offerId": offer, "date": day, "amountCents": amount}, headers=headers
    )
    assert res.status_code == 201, res.text


def test_digital_month_summary_and_ranking(auth_headers) -> None:
    course = _offer(auth_headers, "Course")
    ebook = _offer(auth_headers, "Ebook")
    _offer(auth_headers, "Idle")

    _spend(auth_headers, course, 10000, "2024-05-10")
    _spend(auth_headers, ebook, 1000, "2024-05-11")
    _spend(auth_headers, course, 7777, "2024-06-01")
    _sale(auth_headers, course, 12000, "2024-05-05T10:00:00")
    _sale(auth_headers, course, 18000, "2024-05-20T10:00:00")
    _sale(auth_headers, course, 9000, "2024-05-21T10:00:00", status="refunded")
    _sale(auth_headers, course, 5000, "2024-06-02T10:00:00")
    res = client.post(
        "/api/v1/work-sessions",
        json={"offerId": course, "startedAt": "2024-05-03T09:00:00", "durationMinutes": 90},
        headers=auth_headers,
    )
    assert res.status_code == 201

    view = client.get("/api/v1/dashboard/digital", params={"month": "2024-05"}, headers=auth_headers).json()
    assert view["error"] is None
    summary = view["data"]["summary"]
    assert summary["spendCents"] == 11000
    assert summary["revenueCents"] == 30000
    assert summary["salesCount"] == 2
    assert summary["hours"] == 1.5
    assert summary["cacCents"] == 5500.0
    assert summary["ticketCents"] == 15000.0

    ranking = view["data"]["ranking"]
    assert [row["name"] for row in ranking] == ["Course", "Ebook"]
    top = ranking[0]
    assert top["profitCents"] == 20000
    assert top["roi"] == 200.0
    assert top["salesCount"] == 2
    assert top["hours"] == 1.5
    assert ranking[1]["profitCents"] == -1000


def test_empty_month_has_no_ratios(auth_headers) -> None:
    summary = client.get("/api/v1/dashboard/digital", params={"month": "2024-01"}, headers=auth_headers).json()
    assert summary["data"]["summary"] == {
        "month": "2024-01",
        "spendCents": 0,
        "revenueCents": 0,
        "salesCount": 0,
        "hours": 0.0,
        "roi": None,
        "cacCents": None,
        "ticketCents": None,
    }
    assert summary["data"]["ranking"] == []


def test_manual_sale_with_same_order_id_updates_one_row(auth_headers) -> None:
    offer = _offer(auth_headers, "Mentoring")
    first = client.post(
        "/api/v1/sales",
        json={"offerId": offer, "date": "2024-05-05T10:00:00", "amount": "97,00", "orderId": "A-1"},
        headers=auth_headers,
    ).json()
    second = client.post(
        "/api/v1/sales",
        json={"offerId": offer, "date": "2024-05-05T10:00:00", "amountCents": 9700, "orderId": "A-1", "status": "refunded"},
        headers=auth_headers,
    ).json()
    assert first["id"] == second["id"]
    assert first["source"] == "manual"

    sales = client.get("/api/v1/sales", params={"month": "2024-05"}, headers=auth_headers).json()
    assert len(sales) == 1
    assert sales[0]["status"] == "refunded"


def test_manual_sale_gets_generated_order_id(auth_headers) -> None:
    sale = _sale(auth_headers, _offer(auth_headers, "Workshop"), 5000, "2024-05-05T10:00:00")
    assert sale["orderId"].startswith("MAN-")
    assert len(sale["orderId"]) == 16


def test_work_session_start_and_end(auth_headers) -> None:
    offer = _offer(auth_headers, "Course")
    started = client.post("/api/v1/work-sessions/start", json={"offerId": offer}, headers=auth_headers)
    assert started.status_code == 201
    session_id = started.json()["id"]
    assert started.json()["endedAt"] is None

    ended = client.post(f"/api/v1/work-sessions/{session_id}/end", headers=auth_headers)
    assert ended.status_code == 200
    assert ended.json()["endedAt"] is not None
    assert ended.json()["durationMinutes"] == 0

    again = client.post(f"/api/v1/work-sessions/{session_id}/end", headers=auth_headers)
    assert again.status_code == 409


def test_offers_filter_by_status_and_update(auth_headers) -> None:
    offer = _offer(auth_headers, "Old course")
    _offer(auth_headers, "New course")
    res = client.put(f"/api/v1/offers/{offer}", json={"status": "paused"}, headers=auth_headers)
    assert res.json()["status"] == "paused"

    active = client.get("/api/v1/offers", params={"status": "active"}, headers=auth_headers).json()
    assert [o["name"] for o in active] == ["New course"]


def test_sale_for_foreign_offer_returns_404(auth_headers, register_user) -> None:
    foreign = _offer(register_user(), "Not mine")
    res = client.post(
        "/api/v1/sales",
        json={"offerId": foreign, "date": "2024-05-05T10:00:00", "amountCents": 100},
        headers=auth_headers,
    )
    assert res.status_code == 404
