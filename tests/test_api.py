from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from dari_insights.app import create_app
from dari_insights.core import settings


def _payload(
    txn_id: str, amount: str, date: str, merchant: str = "Panda", category: str | None = "food_groceries"
) -> dict:
    return {
        "id": txn_id,
        "account_id": "acc-1",
        "amount": {"amount": amount, "currency": "SAR"},
        "description": f"{merchant} purchase",
        "merchant_name": merchant,
        "category_id": category,
        "date": date,
    }


@pytest.fixture
def client(tmp_path, monkeypatch: pytest.MonkeyPatch) -> Generator[TestClient, None, None]:
    monkeypatch.setattr(settings, "DATA_DIR", str(tmp_path))
    with TestClient(create_app()) as test_client:
        yield test_client


def test_service_not_initialized() -> None:
    # Without entering the client context the lifespan never runs
    client = TestClient(create_app())
    response = client.get("/categories")
    assert response.status_code == 500
    assert response.json()["detail"] == "Service not initialized"


def test_categories_listed_with_paths(client: TestClient) -> None:
    response = client.get("/categories")
    assert response.status_code == 200
    by_id = {item["id"]: item for item in response.json()}
    assert by_id["food_groceries"]["path"] == "Food & Dining > Groceries"
    assert by_id["income_salary"]["type"] == "INCOME"


def test_categorize_and_learn(client: TestClient) -> None:
    transaction = _payload("t1", "-120.50", "2024-05-01T18:00:00", merchant="Panda Hypermarket", category=None)

    response = client.post("/categorize", json={"transaction": transaction})
    assert response.status_code == 200
    assert response.json()["category"]["id"] == "food_groceries"
    assert response.json()["source"] == "keywords"

    assert client.post("/transactions", json={"transactions": [transaction]}).json() == {
        "status": "success",
        "added": 1,
    }
    learned = client.post("/learn", json={"transaction_id": "t1", "category_id": "shopping"})
    assert learned.status_code == 200
    assert learned.json()["normalized_name"] == "panda hypermarket"

    response = client.post("/categorize", json={"transaction": transaction})
    assert response.json()["category"]["id"] == "shopping"
    assert response.json()["source"] == "merchant_exact"

    mappings = client.get("/mappings").json()
    assert [mapping["category_id"] for mapping in mappings] == ["shopping"]


def test_learn_error_mapping(client: TestClient) -> None:
    missing = client.post("/learn", json={"transaction_id": "nope", "category_id": "shopping"})
    assert missing.status_code == 404

    client.post("/transactions", json={"transactions": [_payload("t1", "-10", "2024-05-01T10:00:00")]})
    unknown_category = client.post("/learn", json={"transaction_id": "t1", "category_id": "nope"})
    assert unknown_category.status_code == 404


def test_category_matches_limit(client: TestClient) -> None:
    transaction = _payload("t1", "-20", "2024-05-01T13:00:00", merchant="Local Cafe", category=None)
    transaction["description"] = "restaurant lunch"

    response = client.post("/categorize/matches", json={"transaction": transaction, "limit": 3})

    assert response.status_code == 200
    matches = response.json()
    assert len(matches) == 3
    assert matches[0]["category"]["id"] == "food_dining"
    assert matches[0]["confidence"] == 20
    assert client.post("/categorize/matches", json={"transaction": transaction, "limit": 0}).status_code == 422


def test_list_transactions_rejects_bad_dates(client: TestClient) -> None:
    assert client.get("/transactions", params={"start_date": "05/01/2024"}).status_code == 400
    assert client.get(
        "/transactions", params={"start_date": "2024-05-10", "end_date": "2024-05-01"}
    ).status_code == 400


def test_list_transactions_in_range(client: TestClient) -> None:
    client.post("/transactions", json={"transactions": [
        _payload("a", "-10", "2024-05-01T10:00:00"),
        _payload("b", "-10", "2024-06-01T10:00:00"),
    ]})

    response = client.get("/transactions", params={"start_date": "2024-05-01", "end_date": "2024-05-31"})

    assert [item["id"] for item in response.json()] == ["a"]


def test_anomaly_detection(client: TestClient) -> None:
    history = [
        _payload(f"h{i}", amount, f"2024-03-{4 + 3 * i:02d}T12:00:00")
        for i, amount in enumerate(["-50", "-55", "-60", "-70", "-75", "-80"])
    ]
    client.post("/transactions", json={"transactions": history + [_payload("p1", "-500", "2024-05-20T12:00:00")]})

    response = client.post("/anomalies/detect", json={"start_date": "2024-05-15", "end_date": "2024-05-31"})

    assert response.status_code == 200
    high = [a for a in response.json()["anomalies"] if a["type"] == "UNUSUALLY_HIGH_AMOUNT"]
    assert [a["transaction_id"] for a in high] == ["p1"]
    assert high[0]["severity"] == "HIGH"


def test_subscription_endpoints(client: TestClient) -> None:
    client.post("/transactions", json={"transactions": [
        _payload(f"n{i}", "-56.00", date, merchant="NETFLIX.COM", category=None)
        for i, date in enumerate(["2024-01-05T08:00:00", "2024-02-04T08:00:00", "2024-03-05T08:00:00"])
    ]})

    detected = client.post("/subscriptions/detect", json={"as_of": "2024-03-20T00:00:00"})
    assert detected.status_code == 200
    assert [s["service_name"] for s in detected.json()] == ["Netflix"]
    assert detected.json()[0]["frequency"] == "MONTHLY"

    reminders = client.post("/subscriptions/reminders", json={"now": "2024-04-02T09:00:00"})
    assert [alert["alert_type"] for alert in reminders.json()] == ["RENEWAL_REMINDER"]

    assert client.get("/subscriptions/upcoming", params={"days": -1}).status_code == 422


def test_duplicates_and_merge(client: TestClient) -> None:
    client.post("/transactions", json={"transactions": [
        _payload("d1", "-89.99", "2024-05-22T10:00:00", merchant="Store ABC", category="shopping"),
        _payload("d2", "-89.99", "2024-05-22T10:01:00", merchant="Store ABC", category="shopping"),
    ]})

    groups = client.get("/duplicates").json()
    assert [[t["id"] for t in group["transactions"]] for group in groups] == [["d1", "d2"]]

    merged = client.post("/transactions/merge", json={"transaction_ids": ["d1", "d2"]})
    assert merged.status_code == 200
    assert merged.json()["merged_transaction"]["merged_transaction_ids"] == ["d1", "d2"]
    assert merged.json()["originals_deleted"] is True

    assert client.post("/transactions/merge", json={"transaction_ids": ["d1"]}).status_code == 400
    assert client.post("/transactions/merge", json={"transaction_ids": ["d1", "d2"]}).status_code == 404


def test_mapping_maintenance(client: TestClient) -> None:
    assert client.get("/mappings/statistics").json()["total_mappings"] == 0
    assert client.get("/mappings/suggestions", params={"merchant": "Coffee"}).json() == []
    assert client.get("/mappings/similarity-index").json() == {}
    assert client.post("/mappings/merge-duplicates").json() == {"status": "success", "removed": 0}


def test_config_endpoint(client: TestClient) -> None:
    response = client.get("/config")
    assert response.status_code == 200
    keys = [field["key"] for field in response.json()["fields"]]
    assert "DUPLICATE_WINDOW_MINUTES" in keys
    assert "WEEKEND_DAYS" in keys


def test_categorize_range(client: TestClient) -> None:
    client.post("/transactions", json={"transactions": [
        _payload("a", "-120.50", "2024-05-01T18:00:00", merchant="Panda Hypermarket", category=None),
        _payload("b", "-10", "2024-05-02T10:00:00", merchant="zzz", category=None),
    ]})

    response = client.post("/categorize/range", json={"start_date": "2024-05-01", "end_date": "2024-05-31"})

    assert response.status_code == 200
    results = response.json()
    assert results["a"]["category"]["id"] == "food_groceries"
    assert results["b"] is None


def test_offset_aware_dates_are_stored_as_utc(client: TestClient) -> None:
    dates = ["2024-01-05T08:00:00Z", "2024-02-04T11:00:00+03:00", "2024-03-05T08:00:00Z"]
    client.post("/transactions", json={"transactions": [
        _payload(f"n{i}", "-56.00", date, merchant="NETFLIX.COM", category=None) for i, date in enumerate(dates)
    ]})

    listed = client.get("/transactions", params={"start_date": "2024-01-01", "end_date": "2024-03-31"})
    assert listed.status_code == 200
    assert [item["date"] for item in listed.json()] == [
        "2024-01-05T08:00:00",
        "2024-02-04T08:00:00",
        "2024-03-05T08:00:00",
    ]

    anomalies = client.post("/anomalies/detect", json={"start_date": "2024-03-01", "end_date": "2024-03-31"})
    assert anomalies.status_code == 200

    detected = client.post("/subscriptions/detect", json={"as_of": "2024-03-20T00:00:00Z"})
    assert detected.status_code == 200
    assert [s["service_name"] for s in detected.json()] == ["Netflix"]
