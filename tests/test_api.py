from sqlalchemy.orm import sessionmaker

import pytest
from fastapi.testclient import TestClient

from main import app, get_db


@pytest.fixture()
def client(engine):
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _setup_card(client: TestClient) -> tuple[int, int]:
    category = client.post("/api/categories", json={"name": "Education"}).json()
    account = client.post(
        "/api/accounts",
        json={
            "name": "Visa Platinum",
            "type": "credit_card",
            "cashback_config": {
                "program": {
                    "defaultRate": 1,
                    "cycleType": "statement_cycle",
                    "statementDay": 25,
                    "maxBudget": 500000,
                    "levels": [
                        {
                            "id": "l1",
                            "name": "Level 1",
                            "minTotalSpend": 1000000,
                            "defaultRate": 2,
                            "rules": [
                                {
                                    "categoryIds": [category["id"]],
                                    "rate": 10,
                                    "maxReward": 300000,
                                }
                            ],
                        }
                    ],
                }
            },
        },
    ).json()
    return account["id"], category["id"]


def test_transaction_flow_updates_cycle(client: TestClient) -> None:
    account_id, category_id = _setup_card(client)

    resp = client.post(
        "/api/transactions",
        json={
            "account_id": account_id,
            "category_id": category_id,
            "type": "expense",
            "amount": "2000000",
            "occurred_at": "2024-11-10T10:00:00",
        },
    )
    assert resp.status_code == 201
    assert resp.json()["persisted_cycle_tag"] == "2024-11"

    cycles = client.get(f"/api/accounts/{account_id}/cycles").json()
    assert [c["cycle_tag"] for c in cycles] == ["2024-11"]
    assert float(cycles[0]["virtual_profit"]) == 200000

    stats = client.get(f"/api/accounts/{account_id}/cycles/2024-11").json()
    assert stats["label"] == "25.10 - 24.11"
    assert float(stats["remaining_budget"]) == 300000

    entries = client.get(f"/api/cycles/{cycles[0]['id']}/entries").json()
    assert entries[0]["policy_metadata"]["policySource"] == "category_rule"
    assert entries[0]["policy_label"].startswith("Level 1 category rule")


def test_void_and_delete_endpoints(client: TestClient) -> None:
    account_id, _ = _setup_card(client)
    txn = client.post(
        "/api/transactions",
        json={
            "account_id": account_id,
            "type": "expense",
            "amount": "500000",
            "occurred_at": "2024-11-10T10:00:00",
        },
    ).json()

    assert client.post(f"/api/transactions/{txn['id']}/void").status_code == 204
    stats = client.get(f"/api/accounts/{account_id}/cycles/2024-11-01").json()
    assert float(stats["spent_amount"]) == 0

    assert client.post(f"/api/transactions/{txn['id']}/delete").status_code == 204
    assert client.post(f"/api/transactions/{txn['id']}/void").status_code == 404


def test_simulate_and_recompute(client: TestClient) -> None:
    account_id, category_id = _setup_card(client)
    client.post(
        "/api/transactions",
        json={
            "account_id": account_id,
            "type": "expense",
            "amount": "1500000",
            "occurred_at": "2024-11-10T10:00:00",
        },
    )

    sim = client.post(
        f"/api/accounts/{account_id}/simulate",
        json={"amount": "100000", "category_id": category_id, "reference": "2024-11-12"},
    ).json()
    assert sim["metadata"]["policySource"] == "category_rule"
    assert float(sim["rate"]) == 0.1
    assert "10.0%" in sim["label"]

    cycle = client.get(f"/api/accounts/{account_id}/cycles").json()[0]
    resp = client.post(f"/api/cycles/{cycle['id']}/recompute")
    assert resp.status_code == 200
    assert float(resp.json()["spent_amount"]) == 1500000
    assert client.post("/api/cycles/999/recompute").status_code == 404


def test_validation_and_not_found_errors(client: TestClient) -> None:
    assert client.get("/api/accounts/42/cycles").status_code == 404
    assert client.post("/api/categories", json={"name": "Food"}).status_code == 201
    assert client.post("/api/categories", json={"name": "Food"}).status_code == 400
    resp = client.post(
        "/api/transactions",
        json={
            "account_id": 42,
            "type": "expense",
            "amount": "10",
            "occurred_at": "2024-11-10T10:00:00",
        },
    )
    assert resp.status_code == 400
    account_id, _ = _setup_card(client)
    assert client.get(f"/api/accounts/{account_id}/cycles/soon").status_code == 400


def test_admin_rebuild(client: TestClient) -> None:
    account_id, _ = _setup_card(client)
    client.post(
        "/api/transactions",
        json={
            "account_id": account_id,
            "type": "expense",
            "amount": "100000",
            "occurred_at": "2024-11-10T10:00:00",
        },
    )

    resp = client.post("/admin/rebuild-cashback")

    assert resp.status_code == 200
    assert resp.json() == {"cycles": 1}


def test_recent_cycles_endpoint(client: TestClient) -> None:
    account_id, _ = _setup_card(client)
    client.post(
        "/api/transactions",
        json={
            "account_id": account_id,
            "type": "expense",
            "amount": "400000",
            "occurred_at": "2024-11-10T10:00:00",
        },
    )

    resp = client.get(
        f"/api/accounts/{account_id}/recent-cycles",
        params={"reference": "2024-12-10", "count": 2},
    )

    assert resp.status_code == 200
    stats = resp.json()
    assert [s["cycle_tag"] for s in stats] == ["2024-12", "2024-11"]
    assert float(stats[1]["spent_amount"]) == 400000
    assert client.get("/api/accounts/42/recent-cycles").status_code == 404
    assert (
        client.get(f"/api/accounts/{account_id}/recent-cycles?count=0").status_code
        == 422
    )
