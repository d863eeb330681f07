"""
API tests for /api/parameters
"""
from conftest import OWNER_A, OWNER_B

IDENTITY = {"X-Caller-Identity": "0xCaller"}


def test_list_parameters(client):
    response = client.get("/api/parameters")
    assert response.status_code == 200
    keys = [p["key"] for p in response.json()]
    assert keys == sorted(keys)
    assert "dailyYieldBase" in keys


def test_list_parameters_by_category(client):
    response = client.get("/api/parameters", params={"category": "node"})
    assert response.status_code == 200
    assert {p["category"] for p in response.json()} == {"node"}


def test_list_parameters_invalid_category(client):
    response = client.get("/api/parameters", params={"category": "lottery"})
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_category"


def test_get_parameter(client):
    response = client.get("/api/parameters/buyTaxRate")
    assert response.status_code == 200
    data = response.json()
    assert data["value"] == "0.02"
    assert data["is_critical"] is True
    assert data["history"] == []


def test_get_unknown_parameter(client):
    response = client.get("/api/parameters/noSuchKey")
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


def test_update_requires_identity(client):
    response = client.put("/api/parameters", json={"key": "level1Rate", "value": "0.06"})
    assert response.status_code == 401


def test_update_non_critical_parameter(client):
    response = client.put(
        "/api/parameters",
        json={"key": "level1Rate", "value": 0.06, "description": "Higher"},
        headers=IDENTITY,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "applied"
    assert data["parameter"]["value"] == "0.06"
    assert data["parameter"]["updated_by"] == "0xcaller"

    history = client.get("/api/parameters/level1Rate/history").json()
    assert len(history) == 1
    assert history[0]["previous_value"] == "0.05"


def test_update_critical_parameter_goes_through_approval(client):
    response = client.put(
        "/api/parameters",
        json={"key": "sellTaxRate", "value": "0.08"},
        headers=IDENTITY,
    )
    assert response.status_code == 202
    data = response.json()
    assert data["status"] == "approval_required"
    assert data["parameter"]["value"] == "0.05"
    nonce = data["nonce"]

    # Not yet confirmed
    response = client.put(
        "/api/parameters",
        json={"key": "sellTaxRate", "value": "0.08", "nonce": nonce},
        headers=IDENTITY,
    )
    assert response.status_code == 403
    assert response.json()["error"] == "approval_required"

    for owner in (OWNER_A, OWNER_B):
        approve = client.post(
            f"/api/governance/transactions/{nonce}/approve",
            headers={"X-Caller-Identity": owner},
        )
        assert approve.status_code == 200

    response = client.put(
        "/api/parameters",
        json={"key": "sellTaxRate", "value": "0.08", "nonce": nonce},
        headers=IDENTITY,
    )
    assert response.status_code == 200
    assert response.json()["parameter"]["value"] == "0.08"
    assert client.get("/api/parameters/sellTaxRate").json()["history"][0]["approval_reference"] == str(nonce)


def test_update_rejects_empty_value(client):
    response = client.put("/api/parameters", json={"key": "level1Rate", "value": " "}, headers=IDENTITY)
    assert response.status_code == 400


def test_update_boolean_parameter(client):
    response = client.put("/api/parameters", json={"key": "withdrawalPaused", "value": True}, headers=IDENTITY)
    assert response.status_code == 200
    assert response.json()["parameter"]["value"] == "true"

    response = client.put("/api/parameters", json={"key": "withdrawalPaused", "value": False}, headers=IDENTITY)
    assert response.json()["parameter"]["value"] == "false"


def test_update_numeric_value_is_not_a_boolean(client):
    response = client.put("/api/parameters", json={"key": "dailyPurchaseLimit", "value": 1}, headers=IDENTITY)
    assert response.status_code == 200
    assert response.json()["parameter"]["value"] == "1"


def test_update_rejects_oversized_value(client):
    response = client.put("/api/parameters", json={"key": "level1Rate", "value": "x" * 300}, headers=IDENTITY)
    assert response.status_code == 422
    assert client.get("/api/parameters/level1Rate").json()["value"] == "0.05"


def test_update_rejects_oversized_identity(client):
    response = client.put(
        "/api/parameters",
        json={"key": "level1Rate", "value": "0.06"},
        headers={"X-Caller-Identity": "0x" + "a" * 100},
    )
    assert response.status_code == 400
    assert client.get("/api/parameters/level1Rate").json()["value"] == "0.05"
