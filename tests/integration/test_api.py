"""Integration tests for API endpoints"""

import base64
import pytest
from fastapi.testclient import TestClient

pytestmark = pytest.mark.integration


def _register(client: TestClient, payload: dict) -> int:
    response = client.post("/v1/utility/register", json=payload)
    assert response.status_code == 201, response.text
    return response.json()["contract_id"]


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_endpoint(client: TestClient, signup_payload):
    """Test Prometheus metrics endpoint"""
    _register(client, signup_payload)

    response = client.get("/metrics")
    assert response.status_code == 200
    assert "utility_registration_total" in response.text
    assert "utility_contract_transitions_total" in response.text


def test_request_id_echoed(client: TestClient):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


def test_register_and_get_status(client: TestClient, signup_payload):
    """Test POST /v1/utility/register then GET /v1/utility/status/{id}"""
    response = client.post("/v1/utility/register", json=signup_payload)

    assert response.status_code == 201
    data = response.json()
    assert data["success"] is True
    assert data["contract_id"] > 0

    status = client.get(f"/v1/utility/status/{data['contract_id']}")
    assert status.status_code == 200
    assert status.json()["status"] == "in_progress"
    assert status.json()["action_required"] is False


def test_register_invalid_utility_type(client: TestClient, signup_payload):
    signup_payload["utility_type"] = "heating"
    response = client.post("/v1/utility/register", json=signup_payload)
    assert response.status_code == 400


def test_register_unknown_property(client: TestClient, signup_payload):
    signup_payload["property_id"] = 999
    response = client.post("/v1/utility/register", json=signup_payload)
    assert response.status_code == 404


def test_register_no_eligible_tariff(client: TestClient, signup_payload):
    signup_payload["utility_type"] = "water"
    response = client.post("/v1/utility/register", json=signup_payload)
    assert response.status_code == 422
    assert "No eligible water tariff" in response.json()["detail"]


@pytest.mark.parametrize(
    "field, value",
    [
        ("full_name", "Al"),
        ("email", "not-an-email"),
        ("phone_number", "0770"),
        ("date_of_birth", "18/03/1994"),
    ],
)
def test_register_validates_tenant_details(client: TestClient, signup_payload, field, value):
    signup_payload["tenant_signup_data"][field] = value
    response = client.post("/v1/utility/register", json=signup_payload)
    assert response.status_code == 422


def test_status_unknown_contract(client: TestClient):
    response = client.get("/v1/utility/status/404")
    assert response.status_code == 404


def test_upload_when_not_blocked_conflicts(client: TestClient, signup_payload):
    contract_id = _register(client, signup_payload)
    document = base64.b64encode(b"%PDF-1.4").decode()

    response = client.post(
        f"/v1/utility/upload-agreement/{contract_id}",
        json={"file_name": "agreement.pdf", "document_base64": document},
    )

    assert response.status_code == 409
    assert client.get(f"/v1/utility/status/{contract_id}").json()["status"] == "in_progress"


def test_upload_invalid_base64(client: TestClient, signup_payload):
    contract_id = _register(client, signup_payload)
    response = client.post(
        f"/v1/utility/upload-agreement/{contract_id}",
        json={"file_name": "agreement.pdf", "document_base64": "***not base64***"},
    )
    assert response.status_code == 400


def test_check_status_endpoint(client: TestClient, clock, signup_payload):
    contract_id = _register(client, signup_payload)
    clock.advance(minutes=11)

    response = client.post(f"/v1/utility/check-status/{contract_id}")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "verification_required"
    assert data["action_required"] is True


def test_cancel_endpoint(client: TestClient, signup_payload):
    contract_id = _register(client, signup_payload)

    response = client.post(f"/v1/utility/cancel/{contract_id}", json={"reason": "Duplicate request"})
    assert response.status_code == 200
    assert response.json()["status"] == "failed"

    again = client.post(f"/v1/utility/cancel/{contract_id}")
    assert again.status_code == 409


def test_resolve_endpoint(client: TestClient, email_sender, signup_payload):
    contract_id = _register(client, signup_payload)

    response = client.post(f"/v1/utility/resolve/{contract_id}", json={"approved": True, "note": "Confirmed by phone"})

    assert response.status_code == 200
    assert response.json()["status"] == "completed"
    email_sender.send_completion_email.assert_awaited_once()


def test_list_contracts_for_property(client: TestClient, signup_payload):
    first = _register(client, signup_payload)

    response = client.get("/v1/utility/contracts/property/1")

    assert response.status_code == 200
    data = response.json()
    assert data["property_id"] == 1
    assert [c["contract_id"] for c in data["contracts"]] == [first]
    assert data["contracts"][0]["utility_type"] == "electricity"
    assert data["contracts"][0]["best_deal_available"] is True


def test_deal_sweep_endpoint(client: TestClient, signup_payload):
    contract_id = _register(client, signup_payload)
    client.post(f"/v1/utility/resolve/{contract_id}", json={"approved": True})

    response = client.post("/v1/utility/deal-sweep")

    assert response.status_code == 200
    assert response.json() == {"checked": 1, "skipped_fresh": 0, "better_deal_found": 0, "failed": 0}


def test_list_contracts_for_tenancy(client: TestClient, signup_payload):
    contract_id = _register(client, signup_payload)

    response = client.get("/v1/utility/contracts/tenancy/1")

    assert response.status_code == 200
    data = response.json()
    assert data["tenancy_id"] == 1
    assert [c["contract_id"] for c in data["contracts"]] == [contract_id]
    assert client.get("/v1/utility/contracts/tenancy/2").json()["contracts"] == []
