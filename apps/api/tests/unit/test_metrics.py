import pytest

from app.auth.jwt import issue_jwt
from app.config import settings
from app.observability import metrics_store


@pytest.fixture
def bypass_disabled(monkeypatch):
    monkeypatch.setattr(settings, "enable_test_auth_bypass", False)


def test_metrics_endpoint_returns_typed_payload(client):
    metrics_store.increment("delivery_send_total")
    metrics_store.observe("delivery_send_seconds", 0.5)

    response = client.get("/metrics")

    assert response.status_code == 200
    payload = response.json()
    assert payload["counters"]["delivery_send_total"] == 1
    assert payload["timings"]["delivery_send_seconds"] == {"count": 1, "avgS": 0.5, "maxS": 0.5}
    assert payload["delivery"]["sent"] == 1
    assert payload["delivery"]["webhooksApplied"] == 0


def test_metrics_endpoint_exposes_explicit_response_schema(client):
    payload = client.get("/openapi.json").json()
    metrics_get = payload["paths"]["/metrics"]["get"]

    assert metrics_get["responses"]["200"]["content"]["application/json"]["schema"]["$ref"] == (
        "#/components/schemas/MetricsResponse"
    )


def test_metrics_endpoint_requires_auth_when_test_bypass_disabled(client, bypass_disabled):
    response = client.get("/metrics")

    assert response.status_code == 401
    assert response.json()["detail"] == {"message": "Missing bearer token", "code": "unauthorized"}


def test_metrics_endpoint_rejects_non_backoffice_role(client, bypass_disabled):
    customer_token = issue_jwt({"sub": "customer-1", "role": "CUSTOMER"}, settings.jwt_secret)

    response = client.get("/metrics", headers={"Authorization": f"Bearer {customer_token}"})

    assert response.status_code == 403
    assert response.json()["detail"]["message"] == "Insufficient role"


def test_metrics_endpoint_accepts_ops_role_jwt(client, bypass_disabled):
    ops_token = issue_jwt({"sub": "ops-1", "role": "OPS"}, settings.jwt_secret)

    response = client.get("/metrics", headers={"Authorization": f"Bearer {ops_token}"})

    assert response.status_code == 200


def test_metrics_capture_readiness_check_counters(client):
    assert client.get("/ready").status_code == 200

    counters = client.get("/metrics").json()["counters"]
    assert counters["readiness_dependency_checked_total"] >= 1
    assert counters.get("readiness_dependency_error_total", 0) == 0


def test_metrics_capture_readiness_error_counter_on_degraded_check(client, monkeypatch):
    from app.routers import health

    monkeypatch.setattr(health, "_database_dependency_status", lambda *_a, **_k: "error")

    assert client.get("/ready").status_code == 503

    counters = client.get("/metrics").json()["counters"]
    assert counters["readiness_dependency_error_total"] >= 1
