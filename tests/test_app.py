"""Application-level behaviour: health check, envelope and error rendering."""
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from store_service import errors
from store_service.errors import register_exception_handlers
from store_service.models import User


def test_health_check(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert body["message"] == "Server is running"


def test_unknown_route_returns_not_found_envelope(client):
    response = client.get("/api/does-not-exist")

    assert response.status_code == 404
    assert response.json() == {
        "status": "error",
        "message": "Cannot find /api/does-not-exist on this server",
    }


def test_malformed_path_id_reads_like_cast_error(client):
    response = client.get("/api/products/abc")

    assert response.status_code == 400
    body = response.json()
    assert body["status"] == "fail"
    assert body["message"] == "Invalid product_id: abc."


def test_body_validation_errors_list_each_failure(client):
    response = client.post("/api/auth/signup", json={"name": "A", "email": "not-an-email"})

    assert response.status_code == 400
    body = response.json()
    assert body["status"] == "fail"
    assert body["message"] == "Validation Error"
    paths = [error["path"] for error in body["errors"]]
    assert ["name"] in paths
    assert ["email"] in paths
    assert ["password"] in paths


def test_invalid_sort_field_is_rejected(client):
    response = client.get("/api/products", params={"sort": "secret_column"})

    assert response.status_code == 400
    assert response.json()["message"] == "Invalid sort field: secret_column"


@pytest.mark.parametrize("path,field", [
    ("/api/orders/99999999999999999999", "order_id"),
    ("/api/products/99999999999999999999", "product_id"),
    ("/api/products/0", "product_id"),
])
def test_out_of_range_path_id_reads_like_cast_error(client, user_headers, path, field):
    response = client.get(path, headers=user_headers)

    assert response.status_code == 400
    assert response.json()["message"] == f"Invalid {field}: {path.rsplit('/', 1)[-1]}."


def test_out_of_range_body_id_is_a_validation_error(client, user_headers):
    response = client.post("/api/products/check-stock", headers=user_headers, json={
        "product_id": 2**40,
        "quantity": 1,
    })

    assert response.status_code == 400
    assert response.json()["message"] == "Validation Error"


def _failing_app(session_factory=None):
    failing = FastAPI()
    register_exception_handlers(failing)

    @failing.get("/boom")
    def boom():
        raise RuntimeError("inventory ledger exploded")

    @failing.post("/duplicate-user")
    def duplicate_user():
        session = session_factory()
        try:
            for _ in range(2):
                session.add(User(name="Twin", email="twin@example.com", password_hash="x", role="user"))
                session.commit()
        finally:
            session.close()

    return TestClient(failing, raise_server_exceptions=False)


def test_unhandled_error_echoes_details_in_development(monkeypatch):
    monkeypatch.setattr(errors, "ENVIRONMENT", "development")

    response = _failing_app().get("/boom")

    assert response.status_code == 500
    body = response.json()
    assert body["status"] == "error"
    assert body["message"] == "inventory ledger exploded"
    assert any("RuntimeError" in line for line in body["stack"])


def test_unhandled_error_is_generic_in_production(monkeypatch):
    monkeypatch.setattr(errors, "ENVIRONMENT", "production")

    response = _failing_app().get("/boom")

    assert response.status_code == 500
    assert response.json() == {"status": "error", "message": "Something went wrong"}


def test_duplicate_key_is_reported_as_duplicate_value(session_factory):
    response = _failing_app(session_factory).post("/duplicate-user")

    assert response.status_code == 400
    body = response.json()
    assert body["status"] == "fail"
    assert body["message"].startswith("Duplicate field value: ")
    assert body["message"].endswith(". Please use another value!")
