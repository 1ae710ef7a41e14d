"""
Tests for the HTTP surface.
"""

import pytest
from fastapi.testclient import TestClient

from bankrec.api import create_app, status_for
from bankrec.errors import ErrorCode
from bankrec.responses import ServiceError, ServiceResponse

from conftest import ORG_ID, statement_payload

HEADERS = {
    "X-User-Id": "user-1",
    "X-Organization-Id": ORG_ID,
    "X-Permissions": "bank_reconciliation.read, bank_reconciliation.write",
}

ACCOUNT = {
    "account_number": "111",
    "account_name": "Operating",
    "bank_name": "First Bank",
    "currency": "USD",
}


@pytest.fixture
def client(service):
    with TestClient(create_app(service)) as test_client:
        yield test_client


class TestApi:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "healthy"

    def test_account_lifecycle(self, client):
        created = client.post(f"/api/organizations/{ORG_ID}/accounts", json=ACCOUNT, headers=HEADERS)
        assert created.status_code == 200
        account_id = created.json()["data"]["id"]

        fetched = client.get(f"/api/accounts/{account_id}", headers=HEADERS)
        listed = client.get(f"/api/organizations/{ORG_ID}/accounts", params={"limit": 10}, headers=HEADERS)

        assert fetched.json()["data"]["account_name"] == "Operating"
        assert listed.json()["data"]["total"] == 1

    def test_error_statuses(self, client):
        no_permissions = {**HEADERS, "X-Permissions": ""}

        forbidden = client.post(f"/api/organizations/{ORG_ID}/accounts", json=ACCOUNT, headers=no_permissions)
        missing = client.get("/api/accounts/unknown", headers=HEADERS)
        invalid = client.post(f"/api/organizations/{ORG_ID}/accounts", json={}, headers=HEADERS)
        anonymous = client.get("/api/accounts/unknown")

        assert forbidden.status_code == 403
        assert forbidden.json()["errors"][0]["code"] == "PERMISSION_DENIED"
        assert missing.status_code == 404
        assert invalid.status_code == 422
        assert anonymous.status_code == 422

    def test_import_and_reconcile(self, client):
        account_id = client.post(
            f"/api/organizations/{ORG_ID}/accounts", json=ACCOUNT, headers=HEADERS
        ).json()["data"]["id"]

        imported = client.post(
            f"/api/accounts/{account_id}/statements",
            json={"statement": statement_payload()},
            headers=HEADERS,
        )
        statement_id = imported.json()["data"]["statement"]["id"]
        duplicate = client.post(
            f"/api/accounts/{account_id}/statements",
            json={"statement": statement_payload(), "options": {"skip_duplicates": False}},
            headers=HEADERS,
        )
        reconciled = client.post(
            f"/api/accounts/{account_id}/reconciliations",
            json={"statement_id": statement_id},
            headers=HEADERS,
        )
        history = client.get(f"/api/organizations/{ORG_ID}/reconciliations", headers=HEADERS)

        assert imported.status_code == 200
        assert duplicate.status_code == 409
        assert reconciled.status_code == 200
        assert reconciled.json()["data"]["session"]["status"] == "completed"
        assert history.json()["data"]["total"] == 1

    def test_admin_routes_require_admin(self, client):
        assert client.post("/api/admin/cache/clear", headers=HEADERS).status_code == 403
        assert client.get("/api/admin/cache/stats", headers=HEADERS).status_code == 200
        assert client.get("/api/admin/metrics", headers=HEADERS).status_code == 200

    @pytest.mark.parametrize("code,status", [
        (ErrorCode.SESSION_NOT_FOUND, 404),
        (ErrorCode.TIMEOUT_ERROR, 504),
        (ErrorCode.DATABASE_ERROR, 500),
    ])
    def test_status_mapping(self, code, status):
        assert status_for(ServiceResponse.fail(ServiceError(code=code, message="x"))) == status


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
