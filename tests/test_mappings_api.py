"""
Tests for the phone directory API routes.

Routes run against a real SQLite store in a temp directory.
"""
import pytest
from unittest.mock import patch

from api.services.resilience import StoreUnavailable

pytestmark = pytest.mark.slow


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from api.main import app
    return TestClient(app)


@pytest.fixture
def store(directory_store):
    with patch("api.routes.mappings.get_directory_store", return_value=directory_store):
        yield directory_store


class TestSaveAndGet:
    """POST then GET /api/mapping."""

    def test_save_then_get(self, client, store):
        response = client.post("/api/mapping", json={
            "phoneNumber": "(555) 123-4567",
            "email": "a@x.com",
            "contactName": "Ann",
        })
        assert response.status_code == 200
        assert response.json() == {"success": True, "count": 1}

        response = client.get("/api/mapping/+15551234567")
        assert response.status_code == 200
        data = response.json()
        assert data["phoneNumber"] == "+15551234567"
        assert data["emails"] == ["a@x.com"]
        assert data["email"] == "a@x.com"
        assert data["contactName"] == "Ann"

    def test_get_accepts_any_format(self, client, store):
        store.put("+15551234567", "a@x.com")
        response = client.get("/api/mapping/555-123-4567")
        assert response.status_code == 200
        assert response.json()["phoneNumber"] == "+15551234567"

    def test_save_merges_emails(self, client, store):
        client.post("/api/mapping", json={"phoneNumber": "5551234567", "email": "a@x.com"})
        client.post("/api/mapping", json={"phoneNumber": "5551234567", "emails": ["b@x.com", "a@x.com"]})

        data = client.get("/api/mapping/5551234567").json()
        assert data["emails"] == ["a@x.com", "b@x.com"]

    def test_save_list(self, client, store):
        response = client.post("/api/mapping", json=[
            {"phoneNumber": "5551234567", "email": "a@x.com"},
            {"phoneNumber": "5559876543", "email": "b@x.com"},
        ])
        assert response.json() == {"success": True, "count": 2}
        assert store.count() == 2

    def test_invalid_item_rejects_whole_list(self, client, store):
        response = client.post("/api/mapping", json=[
            {"phoneNumber": "5551234567", "email": "a@x.com"},
            {"phoneNumber": "5559876543", "email": "not-an-email"},
        ])
        assert response.status_code == 400
        assert response.json()["error"] == "Validation error"
        assert store.count() == 0

    def test_missing_email(self, client, store):
        response = client.post("/api/mapping", json={"phoneNumber": "5551234567"})
        assert response.status_code == 400
        assert response.json() == {
            "error": "Validation error",
            "message": "Phone number and email are required for each mapping",
        }

    def test_invalid_phone(self, client, store):
        response = client.post("/api/mapping", json={"phoneNumber": "123", "email": "a@x.com"})
        assert response.status_code == 400
        assert "Invalid phone number format" in response.json()["message"]

    def test_get_missing(self, client, store):
        response = client.get("/api/mapping/5551234567")
        assert response.status_code == 404
        assert response.json() == {"error": "Not found", "message": "Mapping not found"}

    def test_get_invalid_phone(self, client, store):
        response = client.get("/api/mapping/12")
        assert response.status_code == 400


class TestUpload:

    def test_upload_csv(self, client, store):
        csv_content = (
            "phone,email,name,company,type\n"
            "5551234567,a@x.com,Ann,Acme,mobile\n"
            "bad,b@x.com\n"
            "5559876543,c@x.com;d@x.com\n"
        )
        response = client.post("/api/mapping?action=upload", json={"csvContent": csv_content})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["count"] == 2
        assert len(data["rejected"]) == 1
        assert data["rejected"][0].startswith("Row 3:")
        assert store.get("+15559876543").emails == ["c@x.com", "d@x.com"]

    def test_upload_without_content(self, client, store):
        response = client.post("/api/mapping?action=upload", json={})
        assert response.status_code == 400

    def test_unknown_action(self, client, store):
        response = client.post("/api/mapping?action=explode", json={})
        assert response.status_code == 400
        assert response.json()["message"] == "Unknown action: explode"


class TestLookup:

    def test_lookup(self, client, store):
        store.put("+15551234567", ["a@x.com", "b@x.com"])

        response = client.post("/api/mapping/lookup", json={"phoneNumber": "555.123.4567"})

        assert response.status_code == 200
        assert response.json() == {"emails": ["a@x.com", "b@x.com"], "email": "a@x.com", "count": 2}

    def test_lookup_not_found(self, client, store):
        response = client.post("/api/mapping/lookup", json={"phoneNumber": "5551234567"})
        assert response.status_code == 404
        assert response.json()["message"] == "No mapping found for this phone number"

    def test_lookup_missing_number(self, client, store):
        response = client.post("/api/mapping/lookup", json={})
        assert response.status_code == 400
        assert response.json()["message"] == "Phone number is required"

    def test_lookup_invalid_number(self, client, store):
        response = client.post("/api/mapping/lookup", json={"phoneNumber": "12"})
        assert response.status_code == 400


class TestListCountDelete:

    def test_count(self, client, store):
        store.put("+15551234567", "a@x.com")
        store.put("+15559876543", "b@x.com")
        assert client.get("/api/mapping/count").json() == {"count": 2}

    def test_paging(self, client, store):
        for i in range(5):
            store.put(f"+1555000000{i}", f"u{i}@x.com")

        first = client.get("/api/mapping?limit=2").json()
        assert [m["phoneNumber"] for m in first["mappings"]] == ["+15550000000", "+15550000001"]
        assert first["lastKey"] == "+15550000001"

        second = client.get("/api/mapping", params={"limit": 2, "startAfter": first["lastKey"]}).json()
        assert [m["phoneNumber"] for m in second["mappings"]] == ["+15550000002", "+15550000003"]

    def test_search_filters_page(self, client, store):
        store.put("+15551234567", "ann@acme.com", company_name="Acme")
        store.put("+15559876543", "bob@other.com")

        data = client.get("/api/mapping?search=ACME").json()
        assert [m["phoneNumber"] for m in data["mappings"]] == ["+15551234567"]
        assert data["lastKey"] == "+15559876543"

    def test_limit_out_of_range(self, client, store):
        response = client.get("/api/mapping?limit=0")
        assert response.status_code == 400
        assert response.json()["error"] == "Validation error"

    def test_delete(self, client, store):
        store.put("+15551234567", "a@x.com")

        response = client.delete("/api/mapping/5551234567")

        assert response.json() == {"success": True, "deleted": True}
        assert store.get("+15551234567") is None

    def test_delete_missing_still_succeeds(self, client, store):
        response = client.delete("/api/mapping/5551234567")
        assert response.status_code == 200
        assert response.json() == {"success": True, "deleted": False}

    def test_clear(self, client, store):
        store.put("+15551234567", "a@x.com")
        store.put("+15559876543", "b@x.com")

        response = client.delete("/api/mapping")

        assert response.json() == {"success": True, "count": 2}
        assert store.count() == 0


class TestErrorShapes:

    def test_method_not_allowed(self, client, store):
        response = client.put("/api/mapping", json={})
        assert response.status_code == 405
        assert response.json() == {"error": "Method Not Allowed"}

    def test_unknown_route(self, client):
        response = client.get("/api/nothing-here")
        assert response.status_code == 404
        assert response.json() == {"error": "Not Found"}

    def test_store_unavailable(self, client):
        with patch("api.routes.mappings.get_directory_store") as mock:
            mock.return_value.count.side_effect = StoreUnavailable("database is locked")
            response = client.get("/api/mapping/count")

        assert response.status_code == 500
        assert response.json() == {
            "error": "directory_store unavailable",
            "message": "database is locked",
        }

    def test_cors_preflight(self, client):
        response = client.options("/api/mapping", headers={
            "Origin": "https://admin.example.com",
            "Access-Control-Request-Method": "POST",
        })
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        assert "POST" in response.headers["access-control-allow-methods"]


class TestHealth:

    def test_health(self, client, mock_settings):
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["service"] == "phonebridge"
        assert data["checks"] == {"crm_configured": True, "fallback_contact_configured": True}

    def test_health_degraded_without_fallback(self, client, mock_settings):
        mock_settings.fallback_contact_id = ""
        assert client.get("/health").json()["status"] == "degraded"

    def test_service_health(self, client):
        data = client.get("/health/services").json()
        assert "directory_store" in data["services"]
        assert data["overall_status"] in ("healthy", "degraded", "critical")
