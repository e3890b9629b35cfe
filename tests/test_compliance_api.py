"""
Tests for the public compliance endpoints and app-level routes.

Tests /api/visitors/compliance/* plus / and /health

Run with: pytest tests/test_compliance_api.py -v
"""

from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from portfolio_api.api.dependencies import get_project_service

SESSION_HASH = "c" * 64


def _track(client, browser_headers, path="/"):
    response = client.post("/api/visitors/track", json={"path": path}, headers=browser_headers)
    return response.json()["session_hash"]


class TestComplianceConsent:
    def test_submit_and_read_consent(self, client):
        response = client.post(
            "/api/visitors/compliance/consent",
            json={"session_hash": SESSION_HASH, "categories": {"necessary": True, "analytics": True}},
        )
        assert response.status_code == 200
        assert response.json() == {
            "session_hash": SESSION_HASH,
            "analytics": True,
            "functional": False,
            "marketing": False,
        }

        status = client.get(f"/api/visitors/compliance/consent/{SESSION_HASH}").json()
        assert status["analytics"] is True

    def test_unknown_category(self, client):
        response = client.post(
            "/api/visitors/compliance/consent",
            json={"session_hash": SESSION_HASH, "categories": {"advertising": True}},
        )
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "validation_error"

    def test_opt_out(self, client):
        client.post(
            "/api/visitors/compliance/consent",
            json={"session_hash": SESSION_HASH, "categories": {"analytics": True, "marketing": True}},
        )
        response = client.post(f"/api/visitors/compliance/optout/{SESSION_HASH}")
        assert response.status_code == 200
        assert response.json()["success"] is True

        status = client.get(f"/api/visitors/compliance/consent/{SESSION_HASH}").json()
        assert status["analytics"] is False
        assert status["marketing"] is False


class TestComplianceData:
    """Export and erasure for a visitor session."""

    def test_export(self, client, browser_headers):
        session_hash = _track(client, browser_headers, "/about")

        response = client.post(f"/api/visitors/compliance/export/{session_hash}")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/json")
        assert "attachment" in response.headers["content-disposition"]
        data = response.json()
        assert data["session_hash"] == session_hash
        assert [view["path"] for view in data["page_views"]] == ["/about"]

    def test_export_unknown(self, client):
        assert client.post("/api/visitors/compliance/export/unknown").status_code == 404

    def test_export_disabled(self, client, container, browser_headers):
        session_hash = _track(client, browser_headers)
        service = container.privacy_config
        config = service.get_config()
        compliance = config.compliance.model_copy(
            update={"gdpr": config.compliance.gdpr.model_copy(update={"allow_portability": False})}
        )
        service.update_config(config.model_copy(update={"compliance": compliance}))

        response = client.post(f"/api/visitors/compliance/export/{session_hash}")
        assert response.status_code == 403

    def test_delete(self, client, browser_headers):
        session_hash = _track(client, browser_headers)

        response = client.delete(f"/api/visitors/compliance/data/{session_hash}")

        assert response.status_code == 200
        assert response.json()["deleted"]["page_views"] == 1
        assert client.post(f"/api/visitors/compliance/export/{session_hash}").status_code == 404

    def test_delete_unknown(self, client):
        assert client.delete("/api/visitors/compliance/data/unknown").status_code == 404


class TestDisclosure:
    def test_disclosure(self, client):
        data = client.get("/api/visitors/compliance/disclosure").json()
        assert "Browser information" in data["data_collected"]
        assert data["data_sharing"]["third_parties"] == []
        assert data["contact_info"] == "privacy@example.com"

    def test_privacy_policy(self, client):
        data = client.get("/api/visitors/compliance/privacy-policy").json()
        assert data["regulations"]["gdpr"] is True
        assert data["retention"]["session_data_days"] == 30


class TestAppRoutes:
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_health_pings_database(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["database"] == "ok"

    def test_database_error_keeps_message(self, app, client):
        service = MagicMock()
        service.featured.side_effect = OperationalError("SELECT 1", {}, Exception("disk I/O error"))
        app.dependency_overrides[get_project_service] = lambda: service

        response = client.get("/api/projects/featured")

        assert response.status_code == 500
        detail = response.json()["detail"]
        assert detail["code"] == "database_error"
        assert "disk I/O error" in detail["message"]
