# =============================================================================
# tests/test_http.py - HTTP Surface Tests
# =============================================================================
# Covers the routes the bootstrap owns:
# - GET /ping reports the configured port and service name
# - unmatched routes get the fixed 404 body
# - handler faults become a 500 JSON body and the app keeps serving
# - collaborators (database injection, pages, static assets, CORS) are wired
#
# Run with: pytest tests/test_http.py -v
# =============================================================================

import logging

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from guin.config import load_settings
from guin.core.faults import FALLBACK_MESSAGE
from guin.main import create_app


# =============================================================================
# Health
# =============================================================================

class TestPing:
    """Tests for GET /ping."""

    def test_ping_reports_port_and_service(self, client):
        response = client.get("/ping")

        assert response.status_code == 200
        assert response.json() == {"status": 200, "port": "8080", "service_name": "svc"}

    def test_ping_from_environment(self, monkeypatch, database_url):
        """PORT=8080, APP_NAME=svc in the environment end up in the body."""
        monkeypatch.setenv("PORT", "8080")
        monkeypatch.setenv("APP_NAME", "svc")
        monkeypatch.setenv("DATABASE_URL", database_url)

        with TestClient(create_app(load_settings())) as c:
            response = c.get("/ping")

        assert response.status_code == 200
        assert response.json() == {"status": 200, "port": "8080", "service_name": "svc"}

    def test_ping_ignores_later_environment_changes(self, client, monkeypatch):
        """The handler uses the Settings it was built with, not os.environ."""
        monkeypatch.setenv("APP_NAME", "someone-else")
        monkeypatch.setenv("PORT", "9999")

        assert client.get("/ping").json()["service_name"] == "svc"
        assert client.get("/ping").json()["port"] == "8080"


# =============================================================================
# Not found
# =============================================================================

class TestNotFound:
    """Tests for the router default."""

    @pytest.mark.parametrize("method", ["GET", "POST", "DELETE"])
    def test_unmatched_route(self, client, method):
        response = client.request(method, "/no/such/route")

        assert response.status_code == 404
        assert response.json() == {"status": 404, "data": None, "error_message": "No Route Found"}

    @pytest.mark.parametrize("path", ["/static/nope.css", "/static/"])
    def test_missing_static_file(self, client, path):
        response = client.get(path)

        assert response.status_code == 404
        assert response.json() == {"status": 404, "data": None, "error_message": "No Route Found"}

    def test_handler_404_keeps_its_detail(self, app):
        """An HTTPException raised by a matched handler is not rewritten."""

        @app.get("/gone")
        def gone():
            raise HTTPException(status_code=404, detail="gone for good")

        with TestClient(app) as c:
            response = c.get("/gone")

        assert response.status_code == 404
        assert response.json() == {"detail": "gone for good"}


# =============================================================================
# Fault shell
# =============================================================================

class _Unprintable(Exception):
    def __str__(self):
        raise RuntimeError("cannot render")


class TestFaultShell:
    """Tests for uncaught handler exceptions."""

    @pytest.fixture
    def faulty_client(self, app):
        @app.get("/boom")
        def boom():
            raise ValueError("kaboom")

        @app.get("/boom/empty")
        async def boom_empty():
            raise KeyError

        @app.get("/boom/unprintable")
        def boom_unprintable():
            raise _Unprintable()

        with TestClient(app) as c:
            yield c

    def test_fault_becomes_500_json(self, faulty_client):
        response = faulty_client.get("/boom")

        assert response.status_code == 500
        assert response.json() == {"status": 500, "error_message": "kaboom"}

    def test_empty_message_falls_back_to_kind(self, faulty_client):
        response = faulty_client.get("/boom/empty")

        assert response.status_code == 500
        assert response.json()["error_message"] == "KeyError"

    def test_unprintable_fault_uses_fallback(self, faulty_client):
        response = faulty_client.get("/boom/unprintable")

        assert response.status_code == 500
        assert response.json() == {"status": 500, "error_message": FALLBACK_MESSAGE}

    def test_no_traceback_leaks(self, faulty_client):
        body = faulty_client.get("/boom").text

        assert "Traceback" not in body
        assert "test_http.py" not in body

    def test_process_keeps_serving(self, faulty_client):
        for _ in range(3):
            assert faulty_client.get("/boom").status_code == 500
        assert faulty_client.get("/ping").status_code == 200

    def test_fault_logged_with_request_id(self, faulty_client, caplog):
        caplog.set_level(logging.ERROR, logger="guin.core.faults")

        response = faulty_client.get("/boom", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"
        records = [r for r in caplog.records if r.name == "guin.core.faults"]
        assert len(records) == 1
        assert records[0].levelno == logging.ERROR
        assert records[0].request_id == "req-123"
        assert "Panic Error" in records[0].getMessage()
        assert records[0].exc_info is not None


# =============================================================================
# Collaborators
# =============================================================================

class TestCollaborators:
    """Database, pages, static assets and CORS are reachable through the app."""

    def test_request_id_generated(self, client):
        response = client.get("/ping")

        assert len(response.headers["X-Request-ID"]) == 32

    def test_start_recorded_and_listed(self, client):
        response = client.get("/api/v1/starts")

        assert response.status_code == 200
        rows = response.json()
        assert len(rows) == 1
        assert rows[0]["service_name"] == "svc"
        assert rows[0]["port"] == 8080

    def test_each_app_build_records_a_start(self, settings, client):
        create_app(settings)

        rows = client.get("/api/v1/starts", params={"limit": 5}).json()
        assert len(rows) == 2

    def test_version(self, client):
        assert client.get("/api/v1/version").json() == {"version": "0.1.0"}

    def test_index_page(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert "text/html" in response.headers["content-type"]
        assert "<h1>svc</h1>" in response.text

    def test_static_asset(self, client):
        response = client.get("/static/style.css")

        assert response.status_code == 200
        assert "text/css" in response.headers["content-type"]

    def test_cors_preflight(self, client):
        response = client.options(
            "/ping",
            headers={
                "Origin": "https://example.com",
                "Access-Control-Request-Method": "DELETE",
                "Access-Control-Request-Headers": "Authorization, x-source",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        assert "DELETE" in response.headers["access-control-allow-methods"]
