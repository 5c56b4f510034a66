# -*- coding: utf-8 -*-
"""
Health probe, version routing and the error envelope.
"""

from sqlalchemy.exc import OperationalError

from app.core import database


class TestHealth:
    def test_healthy(self, anon_client):
        response = anon_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "success"
        assert body["message"] == "Server is operational"
        assert body["data"]["database"] == "connected"
        assert body["data"]["uptime"] >= 0

    def test_database_down(self, anon_client, monkeypatch):
        def broken():
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))

        monkeypatch.setattr(database, "check_connection", broken)

        response = anon_client.get("/health")
        assert response.status_code == 503
        assert response.json()["status"] == "error"

    def test_root(self, anon_client):
        assert anon_client.get("/").json() == {"status": "running"}


class TestRouting:
    def test_wrong_api_version(self, anon_client):
        response = anon_client.get("/api/v2/users")

        assert response.status_code == 400
        body = response.json()
        assert body["message"] == "Invalid API version. Use /api/v1/*"
        assert body["currentVersion"] == "v1"
        assert body["pathAttempted"] == "/api/v2/users"

    def test_unknown_route_under_current_version(self, client):
        response = client.get("/api/v1/nothing-here")
        assert response.status_code == 404
        assert response.json()["message"] == "Resource not found: GET /api/v1/nothing-here"


class TestErrorEnvelope:
    def test_validation_errors_are_listed(self, client):
        response = client.post("/api/v1/users", json={"email": "a@b.com"})

        body = response.json()
        assert response.status_code == 400
        assert body["message"].startswith("oauthId")
        assert body["errors"]
        assert "timestamp" in body

    def test_database_errors_inside_routes_are_503(self, client, monkeypatch):
        from app.services import user_service

        def broken(self, *args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("server closed the connection"))

        monkeypatch.setattr(user_service.UserService, "get_user", broken)

        response = client.get("/api/v1/users/abc")
        assert response.status_code == 503
        assert response.json()["message"] == "Database connection failed"
