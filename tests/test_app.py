import pytest
from fastapi.testclient import TestClient

from marketplace.main import GENERIC_ERROR, create_app


def _app_with_failing_route(settings, emailer, dispatcher):
    app = create_app(settings, emailer=emailer, dispatcher=dispatcher)

    @app.get("/api/boom")
    def boom():
        raise RuntimeError("database exploded")

    return app


class TestAppShell:
    def test_root_banner(self, client):
        body = client.get("/").json()
        assert body["success"] is True
        assert body["endpoints"]["health"] == "/api/health"

    def test_health(self, client):
        assert client.get("/api/health").json() == {"status": "ok", "message": "Server is running"}

    def test_unknown_route(self, client):
        response = client.get("/api/nothing-here")
        assert response.status_code == 404
        assert response.json() == {"success": False, "message": "Route not found"}

    def test_malformed_json_is_bad_request(self, client, buyer, auth_headers):
        response = client.post(
            "/api/orders/",
            content=b"{not json",
            headers={**auth_headers(buyer), "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["success"] is False


class TestUnexpectedErrors:
    @pytest.mark.parametrize("app_env", ["development", "test"])
    def test_detail_outside_production(self, settings, emailer, dispatcher, app_env):
        app = _app_with_failing_route(settings.model_copy(update={"app_env": app_env}), emailer, dispatcher)
        with TestClient(app, raise_server_exceptions=False) as client:
            response = client.get("/api/boom")
        assert response.status_code == 500
        assert response.json() == {"success": False, "message": "database exploded", "error": "RuntimeError"}

    def test_redacted_in_production(self, settings, emailer, dispatcher):
        app = _app_with_failing_route(settings.model_copy(update={"app_env": "production"}), emailer, dispatcher)
        with TestClient(app, raise_server_exceptions=False) as client:
            response = client.get("/api/boom")
        assert response.status_code == 500
        assert response.json() == {"success": False, "message": GENERIC_ERROR}
