# tests/test_http_app.py
"""Tests for mirai_webhook/transport/http_app.py: routes, envelopes, status codes."""
from __future__ import annotations

import re

import pytest
from fastapi.testclient import TestClient

from conftest import FakeGateway
from mirai_webhook.config import Settings
from mirai_webhook.core.auth import compute_content_signature
from mirai_webhook.core.domain import At, Text
from mirai_webhook.infra.metrics import get_metrics_collector
from mirai_webhook.transport.http_app import SERVICE_DESCRIPTION, VERSION, create_app


class ExplodingGateway(FakeGateway):
    async def send_message(self, type, target, message):
        raise RuntimeError("gateway exploded")


def _settings() -> Settings:
    return Settings(app_env="dev", enable_request_logging=False, error_log_file=None)


@pytest.fixture
def client(app_config, fake_gateway):
    app = create_app(app_config, app_settings=_settings(), gateway=fake_gateway)
    with TestClient(app) as test_client:
        yield test_client


def _assert_error(resp, status: int, kind: str):
    assert resp.status_code == status
    body = resp.json()
    assert set(body) == {"error", "message", "cause"}
    assert body["error"] == kind
    return body


# ============================================================================
# Lifecycle and service routes
# ============================================================================

class TestServiceRoutes:
    def test_lifespan_starts_and_stops_gateway(self, app_config, fake_gateway):
        app = create_app(app_config, app_settings=_settings(), gateway=fake_gateway)
        with TestClient(app):
            assert fake_gateway.started is True
            assert fake_gateway.stopped is False
        assert fake_gateway.stopped is True

    def test_root_describes_service(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert resp.json() == {"message": SERVICE_DESCRIPTION, "version": VERSION}

    def test_health_reports_gateway_state(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "healthy", "gateway": "ready"}

    def test_root_rejects_other_methods(self, client):
        resp = client.post("/")
        _assert_error(resp, 405, "MethodNotAllowed")
        assert resp.headers["Allow"] == "GET"

    def test_root_options(self, client):
        resp = client.options("/")
        assert resp.status_code == 200
        assert resp.headers["Allow"] == "GET"

    def test_unknown_nested_path(self, client):
        body = _assert_error(client.get("/a/b"), 404, "NotFound")
        assert "/a/b" in body["message"]


# ============================================================================
# Notify
# ============================================================================

class TestNotify:
    def test_get_with_token(self, client, fake_gateway):
        resp = client.get("/ci", params={"title": "Build", "content": "txt:passed", "token": "ci-token"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["target"] == 1
        assert body["done"] == 1
        assert body["badResult"] == []
        assert isinstance(body["cost"], int)

        type_, target, message = fake_gateway.calls[0]
        assert (type_, target) == ("group", 111)
        assert message[0].text.endswith("] Build\n\n")
        assert message[1] == Text("passed")

    def test_post_with_signature(self, client, fake_gateway):
        content = "txt:disk full|img:http://x/graph.png"
        sig = compute_content_signature("Alert", content, "sig-secret")

        resp = client.post("/alerts", json={"title": "Alert", "content": content, "sig": sig})

        assert resp.status_code == 200
        assert resp.json()["target"] == 2
        assert resp.json()["done"] == 2

        messages = {target: message for _, target, message in fake_gateway.calls}
        assert messages[222][-1] == At(9001)
        assert At(9001) not in messages[333]

    def test_partial_failure_still_200(self, app_config):
        gateway = FakeGateway(replies={333: {"code": 5, "msg": "friend not found"}})
        app = create_app(app_config, app_settings=_settings(), gateway=gateway)
        sig = compute_content_signature("T", "c", "sig-secret")

        with TestClient(app) as test_client:
            resp = test_client.post("/alerts", json={"title": "T", "content": "c", "sig": sig})

        assert resp.status_code == 200
        assert resp.json()["done"] == 1
        assert resp.json()["badResult"] == [{"target": 333, "reason": "friend not found", "code": 5}]

    def test_unknown_topic(self, client, fake_gateway):
        body = _assert_error(client.get("/nope", params={"title": "t", "content": "c"}), 404, "NotFound")
        assert body["message"] == "topic not found"
        assert fake_gateway.calls == []

    def test_missing_field(self, client, fake_gateway):
        body = _assert_error(client.get("/ci", params={"content": "c", "token": "ci-token"}), 400, "BadOperation")
        assert "title" in body["message"]
        assert fake_gateway.calls == []

    def test_body_must_be_json(self, client):
        resp = client.post("/ci", content=b"title=x", headers={"Content-Type": "text/plain"})
        _assert_error(resp, 400, "BadOperation")

    def test_body_must_be_object(self, client):
        _assert_error(client.post("/ci", json=["title", "content"]), 400, "BadOperation")

    def test_wrong_token(self, client, fake_gateway):
        resp = client.get("/ci", params={"title": "t", "content": "c", "token": "nope"})
        body = _assert_error(resp, 403, "ForbiddenOperation")
        assert body["message"] == "invalid token"
        assert fake_gateway.calls == []

    def test_tampered_signature(self, client, fake_gateway):
        sig = compute_content_signature("T", "original", "sig-secret")
        resp = client.post("/alerts", json={"title": "T", "content": "changed", "sig": sig})
        _assert_error(resp, 403, "ForbiddenOperation")
        assert fake_gateway.calls == []

    def test_options_lists_methods_without_body(self, client):
        resp = client.options("/ci")
        assert resp.status_code == 200
        assert resp.content == b""
        assert resp.headers["Allow"] == "GET,POST"
        assert resp.headers["Access-Control-Allow-Methods"] == "GET,POST"

    @pytest.mark.parametrize("method", ["PUT", "PATCH", "DELETE"])
    def test_other_methods_not_allowed(self, client, method):
        resp = client.request(method, "/ci")
        _assert_error(resp, 405, "MethodNotAllowed")
        assert resp.headers["Allow"] == "GET, POST"

    def test_cors_header_on_success_and_error(self, client):
        assert client.get("/").headers["Access-Control-Allow-Origin"] == "*"
        assert client.get("/nope").headers["Access-Control-Allow-Origin"] == "*"


class TestInternalError:
    def test_unexpected_error_returns_trace_id(self, app_config):
        app = create_app(app_config, app_settings=_settings(), gateway=ExplodingGateway())

        with TestClient(app, raise_server_exceptions=False) as test_client:
            resp = test_client.get("/ci", params={"title": "t", "content": "c", "token": "ci-token"})

        body = _assert_error(resp, 500, "InternalError")
        assert re.fullmatch(r"[0-9a-f]{32}", body["cause"])
        assert body["cause"] in body["message"]
        assert "exploded" not in body["message"]


class TestMetricsRoute:
    def test_counters_reflect_dispatches(self, client):
        get_metrics_collector().reset()
        client.get("/ci", params={"title": "t", "content": "c", "token": "ci-token"})
        client.get("/ci", params={"title": "t", "content": "c", "token": "wrong"})

        resp = client.get("/metrics")
        assert resp.status_code == 200
        counters = resp.json()["counters"]
        assert counters["dispatches_total{topic_id=ci}"] == 1
        assert counters["auth_failures_total{topic_id=ci}"] == 1
        assert resp.json()["histograms"]["dispatch_duration_ms{topic_id=ci}"]["count"] == 1

    def test_metrics_route_not_treated_as_topic(self, client, fake_gateway):
        assert "error" not in client.get("/metrics").json()
        assert fake_gateway.calls == []

    def test_token_required_when_configured(self, app_config):
        app_settings = Settings(enable_request_logging=False, metrics_token="m-token")
        app = create_app(app_config, app_settings=app_settings, gateway=FakeGateway())

        with TestClient(app) as test_client:
            _assert_error(test_client.get("/metrics"), 401, "Unauthorized")
            wrong = test_client.get("/metrics", headers={"Authorization": "Bearer nope"})
            _assert_error(wrong, 401, "Unauthorized")
            assert wrong.headers["WWW-Authenticate"] == "Bearer"

            ok = test_client.get("/metrics", headers={"Authorization": "Bearer m-token"})
            assert ok.status_code == 200
            assert "counters" in ok.json()
