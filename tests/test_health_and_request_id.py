from __future__ import annotations

import logging

from fastapi.testclient import TestClient

from main import create_app
from services import metrics


def _client():
    return TestClient(create_app(manage_pool=False))


def test_health_ok():
    resp = _client().get("/health")
    assert resp.status_code == 200, resp.text
    assert resp.json()["ok"] is True


def test_readyz_reports_missing_pool():
    resp = _client().get("/readyz")
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["ready"] is False
    assert body["db_ok"] is False
    assert body["db_error"] == "pool not initialized"
    assert body["migration_revision"] == "0001_operations_schema"


def test_request_id_added_when_missing():
    resp = _client().get("/health")
    assert resp.status_code == 200, resp.text
    assert resp.headers.get("X-Request-ID")


def test_request_id_echoed_when_present():
    resp = _client().get("/health", headers={"X-Request-ID": "client-request-id"})
    assert resp.status_code == 200, resp.text
    assert resp.headers.get("X-Request-ID") == "client-request-id"


def test_request_end_log_includes_method_path_status(caplog):
    client = _client()
    caplog.set_level(logging.INFO, logger="opsrelay.http")
    resp = client.get("/health")
    assert resp.status_code == 200, resp.text
    assert any(
        "http_request_end" in record.message
        and "method=GET" in record.message
        and "path=/health" in record.message
        and "status=200" in record.message
        and "duration_ms=" in record.message
        for record in caplog.records
    )


def test_metrics_endpoint_renders_counters():
    client = _client()
    client.get("/health")

    resp = client.get("/metrics")
    assert resp.status_code == 200, resp.text
    assert resp.headers["content-type"].startswith("text/plain")
    assert 'http_requests_total{route="/health",status="200"} 1' in resp.text


def test_render_prometheus_empty():
    metrics.reset()
    assert metrics.render_prometheus() == ""
