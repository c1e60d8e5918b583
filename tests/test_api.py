"""Tests for the HTTP surface."""

import pytest
from fastapi.testclient import TestClient

from alert_monitor.main import app, get_service
from alert_monitor.models import PollWatermark
from alert_monitor.service import AlertService
from tests.conftest import BASE_TIME, json_response, make_alert, raw_alert


@pytest.fixture
def client(service):
    app.dependency_overrides[get_service] = lambda: service
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


def test_health(client, service):
    service.cache.add([make_alert("a1")])
    service.poller.watermark = PollWatermark(last_poll_time=BASE_TIME, total_alerts_processed=3)

    resp = client.get("/health")

    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["cache_size"] == 1
    assert data["polling_state"] == "uninitialized"
    assert data["total_alerts_processed"] == 3
    assert data["quota"]["limit"] == 1000


def test_alerts_by_count_from_cache(client, service, mock_http):
    service.cache.add([make_alert(f"a{i}", minutes=i) for i in range(4)])

    resp = client.get("/alerts", params={"count": 2})

    assert resp.status_code == 200
    data = resp.json()
    assert data["count"] == 2
    assert [a["alert_id"] for a in data["alerts"]] == ["a3", "a2"]
    assert data["from_cache"] is True
    mock_http.request.assert_not_called()


def test_alerts_since_with_lists(client, service):
    service.cache.add([
        make_alert("a", minutes=1, lists=["l1"]),
        make_alert("b", minutes=10, lists=["l1"]),
        make_alert("c", minutes=10, lists=["l2"]),
    ])

    resp = client.get("/alerts", params={"since": "2025-11-03T14:05:00Z", "lists": "l1"})

    assert resp.status_code == 200
    assert [a["alert_id"] for a in resp.json()["alerts"]] == ["b"]


def test_alerts_since_without_offset_is_utc(client, service):
    service.cache.add([make_alert("old", minutes=1), make_alert("new", minutes=10)])

    resp = client.get("/alerts", params={"since": "2025-11-03T14:05:00"})

    assert resp.status_code == 200
    assert [a["alert_id"] for a in resp.json()["alerts"]] == ["new"]


def test_alerts_rejects_bad_count(client):
    resp = client.get("/alerts", params={"count": 0})
    assert resp.status_code == 422


def test_alert_by_id(client, service):
    service.cache.add([make_alert("known", headline="Something happened")])

    resp = client.get("/alerts/known")

    assert resp.status_code == 200
    assert resp.json()["alert"]["payload"]["headline"] == "Something happened"


def test_alert_by_id_not_found(client, mock_http):
    mock_http.request.return_value = json_response(404)

    resp = client.get("/alerts/unknown")

    assert resp.status_code == 200
    assert resp.json() == {"alert": None, "message": "Alert not found"}


def test_search(client, mock_http):
    mock_http.request.return_value = json_response(200, {"alerts": [raw_alert("hit", 3)]})

    resp = client.post("/search", json={"entities": ["evil.example.com"]})

    assert resp.status_code == 200
    assert resp.json()["count"] == 1
    assert resp.json()["alerts"][0]["alert_id"] == "hit"


def test_rate_limit_maps_to_503(client, mock_http):
    mock_http.request.return_value = json_response(429, headers={"x-ratelimit-reset": "2000"})

    resp = client.post("/search", json={"entities": ["evil.example.com"], "best_effort": False})

    assert resp.status_code == 503
    data = resp.json()
    assert data["error"] == "rate_limited"
    assert data["status"] == 429
    assert data["retry_after"] == 2.0


def test_auth_failure_maps_to_502(client, mock_http):
    mock_http.post.return_value = json_response(401, {"message": "bad secret"})

    resp = client.get("/alerts", params={"count": 5})

    assert resp.status_code == 502
    assert resp.json()["error"] == "auth_failed"


def test_polling_does_not_start_without_credentials(options, mock_http):
    svc = AlertService(options.model_copy(update={"client_id": "", "client_secret": ""}), http=mock_http)
    app.dependency_overrides[get_service] = lambda: svc
    try:
        client = TestClient(app)
        resp = client.post("/polling/start")
        assert resp.json() == {"started": False, "polling_state": "uninitialized"}

        resp = client.post("/polling/stop")
        assert resp.json() == {"polling_state": "uninitialized"}
    finally:
        app.dependency_overrides.clear()
