from __future__ import annotations

import asyncio
import json
import threading
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from conftest import TEST_SCRIPT_URL

from warehouse.api import _refresh_periodically, app
from warehouse.remote_client import FetchCancelled


class _MacroStub:
    """Answers the macro's GET/POST protocol from an in-memory row list."""

    def __init__(self) -> None:
        self.rows = [
            {"id": "TX1", "date": "2024-03-01", "type": "進貨", "materialName": "Cable", "quantity": 2,
             "unitPrice": 10, "total": 20, "是否收貨": False, "機台種類": "BA"},
            {"id": "RP1", "date": "2024-03-02", "type": "維修", "materialName": "Board", "sn": "SN-1",
             "total": 300},
        ]
        self.posts: list[dict] = []

    def get(self, url, params=None, timeout=None):
        response = MagicMock()
        response.json.return_value = list(self.rows)
        return response

    def post(self, url, data=None, headers=None, timeout=None):
        payload = json.loads(data)
        self.posts.append(payload)
        response = MagicMock()
        action = payload["action"]
        if action == "login":
            response.json.return_value = {"authorized": payload["data"]["password"] == "secret"}
            return response
        if action == "delete":
            self.rows = [row for row in self.rows if row["id"] != payload["id"]]
        else:
            self.rows = [row for row in self.rows if row["id"] != payload["id"]] + [payload["data"]]
        response.json.return_value = {"result": "ok"}
        return response


@pytest.fixture
def macro():
    return _MacroStub()


@pytest.fixture
def client(tmp_path, monkeypatch, macro):
    monkeypatch.setenv("WAREHOUSE_SCRIPT_URL", TEST_SCRIPT_URL)
    monkeypatch.setenv("WAREHOUSE_DB_FILE", str(tmp_path / "cache.db"))
    monkeypatch.setenv("WAREHOUSE_EXPORT_DIR", str(tmp_path / "exports"))
    monkeypatch.setenv("WAREHOUSE_REFRESH_INTERVAL", "3600")
    monkeypatch.setenv("WAREHOUSE_RETRY_DELAY", "0")
    monkeypatch.setenv("WAREHOUSE_AUTHORIZED_USERS", "amy, bob")
    with patch("warehouse.remote_client.requests.get", side_effect=macro.get), patch(
        "warehouse.remote_client.requests.post", side_effect=macro.post
    ):
        with TestClient(app) as test_client:
            yield test_client


@pytest.fixture
def signed_in(client):
    response = client.post("/session/login", json={"username": "amy", "password": "secret"})
    assert response.status_code == 200
    return client


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["remote_configured"] is True


def test_login_flow(client):
    assert client.post("/session/login", json={"username": "amy", "password": "nope"}).status_code == 401
    assert client.get("/records").status_code == 401

    response = client.post("/session/login", json={"username": "amy", "password": "secret"})
    assert response.json() == {"authorized": True, "user": "amy", "records": 2}


def test_records_follow_the_filters(signed_in):
    signed_in.put("/filters", json={"active_view": "records"})
    body = signed_in.get("/records").json()
    assert [record["id"] for record in body["records"]] == ["TX1"]
    assert body["records"][0]["kind"] == "INBOUND"

    signed_in.put("/filters", json={"status_filter": "repairing"})
    body = signed_in.get("/records").json()
    assert [record["id"] for record in body["records"]] == ["RP1"]


def test_invalid_filter_value_is_rejected(signed_in):
    assert signed_in.put("/filters", json={"active_view": "settings"}).status_code == 422


def test_save_and_delete(signed_in, macro):
    response = signed_in.post(
        "/records",
        json={"kind": "USAGE", "material_name": "Screen", "quantity": 3, "unit_price": 150, "total": 1},
    )
    assert response.status_code == 200
    outcome = response.json()
    assert outcome["action"] == "insert"

    sent = macro.posts[-1]
    assert sent["action"] == "insert"
    assert sent["type"] == "用料"
    assert sent["data"]["total"] == 450.0
    assert sent["data"]["操作人員"] == "amy"

    deleted = signed_in.delete(f"/records/{outcome['record_id']}")
    assert deleted.status_code == 200
    assert macro.posts[-1]["action"] == "delete"
    assert all(row["id"] != outcome["record_id"] for row in macro.rows)


def test_batch_save(signed_in):
    response = signed_in.post(
        "/records/batch",
        json=[
            {"kind": "INBOUND", "material_name": "Bolt", "quantity": 1, "unit_price": 5},
            {"kind": "INBOUND", "material_name": ""},
        ],
    )
    body = response.json()
    assert body["success"] is True
    assert (body["saved"], body["skipped"]) == (1, 1)


def test_dashboard_and_ranking(signed_in):
    dashboard = signed_in.get("/dashboard", params={"year": "2024"}).json()
    assert len(dashboard["trend"]) == 12
    assert dashboard["summary"]["year_amount"] == 20.0

    ranking = signed_in.get("/repairs/ranking", params={"year": "2024", "limit": -1}).json()
    assert ranking["ranking"] == [{"name": "Board", "count": 1}]

    assert signed_in.get("/dashboard", params={"year": "24"}).status_code == 422


def test_suggestions(signed_in):
    assert signed_in.get("/suggestions/materials", params={"q": "cab"}).json() == {"suggestions": ["Cable"]}
    details = signed_in.get("/suggestions/materials/details", params={"name": "Cable"})
    assert details.json()["machine_category"] == "BA"
    assert signed_in.get("/suggestions/materials/details", params={"name": "Nut"}).status_code == 404


def test_export(signed_in):
    response = signed_in.post("/reports/export", params={"filename": "monthly"})
    assert response.status_code == 200
    assert response.json()["path"].endswith(".xlsx")


def test_logout_closes_the_session(signed_in):
    assert signed_in.post("/session/logout").status_code == 200
    assert signed_in.get("/filters").status_code == 401


class _LoopService:
    """Minimal stand-in for the service driven by the background refresh."""

    def __init__(self, authenticated: bool = True) -> None:
        self.is_authenticated = authenticated
        self.idle_checks = 0
        self.refresh_tokens: list[threading.Event] = []

    def idle_status(self) -> None:
        self.idle_checks += 1

    def refresh(self, cancel: threading.Event) -> int:
        self.refresh_tokens.append(cancel)
        cancel.set()
        return 0


def _run_loop(service, stop: threading.Event) -> None:
    asyncio.run(asyncio.wait_for(_refresh_periodically(service, 0.01, stop), timeout=5))


def test_background_refresh_passes_the_stop_token():
    stop = threading.Event()
    service = _LoopService()

    _run_loop(service, stop)

    assert service.refresh_tokens == [stop]
    assert service.idle_checks == 1


def test_background_refresh_enforces_idle_timeout_before_fetching():
    stop = threading.Event()
    service = _LoopService()

    def expire() -> None:
        service.idle_checks += 1
        service.is_authenticated = False
        if service.idle_checks >= 2:
            stop.set()

    service.idle_status = expire
    _run_loop(service, stop)

    assert service.refresh_tokens == []
    assert service.idle_checks == 2


def test_background_refresh_ends_when_the_fetch_is_cancelled():
    stop = threading.Event()
    service = _LoopService()

    def cancelled(cancel: threading.Event) -> int:
        service.refresh_tokens.append(cancel)
        raise FetchCancelled("fetch-all cancelled")

    service.refresh = cancelled
    _run_loop(service, stop)

    assert len(service.refresh_tokens) == 1
    assert not stop.is_set()


def test_unlisted_user_cannot_sign_in(client, macro):
    response = client.post("/session/login", json={"username": "mallory", "password": "secret"})
    assert response.status_code == 401
    assert macro.posts == []
