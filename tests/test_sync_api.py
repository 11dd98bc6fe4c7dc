"""Tests for the order sync service HTTP endpoints."""

import time

import httpx
import pytest
from fastapi.testclient import TestClient

from order_sync import config
from order_sync import main as sync_main
from order_sync.backend_client import BackendClient

from fakes import FakeTransport

TODAY = {
    "stats": {"totalOrders": 1, "totalRevenue": 360},
    "orders": [{"orderId": "ORD-1", "totalAmount": 360, "status": "confirmed"}],
}


def _backend_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/api/ping":
        return httpx.Response(200, json={"status": "ok"})
    if request.url.path == "/api/orders/today":
        return httpx.Response(200, json=TODAY)
    if request.url.path == "/api/discounts/active":
        return httpx.Response(200, json={"percentage": 10, "minOrderAmount": 300, "isActive": True})
    return httpx.Response(404, json={"message": "Not found"})


@pytest.fixture
def transports():
    return []


@pytest.fixture
def client(monkeypatch, transports):
    def make_transport() -> FakeTransport:
        transport = FakeTransport()
        transports.append(transport)
        return transport

    def make_backend(**kwargs) -> BackendClient:
        return BackendClient(base_url="http://pos.test", transport=httpx.MockTransport(_backend_handler), **kwargs)

    monkeypatch.setattr(sync_main, "SocketIOTransport", make_transport)
    monkeypatch.setattr(sync_main, "BackendClient", make_backend)
    monkeypatch.setattr(config, "SYNC_USER_ID", "worker-7")

    with TestClient(sync_main.app) as test_client:
        yield test_client


def _wait_for_status(client: TestClient, predicate, attempts: int = 200) -> dict:
    for _ in range(attempts):
        status = client.get("/sync/status").json()
        if predicate(status):
            return status
        time.sleep(0.01)
    raise AssertionError(f"status never reached: {status}")


class TestSyncEndpoints:
    def test_health(self, client) -> None:
        assert client.get("/health").json() == {"status": "ok"}

    def test_startup_connects_and_loads_board(self, client, transports) -> None:
        status = _wait_for_status(client, lambda s: s["connection_state"] == "connected" and s["refresh_key"] >= 1)

        assert status["logout_reason"] is None
        assert transports[0].events("register") == ["worker-7"]

        snapshot = client.get("/orders/today").json()
        assert snapshot["orders"][0]["orderId"] == "ORD-1"
        assert snapshot["stats"]["totalOrders"] == 1
        assert snapshot["active_discount"]["percentage"] == 10

    def test_manual_refresh_bumps_refresh_key(self, client) -> None:
        before = _wait_for_status(client, lambda s: s["refresh_key"] >= 1)["refresh_key"]

        response = client.post("/sync/refresh")

        assert response.status_code == 202
        assert response.json()["refresh_key"] == before + 1

    def test_activate_rejected_while_connected(self, client) -> None:
        _wait_for_status(client, lambda s: s["connection_state"] == "connected")

        response = client.post("/sync/activate")

        assert response.status_code == 409

    def test_user_disabled_logs_out(self, client, transports) -> None:
        _wait_for_status(client, lambda s: s["connection_state"] == "connected")

        client.portal.call(transports[0].fire, "user-disabled", {"userId": "worker-7", "reason": "Account disabled"})
        status = client.get("/sync/status").json()

        assert status["connection_state"] == "disconnected"
        assert status["logout_reason"] == "Account disabled"

    def test_logout_sticks_until_credentials_supplied(self, client, transports) -> None:
        _wait_for_status(client, lambda s: s["connection_state"] == "connected")
        client.portal.call(transports[0].fire, "user-disabled", {"userId": "worker-7", "reason": "Account disabled"})

        refused = client.post("/sync/activate")

        assert refused.status_code == 401
        assert len(transports[0].connect_calls) == 1
        assert transports[0].events("register") == ["worker-7"]
        assert sync_main.app.state.device_token is None

        assert client.post("/sync/credentials", json={"session_token": "fresh-session", "device_token": "device-2"}).status_code == 200
        resumed = client.post("/sync/activate")

        assert resumed.json() == {"connection_state": "connected"}
        assert transports[0].connect_calls[-1] == {"token": "fresh-session"}
        assert client.get("/sync/status").json()["logout_reason"] is None

    def test_reactivate_after_disconnect(self, client, transports) -> None:
        _wait_for_status(client, lambda s: s["connection_state"] == "connected")
        client.portal.call(transports[0].drop)

        response = client.post("/sync/activate")

        assert response.status_code == 200
        assert response.json() == {"connection_state": "connected"}
        assert len(transports[0].connect_calls) == 2
