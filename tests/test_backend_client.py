"""Tests for the REST backend client and the order board it feeds."""

import asyncio
import json

import httpx
import pytest

from order_sync.backend_client import BackendClient
from order_sync.board import OrderBoard
from order_sync.errors import AuthRefreshFailedError, BackendError
from order_sync.models import OrderUpdateEvent

TODAY = {
    "stats": {"totalOrders": 2, "totalRevenue": 760},
    "orders": [{"orderId": "ORD-1", "totalAmount": 400}, {"orderId": "ORD-2", "totalAmount": 360}],
}
ACTIVE_DISCOUNT = {"_id": "d1", "percentage": 10, "minOrderAmount": 300, "isActive": True, "createdAt": "2024-05-01T10:00:00Z"}


class FakeBackend:
    """Routes requests to canned responses and records what was sent."""

    def __init__(self):
        self.requests = []
        self.routes = {
            ("GET", "/api/ping"): httpx.Response(200, json={"status": "ok"}),
            ("GET", "/api/orders/today"): httpx.Response(200, json=TODAY),
            ("GET", "/api/discounts/active"): httpx.Response(200, json=ACTIVE_DISCOUNT),
            ("POST", "/api/auth/device-login"): httpx.Response(200, json={"status": "success", "token": "minted"}),
        }

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.routes.get((request.method, request.url.path))
        if response is None:
            return httpx.Response(404, json={"message": "Not found"})
        if isinstance(response, Exception):
            raise response
        return response

    def client(self, **kwargs) -> BackendClient:
        return BackendClient(base_url="http://pos.test", transport=httpx.MockTransport(self), **kwargs)


def _run(coro):
    return asyncio.run(coro)


class TestBackendClient:
    def test_ping_is_unauthenticated(self) -> None:
        backend = FakeBackend()

        async def scenario():
            async with backend.client(session_token="session-1") as client:
                return await client.ping(timeout=1)

        assert _run(scenario()) is True
        assert "authorization" not in backend.requests[0].headers

    def test_bearer_token_sent(self) -> None:
        backend = FakeBackend()

        async def scenario():
            async with backend.client(session_token="session-1") as client:
                return await client.fetch_today_orders()

        today = _run(scenario())

        assert backend.requests[0].headers["authorization"] == "Bearer session-1"
        assert today["stats"]["totalOrders"] == 2
        assert [order["orderId"] for order in today["orders"]] == ["ORD-1", "ORD-2"]

    def test_active_discount_parsed(self) -> None:
        backend = FakeBackend()

        async def scenario():
            async with backend.client() as client:
                return await client.fetch_active_discount()

        discount = _run(scenario())

        assert discount.percentage == 10
        assert discount.minimum_order_amount == 300
        assert discount.active is True

    def test_no_active_discount(self) -> None:
        backend = FakeBackend()
        backend.routes[("GET", "/api/discounts/active")] = httpx.Response(
            200, content=b"null", headers={"content-type": "application/json"}
        )

        async def scenario():
            async with backend.client() as client:
                return await client.fetch_active_discount()

        assert _run(scenario()) is None

    def test_unauthorized_clears_session(self) -> None:
        backend = FakeBackend()
        backend.routes[("GET", "/api/orders/today")] = httpx.Response(401, json={"message": "Token expired"})

        async def scenario():
            async with backend.client(session_token="stale") as client:
                try:
                    await client.fetch_today_orders()
                finally:
                    assert client.session_token is None

        with pytest.raises(BackendError) as excinfo:
            _run(scenario())
        assert excinfo.value.status_code == 401
        assert "Token expired" in str(excinfo.value)

    def test_non_json_orders_reply_is_backend_error(self) -> None:
        backend = FakeBackend()
        backend.routes[("GET", "/api/orders/today")] = httpx.Response(200, text="<html></html>", headers={"content-type": "text/html"})

        async def scenario():
            async with backend.client() as client:
                await client.fetch_today_orders()

        with pytest.raises(BackendError):
            _run(scenario())

    def test_malformed_discount_is_backend_error(self) -> None:
        backend = FakeBackend()
        backend.routes[("GET", "/api/discounts/active")] = httpx.Response(200, json={"minOrderAmount": 100})

        async def scenario():
            async with backend.client() as client:
                await client.fetch_active_discount()

        with pytest.raises(BackendError) as excinfo:
            _run(scenario())
        assert "malformed active discount" in str(excinfo.value)

    def test_refresh_session_mints_token(self) -> None:
        backend = FakeBackend()

        async def scenario():
            async with backend.client() as client:
                token = await client.refresh_session("device-1")
                return token, client.session_token

        assert _run(scenario()) == ("minted", "minted")
        assert json.loads(backend.requests[0].content) == {"deviceToken": "device-1"}

    def test_refresh_session_rejected(self) -> None:
        backend = FakeBackend()
        backend.routes[("POST", "/api/auth/device-login")] = httpx.Response(401, json={"message": "Device not recognised"})

        async def scenario():
            async with backend.client() as client:
                await client.refresh_session("device-1")

        with pytest.raises(AuthRefreshFailedError):
            _run(scenario())

    def test_refresh_session_unreachable(self) -> None:
        backend = FakeBackend()
        backend.routes[("POST", "/api/auth/device-login")] = httpx.ConnectError("connection refused")

        async def scenario():
            async with backend.client() as client:
                await client.refresh_session("device-1")

        with pytest.raises(AuthRefreshFailedError):
            _run(scenario())

    def test_refresh_without_device_token(self) -> None:
        backend = FakeBackend()

        async def scenario():
            async with backend.client() as client:
                await client.refresh_session("")

        with pytest.raises(AuthRefreshFailedError):
            _run(scenario())
        assert backend.requests == []

    def test_add_items_payload(self) -> None:
        backend = FakeBackend()
        backend.routes[("POST", "/api/orders/ORD-1/add-items")] = httpx.Response(
            200, json={"message": "Items added successfully", "kotNumber": 2}
        )

        async def scenario():
            async with backend.client() as client:
                return await client.add_items("ORD-1", [{"name": "Momo", "price": 150, "quantity": 1}], print_kot=True)

        assert _run(scenario())["kotNumber"] == 2
        assert json.loads(backend.requests[0].content) == {
            "newItems": [{"name": "Momo", "price": 150, "quantity": 1}],
            "printKOT": True,
        }


class TestOrderBoard:
    def test_refresh_replaces_snapshot(self) -> None:
        backend = FakeBackend()

        async def scenario():
            async with backend.client() as client:
                board = OrderBoard(client)
                await board.refresh()
                await board.refresh(OrderUpdateEvent(type="order-updated", order_id="ORD-2"))
                return board

        board = _run(scenario())

        assert board.refresh_key == 2
        assert len(board.snapshot.orders) == 2
        assert board.snapshot.active_discount.percentage == 10
        assert board.snapshot.refreshed_at is not None

    def test_failed_refresh_keeps_previous_snapshot(self) -> None:
        backend = FakeBackend()

        async def scenario():
            async with backend.client() as client:
                board = OrderBoard(client)
                await board.refresh()
                backend.routes[("GET", "/api/orders/today")] = httpx.Response(500, json={"message": "Failed to fetch today's orders"})
                await board.refresh()
                return board

        board = _run(scenario())

        assert board.refresh_key == 1
        assert len(board.snapshot.orders) == 2

    def test_html_orders_page_keeps_previous_snapshot(self) -> None:
        backend = FakeBackend()

        async def scenario():
            async with backend.client() as client:
                board = OrderBoard(client)
                await board.refresh()
                backend.routes[("GET", "/api/orders/today")] = httpx.Response(
                    200, text="<html>Service waking up</html>", headers={"content-type": "text/html"}
                )
                await board.refresh()
                return board

        board = _run(scenario())

        assert board.refresh_key == 1
        assert len(board.snapshot.orders) == 2

    def test_malformed_discount_keeps_previous_snapshot(self) -> None:
        backend = FakeBackend()
        backend.routes[("GET", "/api/discounts/active")] = httpx.Response(200, json={"minOrderAmount": 100})

        async def scenario():
            async with backend.client() as client:
                board = OrderBoard(client)
                await board.refresh()
                return board

        board = _run(scenario())

        assert board.refresh_key == 0
        assert board.snapshot.orders == []
