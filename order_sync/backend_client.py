import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from pricing_service.schemas import DiscountPolicy

from . import config
from .errors import AuthRefreshFailedError, BackendError

logger = logging.getLogger(__name__)


class BackendClient:
    """
    Async client for the POS REST backend. Holds the current session token
    and sends it as a bearer credential on authenticated calls.
    """

    def __init__(
        self,
        base_url: str = config.BACKEND_URL,
        timeout: float = config.HTTP_TIMEOUT_SECONDS,
        session_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.session_token = session_token
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def _headers(self, authenticated: bool) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if authenticated and self.session_token:
            headers["Authorization"] = f"Bearer {self.session_token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        json: Any = None,
        authenticated: bool = True,
        timeout: Optional[float] = None,
    ) -> Any:
        extra = {"timeout": timeout} if timeout is not None else {}
        response = await self._client.request(method, path, json=json, headers=self._headers(authenticated), **extra)
        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> Any:
        try:
            data = response.json()
        except ValueError:
            data = None

        if response.is_error:
            if response.status_code == 401:
                # Session token is no longer accepted
                logger.warning(f"Backend rejected session token for {response.request.url.path}")
                self.session_token = None
            message = data.get("message") if isinstance(data, dict) else None
            raise BackendError(
                response.status_code,
                message or response.text[:500] or response.reason_phrase,
                data if isinstance(data, dict) else None,
            )
        return data

    # --- Connectivity / auth ---

    async def ping(self, timeout: float = config.PROBE_TIMEOUT_SECONDS) -> bool:
        """Wakes the backend up. Raises on any failure."""
        await self._request("GET", "/api/ping", authenticated=False, timeout=timeout)
        return True

    async def refresh_session(self, device_token: str) -> str:
        """Exchanges the long-lived device token for a new session token."""
        if not device_token:
            raise AuthRefreshFailedError("no device token available")
        try:
            data = await self._request("POST", "/api/auth/device-login", json={"deviceToken": device_token}, authenticated=False)
        except BackendError as e:
            raise AuthRefreshFailedError("device token rejected", e) from e
        except httpx.HTTPError as e:
            raise AuthRefreshFailedError("could not reach backend", e) from e

        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise AuthRefreshFailedError("backend response did not include a session token")
        self.session_token = token
        logger.info("Session token refreshed from device token")
        return token

    # --- Orders / discounts ---

    async def fetch_active_discount(self) -> Optional[DiscountPolicy]:
        data = await self._request("GET", "/api/discounts/active")
        if not data:
            return None
        try:
            return DiscountPolicy.model_validate(data)
        except ValidationError as e:
            raise BackendError(200, f"malformed active discount: {e.error_count()} validation error(s)") from e

    async def fetch_today_orders(self) -> Dict[str, Any]:
        """Returns {"stats": {...}, "orders": [...]} for the current day."""
        data = await self._request("GET", "/api/orders/today")
        if isinstance(data, list):
            return {"stats": {}, "orders": data}
        if not isinstance(data, dict):
            raise BackendError(200, f"unexpected response body for today's orders: {type(data).__name__}")
        stats = data.get("stats") or {}
        orders = data.get("orders") or []
        if not isinstance(stats, dict) or not isinstance(orders, list):
            raise BackendError(200, "today's orders response has the wrong shape", data)
        return {"stats": stats, "orders": orders}

    async def confirm_order(self, order: Dict[str, Any]) -> Dict[str, Any]:
        data = await self._request("POST", "/api/orders/confirm", json=order)
        return data.get("order", data) if isinstance(data, dict) else data

    async def add_items(self, order_id: str, new_items: List[Dict[str, Any]], print_kot: bool = False) -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"/api/orders/{order_id}/add-items",
            json={"newItems": new_items, "printKOT": print_kot},
        )

    async def delete_order(self, order_id: str) -> Dict[str, Any]:
        return await self._request("DELETE", f"/api/orders/{order_id}")
