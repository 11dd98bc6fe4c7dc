import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

import socketio

from . import config
from .errors import AuthenticationError, ConnectionError

logger = logging.getLogger(__name__)

EventHandler = Callable[..., Optional[Awaitable[None]]]

# Substrings the push server uses when it refuses a credential
_AUTH_MARKERS = ("401", "unauthorized", "authentication", "invalid token", "jwt", "token expired")


class PushTransport(Protocol):
    """The subset of a Socket.IO client the live sync channel relies on."""

    @property
    def connected(self) -> bool: ...

    @property
    def sid(self) -> Optional[str]: ...

    def on(self, event: str, handler: EventHandler) -> None: ...

    async def connect(self, url: str, auth: Dict[str, Any]) -> None: ...

    async def emit(self, event: str, data: Any = None) -> None: ...

    async def disconnect(self) -> None: ...

    async def shutdown(self) -> None: ...


def is_auth_failure(message: Any) -> bool:
    text = str(message or "").lower()
    return any(marker in text for marker in _AUTH_MARKERS)


class SocketIOTransport:
    """PushTransport backed by python-socketio's asyncio client."""

    def __init__(
        self,
        reconnection_attempts: int = config.SOCKET_RECONNECTION_ATTEMPTS,
        reconnection_delay: float = config.SOCKET_RECONNECTION_DELAY_SECONDS,
        socketio_path: str = config.SOCKET_PATH,
        wait_timeout: float = config.SOCKET_CONNECT_TIMEOUT_SECONDS,
        client: Optional[socketio.AsyncClient] = None,
    ):
        self._client = client or socketio.AsyncClient(
            reconnection=True,
            reconnection_attempts=reconnection_attempts,
            reconnection_delay=reconnection_delay,
        )
        self._socketio_path = socketio_path
        self._wait_timeout = wait_timeout
        self._last_connect_error: Any = None
        self._client.on("connect_error", self._on_connect_error)

    @property
    def connected(self) -> bool:
        return bool(self._client.connected)

    @property
    def sid(self) -> Optional[str]:
        return self._client.sid

    def on(self, event: str, handler: EventHandler) -> None:
        self._client.on(event, handler)

    async def _on_connect_error(self, data: Any = None) -> None:
        self._last_connect_error = data
        logger.error(f"Socket connection error: {data}")

    async def connect(self, url: str, auth: Dict[str, Any]) -> None:
        self._last_connect_error = None
        try:
            await self._client.connect(
                url,
                auth=auth,
                transports=["websocket", "polling"],
                socketio_path=self._socketio_path,
                wait_timeout=self._wait_timeout,
            )
        except socketio.exceptions.ConnectionError as e:
            detail = self._last_connect_error or str(e)
            if is_auth_failure(detail) or is_auth_failure(e):
                raise AuthenticationError(str(detail), e) from e
            raise ConnectionError(str(detail), e) from e

    async def emit(self, event: str, data: Any = None) -> None:
        await self._client.emit(event, data)

    async def disconnect(self) -> None:
        await self._client.disconnect()

    async def shutdown(self) -> None:
        """Disconnects and also stops a reconnection loop that is still retrying."""
        await self._client.shutdown()
