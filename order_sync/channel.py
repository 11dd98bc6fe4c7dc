"""
Live sync channel.

Keeps a POS terminal's view of orders current by listening on the backend's
Socket.IO push endpoint. Notifications are only wake-ups: every
`order-update` (and every reconnect after a gap) calls the refresh callback,
which re-fetches from the REST backend. Nothing from a notification payload
is trusted as order state.

Connecting is bounded: one best-effort liveness probe, one connect attempt,
and at most one session refresh plus retry when the credential is rejected.
After that the channel stays disconnected until it is activated again.
"""

import asyncio
import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import ValidationError

from . import config
from .backend_client import BackendClient
from .errors import AuthenticationError, AuthRefreshFailedError, ConnectionError
from .models import (
    AuthCredentials,
    ConnectionState,
    LiveSyncState,
    OrderUpdateEvent,
    SyncSession,
    UserDisabledEvent,
)
from .push_client import PushTransport

logger = logging.getLogger(__name__)

RefreshCallback = Callable[[Optional[OrderUpdateEvent]], Optional[Awaitable[None]]]
LogoutCallback = Callable[[Optional[str]], Optional[Awaitable[None]]]
CredentialsProvider = Callable[[], Union[AuthCredentials, Awaitable[AuthCredentials]]]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class LiveSyncChannel:
    def __init__(
        self,
        transport: PushTransport,
        backend: BackendClient,
        credentials_provider: CredentialsProvider,
        on_refresh: RefreshCallback,
        on_logout: Optional[LogoutCallback] = None,
        url: str = config.SOCKET_URL,
        probe_timeout: float = config.PROBE_TIMEOUT_SECONDS,
        heartbeat_interval: float = config.HEARTBEAT_INTERVAL_SECONDS,
    ):
        self._transport = transport
        self._backend = backend
        self._credentials_provider = credentials_provider
        self._on_refresh = on_refresh
        self._on_logout = on_logout
        self.url = url
        self.probe_timeout = probe_timeout
        self.heartbeat_interval = heartbeat_interval

        self.session = SyncSession()
        self._active = False
        self._has_connected = False  # set once the first connect of this activation succeeds
        self._heartbeat_task: Optional[asyncio.Task] = None

        transport.on("connect", self._on_connect)
        transport.on("disconnect", self._on_disconnect)
        transport.on("order-update", self._on_order_update)
        transport.on("user-disabled", self._on_user_disabled)

    # --- Accessors ---

    @property
    def connection_state(self) -> ConnectionState:
        return self.session.connection_state

    @property
    def state(self) -> LiveSyncState:
        return LiveSyncState(
            connection_state=self.session.connection_state,
            trigger_manual_refresh=self.trigger_manual_refresh,
        )

    def _set_state(self, state: ConnectionState) -> None:
        if self.session.connection_state is not state:
            logger.info(f"Live sync {self.session.connection_state.value} -> {state.value}")
        self.session.connection_state = state

    # --- Lifecycle ---

    async def activate(self) -> ConnectionState:
        if self._active:
            if self.connection_state is not ConnectionState.DISCONNECTED:
                return self.connection_state
            # A previous activation gave up; start over from a clean transport
            await self.deactivate()
        self._active = True
        self._has_connected = False
        self._set_state(ConnectionState.CONNECTING)

        await self._probe()

        try:
            credentials = await _maybe_await(self._credentials_provider())
        except Exception:
            logger.exception("Could not load credentials for live sync")
            self._set_state(ConnectionState.DISCONNECTED)
            return self.connection_state

        self.session.user_id = credentials.user_id
        try:
            await self._open(credentials)
        except (ConnectionError, AuthRefreshFailedError) as e:
            logger.error(f"Live sync unavailable: {e}")
            self._set_state(ConnectionState.DISCONNECTED)
            return self.connection_state

        self._has_connected = True
        await self._after_open()
        return self.connection_state

    async def deactivate(self) -> None:
        self._active = False
        await self._stop_heartbeat()
        # The transport may be between automatic reconnection attempts
        try:
            await self._transport.shutdown()
        except Exception as e:
            logger.warning(f"Error while closing push connection: {e}")
        self.session.session_id = None
        self._set_state(ConnectionState.DISCONNECTED)

    async def trigger_manual_refresh(self) -> None:
        await self._refresh(None)

    # --- Connecting ---

    async def _probe(self) -> None:
        try:
            await asyncio.wait_for(self._backend.ping(timeout=self.probe_timeout), timeout=self.probe_timeout)
        except Exception as e:
            logger.info(f"Backend liveness probe failed ({e!r}), connecting anyway")

    async def _open(self, credentials: AuthCredentials) -> None:
        try:
            await self._transport.connect(self.url, auth={"token": credentials.session_token})
        except AuthenticationError as e:
            logger.warning(f"Push endpoint rejected credential ({e}), refreshing session once")
            token = await self._backend.refresh_session(credentials.device_token or "")
            await self._transport.connect(self.url, auth={"token": token})

    async def _after_open(self) -> None:
        try:
            await self._transport.emit("register", self.session.user_id)
        except Exception as e:
            logger.warning(f"Failed to register user {self.session.user_id} on push channel: {e}")
        self.session.session_id = self._transport.sid
        self._set_state(ConnectionState.CONNECTED)
        await self._start_heartbeat()

    # --- Heartbeat ---

    async def _start_heartbeat(self) -> None:
        await self._stop_heartbeat()
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    async def _stop_heartbeat(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _heartbeat_loop(self) -> None:
        while True:
            try:
                await self._transport.emit("heartbeat", self.session.user_id)
                self.session.last_heartbeat_at = datetime.now(timezone.utc)
            except Exception as e:
                logger.warning(f"Heartbeat failed: {e}")
            await asyncio.sleep(self.heartbeat_interval)

    # --- Transport events ---

    async def _on_connect(self) -> None:
        # The first connect is handled by activate(); this only sees reconnects
        if not self._active or not self._has_connected:
            return
        if self.connection_state is ConnectionState.CONNECTED:
            return
        logger.info("Reconnected to push channel, refreshing to catch up")
        await self._after_open()
        await self._refresh(None)

    async def _on_disconnect(self, *args: Any) -> None:
        if not self._active:
            return
        reason = args[0] if args else None
        logger.info(f"Disconnected from push channel. Reason: {reason}")
        await self._stop_heartbeat()
        self.session.session_id = None
        self._set_state(ConnectionState.DISCONNECTED)

    async def _on_order_update(self, data: Any = None) -> None:
        if not self._active:
            return
        try:
            event = OrderUpdateEvent.model_validate(data or {})
        except ValidationError:
            logger.debug(f"Unrecognised order-update payload: {data!r}")
            event = None
        logger.info(f"Received order update: {event.type if event else 'unknown'}")
        await self._refresh(event)

    async def _on_user_disabled(self, data: Any = None) -> None:
        if not self._active:
            return
        try:
            event = UserDisabledEvent.model_validate(data if isinstance(data, dict) else {"reason": data})
        except ValidationError:
            event = UserDisabledEvent()
        if event.user_id is not None and event.user_id != self.session.user_id:
            return

        logger.warning(f"Account {self.session.user_id} disabled by server: {event.reason}")
        self._active = False
        if self._on_logout is not None:
            try:
                await _maybe_await(self._on_logout(event.reason))
            except Exception:
                logger.exception("Logout callback failed")
        await self.deactivate()

    async def _refresh(self, event: Optional[OrderUpdateEvent]) -> None:
        try:
            await _maybe_await(self._on_refresh(event))
        except Exception:
            logger.exception("Refresh callback failed")
