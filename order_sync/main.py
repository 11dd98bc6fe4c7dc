from fastapi import FastAPI, HTTPException, Request, status
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from . import config
from .backend_client import BackendClient
from .board import OrderBoard
from .channel import LiveSyncChannel
from .models import AuthCredentials, ConnectionState, CredentialsUpdate, OrderSnapshot
from .push_client import SocketIOTransport

# Configure logging
logging.basicConfig(level=config.LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def build_channel(app: FastAPI, backend: BackendClient, transport=None) -> LiveSyncChannel:
    """Wires the channel to the board and to this terminal's credentials."""
    board = OrderBoard(backend)
    app.state.board = board
    app.state.logout_reason = None
    app.state.device_token = config.SYNC_DEVICE_TOKEN or None

    def load_credentials() -> AuthCredentials:
        if not config.SYNC_USER_ID:
            raise ValueError("SYNC_USER_ID is not configured")
        if app.state.logout_reason is not None:
            raise ValueError(f"terminal was logged out: {app.state.logout_reason}")
        return AuthCredentials(
            user_id=config.SYNC_USER_ID,
            session_token=backend.session_token,
            device_token=app.state.device_token,
        )

    def logout(reason: Optional[str]) -> None:
        # Both tokens go, so nothing can mint a new session until credentials are supplied again
        backend.session_token = None
        app.state.device_token = None
        app.state.logout_reason = reason or "account disabled"

    return LiveSyncChannel(
        transport=transport or SocketIOTransport(),
        backend=backend,
        credentials_provider=load_credentials,
        on_refresh=board.refresh,
        on_logout=logout,
    )


async def _activate(app: FastAPI) -> None:
    channel: LiveSyncChannel = app.state.channel
    state = await channel.activate()
    # Load the board once regardless of push connectivity
    await app.state.board.refresh()
    logger.info(f"Live sync activation finished: {state.value}")


# --- FastAPI Lifespan Events ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Order Sync starting up...")
    backend = BackendClient(session_token=config.SYNC_SESSION_TOKEN or None)
    app.state.backend = backend
    app.state.channel = build_channel(app, backend)

    # Connect in the background so a cold backend doesn't hold up startup
    logger.info("Starting live sync activation task...")
    app.state.activation_task = asyncio.create_task(_activate(app))

    yield # Application runs here

    logger.info("Order Sync shutting down...")
    task = app.state.activation_task
    if not task.done():
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            logger.info("Live sync activation task cancelled.")
    await app.state.channel.deactivate()
    await backend.aclose()


# --- FastAPI App ---
app = FastAPI(
    title="Order Sync Service",
    description="Keeps this POS terminal's order view current via the backend's push channel.",
    version="0.2.0",
    lifespan=lifespan
)


@app.get("/health", summary="Health Check", tags=["Monitoring"])
async def health_check():
    return {"status": "ok"}


@app.get("/sync/status", summary="Live Sync Status", tags=["Sync"])
async def sync_status(request: Request):
    channel: LiveSyncChannel = request.app.state.channel
    return {
        "connection_state": channel.connection_state.value,
        "last_heartbeat_at": channel.session.last_heartbeat_at,
        "refresh_key": request.app.state.board.refresh_key,
        "logout_reason": request.app.state.logout_reason,
    }


@app.post("/sync/refresh", summary="Trigger Manual Refresh", tags=["Sync"], status_code=status.HTTP_202_ACCEPTED)
async def sync_refresh(request: Request):
    channel: LiveSyncChannel = request.app.state.channel
    await channel.state.trigger_manual_refresh()
    return {"refresh_key": request.app.state.board.refresh_key}


@app.post("/sync/activate", summary="Reconnect Live Sync", tags=["Sync"])
async def sync_activate(request: Request):
    """Starts a fresh activation cycle when the channel has given up."""
    channel: LiveSyncChannel = request.app.state.channel
    if request.app.state.logout_reason is not None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Logged out ({request.app.state.logout_reason}); supply credentials first",
        )
    if channel.connection_state is not ConnectionState.DISCONNECTED:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Live sync is {channel.connection_state.value}")
    state = await channel.activate()
    return {"connection_state": state.value}


@app.post("/sync/credentials", summary="Supply Credentials", tags=["Sync"])
async def sync_credentials(credentials: CredentialsUpdate, request: Request):
    """Stores fresh tokens after a login and clears any forced logout."""
    request.app.state.backend.session_token = credentials.session_token
    request.app.state.device_token = credentials.device_token
    request.app.state.logout_reason = None
    logger.info("Credentials updated, live sync may be activated again")
    return {"status": "ok"}


@app.get("/orders/today", summary="Today's Orders", tags=["Orders"], response_model=OrderSnapshot)
async def orders_today(request: Request):
    """Last snapshot fetched from the backend."""
    return request.app.state.board.snapshot
