from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from pricing_service.schemas import DiscountPolicy


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class SyncSession(BaseModel):
    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    last_heartbeat_at: datetime | None = None
    user_id: str | None = None
    session_id: str | None = None  # Transport-assigned id of the current connection


class AuthCredentials(BaseModel):
    user_id: str
    session_token: str | None = None
    device_token: str | None = None  # Long-lived, used to mint new session tokens


# Server -> client `order-update` payload. Only ever used as a wake-up signal.
class OrderUpdateEvent(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str = "order-updated"
    order: Dict[str, Any] | None = None
    order_id: str | None = Field(default=None, validation_alias=AliasChoices("order_id", "orderId"))


# Server -> client `user-disabled` payload
class UserDisabledEvent(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    user_id: str | None = Field(default=None, validation_alias=AliasChoices("user_id", "userId"))
    reason: str | None = None


class LiveSyncState(BaseModel):
    """What the UI layer sees of the channel."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    connection_state: ConnectionState
    trigger_manual_refresh: Callable[[], Awaitable[None]]


class OrderSnapshot(BaseModel):
    refresh_key: int = 0
    stats: Dict[str, Any] = Field(default_factory=dict)
    orders: List[Dict[str, Any]] = Field(default_factory=list)
    active_discount: DiscountPolicy | None = None
    refreshed_at: datetime | None = None


# Body of POST /sync/credentials; supplied again after a forced logout
class CredentialsUpdate(BaseModel):
    session_token: str = Field(min_length=1)
    device_token: str | None = None
