import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

import httpx
from pydantic import ValidationError

from .backend_client import BackendClient
from .errors import BackendError
from .models import OrderSnapshot, OrderUpdateEvent

logger = logging.getLogger(__name__)


class OrderBoard:
    """
    Latest view of today's orders and the active discount, re-fetched from the
    backend every time the live sync channel signals a change.
    """

    def __init__(self, backend: BackendClient):
        self._backend = backend
        self._lock = asyncio.Lock()  # one re-fetch at a time
        self.snapshot = OrderSnapshot()

    @property
    def refresh_key(self) -> int:
        return self.snapshot.refresh_key

    async def refresh(self, event: Optional[OrderUpdateEvent] = None) -> OrderSnapshot:
        async with self._lock:
            if event is not None:
                logger.debug(f"Refreshing board after {event.type} (order {event.order_id})")
            try:
                today = await self._backend.fetch_today_orders()
                discount = await self._backend.fetch_active_discount()
                snapshot = OrderSnapshot(
                    refresh_key=self.snapshot.refresh_key + 1,
                    stats=today["stats"],
                    orders=today["orders"],
                    active_discount=discount,
                    refreshed_at=datetime.now(timezone.utc),
                )
            except (BackendError, httpx.HTTPError, ValidationError) as e:
                # Keep showing the previous snapshot
                logger.error(f"Failed to refresh orders from backend: {e}")
                return self.snapshot

            self.snapshot = snapshot
            logger.info(f"Order board refreshed: {len(self.snapshot.orders)} order(s), refresh #{self.snapshot.refresh_key}")
            return self.snapshot
