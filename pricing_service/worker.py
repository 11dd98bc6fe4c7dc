"""
Background calculation worker.

Runs calculations on a dedicated thread so that bursts of cart edits never
block the caller's event loop. Requests arrive as CalculationRequest envelopes
on an inbound queue; every request produces exactly one CalculationReply,
delivered through the reply callback together with its correlation id.
"""

import json
import logging
import queue
import threading
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional

from . import config, logic
from .errors import WorkerUnavailableError
from .schemas import CalculationReply, CalculationRequest

logger = logging.getLogger(__name__)

_STOP = object()


class CalculationCache:
    """Memoizes results by calculation kind and payload."""

    def __init__(self, max_entries: int = config.CALCULATION_CACHE_MAX_ENTRIES, trim_to: int = config.CALCULATION_CACHE_TRIM_TO):
        self.max_entries = max_entries
        self.trim_to = min(trim_to, max_entries)
        self._entries: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def key_for(request: CalculationRequest) -> str:
        return json.dumps({"kind": request.kind.value, "payload": request.payload}, sort_keys=True, default=str)

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        result = self._entries.get(key)
        return dict(result) if result is not None else None

    def put(self, key: str, result: Dict[str, Any]) -> None:
        self._entries[key] = dict(result)
        self._entries.move_to_end(key)
        if len(self._entries) > self.max_entries:
            # Keep only the most recent entries
            while len(self._entries) > self.trim_to:
                self._entries.popitem(last=False)
            logger.debug(f"Calculation cache trimmed to {len(self._entries)} entries")


class CalculationWorker:
    def __init__(
        self,
        on_reply: Callable[[CalculationReply], None],
        on_fatal: Optional[Callable[[BaseException], None]] = None,
        cache: Optional[CalculationCache] = None,
        name: str = "calculation-worker",
    ):
        self._on_reply = on_reply
        self._on_fatal = on_fatal
        self.cache = cache if cache is not None else CalculationCache()
        self.name = name
        self._inbox: "queue.Queue[Any]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            raise WorkerUnavailableError(f"{self.name} was already started")
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        logger.info(f"Calculation worker '{self.name}' started")

    def post(self, request: CalculationRequest) -> None:
        if not self.is_alive:
            raise WorkerUnavailableError(f"{self.name} is not running")
        self._inbox.put(request)

    def stop(self, timeout: float = 1.0) -> None:
        if self._thread is None:
            return
        self._inbox.put(_STOP)
        self._thread.join(timeout)
        logger.info(f"Calculation worker '{self.name}' stopped")

    def handle(self, request: CalculationRequest) -> CalculationReply:
        """Computes one request. Calculation failures become error replies."""
        key = CalculationCache.key_for(request)
        try:
            result = self.cache.get(key)
            if result is None:
                result = logic.run_calculation(request.kind, request.payload)
                self.cache.put(key, result)
        except Exception as e:
            logger.debug(f"Calculation {request.correlation_id} ({request.kind.value}) failed: {e}")
            return CalculationReply(
                correlation_id=request.correlation_id,
                kind=request.kind,
                error=str(e),
                error_type=type(e).__name__,
            )
        return CalculationReply(correlation_id=request.correlation_id, kind=request.kind, result=result)

    def _run(self) -> None:
        try:
            while True:
                request = self._inbox.get()
                if request is _STOP:
                    break
                self._on_reply(self.handle(request))
        except Exception as e:
            logger.exception(f"Calculation worker '{self.name}' crashed")
            if self._on_fatal is not None:
                self._on_fatal(e)
