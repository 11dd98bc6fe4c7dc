"""
Routes calculation requests to the background worker, or computes them
in-process when the worker is unavailable or too slow.

Callers always await the result; whether it came from the worker or from the
fallback is invisible to them, since both paths run logic.run_calculation.
Replies are matched to callers by correlation id and may complete in any order.
"""

import asyncio
import functools
import itertools
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Union

from pydantic import BaseModel

from . import config, logic, schemas
from .errors import (
    CalculationError,
    CalculationTimeoutError,
    InvalidInputError,
    WorkerUnavailableError,
)
from .worker import CalculationWorker

logger = logging.getLogger(__name__)


class DispatcherState(str, Enum):
    UNINITIALIZED = "uninitialized"
    WORKER_READY = "worker_ready"
    WORKER_UNAVAILABLE = "worker_unavailable"


@dataclass
class _Pending:
    future: asyncio.Future
    loop: asyncio.AbstractEventLoop


def _dump(value: Any) -> Any:
    return value.model_dump() if isinstance(value, BaseModel) else value


class CalculationDispatcher:
    def __init__(
        self,
        timeout: float = config.CALCULATION_TIMEOUT_SECONDS,
        worker_factory: Callable[..., CalculationWorker] = CalculationWorker,
        use_worker: bool = config.CALCULATION_WORKER_ENABLED,
    ):
        self.timeout = timeout
        self._worker_factory = worker_factory
        self._use_worker = use_worker
        self._lock = threading.Lock()  # guards everything below; worker callbacks run on the worker thread
        self._pending: Dict[int, _Pending] = {}
        self._ids = itertools.count(1)
        self._worker: Optional[CalculationWorker] = None
        self._generation = 0
        self._state = DispatcherState.UNINITIALIZED
        self._restart_on_next_call = False

    @property
    def state(self) -> DispatcherState:
        return self._state

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    # --- Lifecycle ---

    def start(self) -> DispatcherState:
        """Starts the background worker. Failure only downgrades to in-process calculation."""
        with self._lock:
            if self._state is DispatcherState.WORKER_READY:
                return self._state
            self._restart_on_next_call = False
            if not self._use_worker:
                self._state = DispatcherState.WORKER_UNAVAILABLE
                logger.info("Calculation worker disabled, using in-process calculations")
                return self._state

            self._generation += 1
            generation = self._generation
            try:
                worker = self._worker_factory(
                    on_reply=self._on_reply,
                    on_fatal=functools.partial(self._on_worker_fatal, generation),
                )
                worker.start()
            except Exception:
                logger.exception("Failed to initialize calculation worker, using in-process calculations")
                self._worker = None
                self._state = DispatcherState.WORKER_UNAVAILABLE
                return self._state

            self._worker = worker
            self._state = DispatcherState.WORKER_READY
            return self._state

    def stop(self) -> None:
        """Fails anything in flight and joins the worker. Blocks, so async callers run it in a thread."""
        with self._lock:
            worker = self._worker
            self._worker = None
            self._state = DispatcherState.UNINITIALIZED
            orphaned = list(self._pending.values())
            self._pending.clear()

        for entry in orphaned:
            self._call_on_loop(entry, self._fail, entry.future, WorkerUnavailableError("dispatcher stopped"))
        if worker is not None:
            worker.stop()

    async def __aenter__(self) -> "CalculationDispatcher":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await asyncio.to_thread(self.stop)

    # --- Dispatch ---

    async def dispatch(self, kind: Union[schemas.CalculationKind, str], payload: Mapping[str, Any]) -> Dict[str, Any]:
        try:
            kind = schemas.CalculationKind(kind)
        except ValueError as e:
            raise InvalidInputError(f"Unknown calculation type: {kind}") from e
        if not isinstance(payload, Mapping):
            raise InvalidInputError(f"calculation payload must be a mapping, got {type(payload).__name__}")
        payload = dict(payload)

        if self._state is DispatcherState.UNINITIALIZED or self._restart_on_next_call:
            self.start()

        loop = asyncio.get_running_loop()
        with self._lock:
            worker = self._worker if self._state is DispatcherState.WORKER_READY else None
            if worker is not None:
                correlation_id = next(self._ids)
                future = loop.create_future()
                self._pending[correlation_id] = _Pending(future=future, loop=loop)

        if worker is None:
            return logic.run_calculation(kind, payload)

        try:
            worker.post(schemas.CalculationRequest(correlation_id=correlation_id, kind=kind, payload=payload))
            return await asyncio.wait_for(future, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{CalculationTimeoutError(correlation_id, self.timeout)}, using fallback calculation")
            return logic.run_calculation(kind, payload)
        except WorkerUnavailableError as e:
            logger.warning(f"Calculation {correlation_id} lost its worker ({e}), using fallback calculation")
            return logic.run_calculation(kind, payload)
        finally:
            with self._lock:
                self._pending.pop(correlation_id, None)

    async def compute_order_total(
        self,
        items: Iterable[Union[schemas.LineItem, Dict[str, Any]]],
        discount: Optional[Union[schemas.DiscountPolicy, Dict[str, Any]]] = None,
    ) -> schemas.OrderTotalResult:
        payload = {"items": [_dump(item) for item in items], "discount": _dump(discount)}
        result = await self.dispatch(schemas.CalculationKind.ORDER_TOTAL, payload)
        return schemas.OrderTotalResult.model_validate(result)

    async def compute_discount(self, subtotal: float, percentage: float, minimum_order_amount: float = 0) -> schemas.DiscountResult:
        payload = {"subtotal": subtotal, "percentage": percentage, "minimum_order_amount": minimum_order_amount}
        result = await self.dispatch(schemas.CalculationKind.DISCOUNT, payload)
        return schemas.DiscountResult.model_validate(result)

    async def compute_tax(self, amount: float, tax_rate_percent: float) -> schemas.TaxResult:
        result = await self.dispatch(schemas.CalculationKind.TAX, {"amount": amount, "tax_rate": tax_rate_percent})
        return schemas.TaxResult.model_validate(result)

    # --- Worker callbacks (worker thread) ---

    def _on_reply(self, reply: schemas.CalculationReply) -> None:
        with self._lock:
            entry = self._pending.pop(reply.correlation_id, None)
        if entry is None:
            logger.debug(f"Ignoring late reply for calculation {reply.correlation_id}")
            return
        self._call_on_loop(entry, self._settle, entry.future, reply)

    def _on_worker_fatal(self, generation: int, error: BaseException) -> None:
        with self._lock:
            if generation != self._generation or self._worker is None:
                return
            self._worker = None
            self._state = DispatcherState.WORKER_UNAVAILABLE
            self._restart_on_next_call = True
            orphaned = list(self._pending.values())
            self._pending.clear()

        logger.error(f"Calculation worker error: {error}. {len(orphaned)} in-flight calculation(s) will fall back")
        for entry in orphaned:
            self._call_on_loop(entry, self._fail, entry.future, WorkerUnavailableError("worker crashed", error))

    @staticmethod
    def _call_on_loop(entry: _Pending, callback: Callable[..., None], *args: Any) -> None:
        try:
            entry.loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # Caller's loop already closed; nobody is waiting any more
            logger.debug("Dropping calculation reply for a closed event loop")

    # --- Settling (caller's loop) ---

    @staticmethod
    def _settle(future: asyncio.Future, reply: schemas.CalculationReply) -> None:
        if future.done():
            return
        if reply.error is not None:
            if reply.error_type == InvalidInputError.__name__:
                future.set_exception(InvalidInputError(reply.error))
            else:
                future.set_exception(CalculationError(reply.error))
        else:
            future.set_result(reply.result)

    @staticmethod
    def _fail(future: asyncio.Future, error: Exception) -> None:
        if not future.done():
            future.set_exception(error)
