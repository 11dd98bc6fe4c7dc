"""Error types raised by the pricing service."""

from typing import Optional


class PricingError(Exception):
    """Base class for pricing errors."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message}: {self.cause}"
        return self.message


class InvalidInputError(PricingError):
    """Caller supplied values outside the calculation contract."""


class CalculationError(PricingError):
    """The background worker reported a failure for one request."""


# Never surfaced to callers; the dispatcher falls back to in-process
# computation when either of these occurs.

class WorkerUnavailableError(PricingError):
    """The background worker could not be started or has died."""


class CalculationTimeoutError(PricingError):
    """The background worker did not reply in time."""

    def __init__(self, correlation_id: int, timeout: float):
        super().__init__(f"calculation {correlation_id} timed out after {timeout}s")
        self.correlation_id = correlation_id
        self.timeout = timeout
