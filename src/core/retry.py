"""
Retry logic and circuit breaker for outbound calls to collaborator services.
Exponential backoff with jitter; the breaker stops hammering a service
that keeps failing.
"""

import asyncio
import random
import logging
from datetime import datetime, timezone, timedelta
from typing import Callable, Any
from dataclasses import dataclass, field
from enum import Enum

import httpx


logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(RuntimeError):
    """Raised when a call is rejected because the circuit is open."""


@dataclass
class CircuitBreaker:
    """
    Tracks consecutive failures of one downstream service.

    CLOSED counts failures, OPEN rejects calls until recovery_timeout
    has elapsed, HALF_OPEN lets a trial call through.
    """
    failure_threshold: int = 5
    recovery_timeout: int = 60

    failure_count: int = field(default=0, init=False)
    last_failure_time: datetime | None = field(default=None, init=False)
    state: CircuitState = field(default=CircuitState.CLOSED, init=False)

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = datetime.now(timezone.utc)

        if self.failure_count >= self.failure_threshold and self.state is not CircuitState.OPEN:
            self.state = CircuitState.OPEN
            logger.warning(f"Circuit breaker OPENED after {self.failure_count} failures")

    def record_success(self) -> None:
        self.failure_count = 0
        self.state = CircuitState.CLOSED

    def can_execute(self) -> bool:
        if self.state == CircuitState.CLOSED:
            return True

        if self.state == CircuitState.OPEN:
            if self.last_failure_time:
                elapsed = datetime.now(timezone.utc) - self.last_failure_time
                if elapsed > timedelta(seconds=self.recovery_timeout):
                    self.state = CircuitState.HALF_OPEN
                    logger.info("Circuit breaker entering HALF_OPEN state")
                    return True
            return False

        return True

    def reset(self) -> None:
        self.failure_count = 0
        self.last_failure_time = None
        self.state = CircuitState.CLOSED


def calculate_backoff(attempt: int, base_delay: float = 1.0, max_delay: float = 30.0) -> float:
    """
    Delay for the given attempt (0-indexed): exponential, capped, plus 0-10% jitter.
    """
    delay = min(base_delay * (2 ** attempt), max_delay)
    return delay + random.uniform(0, delay * 0.1)


async def retry_async(
    func: Callable[..., Any],
    *args,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    retryable_exceptions: tuple = (httpx.HTTPError, asyncio.TimeoutError),
    circuit_breaker: CircuitBreaker | None = None,
    **kwargs
) -> Any:
    """
    Call an async function, retrying transient failures with backoff.

    httpx responses with a retryable status code count as failures.

    Raises:
        CircuitOpenError: if the breaker rejects the call
        The last exception once retries are exhausted
    """
    for attempt in range(max_retries + 1):
        if circuit_breaker and not circuit_breaker.can_execute():
            raise CircuitOpenError("Circuit breaker is OPEN, rejecting call")

        try:
            result = await func(*args, **kwargs)

            if isinstance(result, httpx.Response) and result.status_code in RETRYABLE_STATUS_CODES:
                raise httpx.HTTPStatusError(
                    f"Retryable status {result.status_code}",
                    request=result.request,
                    response=result
                )

            if circuit_breaker:
                circuit_breaker.record_success()
            return result

        except retryable_exceptions as e:
            if circuit_breaker:
                circuit_breaker.record_failure()

            if attempt == max_retries:
                logger.error(f"Max retries ({max_retries}) exhausted: {e}")
                raise

            delay = calculate_backoff(attempt, base_delay, max_delay)
            if isinstance(e, httpx.HTTPStatusError) and e.response.status_code == 429:
                retry_after = e.response.headers.get("Retry-After")
                if retry_after:
                    delay = float(retry_after)

            logger.warning(
                f"Attempt {attempt + 1}/{max_retries + 1} failed: {e}. "
                f"Retrying in {delay:.2f}s"
            )
            await asyncio.sleep(delay)
