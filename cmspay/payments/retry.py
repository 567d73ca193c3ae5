"""
Retry and circuit breaker utilities for block explorer calls.

Exponential backoff with jitter absorbs short explorer hiccups within a
single oracle query; the circuit breaker stops hammering an explorer that
keeps failing. Neither ever drops a polled payment: a failed query simply
leaves the entry for the next poll cycle.
"""

import asyncio
import random
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

import structlog

from cmspay.payments.config import CircuitBreakerConfig, RetryConfig

logger = structlog.get_logger()

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitOpenError(Exception):
    """Raised when circuit breaker is open."""

    pass


class CircuitBreaker:
    """
    Circuit breaker guarding one remote dependency.

    Opens after ``failure_threshold`` consecutive failures, rejects calls
    until ``timeout`` seconds have passed, then lets trial calls through
    and closes again after ``success_threshold`` successes.
    """

    def __init__(self, config: CircuitBreakerConfig, name: str = "circuit"):
        self.config = config
        self.name = name
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[datetime] = None
        self.last_state_change: datetime = datetime.now(timezone.utc)

    async def call_async(self, func: Callable[[], Awaitable[T]]) -> T:
        """
        Execute an async function with circuit breaker protection.

        Raises:
            CircuitOpenError: If circuit is open
            Exception: Original exception from function
        """
        if self.state == CircuitState.OPEN:
            if self._should_attempt_reset():
                self._transition(CircuitState.HALF_OPEN)
                logger.info("circuit_breaker.half_open", circuit=self.name)
            else:
                raise CircuitOpenError(
                    f"Circuit {self.name} is OPEN. "
                    f"Last failure: {self.last_failure_time}"
                )

        try:
            result = await func()
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def _on_success(self):
        self.failure_count = 0

        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.config.success_threshold:
                self._transition(CircuitState.CLOSED)
                logger.info("circuit_breaker.closed", circuit=self.name)

    def _on_failure(self):
        self.failure_count += 1
        self.last_failure_time = datetime.now(timezone.utc)
        self.success_count = 0

        if self.state == CircuitState.HALF_OPEN or (
            self.failure_count >= self.config.failure_threshold
        ):
            self._transition(CircuitState.OPEN)
            logger.warning(
                "circuit_breaker.opened",
                circuit=self.name,
                failure_count=self.failure_count,
                threshold=self.config.failure_threshold,
            )

    def _should_attempt_reset(self) -> bool:
        if not self.last_failure_time:
            return True

        time_since_failure = (
            datetime.now(timezone.utc) - self.last_failure_time
        ).total_seconds()
        return time_since_failure >= self.config.timeout

    def _transition(self, state: CircuitState):
        self.state = state
        self.success_count = 0
        if state == CircuitState.CLOSED:
            self.failure_count = 0
        self.last_state_change = datetime.now(timezone.utc)

    def get_state(self) -> dict[str, Any]:
        """Get current circuit breaker state."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "last_failure_time": (
                self.last_failure_time.isoformat() if self.last_failure_time else None
            ),
            "last_state_change": self.last_state_change.isoformat(),
        }


def backoff_delay(config: RetryConfig, attempt: int) -> float:
    """Delay before retry number ``attempt`` (0-based)."""
    delay = min(
        config.initial_delay * (config.exponential_base**attempt),
        config.max_delay,
    )
    if config.jitter:
        delay = delay * (0.5 + random.random() * 0.5)
    return delay


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    config: RetryConfig,
    operation_name: str = "operation",
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
) -> T:
    """
    Execute a function with exponential backoff retry.

    Args:
        func: Async function to execute
        config: Retry configuration
        operation_name: Name for logging
        retry_on: Exception types worth retrying; anything else is raised
            immediately

    Raises:
        Exception: Last exception if all retries exhausted
    """
    attempt = 0
    while True:
        try:
            return await func()
        except retry_on as e:
            attempt += 1
            if attempt >= config.max_attempts:
                logger.error(
                    "retry.exhausted",
                    operation=operation_name,
                    attempts=attempt,
                    error=str(e),
                )
                raise

            delay = backoff_delay(config, attempt - 1)
            logger.warning(
                "retry.attempt",
                operation=operation_name,
                attempt=attempt,
                max_attempts=config.max_attempts,
                delay_seconds=delay,
                error=str(e),
            )
            await asyncio.sleep(delay)
