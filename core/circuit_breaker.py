"""
Circuit Breaker for generation provider calls

Stops hammering a provider that keeps failing with transient errors
(rate limits, 5xx, network). Each ServiceClients instance owns its own set of
breakers; there is no process-wide registry.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Failing, requests are rejected immediately
- HALF_OPEN: Testing recovery, limited requests allowed
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


def _always(error: Exception) -> bool:
    return True


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker behavior."""
    failure_threshold: int = 5  # Consecutive failures before opening
    recovery_timeout: float = 30.0  # Seconds before trying half-open
    half_open_max_calls: int = 3  # Max calls in half-open state
    success_threshold: int = 2  # Successes in half-open to close
    # Decides whether an exception counts against the provider
    is_failure: Callable[[Exception], bool] = _always


@dataclass
class CircuitBreakerStats:
    """Runtime statistics for the circuit breaker."""
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    half_open_calls: int = 0
    last_failure_time: float = 0
    last_success_time: float = 0
    state_changed_at: float = field(default_factory=time.time)
    total_calls: int = 0
    total_failures: int = 0
    total_successes: int = 0


class CircuitBreakerOpen(Exception):
    """Raised when circuit breaker is open and request is rejected."""

    def __init__(self, service_name: str, retry_after: float):
        self.service_name = service_name
        self.retry_after = retry_after
        super().__init__(
            f"Circuit breaker is OPEN for {service_name}. "
            f"Retry after {retry_after:.1f} seconds."
        )


class CircuitBreaker:
    """
    Circuit breaker for provider calls.

    Usage:
        breaker = CircuitBreaker("image")
        result = await breaker.call(send_request, url, payload)
    """

    def __init__(
        self,
        service_name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self.stats = CircuitBreakerStats(state_changed_at=clock())
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        """Current state of the circuit breaker."""
        return self.stats.state

    @property
    def is_open(self) -> bool:
        return self.stats.state == CircuitState.OPEN

    def _should_try_reset(self) -> bool:
        """Check if enough time has passed to try resetting."""
        if self.stats.state != CircuitState.OPEN:
            return False
        elapsed = self._clock() - self.stats.state_changed_at
        return elapsed >= self.config.recovery_timeout

    def _transition_to(self, new_state: CircuitState):
        old_state = self.stats.state
        self.stats.state = new_state
        self.stats.state_changed_at = self._clock()

        if new_state == CircuitState.HALF_OPEN:
            self.stats.half_open_calls = 0
            self.stats.success_count = 0

        logger.info(
            f"Circuit breaker [{self.service_name}]: {old_state.value} -> {new_state.value}"
        )

    async def _before_call(self):
        """Called before each request. May raise CircuitBreakerOpen."""
        async with self._lock:
            self.stats.total_calls += 1

            if self.stats.state == CircuitState.OPEN:
                if self._should_try_reset():
                    self._transition_to(CircuitState.HALF_OPEN)
                else:
                    retry_after = (
                        self.config.recovery_timeout
                        - (self._clock() - self.stats.state_changed_at)
                    )
                    raise CircuitBreakerOpen(self.service_name, retry_after)

            if self.stats.state == CircuitState.HALF_OPEN:
                if self.stats.half_open_calls >= self.config.half_open_max_calls:
                    raise CircuitBreakerOpen(
                        self.service_name,
                        self.config.recovery_timeout,
                    )
                self.stats.half_open_calls += 1

    async def _on_success(self):
        async with self._lock:
            self.stats.success_count += 1
            self.stats.total_successes += 1
            self.stats.last_success_time = self._clock()
            self.stats.failure_count = 0

            if self.stats.state == CircuitState.HALF_OPEN:
                if self.stats.success_count >= self.config.success_threshold:
                    self._transition_to(CircuitState.CLOSED)

    async def _on_failure(self, error: Exception):
        if not self.config.is_failure(error):
            # the provider answered; the request itself was bad
            await self._on_success()
            return

        async with self._lock:
            self.stats.failure_count += 1
            self.stats.total_failures += 1
            self.stats.last_failure_time = self._clock()

            if self.stats.state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
            elif self.stats.state == CircuitState.CLOSED:
                if self.stats.failure_count >= self.config.failure_threshold:
                    self._transition_to(CircuitState.OPEN)

            logger.warning(
                f"Circuit breaker [{self.service_name}] failure: {error}. "
                f"Failure count: {self.stats.failure_count}/{self.config.failure_threshold}"
            )

    async def call(
        self,
        func: Callable[..., Any],
        *args,
        **kwargs,
    ) -> Any:
        """
        Execute an async function with circuit breaker protection.

        Raises:
            CircuitBreakerOpen: If the circuit is open
            Exception: Any exception from the function
        """
        await self._before_call()

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            await self._on_failure(e)
            raise
        await self._on_success()
        return result

    def reset(self):
        """Manually reset the circuit breaker to closed state."""
        self.stats = CircuitBreakerStats(state_changed_at=self._clock())
        logger.info(f"Circuit breaker [{self.service_name}] manually reset")

    def get_status(self) -> dict:
        """Get current status as a dictionary."""
        return {
            "service": self.service_name,
            "state": self.stats.state.value,
            "failure_count": self.stats.failure_count,
            "total_calls": self.stats.total_calls,
            "total_failures": self.stats.total_failures,
            "total_successes": self.stats.total_successes,
            "last_failure": self.stats.last_failure_time,
            "last_success": self.stats.last_success_time,
            "state_changed_at": self.stats.state_changed_at,
        }


def _counts_against_provider(error: Exception) -> bool:
    """Only transient provider failures open the breaker."""
    return bool(getattr(error, "is_transient", False))


def build_provider_breakers() -> dict[str, CircuitBreaker]:
    """
    Breakers for each generation provider.

    Video creation is expensive and rate limited more aggressively, so it
    opens sooner and recovers more slowly.
    """
    configs = {
        "text": CircuitBreakerConfig(failure_threshold=5, recovery_timeout=30.0),
        "image": CircuitBreakerConfig(failure_threshold=5, recovery_timeout=30.0),
        "speech": CircuitBreakerConfig(failure_threshold=5, recovery_timeout=30.0),
        "video": CircuitBreakerConfig(failure_threshold=3, recovery_timeout=60.0),
    }
    breakers = {}
    for name, config in configs.items():
        config.is_failure = _counts_against_provider
        breakers[name] = CircuitBreaker(name, config)
    return breakers
