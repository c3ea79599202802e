"""
Shared transport for leaf generators.

Every provider request goes through ProviderCall.request():
- one retry at most, only for network errors, timeouts, 429 and 5xx
- the retry waits backoff * attempt number (300ms after the first attempt)
- the whole retried call is guarded by the provider's circuit breaker
- any failure surfaces as ProviderError with a kind-scoped code
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

from core.circuit_breaker import CircuitBreaker, CircuitBreakerOpen
from core.config import Config, get_config
from core.errors import ProviderError, is_retryable_status, new_correlation_id

from .models import AssetKind, AssetOutcome

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[Any]]


def _is_retryable(error: BaseException) -> bool:
    if not isinstance(error, ProviderError):
        return False
    if error.status_code is not None:
        return is_retryable_status(error.status_code)
    return error.is_transient


def _error_text(response: httpx.Response) -> str:
    """Best effort provider error message."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:300]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error)
        if error:
            return str(error)
        return str(body.get("errorMessage") or body.get("message") or body)[:300]
    return str(body)[:300]


class ProviderCall:
    """Base class for a generator that talks to one remote provider."""

    kind: AssetKind = AssetKind.TEXT
    error_prefix: str = "PROVIDER"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        config: Optional[Config] = None,
        breaker: Optional[CircuitBreaker] = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.http_client = http_client
        self.config = config or get_config()
        self.breaker = breaker
        self._sleep = sleep

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.config.api.openai_api_key}"}

    def _error(self, suffix: str, message: str, correlation_id: str, status_code: Optional[int] = None) -> ProviderError:
        return ProviderError(
            message,
            code=f"{self.error_prefix}_{suffix}",
            correlation_id=correlation_id,
            status_code=status_code,
        )

    async def _send_once(self, method: str, url: str, correlation_id: str, **kwargs) -> httpx.Response:
        try:
            response = await self.http_client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise self._error("TIMEOUT", f"Provider timeout: {type(e).__name__}", correlation_id)
        except httpx.RequestError as e:
            raise self._error(
                "NETWORK_ERROR", f"Provider request failed: {type(e).__name__}: {e}", correlation_id
            )

        if response.status_code >= 400:
            raise self._error(
                str(response.status_code),
                f"Provider returned HTTP {response.status_code}: {_error_text(response)}",
                correlation_id,
                status_code=response.status_code,
            )
        return response

    def _log_retry(self, retry_state: RetryCallState):
        error = retry_state.outcome.exception() if retry_state.outcome else None
        wait = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"{self.error_prefix} attempt {retry_state.attempt_number} failed ({error}); "
            f"retrying in {wait:.2f}s"
        )

    async def _send_with_retry(
        self,
        method: str,
        url: str,
        correlation_id: str,
        max_retries: Optional[int] = None,
        **kwargs,
    ) -> httpx.Response:
        gen = self.config.generation
        retries = gen.provider_max_retries if max_retries is None else max_retries
        retrying = AsyncRetrying(
            stop=stop_after_attempt(retries + 1),
            wait=wait_incrementing(start=gen.retry_backoff_seconds, increment=gen.retry_backoff_seconds),
            retry=retry_if_exception(_is_retryable),
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                response = await self._send_once(method, url, correlation_id, **kwargs)
        return response

    async def request(
        self,
        method: str,
        url: str,
        *,
        correlation_id: str,
        max_retries: Optional[int] = None,
        **kwargs,
    ) -> httpx.Response:
        """Send a provider request with retry and circuit breaker protection."""
        if self.breaker is None:
            return await self._send_with_retry(method, url, correlation_id, max_retries, **kwargs)
        try:
            return await self.breaker.call(
                self._send_with_retry, method, url, correlation_id, max_retries, **kwargs
            )
        except CircuitBreakerOpen as e:
            raise self._error("CIRCUIT_OPEN", str(e), correlation_id)

    def _json(self, response: httpx.Response, correlation_id: str) -> dict:
        try:
            data = response.json()
        except ValueError:
            raise self._error("MALFORMED_RESPONSE", "Provider returned a non-JSON body", correlation_id)
        if not isinstance(data, dict):
            raise self._error("MALFORMED_RESPONSE", "Provider returned an unexpected body", correlation_id)
        return data

    def new_correlation_id(self) -> str:
        return new_correlation_id(self.kind.value)

    def _failed(self, error: ProviderError) -> AssetOutcome:
        logger.error(f"{self.kind.value} generation failed [{error.code}] {error.message} ({error.correlation_id})")
        return AssetOutcome.failed(error.to_detail())
