"""
Provider Request Queue

DESIGN DECISION: Every outbound price request goes through ONE queue
with effective concurrency 1. Free-tier price APIs ban clients that
burst, so throughput is traded for never tripping their limits.

On top of the queue:
- A fixed warm-up delay before requests to hosts that rate-limit hardest
- HTTP 429 is retried in place with exponential backoff (4, 8, 16, 32s)
- Everything else (timeouts, non-200, bad JSON) fails fast as ProviderError
  so the caller can move on to the next provider
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urlsplit

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)


logger = structlog.get_logger(__name__)

SleepFn = Callable[[float], Awaitable[None]]

COINGECKO_HOST = "api.coingecko.com"


class ProviderError(Exception):
    """A price provider could not produce a usable answer."""
    pass


class ProviderTimeoutError(ProviderError):
    """Request exceeded its timeout."""
    pass


class ProviderHTTPError(ProviderError):
    """Provider answered with a non-200 status."""

    def __init__(self, status_code: int, url: str):
        self.status_code = status_code
        self.url = url
        super().__init__(f"HTTP {status_code} from {url}")


class RateLimitedError(ProviderHTTPError):
    """Provider answered 429 Too Many Requests."""

    def __init__(self, url: str):
        super().__init__(429, url)


class MalformedPayloadError(ProviderError):
    """Response body was not the JSON shape we expected."""
    pass


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry policy value: how many attempts, how long to wait, and which
    errors are worth retrying.

    The wait before retry n (1-based) is base_delay * backoff_factor ** (n - 1).
    """

    max_attempts: int = 5
    base_delay: float = 4.0
    backoff_factor: float = 2.0

    def is_retryable(self, error: BaseException) -> bool:
        return isinstance(error, RateLimitedError)

    def retrying(self, sleep: SleepFn = asyncio.sleep) -> AsyncRetrying:
        """Build a tenacity controller executing this policy."""
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, exp_base=self.backoff_factor),
            retry=retry_if_exception(self.is_retryable),
            sleep=sleep,
            before_sleep=_log_retry,
            reraise=True,
        )


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "provider_rate_limited",
        url=getattr(error, "url", None),
        attempt=retry_state.attempt_number,
        wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
    )


class ProviderRequestQueue:
    """
    Serializes all provider HTTP calls.

    Owns an httpx.AsyncClient unless one is injected (tests inject one
    backed by httpx.MockTransport). `sleep` is injectable so backoff and
    warm-up delays cost nothing under test.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        policy: Optional[RetryPolicy] = None,
        warmup_delays: Optional[dict[str, float]] = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers={"Accept": "application/json"},
            follow_redirects=True,
        )
        self._policy = policy or RetryPolicy()
        self._warmup_delays = warmup_delays if warmup_delays is not None else {COINGECKO_HOST: 1.5}
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self.requests_sent = 0

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def get_json(
        self,
        url: str,
        params: Optional[dict[str, Any]] = None,
        timeout: float = 8.0,
    ) -> Any:
        """
        GET `url` and return the decoded JSON body.

        Raises:
            RateLimitedError: 429 persisted through every attempt
            ProviderError: Any other failure (no retry)
        """
        async with self._lock:
            warmup = self._warmup_delays.get(urlsplit(url).hostname or "", 0.0)
            if warmup > 0:
                await self._sleep(warmup)

            retrying = self._policy.retrying(self._sleep)
            return await retrying(self._fetch, url, params, timeout)

    async def _fetch(
        self,
        url: str,
        params: Optional[dict[str, Any]],
        timeout: float,
    ) -> Any:
        self.requests_sent += 1
        try:
            response = await self._client.get(url, params=params, timeout=timeout)
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(f"Timed out after {timeout}s: {url}") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Request to {url} failed: {e}") from e

        if response.status_code == 429:
            raise RateLimitedError(url)
        if response.status_code != 200:
            raise ProviderHTTPError(response.status_code, url)

        try:
            return response.json()
        except ValueError as e:
            raise MalformedPayloadError(f"Non-JSON body from {url}") from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "ProviderRequestQueue":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
