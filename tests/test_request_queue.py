"""
Tests for the provider request queue and its retry policy.

httpx.MockTransport plays the provider; sleeps are recorded, not slept.
"""

import asyncio

import httpx
import pytest

from nami.services.rates import (
    MalformedPayloadError,
    ProviderError,
    ProviderHTTPError,
    ProviderRequestQueue,
    ProviderTimeoutError,
    RateLimitedError,
    RetryPolicy,
)


COINGECKO_URL = "https://api.coingecko.com/api/v3/simple/price"
FX_URL = "https://api.frankfurter.app/latest"


def scripted(*responses):
    """Handler answering with the given responses in order."""
    remaining = list(responses)
    requests = []

    def handler(request):
        requests.append(request)
        return remaining.pop(0)

    return handler, requests


def make_queue(handler, policy=None):
    sleeps = []

    async def record_sleep(seconds):
        sleeps.append(seconds)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    queue = ProviderRequestQueue(client=client, policy=policy, sleep=record_sleep)
    return queue, sleeps


class TestRetryPolicy:
    """Tests for the retry policy value."""

    def test_defaults(self):
        """Five attempts, 4s base, doubling."""
        policy = RetryPolicy()
        assert (policy.max_attempts, policy.base_delay, policy.backoff_factor) == (5, 4.0, 2.0)

    def test_only_rate_limits_are_retryable(self):
        """429 is retried; other provider errors are not."""
        policy = RetryPolicy()
        assert policy.is_retryable(RateLimitedError("u"))
        assert not policy.is_retryable(ProviderHTTPError(500, "u"))
        assert not policy.is_retryable(ProviderTimeoutError("slow"))


class TestProviderRequestQueue:
    """Tests for sequencing, warm-up and 429 handling."""

    def test_success(self):
        """A 200 JSON body is returned decoded."""
        handler, requests = scripted(httpx.Response(200, json={"rates": {"USD": 1.08}}))
        queue, sleeps = make_queue(handler)

        data = asyncio.run(queue.get_json(FX_URL, params={"from": "EUR"}))

        assert data == {"rates": {"USD": 1.08}}
        assert sleeps == []
        assert requests[0].url.params["from"] == "EUR"

    def test_rate_limit_backoff_with_warmup(self):
        """Two 429s then success: warm-up, then 4s and 8s waits."""
        handler, requests = scripted(
            httpx.Response(429),
            httpx.Response(429),
            httpx.Response(200, json={"bitcoin": {"usd": 65000}}),
        )
        queue, sleeps = make_queue(handler)

        data = asyncio.run(queue.get_json(COINGECKO_URL))

        assert data["bitcoin"]["usd"] == 65000
        assert sleeps == [1.5, 4.0, 8.0]
        assert len(requests) == 3
        assert queue.requests_sent == 3

    def test_rate_limit_exhausts_attempts(self):
        """A provider that keeps answering 429 fails after max_attempts."""
        handler, requests = scripted(*[httpx.Response(429) for _ in range(5)])
        queue, sleeps = make_queue(handler)

        with pytest.raises(RateLimitedError):
            asyncio.run(queue.get_json(FX_URL))

        assert len(requests) == 5
        assert sleeps == [4.0, 8.0, 16.0, 32.0]

    def test_custom_policy(self):
        """The policy controls attempts and waits."""
        handler, requests = scripted(httpx.Response(429), httpx.Response(429))
        queue, sleeps = make_queue(handler, RetryPolicy(max_attempts=2, base_delay=1, backoff_factor=3))

        with pytest.raises(RateLimitedError):
            asyncio.run(queue.get_json(FX_URL))

        assert len(requests) == 2
        assert sleeps == [1]

    def test_server_error_not_retried(self):
        """Non-429 statuses fail fast."""
        handler, requests = scripted(httpx.Response(503))
        queue, sleeps = make_queue(handler)

        with pytest.raises(ProviderHTTPError) as exc_info:
            asyncio.run(queue.get_json(FX_URL))

        assert exc_info.value.status_code == 503
        assert len(requests) == 1
        assert sleeps == []

    def test_bad_json(self):
        """A non-JSON body is a malformed payload."""
        handler, _ = scripted(httpx.Response(200, text="<html>busy</html>"))
        queue, _ = make_queue(handler)

        with pytest.raises(MalformedPayloadError):
            asyncio.run(queue.get_json(FX_URL))

    def test_timeout(self):
        """Transport timeouts become ProviderTimeoutError."""
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        queue, _ = make_queue(handler)

        with pytest.raises(ProviderTimeoutError):
            asyncio.run(queue.get_json(FX_URL, timeout=5))

    def test_connection_error(self):
        """Other transport errors are plain ProviderError."""
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        queue, _ = make_queue(handler)

        with pytest.raises(ProviderError):
            asyncio.run(queue.get_json(FX_URL))

    def test_requests_are_serialized(self):
        """Concurrent callers never overlap inside the transport."""
        in_flight = 0
        peak = 0

        async def handler(request):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0)
            in_flight -= 1
            return httpx.Response(200, json={"ok": True})

        queue, _ = make_queue(handler)

        async def run():
            return await asyncio.gather(*[queue.get_json(FX_URL) for _ in range(4)])

        results = asyncio.run(run())

        assert results == [{"ok": True}] * 4
        assert peak == 1

    def test_injected_client_not_closed(self):
        """aclose leaves a caller-owned client open."""
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        queue = ProviderRequestQueue(client=client)

        asyncio.run(queue.aclose())

        assert client.is_closed is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
