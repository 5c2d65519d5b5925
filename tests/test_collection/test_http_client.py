"""Tests for the rate-limited fetcher and retry policy."""

import httpx
import pytest
import respx

from src.collection.http_client import (
    FatalError,
    HostRateLimiter,
    RateLimitedFetcher,
    RateLimitError,
    RetryPolicy,
    TransientError,
)

API_URL = "https://api.example.com/search"
OTHER_URL = "https://other.example.org/feed"


def _recorder(clock, times, responses):
    """respx side effect that records the clock time of each dispatch."""
    queue = list(responses)

    def handler(request):
        times.append(clock.time())
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    return handler


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_default_config(self):
        """Should have one retry and fixed delays."""
        policy = RetryPolicy()

        assert policy.max_retries == 1
        assert policy.rate_limit_delay == 60.0
        assert policy.transient_delay == 5.0

    def test_retryable_statuses(self):
        """429 and every 5xx are retryable, other 4xx are not."""
        policy = RetryPolicy()

        assert policy.is_retryable_status(429)
        assert policy.is_retryable_status(500)
        assert policy.is_retryable_status(503)
        assert not policy.is_retryable_status(400)
        assert not policy.is_retryable_status(401)
        assert not policy.is_retryable_status(404)

    def test_retryable_exceptions(self):
        policy = RetryPolicy()

        assert policy.is_retryable_exception(httpx.ReadTimeout("slow"))
        assert policy.is_retryable_exception(httpx.ConnectError("refused"))
        assert not policy.is_retryable_exception(httpx.UnsupportedProtocol("ftp"))

    def test_reset_time_epoch_header(self):
        """Values that look like epoch seconds are used as-is."""
        policy = RetryPolicy()
        now = 1_735_689_600.0

        headers = httpx.Headers({"x-rate-limit-reset": str(int(now) + 90)})

        assert policy.reset_time(headers, now) == now + 90

    def test_reset_time_relative_header(self):
        """Small values are seconds from now."""
        policy = RetryPolicy()
        now = 1_735_689_600.0

        assert policy.reset_time(httpx.Headers({"retry-after": "12"}), now) == now + 12

    def test_reset_time_missing_or_garbage(self):
        policy = RetryPolicy()

        assert policy.reset_time(httpx.Headers({}), 0.0) is None
        assert policy.reset_time(httpx.Headers({"retry-after": "soon"}), 0.0) is None

    def test_compute_delay(self):
        """429 waits for reset or the rate-limit delay; others the transient delay."""
        policy = RetryPolicy(rate_limit_delay=60.0, transient_delay=5.0)
        now = 1_735_689_600.0

        assert policy.compute_delay(429, httpx.Headers({"retry-after": "7"}), now) == 7.0
        assert policy.compute_delay(429, httpx.Headers({}), now) == 60.0
        assert policy.compute_delay(503, None, now) == 5.0
        assert policy.compute_delay(None, None, now) == 5.0

    def test_compute_delay_past_reset_is_zero(self):
        policy = RetryPolicy()
        now = 1_735_689_600.0

        headers = httpx.Headers({"x-ratelimit-reset": str(int(now) - 30)})

        assert policy.compute_delay(429, headers, now) == 0.0


class TestHostRateLimiter:
    """Tests for HostRateLimiter."""

    @pytest.mark.asyncio
    async def test_first_request_is_immediate(self, fake_clock):
        limiter = HostRateLimiter(default_interval=2.0, clock=fake_clock)

        await limiter.acquire("api.example.com")

        assert fake_clock.sleeps == []
        assert limiter.state_for("api.example.com").last_request_at == fake_clock.now

    @pytest.mark.asyncio
    async def test_per_host_interval_override(self, fake_clock):
        limiter = HostRateLimiter(
            default_interval=1.0,
            host_intervals={"slow.example.com": 10.0},
            clock=fake_clock,
        )
        start = fake_clock.now

        await limiter.acquire("slow.example.com")
        await limiter.acquire("slow.example.com")

        assert fake_clock.now - start == 10.0

    @pytest.mark.asyncio
    async def test_defer_only_moves_forward(self, fake_clock):
        limiter = HostRateLimiter(clock=fake_clock)

        limiter.defer("api.example.com", fake_clock.now + 30)
        limiter.defer("api.example.com", fake_clock.now + 5)

        assert limiter.state_for("api.example.com").backoff_until == fake_clock.now + 30

    @pytest.mark.asyncio
    async def test_host_locks_do_not_accumulate(self, fake_clock):
        limiter = HostRateLimiter(clock=fake_clock)

        for i in range(5):
            await limiter.acquire(f"host{i}.example.com")

        assert len(limiter._locks) == 0
        assert limiter.state_for("host0.example.com").last_request_at == fake_clock.now


class TestRateLimitedFetcher:
    """Tests for RateLimitedFetcher."""

    @pytest.mark.asyncio
    async def test_successful_get(self, fetcher):
        """Should return response on success."""
        with respx.mock:
            route = respx.get(host="api.example.com", path="/search").mock(
                return_value=httpx.Response(200, json={"ok": True})
            )

            response = await fetcher.get(API_URL, params={"q": "ai"})

            assert response.json() == {"ok": True}
            assert route.calls.last.request.url.params["q"] == "ai"

    @pytest.mark.asyncio
    async def test_requests_to_one_host_are_spaced(self, fake_clock):
        """N requests to one host take at least (N-1) x interval."""
        times: list[float] = []
        async with RateLimitedFetcher(min_interval=1.5, clock=fake_clock) as fetcher:
            with respx.mock:
                respx.get(API_URL).mock(
                    side_effect=_recorder(fake_clock, times, [httpx.Response(200)])
                )

                for _ in range(4):
                    await fetcher.get(API_URL)

        assert len(times) == 4
        assert times[-1] - times[0] >= 3 * 1.5
        assert all(b - a >= 1.5 for a, b in zip(times, times[1:]))

    @pytest.mark.asyncio
    async def test_different_hosts_do_not_wait(self, fetcher, fake_clock):
        with respx.mock:
            respx.get(API_URL).mock(return_value=httpx.Response(200))
            respx.get(OTHER_URL).mock(return_value=httpx.Response(200))

            await fetcher.get(API_URL)
            await fetcher.get(OTHER_URL)

        assert fake_clock.sleeps == []

    @pytest.mark.asyncio
    async def test_429_retry_waits_for_reset(self, fake_clock):
        """No request to the host is dispatched before the advertised reset."""
        reset_at = int(fake_clock.now) + 30
        times: list[float] = []

        async with RateLimitedFetcher(
            retry_policy=RetryPolicy(max_retries=1), clock=fake_clock
        ) as fetcher:
            with respx.mock:
                respx.get(API_URL).mock(
                    side_effect=_recorder(
                        fake_clock,
                        times,
                        [
                            httpx.Response(429, headers={"x-rate-limit-reset": str(reset_at)}),
                            httpx.Response(200, json={"data": []}),
                        ],
                    )
                )

                response = await fetcher.get(API_URL)

        assert response.status_code == 200
        assert len(times) == 2
        assert times[1] >= reset_at

    @pytest.mark.asyncio
    async def test_429_exhausted_still_defers_host(self, fetcher, fake_clock):
        """A 429 that is not retried still holds back later calls to that host."""
        reset_at = int(fake_clock.now) + 45
        times: list[float] = []

        with respx.mock:
            respx.get(API_URL).mock(
                side_effect=_recorder(
                    fake_clock,
                    times,
                    [
                        httpx.Response(429, headers={"x-rate-limit-reset": str(reset_at)}),
                        httpx.Response(200),
                    ],
                )
            )

            with pytest.raises(RateLimitError) as exc_info:
                await fetcher.get(API_URL)

            assert exc_info.value.status_code == 429
            assert exc_info.value.retry_at == reset_at

            await fetcher.get(API_URL)

        assert times[1] >= reset_at

    @pytest.mark.asyncio
    async def test_429_without_header_uses_default_delay(self, fake_clock):
        times: list[float] = []
        async with RateLimitedFetcher(
            retry_policy=RetryPolicy(max_retries=1, rate_limit_delay=60.0), clock=fake_clock
        ) as fetcher:
            with respx.mock:
                respx.get(API_URL).mock(
                    side_effect=_recorder(
                        fake_clock, times, [httpx.Response(429), httpx.Response(200)]
                    )
                )
                await fetcher.get(API_URL)

        assert times[1] - times[0] == 60.0

    @pytest.mark.asyncio
    async def test_retries_on_5xx(self, fake_clock):
        """Should retry on 503 after the transient delay."""
        times: list[float] = []
        async with RateLimitedFetcher(
            retry_policy=RetryPolicy(max_retries=1, transient_delay=5.0), clock=fake_clock
        ) as fetcher:
            with respx.mock:
                route = respx.get(API_URL).mock(
                    side_effect=_recorder(
                        fake_clock,
                        times,
                        [httpx.Response(503), httpx.Response(200, json={"ok": True})],
                    )
                )

                response = await fetcher.get(API_URL)

                assert response.json() == {"ok": True}
                assert route.call_count == 2

        assert times[1] - times[0] == 5.0

    @pytest.mark.asyncio
    async def test_5xx_exhausted_raises_transient(self, fetcher):
        with respx.mock:
            respx.get(API_URL).mock(return_value=httpx.Response(502, text="bad gateway"))

            with pytest.raises(TransientError) as exc_info:
                await fetcher.get(API_URL)

        assert exc_info.value.status_code == 502
        assert exc_info.value.response_body == "bad gateway"

    @pytest.mark.asyncio
    async def test_no_retry_on_4xx(self, fake_clock):
        """Should raise FatalError on 404 without retrying."""
        async with RateLimitedFetcher(
            retry_policy=RetryPolicy(max_retries=3), clock=fake_clock
        ) as fetcher:
            with respx.mock:
                route = respx.get(API_URL).mock(return_value=httpx.Response(404))

                with pytest.raises(FatalError) as exc_info:
                    await fetcher.get(API_URL)

                assert exc_info.value.status_code == 404
                assert route.call_count == 1

    @pytest.mark.asyncio
    async def test_retries_on_timeout(self, fake_clock):
        """Should retry on timeout exceptions."""
        async with RateLimitedFetcher(
            retry_policy=RetryPolicy(max_retries=1), clock=fake_clock
        ) as fetcher:
            with respx.mock:
                route = respx.get(API_URL).mock(
                    side_effect=[
                        httpx.ReadTimeout("timeout"),
                        httpx.Response(200, json={"ok": True}),
                    ]
                )

                response = await fetcher.get(API_URL)

                assert response.status_code == 200
                assert route.call_count == 2

    @pytest.mark.asyncio
    async def test_timeout_exhausted_raises_transient(self, fetcher):
        with respx.mock:
            respx.get(API_URL).mock(side_effect=httpx.ConnectTimeout("timeout"))

            with pytest.raises(TransientError):
                await fetcher.get(API_URL)

    @pytest.mark.asyncio
    async def test_post_sends_form_and_auth(self, fetcher):
        with respx.mock:
            route = respx.post("https://www.example.com/token").mock(
                return_value=httpx.Response(200, json={"access_token": "abc"})
            )

            response = await fetcher.post(
                "https://www.example.com/token",
                data={"grant_type": "client_credentials"},
                auth=("id", "secret"),
            )

            assert response.json()["access_token"] == "abc"
            request = route.calls.last.request
            assert request.headers["Authorization"].startswith("Basic ")
            assert b"grant_type=client_credentials" in request.content

    @pytest.mark.asyncio
    async def test_requires_open(self, fake_clock):
        fetcher = RateLimitedFetcher(clock=fake_clock)

        with pytest.raises(FatalError):
            await fetcher.get(API_URL)

    @pytest.mark.asyncio
    async def test_malformed_url_is_fatal(self, fetcher):
        with pytest.raises(FatalError):
            await fetcher.get("not a url")
