"""
HTTP infrastructure layer with per-host rate limiting and retry logic.

Provides:
- RetryPolicy: Which failures are retried and how long to wait
- HostRateLimiter: Fixed minimum interval between requests to the same host
- RateLimitedFetcher: Async HTTP client combining both

This layer separates HTTP concerns (pacing, retries, backoff) from domain
logic (querying and normalization) in the collectors.
"""

import asyncio
import logging
import weakref
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

import httpx

from src.collection.clock import SYSTEM_CLOCK, Clock
from src.observability.metrics import get_metrics

logger = logging.getLogger(__name__)

# Reset headers checked on 429, in order
RATE_LIMIT_RESET_HEADERS = ("x-ratelimit-reset", "x-rate-limit-reset", "retry-after")

# Header values above this are epoch timestamps, below are relative seconds
EPOCH_THRESHOLD = 1_000_000_000


class FetchError(Exception):
    """Base exception for fetch failures."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
        url: str | None = None,
        headers: Mapping[str, str] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body
        self.url = url
        self.headers = headers


class TransientError(FetchError):
    """Timeout, connection failure, 5xx or 429. Retried per policy."""

    pass


class RateLimitError(TransientError):
    """429 from the target. `retry_at` is when the target allows requests again."""

    def __init__(self, message: str, retry_at: float | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.retry_at = retry_at


class FatalError(FetchError):
    """Non-retryable failure: 4xx other than 429, malformed request."""

    pass


@dataclass
class RetryPolicy:
    """
    Retry configuration for transient fetch failures.

    Unlike exponential backoff, delays are fixed per failure class:
    - 429: wait until the advertised reset, else `rate_limit_delay`
    - other transient statuses and network errors: `transient_delay`
    """

    max_retries: int = 1
    rate_limit_delay: float = 60.0
    transient_delay: float = 5.0

    def is_retryable_status(self, status_code: int) -> bool:
        """
        Check if an HTTP status code is transient.

        429 (Too Many Requests) and every 5xx are transient.
        """
        return status_code == 429 or 500 <= status_code <= 599

    def is_retryable_exception(self, exc: Exception) -> bool:
        """
        Check if a transport exception is transient.

        Retryable exceptions:
        - httpx.TimeoutException: Request timed out
        - httpx.ConnectError: Connection failed
        - httpx.ReadError: Error reading response
        - httpx.RemoteProtocolError: Server closed the connection mid-response
        """
        return isinstance(
            exc,
            (
                httpx.TimeoutException,
                httpx.ConnectError,
                httpx.ReadError,
                httpx.RemoteProtocolError,
            ),
        )

    def reset_time(self, headers: Mapping[str, str], now: float) -> float | None:
        """
        Read the advertised rate-limit reset as an epoch timestamp.

        Args:
            headers: Response headers (case-insensitive mapping)
            now: Current epoch seconds

        Returns:
            Epoch seconds of the reset, or None if not advertised
        """
        for name in RATE_LIMIT_RESET_HEADERS:
            raw = headers.get(name)
            if raw is None:
                continue
            try:
                value = float(raw)
            except ValueError:
                continue
            if value >= EPOCH_THRESHOLD:
                return value
            return now + max(0.0, value)
        return None

    def compute_delay(
        self,
        status_code: int | None,
        headers: Mapping[str, str] | None,
        now: float,
    ) -> float:
        """
        Calculate how long to wait before retrying.

        Args:
            status_code: Status of the failed response, None for network errors
            headers: Headers of the failed response, if any
            now: Current epoch seconds

        Returns:
            Delay in seconds (never negative)
        """
        if status_code == 429:
            reset_at = self.reset_time(headers or {}, now)
            if reset_at is not None:
                return max(0.0, reset_at - now)
            return self.rate_limit_delay
        return self.transient_delay


@dataclass
class RateLimitState:
    """Pacing state for one host."""

    last_request_at: float | None = None
    backoff_until: float = 0.0

    def next_allowed(self, min_interval: float) -> float:
        earliest = self.backoff_until
        if self.last_request_at is not None:
            earliest = max(earliest, self.last_request_at + min_interval)
        return earliest


@dataclass
class HostRateLimiter:
    """
    Fixed-delay limiter keyed by host.

    Guarantees a minimum interval between dispatches to the same host and
    holds dispatches back until any backoff deadline has passed. Each host
    has its own lock, so unrelated hosts never wait on each other.
    """

    default_interval: float = 1.0
    host_intervals: dict[str, float] = field(default_factory=dict)
    clock: Clock = field(default=SYSTEM_CLOCK, repr=False)
    _states: dict[str, RateLimitState] = field(default_factory=dict, repr=False)
    _locks: weakref.WeakValueDictionary[str, asyncio.Lock] = field(
        default_factory=weakref.WeakValueDictionary, repr=False
    )

    def interval_for(self, host: str) -> float:
        return self.host_intervals.get(host, self.default_interval)

    def state_for(self, host: str) -> RateLimitState:
        state = self._states.get(host)
        if state is None:
            state = self._states[host] = RateLimitState()
        return state

    def _lock_for(self, host: str) -> asyncio.Lock:
        lock = self._locks.get(host)
        if lock is None:
            lock = self._locks[host] = asyncio.Lock()
        return lock

    async def acquire(self, host: str) -> None:
        """
        Wait until a request to `host` may be dispatched, then claim the slot.

        Waiters for the same host queue on the host lock, so the interval
        holds even when several collectors target one host concurrently.
        """
        async with self._lock_for(host):
            state = self.state_for(host)
            while True:
                wait_time = state.next_allowed(self.interval_for(host)) - self.clock.time()
                if wait_time <= 0:
                    break
                logger.debug(f"Rate limited on {host}, waiting {wait_time:.2f}s")
                await self.clock.sleep(wait_time)
            state.last_request_at = self.clock.time()

    def defer(self, host: str, until: float) -> None:
        """Hold back every request to `host` until the given epoch time."""
        state = self.state_for(host)
        if until > state.backoff_until:
            state.backoff_until = until


class RateLimitedFetcher:
    """
    Async HTTP client with per-host rate limiting and retry logic.

    Features:
    - Minimum interval between requests to the same host
    - Retry on 429/5xx and timeout/connection errors per RetryPolicy
    - 429 reset headers honored for every caller of that host
    - Context manager for proper resource cleanup

    Example:
        policy = RetryPolicy(max_retries=1)
        async with RateLimitedFetcher(retry_policy=policy) as fetcher:
            response = await fetcher.get(
                "https://api.example.com/search",
                params={"q": "topic"},
            )
    """

    def __init__(
        self,
        retry_policy: RetryPolicy | None = None,
        min_interval: float = 1.0,
        host_intervals: dict[str, float] | None = None,
        timeout: float = 30.0,
        user_agent: str | None = None,
        clock: Clock | None = None,
    ):
        """
        Initialize fetcher.

        Args:
            retry_policy: Retry behavior. Uses defaults if None.
            min_interval: Default minimum seconds between requests to one host.
            host_intervals: Per-host overrides of the minimum interval.
            timeout: Request timeout in seconds.
            user_agent: Default User-Agent header.
            clock: Time source (tests pass a fake one).
        """
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout
        self.clock = clock or SYSTEM_CLOCK
        self.limiter = HostRateLimiter(
            default_interval=min_interval,
            host_intervals=dict(host_intervals or {}),
            clock=self.clock,
        )
        self._user_agent = user_agent
        self._client: httpx.AsyncClient | None = None
        self._metrics = get_metrics()

    async def __aenter__(self) -> "RateLimitedFetcher":
        """Enter async context manager, create client."""
        await self.open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager, close client."""
        await self.aclose()

    async def open(self) -> None:
        if self._client is None:
            headers = {"User-Agent": self._user_agent} if self._user_agent else None
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=headers,
                follow_redirects=True,
            )

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def state_for(self, url_or_host: str) -> RateLimitState:
        """Rate-limit state for a host (or the host of a URL)."""
        return self.limiter.state_for(_host_of(url_or_host) or url_or_host)

    async def get(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        max_retries: int | None = None,
    ) -> httpx.Response:
        """
        Perform GET request with rate limiting and retry logic.

        Raises:
            TransientError: After retries are exhausted (RateLimitError for 429)
            FatalError: On non-retryable errors
        """
        return await self.fetch(
            "GET", url, params=params, headers=headers, max_retries=max_retries
        )

    async def post(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        data: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        auth: tuple[str, str] | None = None,
        max_retries: int | None = None,
    ) -> httpx.Response:
        """
        Perform POST request with rate limiting and retry logic.

        Raises:
            TransientError: After retries are exhausted (RateLimitError for 429)
            FatalError: On non-retryable errors
        """
        return await self.fetch(
            "POST",
            url,
            params=params,
            headers=headers,
            data=data,
            json_body=json_body,
            auth=auth,
            max_retries=max_retries,
        )

    async def fetch(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        data: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        auth: tuple[str, str] | None = None,
        max_retries: int | None = None,
    ) -> httpx.Response:
        """
        Execute an HTTP request with pacing and retry logic.

        Every attempt waits for the host's rate-limit slot. Retry delays are
        applied as a host backoff deadline, so concurrent callers targeting
        the same host also hold off.
        """
        if not self._client:
            raise FatalError("RateLimitedFetcher must be opened before use", url=url)

        host = _host_of(url)
        if not host:
            raise FatalError(f"Malformed request URL: {url!r}", url=url)

        retries = self.retry_policy.max_retries if max_retries is None else max_retries

        for attempt in range(retries + 1):
            try:
                await self.limiter.acquire(host)
                response = await self._client.request(
                    method,
                    url,
                    params=params or None,
                    headers=headers or None,
                    data=data,
                    json=json_body,
                    auth=auth,
                )
                self._raise_for_status(response, url)
                self._metrics.record_fetch(host, "success")
                return response

            except TransientError as e:
                self._metrics.record_fetch(host, "transient")
                now = self.clock.time()
                delay = self.retry_policy.compute_delay(e.status_code, e.headers, now)

                if isinstance(e, RateLimitError):
                    # Throttled: nothing goes to this host before the deadline,
                    # whether or not this call retries
                    self.limiter.defer(host, now + delay)
                if attempt >= retries:
                    raise

                logger.warning(
                    f"Transient failure (status {e.status_code}) from {url}, "
                    f"attempt {attempt + 1}/{retries + 1}, backing off {delay:.2f}s"
                )
                self._metrics.record_retry(host)
                self.limiter.defer(host, now + delay)

            except httpx.InvalidURL as e:
                self._metrics.record_fetch(host, "fatal")
                raise FatalError(f"Malformed request URL {url!r}: {e}", url=url) from e

            except httpx.HTTPError as e:
                if not self.retry_policy.is_retryable_exception(e):
                    self._metrics.record_fetch(host, "fatal")
                    raise FatalError(f"Request to {url} failed: {e}", url=url) from e

                self._metrics.record_fetch(host, "transient")
                if attempt >= retries:
                    raise TransientError(
                        f"Request to {url} failed after {attempt + 1} attempts: {e}",
                        url=url,
                    ) from e

                now = self.clock.time()
                delay = self.retry_policy.compute_delay(None, None, now)
                logger.warning(
                    f"Retryable error {type(e).__name__} for {url}, "
                    f"attempt {attempt + 1}/{retries + 1}, backing off {delay:.2f}s"
                )
                self._metrics.record_retry(host)
                self.limiter.defer(host, now + delay)

            except FatalError:
                self._metrics.record_fetch(host, "fatal")
                raise

        # Should not reach here, but just in case
        raise TransientError(f"Request to {url} failed after {retries + 1} attempts", url=url)

    def _raise_for_status(self, response: httpx.Response, url: str) -> None:
        """Map an error status to TransientError / RateLimitError / FatalError."""
        status = response.status_code
        if status < 400:
            return

        body = response.text
        if status == 429:
            raise RateLimitError(
                f"Rate limit exceeded for {url}",
                retry_at=self.retry_policy.reset_time(response.headers, self.clock.time()),
                status_code=status,
                response_body=body,
                url=url,
                headers=response.headers,
            )
        if self.retry_policy.is_retryable_status(status):
            raise TransientError(
                f"Request failed with status {status}",
                status_code=status,
                response_body=body,
                url=url,
                headers=response.headers,
            )
        raise FatalError(
            f"Request failed with status {status}",
            status_code=status,
            response_body=body,
            url=url,
        )


def _host_of(url: str) -> str:
    try:
        return urlsplit(url).netloc.lower()
    except ValueError:
        return ""
