"""
Forwarding state machine: cache lookup, upstream call, rate limit backoff,
single-hop redirect following.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

import httpx

from shared.errors import ClientError, ForwarderError, UpstreamThrottled, UpstreamUnavailable, UpstreamTimeout
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryStateTable, calculate_delay
from ..adapters.upstream_client import UpstreamClient
from ..caching.ttl_cache import TTLCache
from ..routing.router import RequestRouter, RouteClass, UpstreamTarget
from .sanitizer import CacheStatus, HeaderList, normalize_content_type, sanitize_headers

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


RATE_LIMIT_STATUSES = frozenset({429, 503})
REDIRECT_STATUSES = frozenset({301, 302})
DEFAULT_RETRY_AFTER_SECONDS = 60


@dataclass
class ForwardedResponse:
    """What the caller receives for a forwarded request."""

    status_code: int
    body: bytes
    cache_status: CacheStatus
    headers: HeaderList = field(default_factory=list)


class Forwarder:
    """Serve inbound requests from cache or upstream.

    Owns the response cache and the retry state table; both are shared by
    every concurrent request handled by the service. Concurrent misses for
    the same key are not coalesced and may each call upstream.
    """

    def __init__(
        self,
        router: RequestRouter,
        client: UpstreamClient,
        cache: Optional[TTLCache] = None,
        retry_states: Optional[RetryStateTable] = None,
        retry_config: Optional[RetryConfig] = None,
        retry_after_seconds: int = DEFAULT_RETRY_AFTER_SECONDS,
        *,
        metrics: Optional["MetricsCollector"] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.router = router
        self.client = client
        self.cache = cache if cache is not None else TTLCache()
        self.retry_states = retry_states if retry_states is not None else RetryStateTable()
        self.retry_config = retry_config if retry_config is not None else RetryConfig()
        self.retry_after_seconds = retry_after_seconds
        self.metrics = metrics
        self._sleep = sleep
        self.logger = get_logger("forwarder.forwarder")

    async def forward(self, key: str) -> ForwardedResponse:
        """Handle one inbound GET; ``key`` is the inbound path and query verbatim."""
        if not key or not key.startswith("/"):
            raise ClientError("No URL provided")

        target = self.router.resolve(key)

        if target.bypass_cache:
            cache_status = CacheStatus.NONE
            if target.route is RouteClass.API and not target.query_param("q").strip():
                raise ClientError("Missing search query parameter")
            self._count("cache_events_total", result="bypass")
        else:
            cache_status = CacheStatus.MISS
            entry = self.cache.get(key)
            if entry is not None:
                self._count("cache_events_total", result="hit")
                self.logger.debug("Cache hit", key=key)
                return ForwardedResponse(200, entry.body, CacheStatus.HIT, list(entry.headers))
            self._count("cache_events_total", result="miss")

        try:
            response = await self._fetch_with_backoff(key, target)
        except ForwarderError as exc:
            exc.cache_status = cache_status.value
            raise

        if response.status_code in REDIRECT_STATUSES and response.headers.get("location"):
            return await self._follow_redirect(target, response, cache_status)

        headers = sanitize_headers(response.headers.multi_items())
        if response.status_code == 200 and not target.bypass_cache:
            self.cache.put(key, response.content, headers)
            self._count("cache_events_total", result="store")
            self._set_gauge("cache_entries", self.cache.size())

        return ForwardedResponse(response.status_code, response.content, cache_status, headers)

    async def _fetch_with_backoff(self, key: str, target: UpstreamTarget) -> httpx.Response:
        """Call upstream, retrying rate-limited responses with exponential backoff.

        The attempt counter for ``key`` is dropped on every exit, including
        transport failures and cancellation mid-backoff.
        """
        try:
            return await self._retry_loop(key, target)
        except BaseException:
            self.retry_states.clear(key)
            raise

    async def _retry_loop(self, key: str, target: UpstreamTarget) -> httpx.Response:
        route = target.route.value
        while True:
            try:
                response = await self._call_upstream(target.url, route)
            except UpstreamUnavailable as exc:
                kind = "timeout" if isinstance(exc, UpstreamTimeout) else "connect"
                self._count("upstream_errors_total", route=route, kind=kind)
                raise

            if response.status_code not in RATE_LIMIT_STATUSES:
                attempts = self.retry_states.clear(key)
                if attempts:
                    self.logger.info("Upstream recovered after retries", key=key, attempts=attempts)
                return response

            attempts = self.retry_states.increment(key, limit=self.retry_config.max_attempts)
            if attempts is None:
                attempts = self.retry_states.clear(key) or 0
                self._count("upstream_retry_exhausted_total", route=route)
                self.logger.error(
                    "Upstream still rate limited after all retries",
                    key=key,
                    attempts=attempts,
                    upstream_status=response.status_code
                )
                raise UpstreamThrottled(
                    self.retry_after_seconds,
                    details={"key": key, "attempts": attempts, "upstream_status": response.status_code}
                )

            delay = calculate_delay(attempts, self.retry_config)
            self._count("upstream_retries_total", route=route)
            self.logger.warning(
                "Upstream rate limited, retrying",
                key=key,
                attempt=attempts,
                max_attempts=self.retry_config.max_attempts,
                delay=delay,
                upstream_status=response.status_code
            )
            async with self.retry_states.pending_retry(key):
                await self._sleep(delay)

    async def _follow_redirect(self, target: UpstreamTarget, response: httpx.Response,
                               cache_status: CacheStatus) -> ForwardedResponse:
        """Follow exactly one redirect hop; the target bypasses cache and retry."""
        location = response.headers["location"]
        try:
            redirect_url = str(response.url.join(location))
        except httpx.InvalidURL as exc:
            self.logger.warning("Unusable redirect location", location=location, error=str(exc))
            return self._passthrough(response, cache_status)

        self.logger.info("Following upstream redirect", source=target.url, location=redirect_url)
        try:
            followed = await self._call_upstream(redirect_url, "redirect")
        except UpstreamUnavailable as exc:
            self.logger.warning("Redirect target unavailable", location=redirect_url, error=exc.message)
            return self._passthrough(response, cache_status)

        if 300 <= followed.status_code < 400:
            # Second hop is terminal
            return self._passthrough(followed, cache_status)

        status_code = followed.status_code if followed.status_code >= 400 else 200
        content_type = normalize_content_type(followed.headers.get("content-type"))
        return ForwardedResponse(status_code, followed.content, cache_status, [("Content-Type", content_type)])

    async def _call_upstream(self, url: str, route: str) -> httpx.Response:
        start_time = time.time()
        try:
            response = await self.client.get(url)
        finally:
            if self.metrics is not None:
                self.metrics.observe_histogram("upstream_duration_seconds", time.time() - start_time, route=route)
        self._count("upstream_responses_total", route=route, status_code=str(response.status_code))
        return response

    def _passthrough(self, response: httpx.Response, cache_status: CacheStatus) -> ForwardedResponse:
        return ForwardedResponse(
            response.status_code,
            response.content,
            cache_status,
            sanitize_headers(response.headers.multi_items()),
        )

    def _count(self, metric_name: str, **labels):
        if self.metrics is not None:
            self.metrics.increment_counter(metric_name, **labels)

    def _set_gauge(self, metric_name: str, value: float):
        if self.metrics is not None:
            self.metrics.set_gauge(metric_name, value)
