"""
Upstream API client for the forwarder.
"""

from typing import Optional
import httpx

from shared.logging import get_logger
from shared.errors import UpstreamTimeout, UpstreamUnavailable


DEFAULT_TIMEOUT_SECONDS = 10.0


class UpstreamClient:
    """Issues single GET requests to the upstream hosts.

    Redirects are never followed here; the forwarder decides what to do
    with a 301/302. Transport failures are converted to
    :class:`UpstreamTimeout` or :class:`UpstreamUnavailable`.
    """

    def __init__(
        self,
        user_agent: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.user_agent = user_agent
        self.timeout = timeout
        self.logger = get_logger("forwarder.upstream_client")
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=False,
                headers={"User-Agent": self.user_agent},
                transport=self._transport,
            )
        return self._client

    async def get(self, url: str) -> httpx.Response:
        """Fetch ``url`` and return the fully buffered response."""
        client = self._get_client()
        try:
            response = await client.get(url)
        except httpx.TimeoutException as exc:
            self.logger.error("Upstream request timed out", url=url, error=str(exc))
            raise UpstreamTimeout(
                f"Upstream did not respond within {self.timeout:g} seconds",
                details={"url": url}
            ) from exc
        except (httpx.RequestError, httpx.InvalidURL) as exc:
            self.logger.error("Upstream request failed", url=url, error=str(exc) or type(exc).__name__)
            raise UpstreamUnavailable(
                f"Could not reach upstream: {str(exc) or type(exc).__name__}",
                details={"url": url}
            ) from exc

        self.logger.debug("Upstream response", url=url, status_code=response.status_code)
        return response

    async def close(self):
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
