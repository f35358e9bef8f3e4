"""
Forwarding cache service for the RedditView access layer.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from fastapi import Request
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.cors import CORS_HEADERS
from shared.config import ForwarderConfig, get_config
from shared.retry import RetryConfig, RetryStateTable
from .adapters.upstream_client import UpstreamClient
from .caching.ttl_cache import TTLCache
from .domain.forwarder import Forwarder
from .domain.sanitizer import build_response, preflight_response
from .routing.router import RequestRouter


def inbound_key(request: Request) -> str:
    """The inbound path plus query string, exactly as received."""
    raw_path = request.scope.get("raw_path")
    path = raw_path.decode("latin-1") if raw_path else request.url.path
    query = request.scope.get("query_string", b"").decode("latin-1")
    return f"{path}?{query}" if query else path


class ForwarderService(BaseService):
    """Forwarding cache service implementation."""

    def __init__(
        self,
        config: Optional[ForwarderConfig] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__("forwarder", config if config is not None else get_config())

        self.router = RequestRouter(
            api_base_url=self.config.api_base_url,
            legacy_base_url=self.config.legacy_base_url,
            api_prefix=self.config.api_prefix,
            search_prefix=self.config.search_prefix,
            search_endpoint=self.config.search_endpoint,
        )
        self.upstream_client = UpstreamClient(
            self.config.user_agent,
            timeout=self.config.upstream_timeout_seconds,
            transport=transport,
        )
        self.cache = TTLCache(self.config.cache_ttl_seconds)
        self.retry_states = RetryStateTable()
        self.forwarder = Forwarder(
            self.router,
            self.upstream_client,
            self.cache,
            self.retry_states,
            RetryConfig(
                max_attempts=self.config.retry_max_attempts,
                base_delay=self.config.retry_base_delay_seconds,
            ),
            self.config.retry_after_seconds,
            metrics=self.metrics,
            sleep=sleep,
        )

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.upstream_client.close()

        self._setup_forwarder_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.forwarder_service = self

    def _health_details(self) -> Dict[str, Any]:
        return {"cache_size": self.cache.size()}

    def _setup_forwarder_routes(self):
        """Set up local stats and the catch-all forwarding routes."""

        @self.app.get("/stats")
        async def stats():
            """Cache and retry bookkeeping."""
            return JSONResponse(
                {
                    "cache_size": self.cache.size(),
                    "cache_ttl_seconds": self.cache.ttl_seconds,
                    "retry_states": self.retry_states.size(),
                    "uptime_seconds": self._get_uptime(),
                },
                headers=CORS_HEADERS,
            )

        @self.app.options("/{path:path}")
        async def preflight(path: str):
            """CORS preflight for any path, answered locally."""
            return preflight_response()

        @self.app.get("/{path:path}")
        async def forward(request: Request, path: str):
            """Forward to the upstream host selected by the path."""
            result = await self.forwarder.forward(inbound_key(request))
            return build_response(result.status_code, result.body, result.headers, result.cache_status)


def create_app():
    """Create FastAPI application."""
    service = ForwarderService()
    return service.app


def main():
    service = ForwarderService()
    service.run()


if __name__ == "__main__":
    main()
