"""
Inbound path classification for the forwarder.
"""

from dataclasses import dataclass
from enum import Enum
from urllib.parse import parse_qs


class RouteClass(str, Enum):
    """Mutually exclusive upstream routing classes."""

    API = "api"
    SEARCH = "search"
    LEGACY = "legacy"


@dataclass(frozen=True)
class UpstreamTarget:
    """Where an inbound request is forwarded to."""

    route: RouteClass
    base_url: str
    path: str
    query: str = ""
    search_endpoint: str = "/search"

    @property
    def path_qs(self) -> str:
        return f"{self.path}?{self.query}" if self.query else self.path

    @property
    def url(self) -> str:
        return f"{self.base_url}{self.path_qs}"

    @property
    def bypass_cache(self) -> bool:
        """Search results are high-cardinality and never cached."""
        if self.route is RouteClass.SEARCH:
            return True
        return self.path == self.search_endpoint or self.path.startswith(f"{self.search_endpoint}.")

    def query_param(self, name: str) -> str:
        values = parse_qs(self.query).get(name)
        return values[0] if values else ""


class RequestRouter:
    """Map inbound paths to upstream targets without retaining state."""

    def __init__(
        self,
        api_base_url: str,
        legacy_base_url: str,
        api_prefix: str = "/api",
        search_prefix: str = "/search/",
        search_endpoint: str = "/search",
    ):
        self.api_base_url = api_base_url.rstrip("/")
        self.legacy_base_url = legacy_base_url.rstrip("/")
        self.api_prefix = api_prefix.rstrip("/")
        self.search_prefix = search_prefix
        self.search_endpoint = search_endpoint

    def resolve(self, path_qs: str) -> UpstreamTarget:
        """Classify ``path_qs`` (inbound path plus query string)."""
        path, _, query = path_qs.partition("?")

        if path.startswith(f"{self.api_prefix}/"):
            return self._target(RouteClass.API, self.api_base_url, path[len(self.api_prefix):], query)

        if path.startswith(self.search_prefix):
            rest = path[len(self.search_prefix):]
            return self._target(RouteClass.SEARCH, self.api_base_url, f"{self.search_endpoint}{rest}", query)

        return self._target(RouteClass.LEGACY, self.legacy_base_url, path, query)

    def _target(self, route: RouteClass, base_url: str, path: str, query: str) -> UpstreamTarget:
        return UpstreamTarget(
            route=route,
            base_url=base_url,
            path=path,
            query=query,
            search_endpoint=self.search_endpoint,
        )
