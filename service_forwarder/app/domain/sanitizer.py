"""
Response sanitization: make upstream bodies embeddable by browser clients.
"""

from enum import Enum
from typing import Iterable, List, Optional, Tuple

from fastapi import Response

from shared.cors import CORS_HEADERS


# Headers that forbid framing/embedding by the consuming client
FRAMING_HEADERS = frozenset({"x-frame-options", "content-security-policy"})

# The body is re-emitted already decoded and buffered
TRANSPORT_HEADERS = frozenset({
    "content-encoding",
    "content-length",
    "transfer-encoding",
    "connection",
    "keep-alive",
})

# Replaced by the forwarder's own values
OVERRIDDEN_HEADERS = frozenset({"x-cache"} | {name.lower() for name in CORS_HEADERS})

DEFAULT_CONTENT_TYPE = "application/json"


class CacheStatus(str, Enum):
    """Value of the ``X-Cache`` response header."""

    HIT = "HIT"
    MISS = "MISS"
    NONE = "NONE"


HeaderList = List[Tuple[str, str]]


def sanitize_headers(headers: Iterable[Tuple[str, str]]) -> HeaderList:
    """Copy upstream headers minus framing, transport and overridden ones."""
    sanitized: HeaderList = []
    for name, value in headers:
        lowered = name.lower()
        if lowered in FRAMING_HEADERS or lowered in TRANSPORT_HEADERS or lowered in OVERRIDDEN_HEADERS:
            continue
        sanitized.append((name, value))
    return sanitized


def normalize_content_type(content_type: Optional[str]) -> str:
    """Media type only, lowercased."""
    if not content_type:
        return DEFAULT_CONTENT_TYPE
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type or DEFAULT_CONTENT_TYPE


def build_response(status_code: int, body: bytes, headers: Iterable[Tuple[str, str]],
                   cache_status: CacheStatus) -> Response:
    """Assemble the outbound response with CORS and X-Cache headers."""
    response = Response(content=body, status_code=status_code)
    for name, value in headers:
        response.headers.append(name, value)
    for name, value in CORS_HEADERS.items():
        response.headers[name] = value
    response.headers["X-Cache"] = cache_status.value
    return response


def preflight_response() -> Response:
    """Answer a CORS preflight: 200, empty body, CORS headers only."""
    return Response(status_code=200, headers=CORS_HEADERS)
