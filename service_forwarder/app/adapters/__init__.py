"""
HTTP adapters for upstream services.
"""

from .upstream_client import UpstreamClient

__all__ = ["UpstreamClient"]
