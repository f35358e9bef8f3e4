"""
Upstream routing package.
"""

from .router import RequestRouter, RouteClass, UpstreamTarget

__all__ = ["RequestRouter", "RouteClass", "UpstreamTarget"]
