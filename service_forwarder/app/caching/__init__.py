"""
Forwarder caching package.

Provides the in-memory response cache used to reduce outbound call volume
to the upstream API. Entries expire lazily on read; there is no sweeper.
"""

from .ttl_cache import CacheEntry, TTLCache

__all__ = ["CacheEntry", "TTLCache"]
