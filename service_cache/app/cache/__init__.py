"""
Cache package for the cache service.

Provides the CacheClient facade over the managed Redis connection and the
bounded in-memory FallbackStore used while Redis is unreachable.
"""

from .client import CacheClient, CacheResult, CacheStatus
from .fallback import CacheEntry, FallbackStore

__all__ = ["CacheClient", "CacheResult", "CacheStatus", "CacheEntry", "FallbackStore"]
