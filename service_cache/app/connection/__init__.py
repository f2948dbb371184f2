"""
Connection management for the remote key-value store.
"""

from .manager import (
    ConnectionManager,
    ConnectionState,
    RetryCounter,
    close_redis_handle,
    create_redis_handle,
)

__all__ = [
    "ConnectionManager",
    "ConnectionState",
    "RetryCounter",
    "close_redis_handle",
    "create_redis_handle",
]
