"""
Cache client facade over the managed Redis connection.
"""

import asyncio
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from cache_common.errors import (
    CacheServiceException,
    NotConnectedError,
    TransportError,
    UnavailableError,
    ValidationError,
)
from cache_common.events import EventEmitter, EventType
from cache_common.logging import get_logger
from ..connection.manager import ConnectionManager
from .fallback import FallbackStore

STORE_ERRORS = (RedisError, OSError, asyncio.TimeoutError)
TRANSPORT_ERRORS = (RedisConnectionError, RedisTimeoutError, OSError, asyncio.TimeoutError)


class CacheStatus(str, Enum):
    """Outcome of a cache operation."""
    OK = "ok"
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class CacheResult:
    """Typed result of a cache operation.

    ``degraded`` is set when the fallback store served the call.
    """
    status: CacheStatus
    value: Any = None
    degraded: bool = False
    error: Optional[CacheServiceException] = None

    @property
    def ok(self) -> bool:
        return self.status is not CacheStatus.UNAVAILABLE

    @property
    def found(self) -> bool:
        return self.status is CacheStatus.OK

    @classmethod
    def success(cls, value: Any = None, degraded: bool = False) -> "CacheResult":
        return cls(CacheStatus.OK, value=value, degraded=degraded)

    @classmethod
    def not_found(cls, degraded: bool = False) -> "CacheResult":
        return cls(CacheStatus.NOT_FOUND, degraded=degraded)

    @classmethod
    def unavailable(cls, error: CacheServiceException) -> "CacheResult":
        return cls(CacheStatus.UNAVAILABLE, error=error)


class CacheClient:
    """get/set/delete with TTL, fail-fast error translation and optional fallback.

    The client acquires the connection handle on every call and never keeps
    it between calls. A single call is never retried: connection failures are
    reported to the ConnectionManager and answered from the fallback store
    when one is configured. Command errors on a live connection are returned
    as UNAVAILABLE and never touch the fallback store.
    """

    def __init__(self,
                 manager: ConnectionManager,
                 *,
                 fallback: Optional[FallbackStore] = None,
                 key_prefix: str = "",
                 events: Optional[EventEmitter] = None,
                 serializer: Callable[[Any], str] = json.dumps,
                 deserializer: Callable[[str], Any] = json.loads):
        self.manager = manager
        self.fallback = fallback
        self.key_prefix = key_prefix
        self.default_ttl = manager.config.ttl_seconds
        self.events = events or manager.events
        self.logger = get_logger("cache.client")
        self._serializer = serializer
        self._deserializer = deserializer

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> CacheResult:
        """Store ``value`` under ``key`` with ``ttl_seconds`` or the default TTL."""
        remote_key = self._remote_key(key)
        ttl = self._resolve_ttl(ttl_seconds)
        payload = self._serialize(value)

        try:
            handle = self.manager.acquire()
        except NotConnectedError as exc:
            return self._set_fallback(key, payload, ttl, exc)

        try:
            await handle.set(remote_key, payload, ex=ttl)
        except STORE_ERRORS as exc:
            error = await self._store_failure("set", key, exc, handle)
            if not isinstance(exc, TRANSPORT_ERRORS):
                return self._unavailable("set", key, error)
            return self._set_fallback(key, payload, ttl, error)

        self._succeeded("set", key, "remote", ttl=ttl)
        return CacheResult.success()

    async def get(self, key: str) -> CacheResult:
        """Fetch ``key``; NOT_FOUND when absent."""
        remote_key = self._remote_key(key)

        try:
            handle = self.manager.acquire()
        except NotConnectedError as exc:
            return self._get_fallback(key, exc)

        try:
            raw = await handle.get(remote_key)
        except STORE_ERRORS as exc:
            error = await self._store_failure("get", key, exc, handle)
            if not isinstance(exc, TRANSPORT_ERRORS):
                return self._unavailable("get", key, error)
            return self._get_fallback(key, error)

        if raw is None:
            self._succeeded("get", key, "remote", hit=False)
            return CacheResult.not_found()

        try:
            value = self._deserialize(raw)
        except ValueError as exc:
            error = UnavailableError("Cached value could not be decoded", {"key": key, "error": str(exc)})
            self._failed("get", key, error)
            return CacheResult.unavailable(error)

        self._succeeded("get", key, "remote", hit=True)
        return CacheResult.success(value)

    async def delete(self, key: str) -> CacheResult:
        """Remove ``key`` from both stores; absent keys are not an error."""
        remote_key = self._remote_key(key)
        if self.fallback is not None:
            self.fallback.delete(key)

        try:
            handle = self.manager.acquire()
        except NotConnectedError as exc:
            return self._delete_degraded(key, exc)

        try:
            await handle.delete(remote_key)
        except STORE_ERRORS as exc:
            error = await self._store_failure("delete", key, exc, handle)
            if not isinstance(exc, TRANSPORT_ERRORS):
                return self._unavailable("delete", key, error)
            return self._delete_degraded(key, error)

        self._succeeded("delete", key, "remote")
        return CacheResult.success()

    async def health_check(self) -> bool:
        """Ping the live handle."""
        try:
            handle = self.manager.acquire()
        except NotConnectedError:
            return False

        try:
            await handle.ping()
        except STORE_ERRORS as exc:
            await self._store_failure("ping", None, exc, handle)
            return False
        return True

    def _set_fallback(self, key: str, payload: str, ttl: int, cause: CacheServiceException) -> CacheResult:
        if self.fallback is None:
            return self._unavailable("set", key, cause)
        self.fallback.put(key, payload.encode("utf-8"), ttl)
        self._succeeded("set", key, "fallback", ttl=ttl, cause=cause.code)
        return CacheResult.success(degraded=True)

    def _get_fallback(self, key: str, cause: CacheServiceException) -> CacheResult:
        if self.fallback is None:
            return self._unavailable("get", key, cause)
        raw = self.fallback.get(key)
        if raw is None:
            self._succeeded("get", key, "fallback", hit=False, cause=cause.code)
            return CacheResult.not_found(degraded=True)
        self._succeeded("get", key, "fallback", hit=True, cause=cause.code)
        return CacheResult.success(self._deserialize(raw), degraded=True)

    def _delete_degraded(self, key: str, cause: CacheServiceException) -> CacheResult:
        if self.fallback is None:
            return self._unavailable("delete", key, cause)
        self._succeeded("delete", key, "fallback", cause=cause.code)
        return CacheResult.success(degraded=True)

    async def _store_failure(self, operation: str, key: Optional[str], exc: BaseException, handle: Any) -> TransportError:
        """Translate a store exception; connection-level ones also drop the handle."""
        error = TransportError(operation, str(exc) or exc.__class__.__name__, {"key": key})
        if isinstance(exc, TRANSPORT_ERRORS):
            await self.manager.report_transport_error(exc, handle)
        return error

    def _unavailable(self, operation: str, key: str, cause: CacheServiceException) -> CacheResult:
        error = UnavailableError(
            f"{operation} failed: remote store unavailable",
            {"key": key, "cause": cause.code, "reason": cause.message}
        )
        self._failed(operation, key, error)
        return CacheResult.unavailable(error)

    def _succeeded(self, operation: str, key: str, source: str, **fields: Any) -> None:
        self.events.emit(EventType.OPERATION_SUCCEEDED, operation=operation, key=key, source=source, **fields)

    def _failed(self, operation: str, key: str, error: CacheServiceException) -> None:
        self.events.emit(
            EventType.OPERATION_FAILED,
            operation=operation,
            key=key,
            code=error.code,
            error=error.message,
            details=error.details
        )

    def _remote_key(self, key: str) -> str:
        if not isinstance(key, str) or not key:
            raise ValidationError("Cache key must be a non-empty string", {"key": repr(key)})
        return f"{self.key_prefix}{key}"

    def _resolve_ttl(self, ttl_seconds: Optional[int]) -> int:
        if ttl_seconds is None:
            return self.default_ttl
        if isinstance(ttl_seconds, bool) or not isinstance(ttl_seconds, int) or ttl_seconds <= 0:
            raise ValidationError("ttl_seconds must be a positive whole number of seconds", {"ttl_seconds": ttl_seconds})
        return ttl_seconds

    def _serialize(self, value: Any) -> str:
        try:
            return self._serializer(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Value is not serializable", {"error": str(exc)}) from exc

    def _deserialize(self, raw: Any) -> Any:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return self._deserializer(raw)
