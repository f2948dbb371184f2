"""
Cache service: HTTP host for the managed Redis connection.
"""

from typing import Dict, Optional

from fastapi import Body, Path
from fastapi.responses import JSONResponse

from cache_common.base_service import BaseService
from cache_common.config import load_connection_config
from cache_common.errors import AlreadyClosedError
from cache_common.events import EventEmitter, log_events
from cache_common.logging import get_logger, set_cache_key
from cache_common.secrets_manager import SecretsManager

from .cache import CacheClient, CacheStatus, FallbackStore
from .connection import ConnectionManager, ConnectionState
from .connection.manager import HandleFactory
from .models import CacheDeleteResponse, CacheValueResponse, CacheWriteRequest, CacheWriteResponse


class CacheService(BaseService):
    """Cache service implementation."""

    def __init__(self, handle_factory: Optional[HandleFactory] = None, **config_overrides):
        super().__init__("cache", 8013, **config_overrides)

        master_key = self.config.master_key.get_secret_value() if self.config.master_key else None
        self.secrets = SecretsManager(master_key=master_key, secrets_file=self.config.secrets_file)
        self.connection_config = load_connection_config(self.config, self.secrets)

        self.events = EventEmitter("cache")
        self.events.subscribe(log_events(get_logger("cache.events")))
        self.events.subscribe(self.metrics.observe_event)

        manager_options = {"handle_factory": handle_factory} if handle_factory else {}
        self.connection_manager = ConnectionManager(
            self.connection_config,
            events=self.events,
            **manager_options
        )
        self.fallback = (
            FallbackStore(self.config.fallback_max_entries)
            if self.config.fallback_enabled
            else None
        )
        self.cache = CacheClient(
            self.connection_manager,
            fallback=self.fallback,
            key_prefix=self.config.key_prefix,
        )

        @self.app.on_event("startup")
        async def _startup():
            await self.connection_manager.start()
            await self.connection_manager.wait_for_state(
                ConnectionState.CONNECTED,
                ConnectionState.PERMANENTLY_FAILED,
                timeout=self.config.startup_connect_timeout_seconds
            )
            if not self.connection_manager.is_connected:
                self.logger.warning(
                    "Starting without a Redis connection; serving from fallback",
                    state=self.connection_manager.state.value
                )

        @self.app.on_event("shutdown")
        async def _shutdown():
            try:
                await self.connection_manager.shutdown()
            except AlreadyClosedError:
                self.logger.info("Connection manager was already closed")

        self._setup_cache_routes()

    def _setup_cache_routes(self):
        """Set up cache-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "cache",
                "message": "Resilient cache - Cache Service",
                "version": "1.0.0",
                "capabilities": ["redis", "fallback", "reconnect_backoff"]
            }

        @self.app.get("/cache/{key}", response_model=CacheValueResponse)
        async def get_value(key: str = Path(..., min_length=1)):
            """Read a cached value."""
            set_cache_key(key)
            result = await self.cache.get(key)
            if result.status is CacheStatus.UNAVAILABLE:
                raise result.error
            if result.status is CacheStatus.NOT_FOUND:
                return JSONResponse(
                    status_code=404,
                    content={"code": "NOT_FOUND", "message": f"Key '{key}' not found", "degraded": result.degraded}
                )
            return CacheValueResponse(key=key, value=result.value, degraded=result.degraded)

        @self.app.put("/cache/{key}", response_model=CacheWriteResponse)
        async def put_value(key: str = Path(..., min_length=1), request: CacheWriteRequest = Body(...)):
            """Write a value with an optional TTL override."""
            set_cache_key(key)
            result = await self.cache.set(key, request.value, request.ttl_seconds)
            if not result.ok:
                raise result.error
            return CacheWriteResponse(
                key=key,
                degraded=result.degraded,
                ttl_seconds=request.ttl_seconds or self.cache.default_ttl
            )

        @self.app.delete("/cache/{key}", response_model=CacheDeleteResponse)
        async def delete_value(key: str = Path(..., min_length=1)):
            """Delete a key from Redis and the fallback store."""
            set_cache_key(key)
            result = await self.cache.delete(key)
            if not result.ok:
                raise result.error
            return CacheDeleteResponse(key=key, degraded=result.degraded)

        @self.app.get("/cache-stats")
        async def cache_stats():
            """Connection and fallback statistics."""
            retry = self.connection_manager.retry_counter
            return {
                "state": self.connection_manager.state.value,
                "epoch": self.connection_manager.epoch,
                "retry": {"attempts": retry.attempts, "last_delay_ms": retry.last_delay_ms},
                "fallback": self.fallback.stats() if self.fallback else None,
            }

    async def _check_dependencies(self) -> Dict[str, str]:
        """Report the Redis connection state."""
        if await self.cache.health_check():
            return {"redis": "connected"}
        return {"redis": self.connection_manager.state.value}


def create_app(handle_factory: Optional[HandleFactory] = None, **config_overrides):
    """Create the FastAPI application."""
    return CacheService(handle_factory=handle_factory, **config_overrides).app


def main():
    CacheService().run()


if __name__ == "__main__":
    main()
