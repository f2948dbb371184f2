"""
Cache Service package.

Hosts a single managed Redis connection behind an HTTP API:

- app.main: API surface for cache reads/writes, health and metrics.
- app.connection: Connection state machine with backoff-driven reconnects.
- app.cache: CacheClient facade and the in-memory fallback store.

Guidelines:
- One ConnectionManager per process, constructed and injected explicitly.
- Cache calls never wait for a reconnect; they fail fast or fall back.
"""
