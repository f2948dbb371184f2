"""
Shared utilities for the resilient cache service.

This package aggregates the collaborators consumed by the cache core:

- config: Settings via pydantic-settings and the validated ConnectionConfig
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Backoff policy for reconnect attempts
- events: Observer list for connection and operation events
- secrets_manager: Credential lookup from env and encrypted files

Do not import from service_cache into cache_common.
"""
