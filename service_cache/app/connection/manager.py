"""
Connection lifecycle for the remote key-value store.

The manager owns exactly one connection handle and is the only component
that mutates it. State transitions happen under a single asyncio lock and are
published through the shared ``EventEmitter``. Reconnects run in one
background task; every connect cycle is tagged with an epoch so that a
connect finishing after ``shutdown()`` (or after a newer cycle started) is
discarded instead of resurrecting the connection.
"""

import asyncio
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import NoBackoff

from cache_common.config import ConnectionConfig
from cache_common.errors import AlreadyClosedError, NotConnectedError, PermanentlyFailedError
from cache_common.events import EventEmitter, EventType
from cache_common.logging import get_logger
from cache_common.retry import BackoffPolicy, Delay, PermanentFailure


class ConnectionState(str, Enum):
    """Connection lifecycle states."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    PERMANENTLY_FAILED = "permanently_failed"
    CLOSED = "closed"


@dataclass
class RetryCounter:
    """Failed connect attempts since the last successful connection."""
    attempts: int = 0
    last_delay_ms: int = 0

    def reset(self) -> None:
        self.attempts = 0
        self.last_delay_ms = 0


HandleFactory = Callable[[ConnectionConfig], Awaitable[Any]]
HandleCloser = Callable[[Any], Awaitable[None]]
Sleep = Callable[[float], Awaitable[None]]


async def create_redis_handle(config: ConnectionConfig) -> redis.Redis:
    """Open a Redis client and verify it with PING."""
    client = redis.Redis(
        host=config.host,
        port=config.port,
        db=config.db,
        password=config.credential.get_secret_value() if config.credential else None,
        ssl=config.use_tls,
        socket_connect_timeout=config.socket_timeout_seconds,
        socket_timeout=config.socket_timeout_seconds,
        health_check_interval=30,
        # Reconnects belong to the ConnectionManager, not the client library
        retry=Retry(NoBackoff(), 0),
    )
    try:
        await client.ping()
    except BaseException:
        await client.aclose()
        raise
    return client


async def close_redis_handle(handle: redis.Redis) -> None:
    await handle.aclose()


class ConnectionManager:
    """Single source of truth for the remote-store connection."""

    def __init__(self,
                 config: ConnectionConfig,
                 *,
                 policy: Optional[BackoffPolicy] = None,
                 handle_factory: HandleFactory = create_redis_handle,
                 handle_closer: HandleCloser = close_redis_handle,
                 events: Optional[EventEmitter] = None,
                 sleep: Sleep = asyncio.sleep,
                 name: str = "cache"):
        self.config = config
        self.policy = policy or BackoffPolicy.from_config(config)
        self.events = events or EventEmitter(name)
        self.logger = get_logger(f"{name}.connection")
        self._handle_factory = handle_factory
        self._handle_closer = handle_closer
        self._sleep = sleep

        self._state = ConnectionState.DISCONNECTED
        self._handle: Any = None
        self._retry = RetryCounter()
        self._epoch = 0
        self._task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self._state_changed = asyncio.Condition(self._lock)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def retry_counter(self) -> RetryCounter:
        """Snapshot of the retry counter."""
        return replace(self._retry)

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def acquire(self) -> Any:
        """Return the live handle, or raise if not CONNECTED. Never blocks."""
        state, handle = self._state, self._handle
        if state is ConnectionState.CONNECTED and handle is not None:
            return handle
        if state is ConnectionState.CLOSED:
            raise AlreadyClosedError(state.value)
        if state is ConnectionState.PERMANENTLY_FAILED:
            raise PermanentlyFailedError(state.value)
        raise NotConnectedError(state.value)

    async def start(self) -> bool:
        """Begin a connect cycle.

        Only DISCONNECTED and PERMANENTLY_FAILED start a new cycle; any other
        live state makes this a no-op. Returns True when a cycle was started.
        """
        async with self._lock:
            if self._state is ConnectionState.CLOSED:
                raise AlreadyClosedError(self._state.value, "Cannot start a closed connection manager")
            if self._state not in (ConnectionState.DISCONNECTED, ConnectionState.PERMANENTLY_FAILED):
                return False

            self._epoch += 1
            self._retry.reset()
            self._transition(ConnectionState.CONNECTING, attempt=1)
            self._task = asyncio.create_task(
                self._connect_loop(self._epoch),
                name=f"cache-connect-{self._epoch}"
            )
            return True

    async def shutdown(self) -> None:
        """Release the handle, cancel pending work and move to CLOSED."""
        async with self._lock:
            if self._state is ConnectionState.CLOSED:
                raise AlreadyClosedError(self._state.value, "Connection manager already closed")

            self._epoch += 1
            task, self._task = self._task, None
            handle, self._handle = self._handle, None
            self._transition(ConnectionState.CLOSED)

        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            await asyncio.wait({task})

        if handle is not None:
            await self._release(handle)

        self.logger.info("Connection manager closed")

    async def report_transport_error(self, exc: BaseException, handle: Any) -> bool:
        """Drop ``handle`` after an in-flight failure and schedule a reconnect.

        Reports about a handle that is no longer the live one are ignored.
        Returns True when the report caused a transition.
        """
        async with self._lock:
            if self._state is not ConnectionState.CONNECTED or handle is not self._handle:
                return False

            self._handle = None
            self._epoch += 1
            outcome = self._record_failure(exc)
            if isinstance(outcome, Delay):
                self._task = asyncio.create_task(
                    self._connect_loop(self._epoch, outcome),
                    name=f"cache-connect-{self._epoch}"
                )

        await self._release(handle)
        return True

    async def wait_for_state(self, *states: ConnectionState, timeout: Optional[float] = None) -> bool:
        """Wait until the manager is in one of ``states``; False on timeout."""
        async with self._state_changed:
            if self._state in states:
                return True
            try:
                await asyncio.wait_for(
                    self._state_changed.wait_for(lambda: self._state in states),
                    timeout
                )
            except asyncio.TimeoutError:
                return False
        return True

    async def _connect_loop(self, epoch: int, delay: Optional[Delay] = None) -> None:
        while True:
            if delay is not None:
                await self._sleep(delay.seconds)
                async with self._lock:
                    if epoch != self._epoch:
                        return
                    self._transition(ConnectionState.CONNECTING, attempt=self._retry.attempts + 1)

            try:
                handle = await self._handle_factory(self.config)
            except Exception as exc:
                async with self._lock:
                    if epoch != self._epoch:
                        return
                    outcome = self._record_failure(exc)
                if isinstance(outcome, PermanentFailure):
                    return
                delay = outcome
                continue

            async with self._lock:
                current = epoch == self._epoch
                if current:
                    self._handle = handle
                    self._retry.reset()
                    self._transition(ConnectionState.CONNECTED)

            if not current:
                self.logger.info("Discarding stale connection", epoch=epoch, current_epoch=self._epoch)
                await self._release(handle)
            return

    def _record_failure(self, exc: BaseException):
        # Caller holds the lock.
        self._retry.attempts += 1
        outcome = self.policy.next_delay(self._retry.attempts)
        if isinstance(outcome, PermanentFailure):
            self._transition(
                ConnectionState.PERMANENTLY_FAILED,
                error=str(exc),
                max_retries=outcome.max_retries
            )
        else:
            self._retry.last_delay_ms = outcome.milliseconds
            self._transition(
                ConnectionState.RECONNECTING,
                error=str(exc),
                delay_ms=outcome.milliseconds
            )
        return outcome

    def _transition(self, new_state: ConnectionState, **fields: Any) -> None:
        # Caller holds the lock.
        previous = self._state
        if previous is ConnectionState.CLOSED:
            return
        self._state = new_state
        self._state_changed.notify_all()
        self.events.emit(
            EventType.CONNECTION_STATE_CHANGED,
            previous=previous.value,
            current=new_state.value,
            epoch=self._epoch,
            attempts=self._retry.attempts,
            **fields
        )

    async def _release(self, handle: Any) -> None:
        try:
            await self._handle_closer(handle)
        except Exception as exc:
            self.logger.warning("Failed to close connection handle", error=str(exc))
