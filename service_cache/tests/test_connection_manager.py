"""
Unit tests for the ConnectionManager state machine.
"""

import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from cache_common.errors import AlreadyClosedError, NotConnectedError, PermanentlyFailedError
from cache_common.events import EventEmitter
from cache_common.test_helpers import (
    EventRecorder,
    FakeRedis,
    RecordingSleep,
    ScriptedHandleFactory,
    make_connection_config,
)
from service_cache.app.connection import ConnectionManager, ConnectionState


def build_manager(factory, sleep=None, **config_overrides):
    emitter = EventEmitter("test")
    recorder = EventRecorder(emitter)
    manager = ConnectionManager(
        make_connection_config(**config_overrides),
        handle_factory=factory,
        events=emitter,
        sleep=sleep or RecordingSleep(),
    )
    return manager, recorder


class TestConnectionManager:
    """Test cases for ConnectionManager."""

    def test_initial_state(self):
        manager, _ = build_manager(ScriptedHandleFactory())
        assert manager.state is ConnectionState.DISCONNECTED
        assert manager.retry_counter.attempts == 0

    def test_acquire_before_start_raises(self):
        """Test no handle is exposed outside CONNECTED."""
        manager, _ = build_manager(ScriptedHandleFactory())
        with pytest.raises(NotConnectedError) as exc_info:
            manager.acquire()
        assert exc_info.value.state == "disconnected"

    @pytest.mark.asyncio
    async def test_start_connects(self):
        """Test a successful connect exposes the handle."""
        handle = FakeRedis()
        manager, recorder = build_manager(ScriptedHandleFactory(handle))

        assert await manager.start() is True
        assert await manager.wait_for_state(ConnectionState.CONNECTED, timeout=1)

        assert manager.acquire() is handle
        assert recorder.states() == ["connecting", "connected"]
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        """Test start() twice yields a single CONNECTING transition."""
        factory = ScriptedHandleFactory()
        manager, recorder = build_manager(factory)

        first = await manager.start()
        second = await manager.start()
        await manager.wait_for_state(ConnectionState.CONNECTED, timeout=1)
        third = await manager.start()

        assert (first, second, third) == (True, False, False)
        assert recorder.states().count("connecting") == 1
        assert factory.calls == 1
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_concurrent_start_single_cycle(self):
        """Test racing start() calls start one connect cycle."""
        factory = ScriptedHandleFactory()
        manager, recorder = build_manager(factory)

        results = await asyncio.gather(*(manager.start() for _ in range(5)))
        await manager.wait_for_state(ConnectionState.CONNECTED, timeout=1)

        assert results.count(True) == 1
        assert factory.calls == 1
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_failures_follow_backoff(self):
        """Test failed connects wait the policy delay and reset on success."""
        sleep = RecordingSleep()
        factory = ScriptedHandleFactory(
            RedisConnectionError("refused"),
            RedisConnectionError("refused"),
            FakeRedis(),
        )
        manager, recorder = build_manager(factory, sleep=sleep)

        await manager.start()
        assert await manager.wait_for_state(ConnectionState.CONNECTED, timeout=1)

        assert sleep.delays == [0.05, 0.1]
        assert recorder.states() == [
            "connecting", "reconnecting", "connecting", "reconnecting", "connecting", "connected",
        ]
        assert manager.retry_counter.attempts == 0
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_budget_exhaustion_is_terminal(self):
        """Test exceeding max_retries ends in PERMANENTLY_FAILED."""
        sleep = RecordingSleep()
        factory = ScriptedHandleFactory(*(RedisConnectionError("down") for _ in range(5)))
        manager, recorder = build_manager(factory, sleep=sleep, max_retries=2)

        await manager.start()
        assert await manager.wait_for_state(ConnectionState.PERMANENTLY_FAILED, timeout=1)

        assert factory.calls == 3
        assert sleep.delays == [0.05, 0.1]
        assert manager.retry_counter.attempts == 3
        with pytest.raises(PermanentlyFailedError):
            manager.acquire()

        # No further automatic attempts
        await asyncio.sleep(0.01)
        assert factory.calls == 3
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_restart_after_permanent_failure(self):
        """Test an explicit start() recovers from PERMANENTLY_FAILED."""
        handle = FakeRedis()
        factory = ScriptedHandleFactory(RedisConnectionError("down"), handle)
        manager, recorder = build_manager(factory, max_retries=0)

        await manager.start()
        assert await manager.wait_for_state(ConnectionState.PERMANENTLY_FAILED, timeout=1)

        assert await manager.start() is True
        assert await manager.wait_for_state(ConnectionState.CONNECTED, timeout=1)
        assert manager.acquire() is handle
        assert manager.retry_counter.attempts == 0
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_retry_forever_keeps_trying(self):
        """Test the non-terminal mode keeps reconnecting at the cap."""
        sleep = RecordingSleep()
        factory = ScriptedHandleFactory(*(RedisConnectionError("down") for _ in range(4)))
        manager, _ = build_manager(factory, sleep=sleep, max_retries=1, retry_forever=True)

        await manager.start()
        assert await manager.wait_for_state(ConnectionState.CONNECTED, timeout=1)
        assert sleep.delays == [0.05, 0.2, 0.2, 0.2]
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_releases_handle(self):
        """Test shutdown closes the handle and ends in CLOSED."""
        handle = FakeRedis()
        manager, recorder = build_manager(ScriptedHandleFactory(handle))
        await manager.start()
        await manager.wait_for_state(ConnectionState.CONNECTED, timeout=1)

        await manager.shutdown()

        assert handle.closed is True
        assert manager.state is ConnectionState.CLOSED
        assert recorder.states()[-1] == "closed"
        with pytest.raises(AlreadyClosedError):
            manager.acquire()

    @pytest.mark.asyncio
    async def test_shutdown_twice_raises(self):
        manager, _ = build_manager(ScriptedHandleFactory())
        await manager.shutdown()
        with pytest.raises(AlreadyClosedError):
            await manager.shutdown()

    @pytest.mark.asyncio
    async def test_start_after_shutdown_raises(self):
        manager, _ = build_manager(ScriptedHandleFactory())
        await manager.shutdown()
        with pytest.raises(AlreadyClosedError):
            await manager.start()

    @pytest.mark.asyncio
    async def test_shutdown_cancels_pending_backoff(self):
        """Test shutdown during a backoff wait stops further attempts."""
        gate = asyncio.Event()

        async def blocking_sleep(seconds):
            await gate.wait()

        factory = ScriptedHandleFactory(RedisConnectionError("down"))
        manager, recorder = build_manager(factory, sleep=blocking_sleep)

        await manager.start()
        assert await manager.wait_for_state(ConnectionState.RECONNECTING, timeout=1)
        await manager.shutdown()
        gate.set()
        await asyncio.sleep(0.01)

        assert factory.calls == 1
        assert manager.state is ConnectionState.CLOSED
        assert recorder.states() == ["connecting", "reconnecting", "closed"]

    @pytest.mark.asyncio
    async def test_late_connect_after_shutdown_is_discarded(self):
        """Test a connect completing after shutdown does not resurrect the connection."""
        late_handle = FakeRedis()
        release = asyncio.get_running_loop().create_future()
        entered = asyncio.Event()

        async def stubborn_factory(config):
            # Simulates a client library that finishes its connect even when cancelled.
            entered.set()
            try:
                await asyncio.shield(release)
            except asyncio.CancelledError:
                await release
            return late_handle

        manager, recorder = build_manager(stubborn_factory)
        await manager.start()
        await entered.wait()

        shutdown_task = asyncio.create_task(manager.shutdown())
        await asyncio.sleep(0)
        assert manager.state is ConnectionState.CLOSED

        release.set_result(None)
        await shutdown_task

        assert manager.state is ConnectionState.CLOSED
        assert late_handle.closed is True
        assert recorder.states() == ["connecting", "closed"]
        with pytest.raises(AlreadyClosedError):
            manager.acquire()

    @pytest.mark.asyncio
    async def test_transport_error_triggers_reconnect(self):
        """Test a reported transport error moves CONNECTED to RECONNECTING and back."""
        first, second = FakeRedis(), FakeRedis()
        sleep = RecordingSleep()
        manager, recorder = build_manager(ScriptedHandleFactory(first, second), sleep=sleep)
        await manager.start()
        await manager.wait_for_state(ConnectionState.CONNECTED, timeout=1)

        reported = await manager.report_transport_error(RedisConnectionError("reset"), first)

        assert reported is True
        assert first.closed is True
        assert await manager.wait_for_state(ConnectionState.CONNECTED, timeout=1)
        assert manager.acquire() is second
        assert sleep.delays == [0.05]
        assert recorder.states() == [
            "connecting", "connected", "reconnecting", "connecting", "connected",
        ]
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_stale_transport_error_ignored(self):
        """Test reports about a handle that is no longer live are ignored."""
        manager, recorder = build_manager(ScriptedHandleFactory())
        await manager.start()
        await manager.wait_for_state(ConnectionState.CONNECTED, timeout=1)

        reported = await manager.report_transport_error(RedisConnectionError("reset"), FakeRedis())

        assert reported is False
        assert manager.state is ConnectionState.CONNECTED
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_wait_for_state_timeout(self):
        manager, _ = build_manager(ScriptedHandleFactory())
        assert await manager.wait_for_state(ConnectionState.CONNECTED, timeout=0.01) is False

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_transitions(self):
        """Test a raising event listener cannot break the state machine."""
        manager, _ = build_manager(ScriptedHandleFactory())

        def broken_listener(event):
            raise RuntimeError("listener bug")

        manager.events.subscribe(broken_listener)
        await manager.start()
        assert await manager.wait_for_state(ConnectionState.CONNECTED, timeout=1)
        await manager.shutdown()
        assert manager.state is ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_transition_events_carry_context(self):
        """Test state change events include previous/current state and delay."""
        factory = ScriptedHandleFactory(RedisConnectionError("refused"))
        manager, recorder = build_manager(factory)
        await manager.start()
        await manager.wait_for_state(ConnectionState.CONNECTED, timeout=1)

        reconnecting = recorder.events[1].fields
        assert reconnecting["previous"] == "connecting"
        assert reconnecting["current"] == "reconnecting"
        assert reconnecting["delay_ms"] == 50
        assert reconnecting["attempts"] == 1
        assert "refused" in reconnecting["error"]
        await manager.shutdown()
