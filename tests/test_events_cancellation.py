"""
Tests for events, debouncing and cancellation
"""

import asyncio

import pytest

from kernel_finder.cancellation import NONE_TOKEN, CancellationTokenSource, is_cancelled, race_cancellation
from kernel_finder.events import BackgroundTasks, Disposable, EventEmitter, KeyedDebouncer, dispose_all


class TestEventEmitter:
    """Tests for EventEmitter."""

    def test_fire_and_unsubscribe(self):
        """Test listeners receive arguments until disposed."""
        emitter = EventEmitter()
        received = []
        handle = emitter.event(received.append)

        emitter.fire(1)
        handle.dispose()
        emitter.fire(2)

        assert received == [1]
        assert emitter.listener_count == 0

    def test_failing_listener_does_not_stop_others(self):
        """Test one failing listener does not block the rest."""
        emitter = EventEmitter()
        received = []

        def boom():
            raise RuntimeError("boom")

        emitter.event(boom)
        emitter.event(lambda: received.append(True))
        emitter.fire()

        assert received == [True]

    def test_dispose_all(self):
        """Test disposables collected in a list are all disposed."""
        calls = []
        disposables = [Disposable(lambda: calls.append(1)), Disposable(lambda: calls.append(2))]
        dispose_all(disposables)
        assert calls == [1, 2]
        assert disposables == []


class TestKeyedDebouncer:
    """Tests for KeyedDebouncer."""

    @pytest.mark.asyncio
    async def test_burst_collapses_to_one_call(self):
        """Test rescheduling a key restarts its delay."""
        debouncer = KeyedDebouncer(0.02)
        calls = []
        for i in range(5):
            debouncer.schedule("doc", lambda i=i: calls.append(i))
        await debouncer.drain()
        assert calls == [4]

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        """Test each key gets its own call."""
        debouncer = KeyedDebouncer(0.01)
        calls = []
        debouncer.schedule("a", lambda: calls.append("a"))
        debouncer.schedule("b", lambda: calls.append("b"))
        await debouncer.drain()
        assert sorted(calls) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_cancel(self):
        """Test a cancelled key never fires."""
        debouncer = KeyedDebouncer(0.01)
        calls = []
        debouncer.schedule("a", lambda: calls.append("a"))
        assert debouncer.is_pending("a")
        assert debouncer.cancel("a")
        await asyncio.sleep(0.03)
        assert calls == []

    @pytest.mark.asyncio
    async def test_awaits_coroutine_callbacks(self):
        """Test async callbacks are awaited."""
        debouncer = KeyedDebouncer(0)
        done = []

        async def work():
            await asyncio.sleep(0)
            done.append(True)

        debouncer.schedule("a", work)
        await debouncer.drain()
        assert done == [True]


class TestBackgroundTasks:
    """Tests for BackgroundTasks."""

    @pytest.mark.asyncio
    async def test_failures_are_logged_not_raised(self):
        """Test a failing task does not break drain()."""
        tasks = BackgroundTasks()

        async def fail():
            raise RuntimeError("boom")

        tasks.spawn(fail())
        await tasks.drain()
        assert len(tasks) == 0


class TestCancellation:
    """Tests for cancellation tokens."""

    def test_cancel_notifies_once(self):
        """Test callbacks run once on cancellation."""
        source = CancellationTokenSource()
        calls = []
        source.token.on_cancellation_requested(lambda: calls.append(1))
        source.cancel()
        source.cancel()
        assert calls == [1]
        assert is_cancelled(source.token)

    def test_callback_on_already_cancelled_token(self):
        """Test late subscribers are called immediately."""
        source = CancellationTokenSource()
        source.cancel()
        calls = []
        source.token.on_cancellation_requested(lambda: calls.append(1))
        assert calls == [1]

    def test_dispose_keeps_state(self):
        """Test disposing a source does not cancel its token."""
        source = CancellationTokenSource()
        source.dispose()
        assert source.is_disposed
        assert not source.token.is_cancellation_requested

    def test_none_token(self):
        """Test the shared token is never cancelled."""
        assert not is_cancelled(NONE_TOKEN)
        assert not is_cancelled(None)

    @pytest.mark.asyncio
    async def test_race_returns_result(self):
        """Test the awaited value wins when not cancelled."""
        source = CancellationTokenSource()

        async def value():
            return 42

        assert await race_cancellation(value(), source.token) == 42

    @pytest.mark.asyncio
    async def test_race_returns_default_on_cancel(self):
        """Test cancellation wins over a slow awaitable."""
        source = CancellationTokenSource()

        async def slow():
            await asyncio.sleep(1)
            return 42

        task = asyncio.ensure_future(race_cancellation(slow(), source.token, default="cancelled"))
        await asyncio.sleep(0)
        source.cancel()
        assert await asyncio.wait_for(task, timeout=0.5) == "cancelled"
