"""
Events - change notifications, disposables and per-key debouncing

Discovery sources announce changes through :class:`EventEmitter`; subscribers
receive a :class:`Disposable` that unsubscribes them. Debounced work is one
``asyncio.Task`` per key, cancelled and replaced on every trigger.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Hashable, Iterable, List, Optional, Set, Union

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class Disposable:
    """Runs a callback once when disposed."""

    def __init__(self, on_dispose: Optional[Callable[[], Any]] = None):
        self._on_dispose = on_dispose
        self._disposed = False

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        if self._on_dispose is not None:
            self._on_dispose()
            self._on_dispose = None


def dispose_all(disposables: Iterable[Any]) -> None:
    """Dispose every item, logging (not raising) individual failures."""
    for item in list(disposables):
        try:
            item.dispose()
        except Exception as e:
            logger.error(f"Failed to dispose {item!r}: {e}")
    if isinstance(disposables, (list, set)):
        disposables.clear()


class EventEmitter:
    """
    Minimal synchronous event emitter.

    Example:
        emitter = EventEmitter()
        sub = emitter.event(lambda: print("changed"))
        emitter.fire()
        sub.dispose()
    """

    def __init__(self, name: str = "event"):
        self.name = name
        self._listeners: List[Listener] = []
        self._disposed = False

    def event(self, listener: Listener, disposables: Optional[List[Any]] = None) -> Disposable:
        """Subscribe a listener; the returned handle unsubscribes it."""
        if self._disposed:
            return Disposable()
        self._listeners.append(listener)

        def _remove():
            if listener in self._listeners:
                self._listeners.remove(listener)

        handle = Disposable(_remove)
        if disposables is not None:
            disposables.append(handle)
        return handle

    __call__ = event

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def fire(self, *args: Any) -> None:
        """Call every listener; a failing listener does not stop the others."""
        for listener in list(self._listeners):
            try:
                listener(*args)
            except Exception as e:
                logger.error(f"Listener for '{self.name}' failed: {e}")

    def dispose(self) -> None:
        self._disposed = True
        self._listeners.clear()


class BackgroundTasks:
    """Keeps strong references to fire-and-forget tasks until they finish."""

    def __init__(self, name: str = "background"):
        self.name = name
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"[{self.name}] background task failed: {exc}")

    def __len__(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for the tasks currently tracked (used by tests and shutdown)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()


class KeyedDebouncer:
    """
    One delayed call per key.

    Scheduling a key that already has a pending call cancels that call and
    restarts the delay, so a burst of triggers collapses into one call.
    A call that has already started is not cancelled.
    """

    def __init__(self, delay: float, name: str = "debounce"):
        self.delay = delay
        self.name = name
        self._pending: Dict[Hashable, asyncio.Task] = {}
        self._running: Set[asyncio.Task] = set()

    def schedule(
        self,
        key: Hashable,
        callback: Callable[[], Union[None, Awaitable[Any]]],
        delay: Optional[float] = None,
    ) -> asyncio.Task:
        self.cancel(key)
        task = asyncio.ensure_future(self._run(key, callback, self.delay if delay is None else delay))
        self._pending[key] = task
        return task

    async def _run(self, key: Hashable, callback: Callable[[], Any], delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return
        task = asyncio.current_task()
        if self._pending.get(key) is task:
            del self._pending[key]
        self._running.add(task)
        try:
            result = callback()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"[{self.name}] debounced call for {key!r} failed: {e}")
        finally:
            self._running.discard(task)

    def is_pending(self, key: Hashable) -> bool:
        return key in self._pending

    def cancel(self, key: Hashable) -> bool:
        task = self._pending.pop(key, None)
        if task is None:
            return False
        task.cancel()
        return True

    async def drain(self) -> None:
        """Wait until no call is pending or running."""
        while self._pending or self._running:
            await asyncio.gather(*self._pending.values(), *self._running, return_exceptions=True)

    def dispose(self) -> None:
        for key in list(self._pending):
            self.cancel(key)
