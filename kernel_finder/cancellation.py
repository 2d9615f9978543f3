"""
Cooperative cancellation.

A :class:`CancellationTokenSource` owns a :class:`CancellationToken` that is
threaded through suspending operations. Code checks
``token.is_cancellation_requested`` after each ``await``; cancelling never
interrupts an I/O call that is already running, it only stops the caller from
acting on the result.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from kernel_finder.events import Disposable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Read-only view of a cancellation state."""

    def __init__(self):
        self._cancelled = False
        self._callbacks: List[Callable[[], Any]] = []

    @property
    def is_cancellation_requested(self) -> bool:
        return self._cancelled

    def on_cancellation_requested(self, callback: Callable[[], Any]) -> Disposable:
        """Register a callback; called immediately if already cancelled."""
        if self._cancelled:
            callback()
            return Disposable()
        self._callbacks.append(callback)

        def _remove():
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return Disposable(_remove)

    def _cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(f"Cancellation callback failed: {e}")

    def _release(self) -> None:
        self._callbacks = []

    def __repr__(self) -> str:
        return f"<CancellationToken cancelled={self._cancelled}>"


class _NeverCancelledToken(CancellationToken):
    def _cancel(self) -> None:
        pass


NONE_TOKEN: CancellationToken = _NeverCancelledToken()


class CancellationTokenSource:
    """
    Owner of a cancellation token.

    Example:
        source = CancellationTokenSource()
        task = do_work(source.token)
        source.cancel()
        source.dispose()
    """

    def __init__(self):
        self._token = CancellationToken()
        self._disposed = False

    @property
    def token(self) -> CancellationToken:
        return self._token

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def cancel(self) -> None:
        self._token._cancel()

    def dispose(self) -> None:
        """Release subscriptions; the token keeps its current state."""
        if self._disposed:
            return
        self._disposed = True
        self._token._release()


def is_cancelled(token: Optional[CancellationToken]) -> bool:
    return token is not None and token.is_cancellation_requested


async def race_cancellation(
    awaitable: Awaitable[T],
    token: Optional[CancellationToken],
    default: Any = None,
) -> Any:
    """
    Await ``awaitable`` unless ``token`` is cancelled first.

    On cancellation ``default`` is returned and the awaitable keeps running
    unobserved; its eventual error, if any, is discarded.
    """
    task = asyncio.ensure_future(awaitable)
    if token is None:
        return await task

    task.add_done_callback(_consume_result)
    if token.is_cancellation_requested:
        return default

    loop = asyncio.get_running_loop()
    cancelled = loop.create_future()

    def _on_cancel():
        if not cancelled.done():
            cancelled.set_result(None)

    subscription = token.on_cancellation_requested(_on_cancel)
    try:
        await asyncio.wait({task, cancelled}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        subscription.dispose()
        if not cancelled.done():
            cancelled.cancel()

    if task.done():
        return task.result()
    return default


def _consume_result(task: asyncio.Future) -> None:
    if not task.cancelled():
        task.exception()
