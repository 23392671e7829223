"""
Cooperative cancellation for asyncio calls.

A ``CancellationTokenSource`` owns a ``CancellationToken``; callers pass the
token into client operations and call ``cancel()`` on the source to abandon
them. ``run_cancellable`` races an awaitable against a token and cancels the
underlying task as soon as the token fires.
"""

import asyncio
from typing import Awaitable, Callable, List, Optional, TypeVar

from ..utils.error_handling import RequestCancelledError
from .events import Disposable


T = TypeVar("T")


class CancellationToken:
    """Read-only view of a cancellation signal."""

    def __init__(self) -> None:
        self._cancelled = False
        self._listeners: List[Callable[[], None]] = []

    @property
    def is_cancellation_requested(self) -> bool:
        return self._cancelled

    def on_cancellation_requested(self, listener: Callable[[], None]) -> Disposable:
        """Call ``listener`` once on cancellation, immediately if already cancelled."""
        if self._cancelled:
            listener()
            return Disposable(lambda: None)

        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return Disposable(remove)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise RequestCancelledError()

    def _cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener()


class _NoneToken(CancellationToken):
    """Token that can never be cancelled."""

    def _cancel(self) -> None:
        pass


CancellationToken.NONE = _NoneToken()  # type: ignore[attr-defined]


class CancellationTokenSource:
    """Creates and signals a cancellation token."""

    def __init__(self) -> None:
        self.token = CancellationToken()

    def cancel(self) -> None:
        self.token._cancel()

    def dispose(self) -> None:
        self.token._listeners.clear()


async def run_cancellable(
    awaitable: Awaitable[T],
    token: Optional[CancellationToken] = None,
) -> T:
    """
    Await ``awaitable`` unless ``token`` fires first.

    The awaitable runs as a task; when the token is cancelled the task is
    cancelled (the in-flight work is abandoned, not awaited to completion)
    and ``RequestCancelledError`` is raised.

    Raises:
        RequestCancelledError: If the token is or becomes cancelled
    """
    if token is None:
        return await awaitable

    if token.is_cancellation_requested:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise RequestCancelledError()

    task = asyncio.ensure_future(awaitable)
    registration = token.on_cancellation_requested(task.cancel)
    try:
        return await task
    except asyncio.CancelledError:
        if token.is_cancellation_requested:
            raise RequestCancelledError() from None
        raise
    finally:
        registration.dispose()
