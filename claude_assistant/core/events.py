"""
Synchronous in-process events.

An ``Emitter`` keeps a list of listeners and calls them in registration order
when fired. Subscribing returns a ``Disposable`` that removes the listener.
"""

from typing import Callable, Generic, List, TypeVar

from ..utils.loguru_utils import LoguruLogger


logger = LoguruLogger("events")

T = TypeVar("T")
Listener = Callable[[T], None]


class Disposable:
    """Releases a registration exactly once."""

    def __init__(self, dispose: Callable[[], None]):
        self._dispose = dispose
        self._disposed = False

    def dispose(self) -> None:
        if not self._disposed:
            self._disposed = True
            self._dispose()

    def __enter__(self) -> "Disposable":
        return self

    def __exit__(self, *exc_info) -> None:
        self.dispose()


class Emitter(Generic[T]):
    """Fires values to subscribed listeners."""

    def __init__(self, name: str = "event"):
        self.name = name
        self._listeners: List[Listener] = []

    def __call__(self, listener: Listener) -> Disposable:
        """Subscribe ``listener``; same as ``subscribe``."""
        return self.subscribe(listener)

    def subscribe(self, listener: Listener) -> Disposable:
        self._listeners.append(listener)

        def remove() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return Disposable(remove)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def fire(self, value: T = None) -> None:
        """Call every listener; one failing listener does not stop the others."""
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception as e:
                logger.error(f"Listener for {self.name} failed: {e}", error_type=e.__class__.__name__)

    def clear(self) -> None:
        self._listeners.clear()
