"""
Observable values.

The only way state leaves a service: publishers replace the value, and
every observer is called with the new value in publish order.
"""

import threading
from typing import Callable, Generic, TypeVar

import structlog


logger = structlog.get_logger(__name__)

T = TypeVar("T")


class Observable(Generic[T]):
    """A value plus the callbacks interested in it."""

    def __init__(self, initial: T, name: str = ""):
        self.name = name
        self._value = initial
        self._observers: list[Callable[[T], None]] = []
        self._lock = threading.RLock()

    @property
    def value(self) -> T:
        with self._lock:
            return self._value

    def observe(
        self,
        callback: Callable[[T], None],
        emit_current: bool = True,
    ) -> Callable[[], None]:
        """
        Register a callback and return a function that unregisters it.

        With ``emit_current`` the callback immediately receives the
        current value.
        """
        with self._lock:
            self._observers.append(callback)
            if emit_current:
                self._notify(callback, self._value)

        def remove() -> None:
            with self._lock:
                if callback in self._observers:
                    self._observers.remove(callback)

        return remove

    def publish(self, value: T) -> None:
        # Held across delivery so observers never see values out of order
        with self._lock:
            self._value = value
            for callback in list(self._observers):
                self._notify(callback, value)

    def _notify(self, callback: Callable[[T], None], value: T) -> None:
        try:
            callback(value)
        except Exception as e:
            logger.error("observer_failed", observable=self.name, error=str(e))
