"""Thread-safe observable value.

Firestore delivers snapshots on its own watch thread while HTTP handlers run in
the server's worker pool, so both sides go through the same lock.
"""

import logging
import threading
from collections.abc import Callable
from typing import Generic, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


class Observable(Generic[T]):
    def __init__(self, initial: T):
        self._value = initial
        self._listeners: list[Callable[[T], None]] = []
        self._lock = threading.RLock()

    @property
    def value(self) -> T:
        with self._lock:
            return self._value

    def set(self, value: T) -> None:
        with self._lock:
            self._value = value
            listeners = list(self._listeners)
        for listener in listeners:
            self._notify(listener, value)

    def listen(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Register a callback. It is called right away with the current value.

        Returns a function that removes the callback.
        """
        with self._lock:
            self._listeners.append(callback)
            current = self._value
        self._notify(callback, current)

        def remove() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return remove

    def _notify(self, listener: Callable[[T], None], value: T) -> None:
        try:
            listener(value)
        except Exception:
            logger.exception("Observable listener %r failed", listener)
