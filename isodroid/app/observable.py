"""Thread-safe observable value with change listeners."""

from __future__ import annotations

import threading
from typing import Callable, Generic, TypeVar

from isodroid.logging import LoggerFactory


log = LoggerFactory.for_system()

T = TypeVar("T")


class ObservableValue(Generic[T]):
    """Holds a value and notifies listeners when it changes.

    Setting the current value again does not notify.
    """

    def __init__(self, initial: T) -> None:
        self._value = initial
        self._lock = threading.Lock()
        self._listeners: list[Callable[[T], None]] = []

    @property
    def value(self) -> T:
        with self._lock:
            return self._value

    def set(self, value: T) -> None:
        with self._lock:
            if value == self._value:
                return
            self._value = value
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(value)
            except Exception as e:
                log.warning(f"Error in value listener: {e}")

    def add_listener(self, callback: Callable[[T], None]) -> None:
        """Add a callback to be called when the value changes."""
        with self._lock:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[T], None]) -> None:
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)
