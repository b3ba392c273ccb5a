"""Observer registration helpers.

``Observable`` holds a current value and notifies subscribers synchronously
on every change, in the order the changes happen. ``Signal`` is the
value-less variant used for discrete events such as incoming messages.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Generic, TypeVar

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

Unsubscribe = Callable[[], None]


class Signal(Generic[T]):
    """Synchronous event emitter."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._callbacks: list[Callable[[T], None]] = []

    def subscribe(self, callback: Callable[[T], None]) -> Unsubscribe:
        """Register a callback; returns a function that removes it."""
        self._callbacks.append(callback)

        def _unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _unsubscribe

    def emit(self, value: T) -> None:
        # Copy so callbacks may unsubscribe while being notified
        for callback in list(self._callbacks):
            try:
                callback(value)
            except Exception as err:
                _LOGGER.exception("[%s] Observer callback error: %s", self.name, err)

    def __len__(self) -> int:
        return len(self._callbacks)


class Observable(Signal[T]):
    """Signal that remembers the last emitted value."""

    def __init__(self, name: str, initial: T) -> None:
        super().__init__(name)
        self._value = initial

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T) -> bool:
        """Update the value; notifies observers only when it changed."""
        if value == self._value:
            return False
        self._value = value
        self.emit(value)
        return True

    def subscribe(
        self, callback: Callable[[T], None], *, emit_current: bool = False
    ) -> Unsubscribe:
        unsubscribe = super().subscribe(callback)
        if emit_current:
            try:
                callback(self._value)
            except Exception as err:
                _LOGGER.exception("[%s] Observer callback error: %s", self.name, err)
        return unsubscribe
