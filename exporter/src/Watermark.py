"""Watermark: Monotonically non-decreasing block height."""

from __future__ import annotations

import threading


class Watermark:
    """A height that only moves forward.

    Concurrent writers from independent feeds use compare-and-set, so an
    older observation arriving late never regresses the stored value.

    .. code-block:: python

        >>> mark = Watermark()
        >>> for height in (50, 48, 52, 49):
        ...     _ = mark.advance(height)
        >>> mark.value
        52
    """

    def __init__(self, initial: int = 0) -> None:
        self._value = initial
        self._lock = threading.Lock()

    @property
    def value(self) -> int:
        return self._value

    def compare_and_set(self, expected: int, new: int) -> bool:
        """Store ``new`` only if the current value still equals ``expected``.

        :returns: True if the value was replaced.
        """
        with self._lock:
            if self._value != expected:
                return False
            self._value = new
            return True

    def advance(self, observed: int) -> bool:
        """Raise the watermark to ``observed`` if it is higher.

        :param observed: Newly observed height.
        :returns: True if the watermark moved.
        """
        while True:
            current = self._value
            if observed <= current:
                return False
            if self.compare_and_set(current, observed):
                return True
