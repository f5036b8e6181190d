"""Fibonacci reconnection backoff."""

from __future__ import annotations


class FibonacciBackoff:
    """Resumable Fibonacci delay sequence: 1000, 1000, 2000, 3000, 5000, ... ms.

    Args:
        seed_ms: First (and second) delay.
        cap_ms: Upper bound applied to every returned delay.
    """

    def __init__(self, seed_ms: int = 1000, cap_ms: int = 30000) -> None:
        self.seed_ms = seed_ms
        self.cap_ms = cap_ms
        self._a = seed_ms
        self._b = seed_ms

    def peek(self) -> int:
        """Return the next delay without advancing."""
        return min(self._a, self.cap_ms)

    def next_delay_ms(self) -> int:
        """Return the next delay and advance the sequence."""
        delay = self.peek()
        self._a, self._b = self._b, self._a + self._b
        return delay

    def reset(self) -> None:
        """Restart the sequence from the seed."""
        self._a = self.seed_ms
        self._b = self.seed_ms
