"""A reusable thread barrier that releases waiters once every party arrives."""

from __future__ import annotations

import threading


class Barrier:
    """Block threads until ``num_threads`` of them have called :meth:`wait`.

    The barrier resets itself after each release, so the same instance can
    be used for any number of rounds.
    """

    def __init__(self, num_threads: int) -> None:
        if num_threads < 1:
            raise ValueError("a barrier needs at least one thread")
        self._num_threads = num_threads
        self._condition = threading.Condition()
        self._count = 0
        self._generation = 0

    @property
    def num_threads(self) -> int:
        """Number of threads that must arrive before the barrier opens."""
        return self._num_threads

    def wait(self) -> None:
        """Wait until all threads of the current round have arrived."""
        with self._condition:
            generation = self._generation
            self._count += 1
            if self._count < self._num_threads:
                self._condition.wait_for(lambda: generation != self._generation)
            else:
                self._count = 0
                self._generation += 1
                self._condition.notify_all()