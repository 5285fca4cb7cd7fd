"""A multithreaded map/shuffle/reduce job runner.

A job is started with :func:`start_map_reduce_job`. Worker threads pull input
pairs, call the client's ``map`` (which emits intermediate pairs through
:func:`emit2`), sort their own intermediate pairs, and wait for each other.
One thread then merges every worker's pairs into groups of equivalent keys,
and all workers reduce those groups, emitting output through :func:`emit3`.
"""

from __future__ import annotations

import heapq
import itertools
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum
from operator import itemgetter
from typing import Any, Iterable, MutableSequence, Sequence

from mapreducer.barrier import Barrier

Pair = tuple[Any, Any]

_first = itemgetter(0)


class Stage(IntEnum):
    """Phases a job passes through, in order."""

    UNDEFINED = 0
    MAP = 1
    SHUFFLE = 2
    REDUCE = 3


@dataclass(frozen=True)
class JobState:
    """Snapshot of a job's current stage and its progress in percent."""

    stage: Stage
    percentage: float


class MapReduceClient(ABC):
    """The user-supplied map and reduce steps of a job."""

    @abstractmethod
    def map(self, key: Any, value: Any, context: Any) -> None:
        """Process one input pair, emitting intermediate pairs with :func:`emit2`."""

    @abstractmethod
    def reduce(self, pairs: Sequence[Pair], context: Any) -> None:
        """Process all pairs sharing one key, emitting output with :func:`emit3`."""


@dataclass(eq=False)
class _ThreadContext:
    thread_id: int
    job: "Job"


class _Progress:
    """Stage and counters of a job; updates never move progress backwards."""

    def __init__(self, total: int) -> None:
        self._lock = threading.Lock()
        self._stage = Stage.UNDEFINED
        self._processed = 0
        self._total = total

    def update(self, stage: Stage, processed: int, total: int) -> None:
        with self._lock:
            if stage > self._stage or (
                stage == self._stage and processed >= self._processed
            ):
                self._stage = stage
                self._processed = processed
                self._total = total

    def snapshot(self) -> JobState:
        with self._lock:
            stage, processed, total = self._stage, self._processed, self._total
        percentage = 0.0 if total == 0 else 100.0 * processed / total
        return JobState(stage, percentage)


class _Counter:
    """A thread-safe counter handing out successive integers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._values = itertools.count()

    def next(self) -> int:
        with self._lock:
            return next(self._values)


class Job:
    """A running map/reduce job. Use :func:`start_map_reduce_job` to create one."""

    def __init__(
        self,
        client: MapReduceClient,
        input_items: Sequence[Pair],
        output: MutableSequence[Pair],
        thread_count: int,
    ) -> None:
        self._client = client
        self._input = input_items
        self._output = output
        self._output_lock = threading.Lock()
        self._progress = _Progress(len(input_items))
        self._intermediate: list[list[Pair]] = [[] for _ in range(thread_count)]
        self._groups: list[list[Pair]] = []
        self._next_input = _Counter()
        self._next_group = _Counter()
        self._maps_done = _Counter()
        self._reduces_done = _Counter()
        self._barrier = Barrier(max(thread_count, 1))
        self._error: BaseException | None = None
        self._error_lock = threading.Lock()
        self._join_lock = threading.Lock()
        self._joined = False
        self._threads = [
            threading.Thread(
                target=self._work,
                args=(_ThreadContext(thread_id, self),),
                name=f"mapreduce-worker-{thread_id}",
                daemon=True,
            )
            for thread_id in range(thread_count)
        ]

    def _start(self) -> None:
        for thread in self._threads:
            thread.start()

    def _fail(self, error: BaseException) -> None:
        with self._error_lock:
            if self._error is None:
                self._error = error

    @property
    def _failed(self) -> bool:
        return self._error is not None

    def _work(self, context: _ThreadContext) -> None:
        # A failing thread keeps meeting the barriers so the others never hang.
        if not self._failed:
            try:
                self._map_and_sort(context)
            except BaseException as error:  # noqa: BLE001 - reported by wait()
                self._fail(error)
        self._barrier.wait()
        if context.thread_id == 0 and not self._failed:
            try:
                self._shuffle()
            except BaseException as error:  # noqa: BLE001 - reported by wait()
                self._fail(error)
        self._barrier.wait()
        if not self._failed:
            try:
                self._reduce(context)
            except BaseException as error:  # noqa: BLE001 - reported by wait()
                self._fail(error)

    def _map_and_sort(self, context: _ThreadContext) -> None:
        total = len(self._input)
        if context.thread_id == 0:
            self._progress.update(Stage.MAP, 0, total)
        while not self._failed:
            index = self._next_input.next()
            if index >= total:
                break
            key, value = self._input[index]
            self._client.map(key, value, context)
            done = self._maps_done.next() + 1
            self._progress.update(Stage.MAP, done, total)
        self._intermediate[context.thread_id].sort(key=_first)

    def _shuffle(self) -> None:
        total = sum(map(len, self._intermediate))
        self._progress.update(Stage.SHUFFLE, 0, total)
        shuffled = 0
        current: list[Pair] = []

        def flush() -> None:
            nonlocal shuffled
            self._groups.append(current)
            shuffled += len(current)
            self._progress.update(Stage.SHUFFLE, shuffled, total)

        for pair in heapq.merge(*self._intermediate, key=_first):
            # Input to the merge is sorted, so a key either matches the
            # group's key or is strictly greater than it.
            if current and not current[0][0] < pair[0]:
                current.append(pair)
                continue
            if current:
                flush()
            current = [pair]
        if current:
            flush()
        self._progress.update(Stage.REDUCE, 0, len(self._groups))

    def _reduce(self, context: _ThreadContext) -> None:
        total = len(self._groups)
        while not self._failed:
            index = self._next_group.next()
            if index >= total:
                break
            self._client.reduce(self._groups[index], context)
            done = self._reduces_done.next() + 1
            self._progress.update(Stage.REDUCE, done, total)

    def wait(self) -> None:
        """Block until every worker has finished.

        Re-raises the first exception raised by the client in any worker.
        """
        with self._join_lock:
            if not self._joined:
                for thread in self._threads:
                    thread.join()
                self._joined = True
        if self._error is not None:
            raise self._error

    def state(self) -> JobState:
        """Return the job's current stage and progress."""
        return self._progress.snapshot()

    def close(self) -> None:
        """Wait for the job to finish and release it."""
        self.wait()

    def __enter__(self) -> "Job":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def start_map_reduce_job(
    client: MapReduceClient,
    input_items: Iterable[Pair],
    output: MutableSequence[Pair],
    multi_thread_level: int,
) -> Job:
    """Start a job over ``input_items``, appending results to ``output``.

    At most ``multi_thread_level`` worker threads are used, and never more
    than there are input pairs.
    """
    if multi_thread_level < 1:
        raise ValueError("multi_thread_level must be at least 1")
    items = input_items if isinstance(input_items, Sequence) else list(input_items)
    if not items:
        job = Job(client, items, output, 0)
        job._progress.update(Stage.REDUCE, 0, 0)
        return job
    job = Job(client, items, output, min(multi_thread_level, len(items)))
    job._start()
    return job


def emit2(key: Any, value: Any, context: Any) -> None:
    """Emit an intermediate pair from within :meth:`MapReduceClient.map`."""
    if key is None or value is None or context is None:
        return
    context.job._intermediate[context.thread_id].append((key, value))


def emit3(key: Any, value: Any, context: Any) -> None:
    """Emit an output pair from within :meth:`MapReduceClient.reduce`."""
    if key is None or value is None or context is None:
        return
    job = context.job
    with job._output_lock:
        job._output.append((key, value))