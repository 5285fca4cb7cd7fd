# mapreducer

A small in-process MapReduce framework that runs a job on a pool of worker
threads. Each job goes through these phases:

1. **Map**: workers take input pairs one at a time and call your `map`. Inside
   `map`, `emit2` adds intermediate pairs to that worker's own list.
2. **Sort**: each worker sorts its intermediate pairs by key.
3. **Shuffle**: one worker merges the sorted lists. Pairs whose keys compare
   equal go into the same group, and the groups come out in ascending key order.
4. **Reduce**: workers take groups one at a time and call your `reduce`. Inside
   `reduce`, `emit3` adds output pairs to the shared output list. A lock
   guards that list.

The workers wait for each other at a reusable `Barrier` between phases.

## Installation

```
pip install .
```

The package has no dependencies outside the standard library. To run the
tests, install the `test` extra (`pip install .[test]`) and run `pytest`.

## Usage

Subclass `MapReduceClient` and write its `map` and `reduce` methods. Then start a
job with `start_map_reduce_job`.

```python
from mapreducer.framework import (
    MapReduceClient,
    Stage,
    emit2,
    emit3,
    start_map_reduce_job,
)


class CharCount(MapReduceClient):
    def map(self, key, value, context):
        for ch in value:
            emit2(ch, 1, context)

    def reduce(self, pairs, context):
        key = pairs[0][0]
        emit3(key, sum(count for _, count in pairs), context)


inputs = [(None, "hello"), (None, "world")]
output = []

with start_map_reduce_job(CharCount(), inputs, output, 4) as job:
    job.wait()
    state = job.state()
    assert state.stage is Stage.REDUCE
    print(state.percentage)   # 100.0

print(sorted(output))
```

## Behaviour

- `start_map_reduce_job(client, input_items, output, multi_thread_level)`
  accepts any iterable of `(key, value)` pairs. It appends results to `output`.
  It raises `ValueError` if `multi_thread_level` is less than 1.
- A job never starts more worker threads than there are input items.
- A job with empty input starts no threads. It is already in the `REDUCE` stage
  at 0%.
- `Job.state()` returns a frozen `JobState` with the current `stage` (a
  `Stage`: `UNDEFINED`, `MAP`, `SHUFFLE` or `REDUCE`) and the `percentage` of
  that stage that is done. Progress never goes backwards.
- `Job.wait()` blocks until all workers have finished. You can call it more
  than once, and the threads are joined only the first time. If `map` or
  `reduce` raised an exception in any worker, the remaining work stops, and
  `wait()` re-raises the first exception raised.
- `Job.close()` calls `wait()`. Leaving a `with` block calls `close()` for you.
- `emit2` and `emit3` do nothing if the key, the value or the context is
  `None`.
- Intermediate keys must support `<`. Output pairs are appended in whatever
  order the reduce workers finish them.

## Barrier

`mapreducer.barrier.Barrier` can also be used on its own. Create it with the
number of threads; it raises `ValueError` if that number is less than 1, and
the `num_threads` property returns it. Each thread calls `wait()`, which blocks
until all of them have arrived. The barrier then resets, so the same instance
can be used for the next round.

## What it does not do

All work runs in threads inside a single Python process. Nothing is spread
across processes or machines. There is no command-line tool. Jobs, input and
output live only in memory and are never saved.