import threading
import time
from functools import total_ordering

import pytest

from mapreducer.framework import (
    JobState,
    MapReduceClient,
    Stage,
    emit2,
    emit3,
    start_map_reduce_job,
)


class WordCount(MapReduceClient):
    def __init__(self, delay=0.0):
        self.delay = delay
        self.groups = []
        self.lock = threading.Lock()

    def map(self, key, value, context):
        if self.delay:
            time.sleep(self.delay)
        for word in value.split():
            emit2(word, 1, context)

    def reduce(self, pairs, context):
        with self.lock:
            self.groups.append(list(pairs))
        emit3(pairs[0][0], sum(v for _, v in pairs), context)


class FailingMap(MapReduceClient):
    def map(self, key, value, context):
        raise RuntimeError("boom")

    def reduce(self, pairs, context):
        emit3(pairs[0][0], len(pairs), context)


class FailingReduce(MapReduceClient):
    def map(self, key, value, context):
        emit2(value, 1, context)

    def reduce(self, pairs, context):
        raise KeyError("reduce failed")


class NoneEmitter(MapReduceClient):
    def map(self, key, value, context):
        emit2(None, 1, context)
        emit2(value, None, context)
        emit2(value, 1, context)

    def reduce(self, pairs, context):
        emit3(pairs[0][0], len(pairs), context)
        emit3(None, 1, context)


@total_ordering
class Folded:
    """Key ordered case-insensitively, defining only ordering, not equality."""

    def __init__(self, text):
        self.text = text

    def __lt__(self, other):
        return self.text.lower() < other.text.lower()

    __eq__ = object.__eq__
    __hash__ = object.__hash__


class FoldedClient(MapReduceClient):
    def map(self, key, value, context):
        emit2(Folded(value), value, context)

    def reduce(self, pairs, context):
        emit3(pairs[0][1].lower(), sorted(v for _, v in pairs), context)


LINES = [
    (None, "the quick brown fox"),
    (None, "the lazy dog"),
    (None, "the fox and the dog"),
    (None, "quick quick"),
]


def _run(client, items, threads):
    output = []
    with start_map_reduce_job(client, items, output, threads) as job:
        pass
    return job, output


def test_stage_values_are_fixed():
    stages = [Stage(value) for value in range(4)]
    assert [s.name for s in stages] == ["UNDEFINED", "MAP", "SHUFFLE", "REDUCE"]
    assert Stage(0) < Stage(1) < Stage(2) < Stage(3)


@pytest.mark.parametrize("threads", [1, 2, 3, 8])
def test_word_count(threads):
    client = WordCount()
    job, output = _run(client, LINES, threads)
    counts = dict(output)
    assert len(counts) == len(output)
    assert counts == {
        "the": 4,
        "quick": 3,
        "brown": 1,
        "fox": 2,
        "lazy": 1,
        "dog": 2,
        "and": 1,
    }
    assert job.state() == JobState(Stage.REDUCE, 100.0)


def test_each_reduce_receives_one_key():
    client = WordCount()
    _, output = _run(client, LINES, 3)
    assert len(client.groups) == len(output)
    for group in client.groups:
        assert len({key for key, _ in group}) == 1
    total_words = sum(len(line.split()) for _, line in LINES)
    assert sum(len(group) for group in client.groups) == total_words


def test_grouping_uses_ordering_equivalence():
    items = [(None, word) for word in ["Apple", "apple", "APPLE", "pear", "Pear"]]
    _, output = _run(FoldedClient(), items, 2)
    result = dict(output)
    assert set(result) == {"apple", "pear"}
    assert result["apple"] == sorted(["Apple", "apple", "APPLE"])
    assert result["pear"] == sorted(["pear", "Pear"])


def test_empty_input_completes_immediately():
    output = []
    job = start_map_reduce_job(WordCount(), [], output, 4)
    job.wait()
    assert output == []
    assert job.state() == JobState(Stage.REDUCE, 0.0)


def test_none_keys_and_values_are_ignored():
    items = [(None, "x"), (None, "y"), (None, "x")]
    _, output = _run(NoneEmitter(), items, 2)
    assert sorted(output) == [("x", 2), ("y", 1)]


def test_map_error_is_raised_by_wait():
    output = []
    job = start_map_reduce_job(FailingMap(), LINES, output, 2)
    with pytest.raises(RuntimeError, match="boom"):
        job.wait()
    assert output == []
    with pytest.raises(RuntimeError, match="boom"):
        job.close()


def test_reduce_error_is_raised_on_exit():
    output = []
    with pytest.raises(KeyError):
        with start_map_reduce_job(FailingReduce(), LINES, output, 3):
            pass
    assert output == []


def test_invalid_thread_level_rejected():
    with pytest.raises(ValueError):
        start_map_reduce_job(WordCount(), LINES, [], 0)


def test_progress_never_goes_backwards():
    items = [(None, f"w{i % 5} common") for i in range(20)]
    output = []
    job = start_map_reduce_job(WordCount(delay=0.005), items, output, 3)
    states = []
    deadline = time.monotonic() + 10
    while time.monotonic() < deadline:
        state = job.state()
        states.append(state)
        if state == JobState(Stage.REDUCE, 100.0):
            break
        time.sleep(0.001)
    job.close()
    for earlier, later in zip(states, states[1:]):
        assert later.stage >= earlier.stage
        if later.stage == earlier.stage:
            assert later.percentage >= earlier.percentage
    assert all(0.0 <= s.percentage <= 100.0 for s in states)
    assert states[-1] == JobState(Stage.REDUCE, 100.0)
    assert dict(output)["common"] == len(items)


def test_wait_is_idempotent():
    output = []
    job = start_map_reduce_job(WordCount(), LINES, output, 2)
    job.wait()
    first = sorted(output)
    job.wait()
    job.close()
    assert sorted(output) == first
    assert job.state().stage is Stage.REDUCE


def test_generator_input_accepted():
    items = ((None, line) for _, line in LINES)
    _, output = _run(WordCount(), items, 2)
    assert sum(count for _, count in output) == sum(
        len(line.split()) for _, line in LINES
    )