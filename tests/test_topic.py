from collections import Counter

import pytest

from gputelemetry.partition import Partition
from gputelemetry.topic import PartitionNotFoundError, Topic
from gputelemetry.wal import open_wal


@pytest.fixture
def make_topic(tmp_path):
    topics = []

    def build(count):
        parts = [Partition(i, 16, open_wal(tmp_path, "test", i, 0)) for i in range(count)]
        topic = Topic("test", parts)
        topics.append(topic)
        return topic

    yield build
    for topic in topics:
        topic.close()


def test_select_partition_explicit(make_topic):
    tp = make_topic(4)
    assert [tp.select_partition(p) for p in range(4)] == [0, 1, 2, 3]


def test_select_partition_out_of_range(make_topic):
    tp = make_topic(4)
    with pytest.raises(PartitionNotFoundError):
        tp.select_partition(99)


def test_select_partition_round_robin(make_topic):
    tp = make_topic(3)
    seen = [tp.select_partition(-1) for _ in range(9)]
    assert Counter(seen) == {0: 3, 1: 3, 2: 3}
    assert seen[:3] == [0, 1, 2]


def test_round_robin_on_empty_topic():
    tp = Topic("empty", [])
    with pytest.raises(PartitionNotFoundError):
        tp.select_partition(-1)


def test_num_partitions(make_topic):
    assert make_topic(7).num_partitions() == 7


def test_close_closes_every_wal(tmp_path):
    wals = [open_wal(tmp_path, "test", i, 0) for i in range(3)]
    tp = Topic("test", [Partition(i, 16, w) for i, w in enumerate(wals)])
    tp.close()
    assert all(w.closed for w in wals)
    tp.close()
    assert all(w.closed for w in wals)