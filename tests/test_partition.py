import pytest

from gputelemetry.partition import (
    OffsetFutureError,
    OffsetTooOldError,
    Partition,
    Slot,
    Subscriber,
)
from gputelemetry.wal import WalRecord, open_wal, replay_wal


@pytest.fixture
def wal(tmp_path):
    writer = open_wal(tmp_path, "t", 0, 0)
    yield writer
    writer.close()


def test_append_and_read(wal):
    p = Partition(0, 16, wal)
    for i in range(3):
        assert p.append(bytes([i]), None, 0) == i
    for i in range(3):
        slot = p.read(i)
        assert slot.offset == i
        assert slot.payload == bytes([i])


def test_append_records_timestamp_and_headers(wal):
    p = Partition(0, 4, wal)
    p.append(b"x", {"h": "1"}, 42)
    assert p.read(0) == Slot(0, b"x", {"h": "1"}, 42)


def test_append_writes_wal(tmp_path):
    writer = open_wal(tmp_path, "t", 0, 0)
    p = Partition(0, 4, writer)
    p.append(b"a", {"k": "v"}, 1)
    p.append(b"b", None, 2)
    p.close()
    records, next_offset = replay_wal(tmp_path, "t", 0)
    assert records == [WalRecord(0, b"a", {"k": "v"}), WalRecord(1, b"b")]
    assert next_offset == 2


def test_ring_buffer_wrap(wal):
    p = Partition(0, 4, wal)
    for i in range(6):
        p.append(bytes([i]), None, 0)
    assert p.high_water_mark() == 6
    assert p.tail() == 2
    for evicted in (0, 1):
        with pytest.raises(OffsetTooOldError):
            p.read(evicted)
    for i in range(2, 6):
        assert p.read(i).offset == i


def test_read_future(wal):
    p = Partition(0, 8, wal)
    p.append(b"x", None, 0)
    with pytest.raises(OffsetFutureError):
        p.read(99)


def test_read_empty_partition_is_future(wal):
    p = Partition(0, 8, wal)
    with pytest.raises(OffsetFutureError):
        p.read(0)


def test_subscriber_notification_coalesces(wal):
    p = Partition(0, 8, wal)
    sub = Subscriber()
    p.add_subscriber(sub)
    p.append(b"a", None, 0)
    p.append(b"b", None, 0)
    assert sub.wait(1.0) is True
    assert sub.wait(0) is False


def test_remove_subscriber_stops_notifications(wal):
    p = Partition(0, 8, wal)
    sub = Subscriber()
    p.add_subscriber(sub)
    p.remove_subscriber(sub)
    p.append(b"x", None, 0)
    assert sub.wait(0.05) is False


def test_wal_replay_seeds_ring(wal):
    replay = [
        WalRecord(5, b"five", {"h": "1"}),
        WalRecord(6, b"six"),
    ]
    p = Partition(0, 16, wal, replay)
    assert p.high_water_mark() == 7
    assert p.read(5).payload == b"five"
    assert p.read(5).headers == {"h": "1"}
    assert p.read(6).payload == b"six"
    assert p.append(b"seven", None, 0) == 7


def test_replay_beyond_capacity_sets_tail(wal):
    replay = [WalRecord(i, bytes([i])) for i in range(10)]
    p = Partition(0, 4, wal, replay)
    assert p.high_water_mark() == 10
    assert p.tail() == 6
    with pytest.raises(OffsetTooOldError):
        p.read(5)
    assert p.read(9).payload == bytes([9])


def test_close_closes_wal(wal):
    p = Partition(0, 4, wal)
    p.close()
    assert wal.closed


def test_invalid_capacity(wal):
    with pytest.raises(ValueError):
        Partition(0, 0, wal)