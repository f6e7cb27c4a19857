import pytest

from gputelemetry.coordinator import Coordinator


def test_single_streamer_owns_every_row():
    c = Coordinator(0, 1)
    assert all(c.should_publish(row) for row in range(100))


@pytest.mark.parametrize(
    "row,want0,want1",
    [(0, True, False), (1, False, True), (2, True, False), (99, False, True), (100, True, False)],
)
def test_two_streamers(row, want0, want1):
    assert Coordinator(0, 2).should_publish(row) is want0
    assert Coordinator(1, 2).should_publish(row) is want1


def test_each_row_owned_exactly_once():
    fleet = [Coordinator(i, 5) for i in range(5)]
    for row in range(1000):
        assert sum(c.should_publish(row) for c in fleet) == 1


def test_partition_matches_index():
    for i in range(10):
        assert Coordinator(i, 10).partition() == i