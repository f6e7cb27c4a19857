"""A partition: fixed-size in-memory ring buffer backed by a write-ahead log."""

from __future__ import annotations

import threading
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from gputelemetry.wal import WalError, WalRecord, WalWriter


class OffsetTooOldError(LookupError):
    """The offset is older than the partition's tail; data is in the WAL only."""


class OffsetFutureError(LookupError):
    """The offset has not been published yet."""


@dataclass(frozen=True)
class Slot:
    """One in-memory message stored in the ring buffer."""

    offset: int
    payload: bytes
    headers: dict[str, str] = field(default_factory=dict)
    timestamp: int = 0


class Subscriber:
    """Coalescing wake-up handle held by an active consumer.

    Any number of notifications before the next :meth:`wait` collapse into one.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def notify(self) -> None:
        """Signal that new data is available; never blocks."""
        self._event.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Wait for and consume a pending wake-up; False on timeout."""
        if self._event.wait(timeout):
            self._event.clear()
            return True
        return False


class Partition:
    """An append-only log with O(1) reads by offset while resident in memory."""

    def __init__(
        self,
        partition_id: int,
        capacity: int,
        wal: WalWriter | None,
        replay: Iterable[WalRecord] = (),
    ) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.partition_id = partition_id
        self.capacity = capacity
        self._lock = threading.Lock()
        self._slots: list[Slot | None] = [None] * capacity
        self._head = 0
        self._tail = 0
        self._subscribers: set[Subscriber] = set()
        self._wal = wal
        for record in replay:
            self._slots[record.offset % capacity] = Slot(
                record.offset, record.payload, dict(record.headers or {})
            )
            self._head = record.offset + 1
        if self._head > capacity:
            self._tail = self._head - capacity

    def append(
        self,
        payload: bytes,
        headers: Mapping[str, str] | None = None,
        timestamp: int | None = None,
    ) -> int:
        """Persist one message, store it in the ring and wake subscribers.

        Returns the assigned offset.
        """
        headers = dict(headers or {})
        if timestamp is None:
            timestamp = time.time_ns()
        with self._lock:
            offset = self._head
            if self._wal is not None:
                try:
                    self._wal.append(WalRecord(offset, payload, headers))
                except (OSError, WalError) as exc:
                    raise WalError(
                        f"partition {self.partition_id} wal append: {exc}"
                    ) from exc
            self._slots[offset % self.capacity] = Slot(offset, payload, headers, timestamp)
            self._head += 1
            if self._head - self._tail > self.capacity:
                self._tail = self._head - self.capacity
            for subscriber in self._subscribers:
                subscriber.notify()
            return offset

    def read(self, offset: int) -> Slot:
        """Return the slot at ``offset`` if it is still resident."""
        with self._lock:
            if offset < self._tail:
                raise OffsetTooOldError(offset)
            if offset >= self._head:
                raise OffsetFutureError(offset)
            slot = self._slots[offset % self.capacity]
            if slot is None or slot.offset != offset:
                raise OffsetTooOldError(offset)
            return slot

    def high_water_mark(self) -> int:
        """Return the next offset that will be assigned."""
        with self._lock:
            return self._head

    def tail(self) -> int:
        """Return the lowest offset still resident in the ring buffer."""
        with self._lock:
            return self._tail

    def add_subscriber(self, subscriber: Subscriber) -> None:
        with self._lock:
            self._subscribers.add(subscriber)

    def remove_subscriber(self, subscriber: Subscriber) -> None:
        with self._lock:
            self._subscribers.discard(subscriber)

    def close(self) -> None:
        """Flush the WAL and release its file handle."""
        if self._wal is not None:
            self._wal.close()