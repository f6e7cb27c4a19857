"""A topic: a fixed set of partitions with round-robin selection."""

from __future__ import annotations

import itertools
import threading
from collections.abc import Sequence

from gputelemetry.partition import Partition


class TopicExistsError(ValueError):
    """The topic already exists with a different partition count."""


class TopicNotFoundError(LookupError):
    """No topic with the requested name exists."""


class PartitionNotFoundError(LookupError):
    """The requested partition does not exist in the topic."""


class Topic:
    """A named, fixed-size collection of partitions."""

    def __init__(self, name: str, partitions: Sequence[Partition]) -> None:
        self.name = name
        self.partitions: tuple[Partition, ...] = tuple(partitions)
        self._round_robin = itertools.count()
        self._lock = threading.Lock()

    def num_partitions(self) -> int:
        return len(self.partitions)

    def select_partition(self, partition: int) -> int:
        """Return ``partition`` if valid; a negative value picks round-robin."""
        count = len(self.partitions)
        if partition >= 0:
            if partition >= count:
                raise PartitionNotFoundError(partition)
            return partition
        if count == 0:
            raise PartitionNotFoundError(partition)
        with self._lock:
            return next(self._round_robin) % count

    def close(self) -> None:
        """Close every partition, raising the first failure afterwards."""
        first_error: BaseException | None = None
        for partition in self.partitions:
            try:
                partition.close()
            except Exception as exc:  # keep closing the rest
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error