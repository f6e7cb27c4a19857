"""Row assignment across a fleet of streamer replicas."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Coordinator:
    """Streamer ``index`` of ``total`` owns rows where ``row % total == index``."""

    index: int
    total: int

    def should_publish(self, row_num: int) -> bool:
        """Whether this replica is responsible for data row ``row_num`` (0-based)."""
        return row_num % self.total == self.index

    def partition(self) -> int:
        """The queue partition this replica publishes to (its ordinal)."""
        return self.index