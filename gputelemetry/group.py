"""Consumer-group membership, partition assignment and committed offsets.

Every join or leave recomputes a deterministic round-robin assignment of
partitions to members. Only members whose assigned set actually changed are
evicted, so a single new member does not force the whole group to reconnect.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field


@dataclass(eq=False)
class GroupMember:
    """One live subscription; ``done`` is set when it must reconnect."""

    id: str
    done: threading.Event = field(default_factory=threading.Event)

    def evict(self) -> None:
        """Signal the member to reconnect. Idempotent."""
        self.done.set()

    @property
    def evicted(self) -> bool:
        return self.done.is_set()


def compute_assignments(
    members: Iterable[str] | Mapping[str, object], num_partitions: int
) -> dict[int, str]:
    """Return a deterministic round-robin ``partition -> member id`` map.

    Member ids are sorted, so the same fleet always yields the same map.
    """
    ids = sorted(members)
    if not ids or num_partitions <= 0:
        return {}
    return {p: ids[p % len(ids)] for p in range(num_partitions)}


def _by_member(assignments: Mapping[int, str]) -> dict[str, frozenset[int]]:
    owned: dict[str, set[int]] = {}
    for partition, owner in assignments.items():
        owned.setdefault(owner, set()).add(partition)
    return {owner: frozenset(parts) for owner, parts in owned.items()}


class ConsumerGroup:
    """Broker-side state for one (topic, consumer group) pair."""

    def __init__(self, topic: str, name: str, num_partitions: int) -> None:
        self.topic = topic
        self.name = name
        self.num_partitions = num_partitions
        self._lock = threading.Lock()
        self._members: dict[str, GroupMember] = {}
        self._assignments: dict[int, str] = {}
        self._committed: dict[int, int] = {}

    @property
    def members(self) -> dict[str, GroupMember]:
        """A snapshot of the current members keyed by id."""
        with self._lock:
            return dict(self._members)

    @property
    def assignments(self) -> dict[int, str]:
        """A snapshot of the current partition -> owner map."""
        with self._lock:
            return dict(self._assignments)

    def join(self, member_id: str) -> tuple[GroupMember, list[int], list[GroupMember]]:
        """Register ``member_id`` and rebalance.

        Returns the new member handle, its sorted partitions, and the members
        that must reconnect: a previous session with the same id, plus any
        other member whose assignment changed.
        """
        with self._lock:
            evicted: list[GroupMember] = []
            old = self._members.get(member_id)
            if old is not None:
                old.evict()
                evicted.append(old)

            member = GroupMember(member_id)
            self._members[member_id] = member
            evicted.extend(self._rebalance(skip=member_id))
            assigned = sorted(
                p for p, owner in self._assignments.items() if owner == member_id
            )
            return member, assigned, evicted

    def leave(self, member_id: str) -> list[GroupMember]:
        """Remove ``member_id`` and return the members whose assignment changed."""
        with self._lock:
            return self._leave_locked(member_id)

    def leave_if_same_member(
        self, member_id: str, expected: GroupMember
    ) -> tuple[bool, list[GroupMember]]:
        """Remove ``member_id`` only if its current handle is ``expected``.

        Returns whether it was removed and the other members evicted by the
        resulting rebalance.
        """
        with self._lock:
            if self._members.get(member_id) is not expected:
                return False, []
            return True, self._leave_locked(member_id)

    def _leave_locked(self, member_id: str) -> list[GroupMember]:
        if self._members.pop(member_id, None) is None:
            return []
        return self._rebalance(skip=None)

    def _rebalance(self, skip: str | None) -> list[GroupMember]:
        before = _by_member(self._assignments)
        self._assignments = compute_assignments(self._members, self.num_partitions)
        after = _by_member(self._assignments)
        evicted = []
        for member_id, member in self._members.items():
            if member_id == skip:
                continue
            if before.get(member_id, frozenset()) != after.get(member_id, frozenset()):
                member.evict()
                evicted.append(member)
        return evicted

    def acknowledge(self, partition: int, offset: int) -> None:
        """Commit ``offset`` for ``partition``; commits never move backwards."""
        with self._lock:
            current = self._committed.get(partition)
            if current is None or offset > current:
                self._committed[partition] = offset

    def starting_offset(self, partition: int) -> int:
        """Offset to resume from: committed + 1, or 0 without a commit."""
        with self._lock:
            current = self._committed.get(partition)
            return 0 if current is None else current + 1

    def snapshot_committed(self) -> dict[int, int]:
        """Return a copy of the committed offsets."""
        with self._lock:
            return dict(self._committed)