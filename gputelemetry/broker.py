"""In-process message queue broker: topics, partitions and consumer groups.

The broker is transport-agnostic; a network service layer calls into it.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass

from gputelemetry.broker_config import BrokerConfig
from gputelemetry.group import ConsumerGroup, GroupMember
from gputelemetry.partition import (
    OffsetFutureError,
    OffsetTooOldError,
    Partition,
    Slot,
    Subscriber,
)
from gputelemetry.topic import Topic, TopicExistsError, TopicNotFoundError
from gputelemetry.wal import open_wal, replay_wal

STALE_MEMBER_GRACE = 30.0
"""Seconds a rebalanced-out member lingers before it is garbage-collected."""


class GroupNotFoundError(LookupError):
    """No consumer group with the requested name exists for the topic."""


@dataclass(frozen=True)
class DeliveredSlot:
    """A message read from one partition."""

    partition: int
    slot: Slot

    @property
    def payload(self) -> bytes:
        return self.slot.payload

    @property
    def headers(self) -> dict[str, str]:
        return self.slot.headers

    @property
    def offset(self) -> int:
        return self.slot.offset

    @property
    def timestamp(self) -> int:
        """Publish time in Unix nanoseconds (0 for messages replayed from the WAL)."""
        return self.slot.timestamp


class Broker:
    """Registry of topics and consumer groups."""

    def __init__(
        self,
        config: BrokerConfig,
        logger: logging.Logger | None = None,
        stale_member_grace: float = STALE_MEMBER_GRACE,
    ) -> None:
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.stale_member_grace = stale_member_grace
        self._lock = threading.Lock()
        self._topics: dict[str, Topic] = {}
        self._groups: dict[tuple[str, str], ConsumerGroup] = {}

    def create_topic(self, name: str, partitions: int = 0) -> None:
        """Provision a topic, replaying any WAL found on disk.

        Re-creating a topic with the same partition count is a no-op; a
        different count raises :class:`TopicExistsError`. A non-positive count
        uses the configured default.
        """
        if not name:
            raise ValueError("topic name is required")
        if partitions <= 0:
            partitions = self.config.partitions

        with self._lock:
            existing = self._topics.get(name)
            if existing is not None:
                if existing.num_partitions() == partitions:
                    return
                raise TopicExistsError(
                    f"topic already exists: {name!r} "
                    f"(existing={existing.num_partitions()}, requested={partitions})"
                )

            parts: list[Partition] = []
            try:
                for index in range(partitions):
                    records, _ = replay_wal(self.config.wal_dir, name, index)
                    wal = open_wal(
                        self.config.wal_dir, name, index, self.config.wal_sync_bytes
                    )
                    parts.append(
                        Partition(index, self.config.ring_buffer_size, wal, records)
                    )
            except Exception:
                for part in parts:
                    part.close()
                raise

            self._topics[name] = Topic(name, parts)
        self.logger.info(
            "topic created topic=%s partitions=%d ring_buffer_size=%d",
            name,
            partitions,
            self.config.ring_buffer_size,
        )

    def _topic(self, name: str) -> Topic:
        with self._lock:
            topic = self._topics.get(name)
        if topic is None:
            raise TopicNotFoundError(name)
        return topic

    def publish(
        self,
        topic_name: str,
        partition: int,
        payload: bytes,
        headers: Mapping[str, str] | None = None,
    ) -> tuple[int, int]:
        """Persist ``payload``; return ``(partition, offset)``.

        A negative ``partition`` selects one round-robin.
        """
        topic = self._topic(topic_name)
        chosen = topic.select_partition(partition)
        offset = topic.partitions[chosen].append(payload, headers, time.time_ns())
        return chosen, offset

    def subscribe(self, topic_name: str, group_name: str, member_id: str) -> Subscription:
        """Join ``member_id`` to a consumer group and return its subscription."""
        if not member_id:
            raise ValueError("consumer_id is required")
        topic = self._topic(topic_name)

        key = (topic_name, group_name)
        with self._lock:
            group = self._groups.get(key)
            if group is None:
                group = ConsumerGroup(topic_name, group_name, topic.num_partitions())
                self._groups[key] = group

        member, assigned, evicted = group.join(member_id)
        for other in evicted:
            self.logger.info(
                "group member evicted by rebalance topic=%s group=%s evicted_id=%s",
                topic_name,
                group_name,
                other.id,
            )

        subscriber = Subscriber()
        cursors: dict[int, int] = {}
        for index in assigned:
            topic.partitions[index].add_subscriber(subscriber)
            cursors[index] = group.starting_offset(index)

        self.logger.info(
            "group member subscribed topic=%s group=%s member_id=%s assigned=%s",
            topic_name,
            group_name,
            member_id,
            assigned,
        )
        return Subscription(self, topic, group, member, assigned, cursors, subscriber)

    def acknowledge(
        self, topic_name: str, group_name: str, partition: int, offset: int
    ) -> None:
        """Commit ``offset`` for a (topic, group, partition)."""
        with self._lock:
            group = self._groups.get((topic_name, group_name))
        if group is None:
            raise GroupNotFoundError(
                f"consumer group {group_name!r} not found for topic {topic_name!r}"
            )
        group.acknowledge(partition, offset)

    def get_offsets(self, topic_name: str, group_name: str) -> dict[int, int]:
        """Committed offsets of a group; empty when the group has none yet."""
        with self._lock:
            group = self._groups.get((topic_name, group_name))
        if group is None:
            return {}
        return group.snapshot_committed()

    def close(self) -> None:
        """Flush and close every WAL, raising the first failure afterwards."""
        first_error: BaseException | None = None
        with self._lock:
            topics = list(self._topics.values())
        for topic in topics:
            try:
                topic.close()
            except Exception as exc:
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error

    def __enter__(self) -> Broker:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class Subscription:
    """One consumer's read cursors across its assigned partitions."""

    def __init__(
        self,
        broker: Broker,
        topic: Topic,
        group: ConsumerGroup,
        member: GroupMember,
        assigned: list[int],
        cursors: dict[int, int],
        subscriber: Subscriber,
    ) -> None:
        self._broker = broker
        self._topic = topic
        self._group = group
        self._member = member
        self._assigned = list(assigned)
        self._cursors = cursors
        self._subscriber = subscriber
        self._skip_leave = False

    @property
    def member_id(self) -> str:
        return self._member.id

    def assigned_partitions(self) -> list[int]:
        """Partitions owned when the subscription was created."""
        return list(self._assigned)

    def done(self) -> threading.Event:
        """Event set when this member must reconnect."""
        return self._member.done

    def notify(self) -> Subscriber:
        """Wake-up handle signalled whenever an owned partition gains data."""
        return self._subscriber

    def poll_once(self) -> list[DeliveredSlot]:
        """Read at most one message from each owned partition."""
        delivered: list[DeliveredSlot] = []
        logger = self._broker.logger
        for index in self._assigned:
            partition = self._topic.partitions[index]
            cursor = self._cursors[index]
            try:
                slot = partition.read(cursor)
            except OffsetFutureError:
                continue
            except OffsetTooOldError:
                new_cursor = partition.tail()
                logger.warning(
                    "consumer fell off ring buffer; advancing cursor "
                    "topic=%s group=%s member_id=%s partition=%d from=%d to=%d",
                    self._topic.name,
                    self._group.name,
                    self._member.id,
                    index,
                    cursor,
                    new_cursor,
                )
                self._cursors[index] = new_cursor
                continue
            except Exception:
                logger.exception("partition read error partition=%d", index)
                continue
            delivered.append(DeliveredSlot(index, slot))
            self._cursors[index] = cursor + 1
        return delivered

    def skip_leave_on_cleanup(self) -> None:
        """Make the next cleanup keep the member in its group for a grace period."""
        self._skip_leave = True

    def cleanup(self) -> None:
        """Detach from partitions and leave the group (or schedule it)."""
        for index in self._assigned:
            self._topic.partitions[index].remove_subscriber(self._subscriber)
        if self._skip_leave:
            self._schedule_stale_eviction()
            return
        for other in self._group.leave(self._member.id):
            self._broker.logger.info(
                "group member evicted on leave-rebalance topic=%s group=%s evicted_id=%s",
                self._topic.name,
                self._group.name,
                other.id,
            )

    def _schedule_stale_eviction(self) -> None:
        group = self._group
        member = self._member
        topic_name = self._topic.name
        logger = self._broker.logger
        grace = self._broker.stale_member_grace

        def evict() -> None:
            removed, evicted = group.leave_if_same_member(member.id, member)
            if not removed:
                return
            logger.info(
                "stale group member evicted after grace timeout "
                "topic=%s group=%s member_id=%s grace=%.1fs",
                topic_name,
                group.name,
                member.id,
                grace,
            )
            for other in evicted:
                logger.info(
                    "group member evicted on stale-cleanup-rebalance "
                    "topic=%s group=%s evicted_id=%s",
                    topic_name,
                    group.name,
                    other.id,
                )

        timer = threading.Timer(grace, evict)
        timer.daemon = True
        timer.start()

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cleanup()