"""Replay a DCGM exporter CSV file as a stream of telemetry records.

Columns: timestamp, metric_name, gpu_id, device, uuid, modelName, Hostname,
container, pod, namespace, value, labels_raw.
"""

from __future__ import annotations

import csv
import logging
import threading
import time
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from gputelemetry.coordinator import Coordinator

COL_TIMESTAMP = 0
COL_METRIC_NAME = 1
COL_GPU_INDEX = 2
COL_DEVICE = 3
COL_UUID = 4
COL_MODEL_NAME = 5
COL_HOSTNAME = 6
COL_CONTAINER = 7
COL_POD = 8
COL_NAMESPACE = 9
COL_VALUE = 10
COL_LABELS_RAW = 11
MIN_COLS = 12


@dataclass(frozen=True)
class TelemetryRecord:
    """One GPU metric sample."""

    ingested_unix_ns: int
    sample_unix_ns: int
    metric_name: str
    gpu_index: str
    device: str
    uuid: str
    model_name: str
    hostname: str
    container: str
    pod: str
    namespace: str
    value: float
    labels_raw: str


@runtime_checkable
class Publisher(Protocol):
    """What the reader needs from a message queue publisher."""

    def publish(self, record: TelemetryRecord, partition: int) -> None:
        """Send ``record`` to ``partition``; raise on failure."""


class PublishError(RuntimeError):
    """The publisher failed to accept a row."""

    def __init__(self, row_num: int, cause: BaseException) -> None:
        super().__init__(f"publish row {row_num}: {cause}")
        self.row_num = row_num


def parse_row(row: Sequence[str]) -> TelemetryRecord:
    """Convert one CSV data row into a record.

    The CSV timestamp column is ignored: both timestamps are the wall-clock
    time at which the row is processed.
    """
    if len(row) < MIN_COLS:
        raise ValueError(f"row has {len(row)} columns, need at least {MIN_COLS}")
    raw = row[COL_VALUE]
    try:
        if raw != raw.strip():
            raise ValueError("surrounding whitespace")
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"parse value {raw!r}: {exc}") from exc

    now = time.time_ns()
    return TelemetryRecord(
        ingested_unix_ns=now,
        sample_unix_ns=now,
        metric_name=row[COL_METRIC_NAME],
        gpu_index=row[COL_GPU_INDEX],
        device=row[COL_DEVICE],
        uuid=row[COL_UUID],
        model_name=row[COL_MODEL_NAME],
        hostname=row[COL_HOSTNAME],
        container=row[COL_CONTAINER],
        pod=row[COL_POD],
        namespace=row[COL_NAMESPACE],
        value=value,
        labels_raw=row[COL_LABELS_RAW],
    )


def _non_blank(rows: Iterable[list[str]]) -> Iterator[list[str]]:
    return (row for row in rows if row)


class Reader:
    """Loops over a CSV file, publishing the rows this replica owns."""

    def __init__(
        self,
        csv_path: str,
        interval_ms: int = 0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.csv_path = csv_path
        self.interval = max(interval_ms, 0) / 1000.0
        self.logger = logger or logging.getLogger(__name__)

    def stream(
        self, stop: threading.Event, coordinator: Coordinator, publisher: Publisher
    ) -> None:
        """Replay the file from the start, pass after pass, until ``stop`` is set."""
        while not stop.is_set():
            self._stream_once(stop, coordinator, publisher)

    def _stream_once(
        self, stop: threading.Event, coordinator: Coordinator, publisher: Publisher
    ) -> None:
        with open(self.csv_path, newline="", encoding="utf-8") as file:
            reader = csv.reader(file)
            rows = _non_blank(reader)
            header = next(rows, None)
            if header is None:
                raise ValueError(f"read CSV header: {self.csv_path} is empty")
            width = len(header)

            for row_num, row in enumerate(rows):
                if stop.is_set():
                    return
                if len(row) != width:
                    raise csv.Error(
                        f"read CSV row: record on line {reader.line_num}: "
                        "wrong number of fields"
                    )
                if not coordinator.should_publish(row_num):
                    continue
                if len(row) < MIN_COLS:
                    self.logger.warning(
                        "skipping short CSV row row_num=%d got_cols=%d", row_num, len(row)
                    )
                    continue
                try:
                    record = parse_row(row)
                except ValueError as exc:
                    self.logger.warning(
                        "skipping unparseable CSV row row_num=%d error=%s", row_num, exc
                    )
                    continue
                try:
                    publisher.publish(record, coordinator.partition())
                except Exception as exc:
                    raise PublishError(row_num, exc) from exc

                self.logger.debug(
                    "published row row_num=%d uuid=%s metric=%s",
                    row_num,
                    record.uuid,
                    record.metric_name,
                )
                if self.interval > 0 and stop.wait(self.interval):
                    return