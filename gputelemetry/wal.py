"""Write-ahead log for one partition.

Each record on disk is framed as (big-endian)::

    body_len:u64 | offset:i64 | payload_len:u32 | payload | n_headers:u32 | pairs

where every header key and value is a u32 length followed by UTF-8 bytes and
``body_len`` counts everything after itself.
"""

from __future__ import annotations

import os
import struct
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO

DEFAULT_SYNC_BYTES = 4096
_BUFFER_SIZE = 64 * 1024

_LEN_PREFIX = struct.Struct(">Q")
_HEAD = struct.Struct(">qI")
_U32 = struct.Struct(">I")


class WalError(Exception):
    """Raised when a WAL record cannot be written or decoded."""


@dataclass
class WalRecord:
    """One persisted message."""

    offset: int
    payload: bytes
    headers: dict[str, str] = field(default_factory=dict)


def wal_path(directory: str | os.PathLike[str], topic: str, partition: int) -> Path:
    """Return the WAL file path for ``topic``/``partition`` under ``directory``."""
    return Path(directory) / topic / f"{partition}.wal"


def encode_record(record: WalRecord) -> bytes:
    """Encode the body of ``record`` (everything after the length prefix)."""
    headers = record.headers or {}
    payload = bytes(record.payload)
    parts = [_HEAD.pack(record.offset, len(payload)), payload, _U32.pack(len(headers))]
    for key, value in headers.items():
        key_bytes = key.encode("utf-8", "surrogateescape")
        value_bytes = value.encode("utf-8", "surrogateescape")
        parts += [_U32.pack(len(key_bytes)), key_bytes, _U32.pack(len(value_bytes)), value_bytes]
    return b"".join(parts)


def decode_record(body: bytes) -> WalRecord:
    """Decode one record body produced by :func:`encode_record`."""
    if len(body) < 16:
        raise WalError("wal record too short")
    offset, payload_len = _HEAD.unpack_from(body, 0)
    pos = _HEAD.size
    if pos + payload_len + 4 > len(body):
        raise WalError("wal record truncated in payload")
    payload = bytes(body[pos : pos + payload_len])
    pos += payload_len
    (n_headers,) = _U32.unpack_from(body, pos)
    pos += 4

    def read_chunk(what: str) -> str:
        nonlocal pos
        if pos + 4 > len(body):
            raise WalError(f"wal record truncated in header {what} length")
        (length,) = _U32.unpack_from(body, pos)
        pos += 4
        if pos + length > len(body):
            raise WalError(f"wal record truncated in header {what}")
        text = bytes(body[pos : pos + length]).decode("utf-8", "surrogateescape")
        pos += length
        return text

    headers: dict[str, str] = {}
    for _ in range(n_headers):
        key = read_chunk("key")
        headers[key] = read_chunk("value")
    return WalRecord(offset=offset, payload=payload, headers=headers)


class WalWriter:
    """Appends records to a partition's WAL file, syncing lazily."""

    def __init__(self, file: BinaryIO, sync_bytes: int = DEFAULT_SYNC_BYTES) -> None:
        self._file: BinaryIO | None = file
        self._lock = threading.Lock()
        self.sync_bytes = sync_bytes if sync_bytes > 0 else DEFAULT_SYNC_BYTES
        self._pending = 0

    @property
    def closed(self) -> bool:
        return self._file is None

    def append(self, record: WalRecord) -> None:
        """Write one record; fsync once ``sync_bytes`` have accumulated."""
        body = encode_record(record)
        frame = _LEN_PREFIX.pack(len(body)) + body
        with self._lock:
            if self._file is None:
                raise WalError("wal is closed")
            self._file.write(frame)
            self._pending += len(frame)
            if self._pending >= self.sync_bytes:
                self._sync()
                self._pending = 0

    def _sync(self) -> None:
        assert self._file is not None
        self._file.flush()
        os.fsync(self._file.fileno())

    def close(self) -> None:
        """Flush, sync and close the file. Safe to call more than once."""
        with self._lock:
            if self._file is None:
                return
            try:
                self._sync()
            finally:
                self._file.close()
                self._file = None

    def __enter__(self) -> WalWriter:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def open_wal(
    directory: str | os.PathLike[str],
    topic: str,
    partition: int,
    sync_bytes: int = 0,
) -> WalWriter:
    """Open (or create) the WAL for one partition in append mode."""
    path = wal_path(directory, topic, partition)
    path.parent.mkdir(parents=True, exist_ok=True)
    file = open(path, "ab", buffering=_BUFFER_SIZE)
    return WalWriter(file, sync_bytes)


def replay_wal(
    directory: str | os.PathLike[str], topic: str, partition: int
) -> tuple[list[WalRecord], int]:
    """Read every whole record of a partition's WAL in order.

    Returns the records and the next offset to assign (one past the highest
    seen). A missing file yields ``([], 0)``; a torn trailing record is ignored.
    """
    path = wal_path(directory, topic, partition)
    records: list[WalRecord] = []
    next_offset = 0
    try:
        file = open(path, "rb", buffering=_BUFFER_SIZE)
    except FileNotFoundError:
        return records, 0
    with file:
        while True:
            prefix = file.read(_LEN_PREFIX.size)
            if len(prefix) < _LEN_PREFIX.size:
                break
            (body_len,) = _LEN_PREFIX.unpack(prefix)
            body = file.read(body_len)
            if len(body) < body_len:
                break
            record = decode_record(body)
            records.append(record)
            next_offset = max(next_offset, record.offset + 1)
    return records, next_offset