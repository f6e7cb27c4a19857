"""Message queue broker configuration loaded from environment variables."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass

_INT_PATTERN = re.compile(r"[+-]?\d+")

OVERFLOW_POLICIES = ("drop", "block")


class ConfigError(ValueError):
    """Raised when the broker configuration is invalid."""


@dataclass(frozen=True)
class BrokerConfig:
    """Runtime configuration for the message queue broker."""

    grpc_port: int = 9090
    metrics_port: int = 9091
    partitions: int = 10
    ring_buffer_size: int = 65536
    wal_dir: str = "/tmp/mq-wal"
    wal_sync_bytes: int = 4096
    overflow_policy: str = "drop"


def is_power_of_two(n: int) -> bool:
    """Return True when ``n`` is a positive power of two."""
    return n > 0 and (n & (n - 1)) == 0


def _env_str(environ: Mapping[str, str], key: str, default: str) -> str:
    return environ.get(key) or default


def _env_int(environ: Mapping[str, str], key: str, default: int) -> int:
    value = environ.get(key, "")
    if not value or not _INT_PATTERN.fullmatch(value):
        return default
    return int(value)


def load_broker_config(environ: Mapping[str, str] | None = None) -> BrokerConfig:
    """Build a BrokerConfig from ``environ`` (defaults to ``os.environ``)."""
    env = os.environ if environ is None else environ
    cfg = BrokerConfig(
        grpc_port=_env_int(env, "GRPC_PORT", 9090),
        metrics_port=_env_int(env, "METRICS_PORT", 9091),
        partitions=_env_int(env, "MQ_PARTITIONS", 10),
        ring_buffer_size=_env_int(env, "MQ_RING_BUFFER_SIZE", 65536),
        wal_dir=_env_str(env, "MQ_WAL_DIR", "/tmp/mq-wal"),
        wal_sync_bytes=_env_int(env, "MQ_WAL_SYNC_BYTES", 4096),
        overflow_policy=_env_str(env, "MQ_OVERFLOW_POLICY", "drop"),
    )
    if not is_power_of_two(cfg.ring_buffer_size):
        raise ConfigError(
            f"MQ_RING_BUFFER_SIZE must be a power of 2, got {cfg.ring_buffer_size}"
        )
    if cfg.overflow_policy not in OVERFLOW_POLICIES:
        raise ConfigError(
            f"MQ_OVERFLOW_POLICY must be 'drop' or 'block', got {cfg.overflow_policy!r}"
        )
    return cfg