"""Telemetry streamer configuration loaded from environment variables."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass

_INT_PATTERN = re.compile(r"[+-]?\d+")


class StreamerConfigError(ValueError):
    """Raised when the streamer configuration is invalid."""


@dataclass(frozen=True)
class StreamerConfig:
    """Runtime configuration for one streamer replica."""

    mq_address: str = "localhost:9090"
    topic: str = "gpu-telemetry"
    streamer_index: int = 0
    streamer_total: int = 1
    csv_path: str = "/data/sample_data.csv"
    stream_interval_ms: int = 100
    metrics_port: int = 9091


def _env_str(environ: Mapping[str, str], key: str, default: str) -> str:
    return environ.get(key) or default


def _env_int(environ: Mapping[str, str], key: str, default: int) -> int:
    value = environ.get(key, "")
    if not value or not _INT_PATTERN.fullmatch(value):
        return default
    return int(value)


def load_streamer_config(environ: Mapping[str, str] | None = None) -> StreamerConfig:
    """Build a StreamerConfig from ``environ`` (defaults to ``os.environ``)."""
    env = os.environ if environ is None else environ
    cfg = StreamerConfig(
        mq_address=_env_str(env, "MQ_ADDRESS", "localhost:9090"),
        topic=_env_str(env, "MQ_TOPIC", "gpu-telemetry"),
        streamer_index=_env_int(env, "STREAMER_INDEX", 0),
        streamer_total=_env_int(env, "STREAMER_TOTAL", 1),
        csv_path=_env_str(env, "CSV_PATH", "/data/sample_data.csv"),
        stream_interval_ms=_env_int(env, "STREAM_INTERVAL_MS", 100),
        metrics_port=_env_int(env, "METRICS_PORT", 9091),
    )
    if cfg.streamer_index < 0:
        raise StreamerConfigError(
            f"STREAMER_INDEX must be >= 0, got {cfg.streamer_index}"
        )
    if cfg.streamer_total < 1:
        raise StreamerConfigError(
            f"STREAMER_TOTAL must be >= 1, got {cfg.streamer_total}"
        )
    if cfg.streamer_index >= cfg.streamer_total:
        # Usually a StatefulSet scaled with `kubectl scale`, which adds pods
        # without re-rendering the template, leaving STREAMER_TOTAL stale.
        raise StreamerConfigError(
            f"STREAMER_INDEX ({cfg.streamer_index}) must be < STREAMER_TOTAL "
            f"({cfg.streamer_total}); this usually means the StatefulSet was scaled "
            "via 'kubectl scale' (which leaves STREAMER_TOTAL stale). Rerun with "
            "'helm upgrade --reuse-values --set streamer.replicaCount="
            f"{cfg.streamer_index + 1}' so the pod template is re-rendered with "
            "the new fleet size."
        )
    return cfg