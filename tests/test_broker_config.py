import pytest

from gputelemetry.broker_config import (
    BrokerConfig,
    ConfigError,
    is_power_of_two,
    load_broker_config,
)


def test_load_defaults():
    cfg = load_broker_config({})
    assert cfg.grpc_port == 9090
    assert cfg.metrics_port == 9091
    assert cfg.partitions == 10
    assert cfg.ring_buffer_size == 65536
    assert cfg.wal_dir == "/tmp/mq-wal"
    assert cfg.wal_sync_bytes == 4096
    assert cfg.overflow_policy == "drop"


def test_empty_values_fall_back_to_defaults():
    env = {
        "GRPC_PORT": "",
        "METRICS_PORT": "",
        "MQ_PARTITIONS": "",
        "MQ_RING_BUFFER_SIZE": "",
        "MQ_WAL_DIR": "",
        "MQ_WAL_SYNC_BYTES": "",
        "MQ_OVERFLOW_POLICY": "",
    }
    assert load_broker_config(env) == BrokerConfig()


def test_load_overrides_from_env():
    env = {
        "GRPC_PORT": "5555",
        "MQ_PARTITIONS": "4",
        "MQ_RING_BUFFER_SIZE": "1024",
        "MQ_OVERFLOW_POLICY": "block",
        "MQ_WAL_DIR": "/tmp/custom-wal",
    }
    cfg = load_broker_config(env)
    assert cfg.grpc_port == 5555
    assert cfg.partitions == 4
    assert cfg.ring_buffer_size == 1024
    assert cfg.overflow_policy == "block"
    assert cfg.wal_dir == "/tmp/custom-wal"


def test_unparseable_int_uses_default():
    cfg = load_broker_config({"GRPC_PORT": "not-a-port", "MQ_PARTITIONS": "1.5"})
    assert cfg.grpc_port == 9090
    assert cfg.partitions == 10


def test_reads_process_environment(monkeypatch):
    monkeypatch.setenv("METRICS_PORT", "7777")
    monkeypatch.delenv("MQ_RING_BUFFER_SIZE", raising=False)
    monkeypatch.delenv("MQ_OVERFLOW_POLICY", raising=False)
    assert load_broker_config().metrics_port == 7777


def test_rejects_non_power_of_two_ring_buffer():
    with pytest.raises(ConfigError, match="power of 2"):
        load_broker_config({"MQ_RING_BUFFER_SIZE": "1000"})


def test_rejects_invalid_overflow_policy():
    with pytest.raises(ConfigError, match="MQ_OVERFLOW_POLICY"):
        load_broker_config({"MQ_OVERFLOW_POLICY": "explode"})


@pytest.mark.parametrize(
    "n, expected",
    [
        (0, False),
        (-2, False),
        (1, True),
        (2, True),
        (4, True),
        (1024, True),
        (65536, True),
        (3, False),
        (6, False),
        (1000, False),
    ],
)
def test_is_power_of_two(n, expected):
    assert is_power_of_two(n) is expected