# gputelemetry

An in-process, partitioned message queue, plus the pieces needed to feed it
GPU telemetry read from a DCGM-style CSV export. Only the standard library is
used.

## What is in the package

| Module | Contents |
| --- | --- |
| `gputelemetry.broker_config` | `BrokerConfig`, `load_broker_config`, `is_power_of_two`, `ConfigError` |
| `gputelemetry.wal` | `WalRecord`, `WalWriter`, `open_wal`, `replay_wal`, `encode_record`, `decode_record`, `wal_path`, `WalError` |
| `gputelemetry.partition` | `Partition`, `Slot`, `Subscriber`, `OffsetTooOldError`, `OffsetFutureError` |
| `gputelemetry.topic` | `Topic`, `TopicExistsError`, `TopicNotFoundError`, `PartitionNotFoundError` |
| `gputelemetry.group` | `ConsumerGroup`, `GroupMember`, `compute_assignments` |
| `gputelemetry.broker` | `Broker`, `Subscription`, `DeliveredSlot`, `GroupNotFoundError` |
| `gputelemetry.streamer_config` | `StreamerConfig`, `load_streamer_config`, `StreamerConfigError` |
| `gputelemetry.coordinator` | `Coordinator` |
| `gputelemetry.reader` | `Reader`, `TelemetryRecord`, `Publisher`, `parse_row`, `PublishError` |
| `gputelemetry.retry` | `retry_with_backoff`, `RetryCancelled` |
| `gputelemetry.obs` | `start`, `ObsServer` |

## Configuration

Both loaders read a mapping of environment variables. If you pass nothing,
they read `os.environ`. Empty values and values that are not integers fall
back to the defaults.

```python
from gputelemetry.broker_config import load_broker_config
from gputelemetry.streamer_config import load_streamer_config

broker_cfg = load_broker_config({
    "MQ_PARTITIONS": "4",
    "MQ_RING_BUFFER_SIZE": "1024",   # must be a power of two
    "MQ_WAL_DIR": "/tmp/mq-wal",
})

streamer_cfg = load_streamer_config({
    "STREAMER_INDEX": "0",
    "STREAMER_TOTAL": "2",
    "CSV_PATH": "/data/sample_data.csv",
})
```

Broker variables and their defaults:

| Variable | Default |
| --- | --- |
| `GRPC_PORT` | 9090 |
| `METRICS_PORT` | 9091 |
| `MQ_PARTITIONS` | 10 |
| `MQ_RING_BUFFER_SIZE` | 65536 |
| `MQ_WAL_DIR` | `/tmp/mq-wal` |
| `MQ_WAL_SYNC_BYTES` | 4096 |
| `MQ_OVERFLOW_POLICY` | `drop` |

`load_broker_config` raises `ConfigError` in two cases:

- the ring buffer size is not a power of two;
- the overflow policy is anything other than `drop` or `block`.

Streamer variables and their defaults:

| Variable | Default |
| --- | --- |
| `MQ_ADDRESS` | `localhost:9090` |
| `MQ_TOPIC` | `gpu-telemetry` |
| `STREAMER_INDEX` | 0 |
| `STREAMER_TOTAL` | 1 |
| `CSV_PATH` | `/data/sample_data.csv` |
| `STREAM_INTERVAL_MS` | 100 |
| `METRICS_PORT` | 9091 |

`load_streamer_config` raises `StreamerConfigError` in three cases:

- the index is negative;
- the total is below 1;
- the index is not smaller than the total.

## Using the broker

```python
from gputelemetry.broker import Broker

with Broker(broker_cfg) as broker:
    broker.create_topic("gpu-telemetry", 4)          # idempotent for the same count

    partition, offset = broker.publish("gpu-telemetry", 2, b"hello", {})
    partition, offset = broker.publish("gpu-telemetry", -1, b"any", {})  # round-robin

    with broker.subscribe("gpu-telemetry", "collectors", "collector-0") as sub:
        print(sub.assigned_partitions())
        for delivered in sub.poll_once():
            print(delivered.partition, delivered.offset, delivered.payload)
            broker.acknowledge("gpu-telemetry", "collectors",
                               delivered.partition, delivered.offset)

    print(broker.get_offsets("gpu-telemetry", "collectors"))
```

### Topics and storage

- Each partition keeps recent messages in a ring buffer of
  `ring_buffer_size` slots.
- Every message is also appended to `<wal_dir>/<topic>/<partition>.wal`. The
  file is fsynced once `wal_sync_bytes` have built up, and again on close.
- `create_topic` replays any existing log. This restores offsets after a
  restart.
- A partition count of 0 or less uses the configured default.

### Consumer groups

A group has a deterministic round-robin assignment of partitions to members,
with members sorted by id.

When a member joins or leaves, only the members whose set of partitions
actually changed are evicted. An evicted member sees its `Subscription.done()`
event set. A second `subscribe` with the same member id evicts the earlier
session.

Reading messages:

- `poll_once()` reads at most one message from each owned partition. It
  never blocks.
- Between polls, wait on `sub.notify().wait(timeout)`. The wake-up fires
  when any owned partition gains data. Several publishes in a row collapse
  into a single wake-up.
- If a cursor falls behind the ring buffer, it jumps forward to the oldest
  message still held in memory.

Commits and offsets:

- Commits only move forward.
- A new subscription starts reading at `committed + 1`, or at 0 when nothing
  has been committed.

Leaving a group:

- By default, `cleanup()` removes the member from the group straight away.
- If `skip_leave_on_cleanup()` was called first, the member stays in the
  group for `stale_member_grace` seconds (30 by default; a `Broker`
  constructor argument). After that it is removed, unless the same id has
  subscribed again in the meantime.

### Errors

| Exception | Raised when |
| --- | --- |
| `ValueError` | The topic name is empty, or the consumer id is empty. |
| `TopicExistsError` | A topic is created again with a different partition count. |
| `TopicNotFoundError` | The topic is unknown (from `publish` and `subscribe`). |
| `PartitionNotFoundError` | An explicit partition number is out of range. |
| `GroupNotFoundError` | `acknowledge` names a group that has never subscribed. |

`get_offsets` on an unknown group returns `{}`.

## Streaming a CSV

```python
import threading

from gputelemetry.coordinator import Coordinator
from gputelemetry.reader import Reader

class PrintPublisher:
    def publish(self, record, partition):
        print(partition, record.metric_name, record.value)

stop = threading.Event()
reader = Reader("/data/sample_data.csv", 100)
reader.stream(stop, Coordinator(0, 1), PrintPublisher())   # runs until stop is set
```

`Reader.stream` replays the file from the beginning, pass after pass, until
`stop` is set. It waits `interval_ms` milliseconds after each published row.

Which rows are published:

- The header row is skipped, and so are blank lines.
- Data row `n` (0-based) is published only if
  `coordinator.should_publish(n)`. This holds when `n % total == index`.
- The record is sent to partition `coordinator.partition()`.

How rows are parsed:

- `parse_row` maps the twelve columns onto a `TelemetryRecord`.
- The CSV timestamp column is ignored. Both `ingested_unix_ns` and
  `sample_unix_ns` are set to the current wall-clock time.
- The value column must parse as a float. A row whose value does not is
  logged and skipped.

How a stream ends:

| Cause | Result |
| --- | --- |
| A row has a different number of fields from the header | `csv.Error` |
| The file is empty | `ValueError` |
| The file is missing | `FileNotFoundError` |
| The publisher raises | `PublishError` (with `row_num`) |
| `stop` is set | Returns cleanly |

## Waiting for a dependency

```python
import threading

from gputelemetry.retry import retry_with_backoff

stop = threading.Event()
result = retry_with_backoff("connect", lambda: do_connect(), stop)
```

`fn` is called until it returns, and its result is returned. The wait after a
failure starts at 0.2 s and doubles each time, up to a cap of 10 s. If `stop`
is set during a wait, `RetryCancelled` is raised, chained to the last failure.

## Observability server

```python
from gputelemetry import obs

server = obs.start(0, ready=lambda: None)   # port 0 picks a free port
print(server.port)
server.shutdown()
```

| Endpoint | Response |
| --- | --- |
| `/healthz` | Always `{"status":"ok"}` with status 200. |
| `/readyz` | 200 with `{"status":"ready"}` when `ready` returns normally or is `None`. 503 with the error message when it raises. |
| `/metrics` | Prometheus text format: process start time, Python info, GC collection counts and per-path request counts. |

`shutdown()` may be called more than once. `ObsServer` is also a context
manager.

## What the package does not do

- It has no network front end for the broker. The broker, its topics and its
  consumer groups live in the calling process. There is no remote
  publish/subscribe API, even though `BrokerConfig` carries port numbers.
- It ships no publisher that sends records to a broker. `Reader` takes any
  object with a `publish(record, partition)` method.
- It installs no command-line programs.