"""In-process partitioned message queue with write-ahead logging and consumer groups, plus a CSV telemetry reader, retry helper and observability HTTP server."""

__version__ = "0.1.0"