"""Wait for a dependency to come up, retrying with exponential backoff."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import TypeVar

_LOG = logging.getLogger(__name__)

T = TypeVar("T")

INITIAL_BACKOFF = 0.2
MAX_BACKOFF = 10.0


class RetryCancelled(Exception):
    """Raised when the stop event fires before the operation succeeded."""

    def __init__(self, label: str, attempts: int) -> None:
        super().__init__(f"{label}: cancelled after {attempts} attempt(s)")
        self.label = label
        self.attempts = attempts


def retry_with_backoff(label: str, fn: Callable[[], T], stop: threading.Event) -> T:
    """Call ``fn`` until it returns, waiting longer after each failure.

    The wait starts at ``INITIAL_BACKOFF`` seconds and doubles after every
    failure, capped at ``MAX_BACKOFF``. Returns what ``fn`` returned; raises
    :class:`RetryCancelled` (chained to the last failure) if ``stop`` is set
    while waiting.
    """
    backoff = INITIAL_BACKOFF
    attempt = 0
    while True:
        attempt += 1
        try:
            result = fn()
        except Exception as exc:
            _LOG.warning(
                "waiting for dependency op=%s attempt=%d next_retry_in=%.3fs error=%s",
                label,
                attempt,
                backoff,
                exc,
            )
            last_error = exc
        else:
            if attempt > 1:
                _LOG.info("dependency reachable op=%s attempts=%d", label, attempt)
            return result

        if stop.wait(backoff):
            raise RetryCancelled(label, attempt) from last_error

        if backoff < MAX_BACKOFF:
            backoff = min(backoff * 2, MAX_BACKOFF)