"""Base classes for collectors that feed the telemetry store."""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

log = logging.getLogger("voipsight.collector")


@dataclass
class CollectorResult:
    """Result of a single collection run."""

    source: str
    data: Any = None
    success: bool = True
    error: str | None = None
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def ok(cls, source: str, data: Any) -> "CollectorResult":
        return cls(source=source, data=data, success=True)

    @classmethod
    def failure(cls, source: str, error: str) -> "CollectorResult":
        return cls(source=source, success=False, error=error)


class Collector(ABC):
    """Abstract collector with interval scheduling and failure backoff.

    Each consecutive failure adds a penalty to the poll interval
    (30s, 60s, 120s, ... capped at MAX_PENALTY_SECONDS); a success clears it.
    """

    MAX_PENALTY_SECONDS = 600

    def __init__(self, poll_interval_seconds: int):
        self._poll_interval_seconds = poll_interval_seconds
        self._last_poll: float = 0.0
        self._consecutive_failures: int = 0
        self._lock = threading.Lock()

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this collector."""
        ...

    @abstractmethod
    def collect(self) -> CollectorResult:
        """Run a single data collection cycle."""
        ...

    def is_enabled(self) -> bool:
        return True

    @property
    def poll_interval_seconds(self) -> int:
        return self._poll_interval_seconds

    def _penalty_unlocked(self) -> int:
        if self._consecutive_failures == 0:
            return 0
        return min(
            30 * (2 ** (self._consecutive_failures - 1)),
            self.MAX_PENALTY_SECONDS,
        )

    @property
    def penalty_seconds(self) -> int:
        with self._lock:
            return self._penalty_unlocked()

    @property
    def effective_interval(self) -> float:
        """Poll interval including any penalty backoff."""
        with self._lock:
            return self._poll_interval_seconds + self._penalty_unlocked()

    def should_poll(self) -> bool:
        """True if enough time has elapsed since the last poll."""
        with self._lock:
            interval = self._poll_interval_seconds + self._penalty_unlocked()
            return (time.time() - self._last_poll) >= interval

    def record_success(self):
        with self._lock:
            if self._consecutive_failures > 0:
                log.info(
                    "%s: Recovered after %d failures",
                    self.name, self._consecutive_failures,
                )
            self._consecutive_failures = 0
            self._last_poll = time.time()

    def record_failure(self):
        with self._lock:
            self._consecutive_failures += 1
            self._last_poll = time.time()
            log.warning(
                "%s: Failure #%d recorded, next attempt in %ds",
                self.name, self._consecutive_failures,
                self._poll_interval_seconds + self._penalty_unlocked(),
            )

    def get_status(self) -> dict:
        """Return collector health for the status endpoint."""
        with self._lock:
            interval = self._poll_interval_seconds + self._penalty_unlocked()
            return {
                "name": self.name,
                "enabled": self.is_enabled(),
                "consecutive_failures": self._consecutive_failures,
                "penalty_seconds": self._penalty_unlocked(),
                "poll_interval": self._poll_interval_seconds,
                "last_poll": self._last_poll,
                "next_poll_in": int(max(0, interval - (time.time() - self._last_poll))),
            }
