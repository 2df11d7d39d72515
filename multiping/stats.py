"""Incremental per-host latency and loss statistics."""

import logging
import threading
from collections import deque

from multiping.errors import UnknownHostError
from multiping.models import StatSnapshot

logger = logging.getLogger(__name__)

DEFAULT_LOSS_WINDOW = 100

# RFC 3550 smoothing divisor
JITTER_GAIN = 16.0


class HostStatistics:
    """Rolling statistics for one host.

    Memory is O(1) apart from the loss window, which holds at most
    ``window_size`` booleans. Every method takes the record's own lock, so
    success and loss events from different threads can be applied safely and
    ``snapshot()`` only holds the lock while copying scalar fields.
    """

    def __init__(self, host_id: int, window_size: int = DEFAULT_LOSS_WINDOW):
        if window_size <= 0:
            raise ValueError("window_size must be positive")
        self.host_id = host_id
        self._lock = threading.Lock()
        self._latest: float | None = None
        self._min: float | None = None
        self._max: float | None = None
        self._mean = 0.0
        self._jitter = 0.0
        self._received = 0
        self._lost = 0
        self._window: deque[bool] = deque(maxlen=window_size)  # True = lost
        self._window_losses = 0

    @property
    def window_size(self) -> int:
        return self._window.maxlen

    def apply_success(self, rtt_ms: float):
        """Fold a reply with the given round-trip time into the record."""
        with self._lock:
            if self._latest is not None:
                delta = abs(rtt_ms - self._latest)
                self._jitter += (delta - self._jitter) / JITTER_GAIN
            self._latest = rtt_ms
            self._min = rtt_ms if self._min is None else min(self._min, rtt_ms)
            self._max = rtt_ms if self._max is None else max(self._max, rtt_ms)
            self._received += 1
            self._mean += (rtt_ms - self._mean) / self._received
            self._push_outcome(False)

    def apply_loss(self):
        """Count a lost probe. The latest RTT is left unchanged."""
        with self._lock:
            self._lost += 1
            self._push_outcome(True)

    def _push_outcome(self, lost: bool):
        if len(self._window) == self._window.maxlen and self._window[0]:
            self._window_losses -= 1
        self._window.append(lost)
        if lost:
            self._window_losses += 1

    def snapshot(self) -> StatSnapshot:
        with self._lock:
            fill = len(self._window)
            received = self._received
            return StatSnapshot(
                host_id=self.host_id,
                latest_ms=self._latest,
                min_ms=self._min,
                max_ms=self._max,
                mean_ms=self._mean if received else None,
                jitter_ms=self._jitter,
                sent=received + self._lost,
                received=received,
                lost=self._lost,
                loss_ratio=self._window_losses / fill if fill else 0.0,
                window_fill=fill,
            )


class StatisticsEngine:
    """Owns one HostStatistics record per registered host.

    The engine-level lock only guards the id-to-record mapping; updates and
    reads lock the individual record, so hosts never contend with each other.
    Events for hosts that are not registered (for example a reply arriving
    after the host was removed) are ignored.
    """

    def __init__(self, window_size: int = DEFAULT_LOSS_WINDOW):
        if window_size <= 0:
            raise ValueError("window_size must be positive")
        self.window_size = window_size
        self._lock = threading.Lock()
        self._records: dict[int, HostStatistics] = {}

    def register(self, host_id: int) -> HostStatistics:
        with self._lock:
            record = self._records.get(host_id)
            if record is None:
                record = HostStatistics(host_id, self.window_size)
                self._records[host_id] = record
            return record

    def discard(self, host_id: int) -> bool:
        with self._lock:
            return self._records.pop(host_id, None) is not None

    def _find(self, host_id: int) -> HostStatistics | None:
        with self._lock:
            return self._records.get(host_id)

    def record_success(self, host_id: int, rtt_ms: float) -> bool:
        record = self._find(host_id)
        if record is None:
            logger.debug("Dropping success for unknown host %d", host_id)
            return False
        record.apply_success(rtt_ms)
        return True

    def record_loss(self, host_id: int) -> bool:
        record = self._find(host_id)
        if record is None:
            logger.debug("Dropping loss for unknown host %d", host_id)
            return False
        record.apply_loss()
        return True

    def snapshot(self, host_id: int) -> StatSnapshot:
        """Return the current statistics for host_id.

        Raises:
            UnknownHostError: if the host is not registered
        """
        record = self._find(host_id)
        if record is None:
            raise UnknownHostError(host_id)
        return record.snapshot()

    def snapshots(self) -> dict[int, StatSnapshot]:
        with self._lock:
            records = list(self._records.values())
        return {record.host_id: record.snapshot() for record in records}

    def __contains__(self, host_id: int) -> bool:
        with self._lock:
            return host_id in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
