"""Periodic timeout detection for outstanding probes."""

import logging
import time
from typing import Callable

from PySide6.QtCore import QObject, Qt, QTimer, Signal

from multiping.correlator import Correlator
from multiping.models import Probe
from multiping.registry import HostRegistry

logger = logging.getLogger(__name__)

DEFAULT_REAP_INTERVAL_S = 0.1


class TimeoutReaper(QObject):
    """Turns probes older than their host's timeout into losses.

    This is the only path that guarantees every probe is eventually resolved,
    which bounds each outstanding table to roughly timeout / interval entries.
    """

    probes_lost = Signal(int)  # number of probes resolved as lost in one pass

    def __init__(
        self,
        registry: HostRegistry,
        correlator: Correlator,
        interval_s: float = DEFAULT_REAP_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
        parent=None,
    ):
        super().__init__(parent)
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        self.registry = registry
        self.correlator = correlator
        self.clock = clock
        self.interval_s = interval_s

        self.timer = QTimer(self)
        self.timer.setTimerType(Qt.PreciseTimer)
        self.timer.timeout.connect(self.reap)

    def start(self):
        self.timer.start(self._interval_ms())
        logger.debug("Reaper started: interval=%dms", self._interval_ms())

    def stop(self):
        self.timer.stop()

    def ensure_finer_than(self, host_interval_s: float):
        """Shrink the reap interval so it stays below a host's probe interval."""
        target = host_interval_s / 2.0
        if target < self.interval_s:
            self.interval_s = target
            if self.timer.isActive():
                self.timer.setInterval(self._interval_ms())
            logger.debug("Reap interval lowered to %.3fs", self.interval_s)

    def _interval_ms(self) -> int:
        return max(1, int(self.interval_s * 1000))

    def reap(self) -> list[Probe]:
        """Scan every host once and resolve expired probes as lost."""
        now = self.clock()
        expired = []
        for record in self.registry.records():
            expired.extend(record.expire(now))
        if expired:
            self.correlator.handle_timeouts(expired)
            self.probes_lost.emit(len(expired))
        return expired
