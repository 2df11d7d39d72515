"""Per-host probe scheduling."""

import logging
import time
from functools import partial
from typing import Callable

from PySide6.QtCore import QObject, Qt, QTimer, Signal

from multiping.errors import TransportError
from multiping.icmp import DEFAULT_PAYLOAD_SIZE, encode_echo_request
from multiping.models import Probe
from multiping.registry import HostRegistry
from multiping.stats import StatisticsEngine
from multiping.transport import Transport

logger = logging.getLogger(__name__)


class ProbeScheduler(QObject):
    """Sends echo requests to every enabled host on its own interval.

    Key features:
    - One precise QTimer per host, so hosts never share or skip ticks
    - Ticks never wait on I/O: the transport either sends or fails fast
    - A failed send still leaves the probe outstanding; the timeout reaper
      later resolves it as lost, like any other unanswered probe

    Timers live on the thread that owns the scheduler (the Qt main thread).
    """

    # Signals
    probe_sent = Signal(int, int)  # (host_id, sequence)
    send_failed = Signal(int, int, str)  # (host_id, sequence, error_msg)

    def __init__(
        self,
        registry: HostRegistry,
        transport: Transport,
        stats: StatisticsEngine,
        clock: Callable[[], float] = time.monotonic,
        payload_size: int = DEFAULT_PAYLOAD_SIZE,
        parent=None,
    ):
        super().__init__(parent)
        self.registry = registry
        self.transport = transport
        self.stats = stats
        self.clock = clock
        self.payload_size = payload_size

        self._timers: dict[int, QTimer] = {}
        self.is_running = False

    def start(self):
        """Schedule every eligible host and send its first probe right away."""
        if self.is_running:
            return
        self.is_running = True
        for target in self.registry.targets():
            if target.schedulable:
                self.schedule(target.host_id)
        logger.info("Scheduler started: %d hosts", len(self._timers))

    def stop(self):
        if not self.is_running:
            return
        self.is_running = False
        for host_id in list(self._timers):
            self.unschedule(host_id)
        logger.info("Scheduler stopped")

    def schedule(self, host_id: int, immediate: bool = True):
        """Start the periodic timer for a host (no-op if not running)."""
        if not self.is_running or host_id in self._timers:
            return
        target = self.registry.get(host_id).snapshot_target()
        if not target.schedulable:
            return

        timer = QTimer(self)
        timer.setTimerType(Qt.PreciseTimer)
        timer.timeout.connect(partial(self.tick, host_id))
        timer.start(self._to_ms(target.interval_s))
        self._timers[host_id] = timer
        logger.debug("Host scheduled: id=%d interval=%.3fs", host_id, target.interval_s)

        if immediate:
            self.tick(host_id)

    def unschedule(self, host_id: int):
        timer = self._timers.pop(host_id, None)
        if timer is not None:
            timer.stop()
            timer.deleteLater()
            logger.debug("Host unscheduled: id=%d", host_id)

    def set_interval(self, host_id: int, interval_s: float):
        timer = self._timers.get(host_id)
        if timer is not None:
            timer.setInterval(self._to_ms(interval_s))
        logger.debug("Interval updated: id=%d interval=%.3fs", host_id, interval_s)

    def scheduled_hosts(self) -> list[int]:
        return list(self._timers)

    def is_scheduled(self, host_id: int) -> bool:
        return host_id in self._timers

    @staticmethod
    def _to_ms(interval_s: float) -> int:
        return max(1, int(round(interval_s * 1000)))

    def tick(self, host_id: int) -> Probe | None:
        """Open a new probe for a host and hand it to the transport.

        Returns:
            The new probe, or None if the host is gone or not schedulable
        """
        record = self.registry.find(host_id)
        if record is None:
            self.unschedule(host_id)
            return None
        target = record.snapshot_target()
        if not target.schedulable:
            self.unschedule(host_id)
            return None

        probe, displaced = record.open_probe(self.clock())
        if probe is None:
            return None
        if displaced is not None:
            logger.warning(
                "Sequence wrapped onto an unresolved probe: host=%d seq=%d",
                host_id,
                displaced.sequence,
            )
            self.stats.record_loss(host_id)

        packet = encode_echo_request(
            target.family,
            probe.identifier,
            probe.sequence,
            probe.sent_at,
            self.payload_size,
        )
        try:
            self.transport.send(target.family, target.send_address, packet)
        except TransportError as e:
            logger.warning("Send failed: host=%d seq=%d error=%s", host_id, probe.sequence, e)
            self.send_failed.emit(host_id, probe.sequence, str(e))
            return probe

        self.probe_sent.emit(host_id, probe.sequence)
        return probe
