"""Monitoring engine: host management and snapshot queries."""

import logging
import time
from typing import Callable

from PySide6.QtCore import QObject, Signal

from multiping.config import EngineConfig
from multiping.correlator import Correlator
from multiping.fake_transport import FakeTransport
from multiping.models import AddressFamily, HostTarget, StatSnapshot
from multiping.reaper import TimeoutReaper
from multiping.registry import HostRegistry
from multiping.scheduler import ProbeScheduler
from multiping.stats import StatisticsEngine
from multiping.transport import IcmpTransport, Transport

logger = logging.getLogger(__name__)


class MonitorEngine(QObject):
    """Ties the transport, registry, scheduler, correlator, reaper and
    statistics together behind the host-management and snapshot APIs.

    Management calls are made from the thread that owns the engine; they are
    safe to interleave with the listener threads, which only go through the
    locked registry and statistics records.
    """

    host_added = Signal(int)
    host_removed = Signal(int)
    host_changed = Signal(int)

    def __init__(
        self,
        transport: Transport | None = None,
        config: EngineConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        identifier_base: int | None = None,
        parent=None,
    ):
        super().__init__(parent)
        self.config = config if config is not None else EngineConfig()
        self.clock = clock
        if transport is None and self.config.transport == "fake":
            transport = FakeTransport(self.config.families, clock=clock)
        elif transport is None:
            transport = IcmpTransport(self.config.families, clock=clock)
        self.transport = transport

        self.registry = HostRegistry(identifier_base)
        self.stats = StatisticsEngine(self.config.loss_window)
        self.correlator = Correlator(self.registry, self.stats)
        self.scheduler = ProbeScheduler(
            self.registry,
            self.transport,
            self.stats,
            clock=clock,
            payload_size=self.config.payload_size,
            parent=self,
        )
        self.reaper = TimeoutReaper(
            self.registry,
            self.correlator,
            interval_s=self.config.reap_interval_s,
            clock=clock,
            parent=self,
        )
        self.is_running = False

    # ---------- host management ----------

    def add_host(
        self,
        address: str,
        family: AddressFamily | None = None,
        interval_s: float | None = None,
        timeout_s: float | None = None,
        label: str = "",
    ) -> int:
        """Start monitoring a resolved address.

        Args:
            address: Literal IPv4/IPv6 address
            family: Address family; inferred from address when omitted
            interval_s: Probe interval (config default when omitted)
            timeout_s: Probe timeout (config default when omitted)
            label: Display name, e.g. the host name the address came from

        Returns:
            The new host id

        Raises:
            ValueError: if address/family/timing parameters are invalid
        """
        if family is None:
            family = AddressFamily.of(address)
        target = self.registry.add(
            address,
            AddressFamily(family),
            self.config.interval_s if interval_s is None else interval_s,
            self.config.timeout_s if timeout_s is None else timeout_s,
            label=label,
        )
        self.stats.register(target.host_id)
        self.reaper.ensure_finer_than(target.interval_s)

        if self.is_running:
            self._check_reachable(target)
            self.scheduler.schedule(target.host_id)

        logger.info("Monitoring %s (%s) as host %d", target.label, target.address, target.host_id)
        self.host_added.emit(target.host_id)
        return target.host_id

    def remove_host(self, host_id: int):
        """Stop monitoring a host and forget its statistics.

        Raises:
            UnknownHostError: if host_id is not registered
        """
        self.registry.remove(host_id)
        self.scheduler.unschedule(host_id)
        self.stats.discard(host_id)
        logger.info("Host %d removed", host_id)
        self.host_removed.emit(host_id)

    def enable_host(self, host_id: int):
        """Resume probing a host.

        Raises:
            UnknownHostError: if host_id is not registered
        """
        self.registry.set_enabled(host_id, True)
        self.scheduler.schedule(host_id)
        self.host_changed.emit(host_id)

    def disable_host(self, host_id: int):
        """Pause probing a host; probes already in flight still resolve.

        Raises:
            UnknownHostError: if host_id is not registered
        """
        self.registry.set_enabled(host_id, False)
        self.scheduler.unschedule(host_id)
        self.host_changed.emit(host_id)

    def set_interval(self, host_id: int, interval_s: float):
        """Change a host's probe interval.

        Raises:
            UnknownHostError: if host_id is not registered
            ValueError: if interval_s is not positive
        """
        self.registry.set_interval(host_id, interval_s)
        self.scheduler.set_interval(host_id, interval_s)
        self.reaper.ensure_finer_than(interval_s)
        self.host_changed.emit(host_id)

    def hosts(self) -> list[HostTarget]:
        return self.registry.targets()

    def host(self, host_id: int) -> HostTarget:
        return self.registry.get(host_id).snapshot_target()

    # ---------- snapshot queries ----------

    def get_snapshot(self, host_id: int) -> StatSnapshot:
        """Return the statistics of one host.

        Raises:
            UnknownHostError: if host_id is not registered
        """
        return self.stats.snapshot(host_id)

    def get_all_snapshots(self) -> dict[int, StatSnapshot]:
        return self.stats.snapshots()

    # ---------- lifecycle ----------

    def start(self):
        """Open the transport and start probing.

        Raises:
            SocketPermissionError: if no address family can be probed
        """
        if self.is_running:
            return
        families = self.transport.open()
        for target in self.registry.targets():
            self._check_reachable(target)
        self.transport.start(self.correlator.handle_reply)
        self.is_running = True
        self.scheduler.start()
        self.reaper.start()
        logger.info(
            "Engine started: %d hosts, families=%s",
            len(self.registry),
            ",".join(sorted(f.value for f in families)),
        )

    def stop(self, grace_s: float | None = None):
        """Stop probing and release the transport within the grace period.

        Probes still outstanding are discarded without loss events.
        """
        if not self.is_running:
            return
        self.is_running = False
        self.scheduler.stop()
        self.reaper.stop()
        self.transport.close(self.config.shutdown_grace_s if grace_s is None else grace_s)
        dropped = sum(record.discard_outstanding() for record in self.registry.records())
        logger.info("Engine stopped (%d outstanding probes discarded)", dropped)

    def _check_reachable(self, target: HostTarget):
        reachable = self.transport.supports(target.family)
        if reachable != target.reachable:
            self.registry.set_reachable(target.host_id, reachable)
            self.host_changed.emit(target.host_id)
        if not reachable:
            logger.warning(
                "Host %d (%s) unreachable: no %s socket",
                target.host_id,
                target.address,
                target.family.value,
            )
