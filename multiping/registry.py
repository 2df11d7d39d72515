"""Host registry: per-host targets and outstanding-probe tables."""

import copy
import logging
import os
import threading
from dataclasses import dataclass, field

from multiping.errors import UnknownHostError
from multiping.models import AddressFamily, HostTarget, Probe

logger = logging.getLogger(__name__)

SEQUENCE_MODULO = 0x10000


@dataclass
class HostRecord:
    """Registry entry for one host.

    The outstanding table is keyed by (identifier, sequence). It is touched by
    the scheduler (insert), the correlator (remove on reply) and the timeout
    reaper (remove on expiry), always under ``lock``. Whoever pops a key first
    resolves the probe; the other path finds nothing and does nothing.
    """

    target: HostTarget
    identifier: int
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    outstanding: dict[tuple[int, int], Probe] = field(default_factory=dict, repr=False)
    next_sequence: int = 0
    removed: bool = False

    @property
    def host_id(self) -> int:
        return self.target.host_id

    def open_probe(self, now: float) -> tuple[Probe | None, Probe | None]:
        """Allocate the next sequence number and record a new outstanding probe.

        Returns:
            (probe, displaced). ``probe`` is None if the host was removed.
            ``displaced`` is an older probe that still held the same key after
            the sequence wrapped around; it has been resolved as lost.
        """
        with self.lock:
            if self.removed:
                return None, None
            sequence = self.next_sequence
            self.next_sequence = (sequence + 1) % SEQUENCE_MODULO
            probe = Probe(self.host_id, self.identifier, sequence, now)
            displaced = self.outstanding.pop(probe.key, None)
            if displaced is not None:
                displaced.mark_lost()
            self.outstanding[probe.key] = probe
            return probe, displaced

    def resolve_reply(self, identifier: int, sequence: int) -> Probe | None:
        with self.lock:
            probe = self.outstanding.pop((identifier, sequence), None)
            if probe is not None:
                probe.mark_replied()
            return probe

    def expire(self, now: float) -> list[Probe]:
        """Resolve as lost every probe at least ``timeout_s`` old."""
        with self.lock:
            timeout = self.target.timeout_s
            expired = [p for p in self.outstanding.values() if p.age(now) >= timeout]
            for probe in expired:
                del self.outstanding[probe.key]
                probe.mark_lost()
            return expired

    def discard_outstanding(self) -> int:
        """Drop all outstanding probes without resolving them."""
        with self.lock:
            count = len(self.outstanding)
            self.outstanding.clear()
            return count

    def outstanding_count(self) -> int:
        with self.lock:
            return len(self.outstanding)

    def snapshot_target(self) -> HostTarget:
        with self.lock:
            return copy.copy(self.target)


class HostRegistry:
    """Arena of host records addressed by stable host id.

    Host ids are never reused. Each live host gets its own 16-bit echo
    identifier so that replies can be routed back without comparing
    addresses, and stale replies for a removed host cannot match a new one
    until the identifier space wraps.
    """

    def __init__(self, identifier_base: int | None = None):
        self._lock = threading.Lock()
        self._records: dict[int, HostRecord] = {}
        self._by_identifier: dict[int, HostRecord] = {}
        self._next_host_id = 1
        if identifier_base is None:
            identifier_base = os.getpid()
        self._next_identifier = identifier_base & 0xFFFF

    def _allocate_identifier(self) -> int:
        for _ in range(SEQUENCE_MODULO):
            candidate = self._next_identifier
            self._next_identifier = (candidate + 1) % SEQUENCE_MODULO
            if candidate not in self._by_identifier:
                return candidate
        raise RuntimeError("no free ICMP identifiers left")

    def add(
        self,
        address: str,
        family: AddressFamily,
        interval_s: float,
        timeout_s: float,
        label: str = "",
        enabled: bool = True,
    ) -> HostTarget:
        """Register a new host and return a copy of its target.

        Raises:
            ValueError: if the address does not match the family or the
                timing parameters are invalid
        """
        with self._lock:
            target = HostTarget(
                host_id=self._next_host_id,
                address=address,
                family=family,
                interval_s=interval_s,
                timeout_s=timeout_s,
                enabled=enabled,
                label=label,
            )
            record = HostRecord(target, self._allocate_identifier())
            self._next_host_id += 1
            self._records[target.host_id] = record
            self._by_identifier[record.identifier] = record
            logger.debug(
                "Host added: id=%d address=%s identifier=%d (total: %d)",
                target.host_id,
                target.address,
                record.identifier,
                len(self._records),
            )
            return copy.copy(target)

    def remove(self, host_id: int) -> HostRecord:
        """Unregister a host and drop its outstanding probes.

        Raises:
            UnknownHostError: if host_id is not registered
        """
        with self._lock:
            record = self._records.pop(host_id, None)
            if record is None:
                raise UnknownHostError(host_id)
            self._by_identifier.pop(record.identifier, None)
        with record.lock:
            record.removed = True
            dropped = len(record.outstanding)
            record.outstanding.clear()
        logger.debug("Host removed: id=%d (dropped %d outstanding)", host_id, dropped)
        return record

    def find(self, host_id: int) -> HostRecord | None:
        with self._lock:
            return self._records.get(host_id)

    def get(self, host_id: int) -> HostRecord:
        record = self.find(host_id)
        if record is None:
            raise UnknownHostError(host_id)
        return record

    def by_identifier(self, identifier: int) -> HostRecord | None:
        with self._lock:
            return self._by_identifier.get(identifier)

    def _update(self, host_id: int, **changes) -> HostTarget:
        record = self.get(host_id)
        with record.lock:
            for name, value in changes.items():
                setattr(record.target, name, value)
            return copy.copy(record.target)

    def set_enabled(self, host_id: int, enabled: bool) -> HostTarget:
        return self._update(host_id, enabled=enabled)

    def set_reachable(self, host_id: int, reachable: bool) -> HostTarget:
        return self._update(host_id, reachable=reachable)

    def set_interval(self, host_id: int, interval_s: float) -> HostTarget:
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        return self._update(host_id, interval_s=interval_s)

    def records(self) -> list[HostRecord]:
        with self._lock:
            return list(self._records.values())

    def targets(self) -> list[HostTarget]:
        return [record.snapshot_target() for record in self.records()]

    def __contains__(self, host_id: int) -> bool:
        with self._lock:
            return host_id in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
