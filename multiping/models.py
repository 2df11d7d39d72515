"""Data models for multiping hosts, probes and statistics."""

import ipaddress
import socket
from dataclasses import dataclass
from enum import Enum

from multiping.errors import ProbeStateError


class AddressFamily(str, Enum):
    """Address family of a monitored host."""

    V4 = "v4"
    V6 = "v6"

    @property
    def socket_family(self) -> int:
        return socket.AF_INET if self is AddressFamily.V4 else socket.AF_INET6

    @classmethod
    def of(cls, address: str) -> "AddressFamily":
        """Infer the family of a literal IPv4/IPv6 address.

        Raises:
            ValueError: if address is not a literal IP address
        """
        parsed = ipaddress.ip_address(address.split("%", 1)[0])
        return cls.V4 if parsed.version == 4 else cls.V6


def normalize_address(address: str) -> str:
    """Return the canonical text form of a literal address (zone id dropped)."""
    return ipaddress.ip_address(address.split("%", 1)[0]).compressed


class ProbeState(Enum):
    OUTSTANDING = "outstanding"
    REPLIED = "replied"
    LOST = "lost"


@dataclass
class HostTarget:
    """A monitored host.

    Only ``enabled``, ``interval_s`` and ``reachable`` change after creation.
    ``reachable`` is False when the transport has no socket for the family.
    """

    host_id: int
    address: str
    family: AddressFamily
    interval_s: float
    timeout_s: float
    enabled: bool = True
    reachable: bool = True
    label: str = ""
    zone: str = ""  # IPv6 scope id, e.g. "eth0" for link-local addresses

    def __post_init__(self):
        """Normalize the address and validate timing parameters."""
        self.family = AddressFamily(self.family)
        if AddressFamily.of(self.address) is not self.family:
            raise ValueError(f"address {self.address} is not an {self.family.value} address")
        if "%" in self.address and not self.zone:
            self.zone = self.address.split("%", 1)[1]
        self.address = normalize_address(self.address)
        if self.interval_s <= 0:
            raise ValueError("interval_s must be positive")
        if self.timeout_s <= 0:
            raise ValueError("timeout_s must be positive")
        if not self.label:
            self.label = self.send_address

    @property
    def send_address(self) -> str:
        """Address to hand to the socket; keeps the scope id of link-local hosts."""
        return f"{self.address}%{self.zone}" if self.zone else self.address

    @property
    def schedulable(self) -> bool:
        return self.enabled and self.reachable


@dataclass
class Probe:
    """A single echo request sent to a host."""

    host_id: int
    identifier: int
    sequence: int
    sent_at: float
    state: ProbeState = ProbeState.OUTSTANDING

    @property
    def key(self) -> tuple[int, int]:
        return (self.identifier, self.sequence)

    def age(self, now: float) -> float:
        return now - self.sent_at

    def mark_replied(self):
        self._resolve(ProbeState.REPLIED)

    def mark_lost(self):
        self._resolve(ProbeState.LOST)

    def _resolve(self, state: ProbeState):
        if self.state is not ProbeState.OUTSTANDING:
            raise ProbeStateError(
                f"probe {self.host_id}/{self.sequence} already {self.state.value}"
            )
        self.state = state


@dataclass(frozen=True)
class StatSnapshot:
    """Immutable copy of one host's rolling statistics.

    All times are in milliseconds. ``latest_ms`` and the min/max/mean fields
    are None until the first reply arrives. ``loss_ratio`` covers only the
    most recent ``window_fill`` outcomes; ``sent`` and ``lost`` are totals.
    """

    host_id: int
    latest_ms: float | None = None
    min_ms: float | None = None
    max_ms: float | None = None
    mean_ms: float | None = None
    jitter_ms: float = 0.0
    sent: int = 0
    received: int = 0
    lost: int = 0
    loss_ratio: float = 0.0
    window_fill: int = 0

    @property
    def loss_percent(self) -> float:
        return self.loss_ratio * 100.0
