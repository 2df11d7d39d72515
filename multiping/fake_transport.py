"""Simulated ICMP transport for running without raw-socket privileges."""

import logging
import random
import time
from dataclasses import dataclass
from functools import partial
from typing import Callable, Iterable

from PySide6.QtCore import QTimer

from multiping.errors import TransportError, TransportUnavailableError
from multiping.icmp import (
    ECHO_REPLY_TYPE,
    ICMP_HEADER,
    DecodeFailure,
    EchoReply,
    checksum,
    decode_echo_reply,
)
from multiping.models import AddressFamily
from multiping.transport import ReplyHandler

logger = logging.getLogger(__name__)


@dataclass
class SentPacket:
    family: AddressFamily
    address: str
    packet: bytes
    sent_at: float


def mirror_echo_request(packet: bytes, family: AddressFamily) -> bytes:
    """Turn an echo request into the reply a well-behaved host would send."""
    family = AddressFamily(family)
    _, code, _, identifier, sequence = ICMP_HEADER.unpack_from(packet)
    reply_type = ECHO_REPLY_TYPE[family]
    payload = packet[ICMP_HEADER.size:]
    header = ICMP_HEADER.pack(reply_type, code, 0, identifier, sequence)
    if family is AddressFamily.V4:
        header = ICMP_HEADER.pack(reply_type, code, checksum(header + payload), identifier, sequence)
    return header + payload


class FakeTransport:
    """Transport that answers probes in-process.

    With ``autoreply`` enabled every sent packet is either dropped (loss) or
    answered after a simulated latency via a single-shot timer, which needs a
    running Qt event loop. With ``autoreply`` disabled packets are only
    recorded in ``sent`` and replies are injected with ``deliver()``.
    """

    def __init__(
        self,
        families: Iterable[AddressFamily] = (AddressFamily.V4, AddressFamily.V6),
        unavailable: Iterable[AddressFamily] = (),
        autoreply: bool = True,
        seed: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        # Isolated random instance for thread safety
        self._random = random.Random(seed)
        self.clock = clock
        self.autoreply = autoreply

        self.unavailable = {AddressFamily(f): "simulated" for f in unavailable}
        self.families = frozenset(AddressFamily(f) for f in families) - set(self.unavailable)

        # Simulation parameters
        self.base_latency = 25.0  # Base latency in ms
        self.latency_variance = 5.0  # Normal variance
        self.spike_probability = 0.05  # 5% chance of latency spike
        self.spike_multiplier = 3.0  # Spike makes latency 3x higher
        self.loss_probability = 0.02  # 2% chance of packet loss
        self.fail_sends = False  # Make every send() raise TransportError

        self.sent: list[SentPacket] = []
        self._on_reply: ReplyHandler | None = None
        self._open = False

    @property
    def available_families(self) -> frozenset[AddressFamily]:
        return self.families if self._open else frozenset()

    def open(self) -> frozenset[AddressFamily]:
        self._open = True
        logger.info(
            "Fake transport opened: families=%s",
            ",".join(sorted(f.value for f in self.families)),
        )
        return self.available_families

    def supports(self, family: AddressFamily) -> bool:
        return AddressFamily(family) in self.available_families

    def send(self, family: AddressFamily, address: str, packet: bytes) -> None:
        family = AddressFamily(family)
        if not self.supports(family):
            raise TransportUnavailableError(f"no {family.value} socket available")
        if self.fail_sends:
            raise TransportError(f"simulated send failure to {address}")
        self.sent.append(SentPacket(family, address, packet, self.clock()))
        if self.autoreply:
            self._simulate(family, address, packet)

    def _simulate(self, family: AddressFamily, address: str, packet: bytes):
        if self._random.random() < self.loss_probability:
            return

        if self._random.random() < self.spike_probability:
            latency = self.base_latency * self.spike_multiplier + self._random.gauss(
                0, self.latency_variance
            )
        else:
            latency = self.base_latency + self._random.gauss(0, self.latency_variance)

        # Ensure latency is positive
        latency = max(0.1, latency)

        reply = mirror_echo_request(packet, family)
        QTimer.singleShot(int(round(latency)), partial(self.deliver, family, reply, address))

    def deliver(
        self,
        family: AddressFamily,
        data: bytes,
        source: str,
        received_at: float | None = None,
    ) -> EchoReply | None:
        """Decode data as if it arrived from source and hand it to the listener."""
        if self._on_reply is None:
            return None
        result = decode_echo_reply(data, family, source=source)
        if isinstance(result, DecodeFailure):
            logger.debug("Fake transport dropped datagram: %s", result.reason.value)
            return None
        self._on_reply(result, self.clock() if received_at is None else received_at)
        return result

    def start(self, on_reply: ReplyHandler) -> None:
        self._on_reply = on_reply

    def close(self, grace_s: float = 1.0) -> None:
        self._on_reply = None
        self._open = False
