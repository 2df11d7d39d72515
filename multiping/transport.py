"""ICMP socket transport shared by all monitored hosts."""

import logging
import socket
import sys
import threading
import time
from typing import Callable, Iterable, Protocol

from PySide6.QtCore import QThreadPool, Qt

from multiping.errors import SocketPermissionError, TransportError, TransportUnavailableError
from multiping.icmp import EchoReply
from multiping.models import AddressFamily
from multiping.workers import ReceiveWorker

logger = logging.getLogger(__name__)

ReplyHandler = Callable[[EchoReply, float], None]

_PROTOCOLS = {
    AddressFamily.V4: socket.IPPROTO_ICMP,
    AddressFamily.V6: socket.IPPROTO_ICMPV6,
}


class Transport(Protocol):
    """Protocol defining the interface the engine needs from a transport."""

    @property
    def available_families(self) -> frozenset[AddressFamily]:
        ...

    def open(self) -> frozenset[AddressFamily]:
        """Open sockets; return the families that can be probed."""
        ...

    def supports(self, family: AddressFamily) -> bool:
        ...

    def send(self, family: AddressFamily, address: str, packet: bytes) -> None:
        """Transmit packet immediately or raise TransportError."""
        ...

    def start(self, on_reply: ReplyHandler) -> None:
        """Start delivering decoded replies to on_reply."""
        ...

    def close(self, grace_s: float = 1.0) -> None:
        ...


class IcmpTransport:
    """One ICMP socket per address family, each with its own listener.

    An unprivileged ping socket (SOCK_DGRAM) is tried first, then a raw
    socket. A family whose socket cannot be opened is disabled for the
    lifetime of the transport; the failure is logged once.
    """

    def __init__(
        self,
        families: Iterable[AddressFamily] = (AddressFamily.V4, AddressFamily.V6),
        clock: Callable[[], float] = time.monotonic,
        poll_interval_s: float = 0.2,
    ):
        self.families = tuple(AddressFamily(f) for f in families)
        self.clock = clock
        self.poll_interval_s = poll_interval_s

        self._sockets: dict[AddressFamily, socket.socket] = {}
        self._socket_types: dict[AddressFamily, int] = {}
        self.unavailable: dict[AddressFamily, str] = {}  # family -> reason

        self._stop_event = threading.Event()
        self._workers: list[ReceiveWorker] = []
        self.thread_pool = QThreadPool()
        self._opened = False

    @property
    def available_families(self) -> frozenset[AddressFamily]:
        return frozenset(self._sockets)

    def supports(self, family: AddressFamily) -> bool:
        return AddressFamily(family) in self._sockets

    def open(self) -> frozenset[AddressFamily]:
        """Open a socket for each configured family.

        Raises:
            SocketPermissionError: if no family could be opened
        """
        if self._opened:
            return self.available_families
        self._opened = True

        for family in self.families:
            try:
                sock, sock_type = self._open_socket(family)
            except OSError as e:
                self.unavailable[family] = str(e)
                logger.error(
                    "ICMP %s probing disabled: cannot open socket (%s)",
                    family.value,
                    e,
                )
                continue
            self._sockets[family] = sock
            self._socket_types[family] = sock_type
            logger.info(
                "Opened ICMP %s socket (%s)",
                family.value,
                "datagram" if sock_type == socket.SOCK_DGRAM else "raw",
            )

        if not self._sockets:
            reasons = "; ".join(f"{f.value}: {r}" for f, r in self.unavailable.items())
            raise SocketPermissionError(
                f"no ICMP socket could be opened ({reasons}). Run with elevated "
                "privileges, grant CAP_NET_RAW, or widen net.ipv4.ping_group_range."
            )
        return self.available_families

    def _open_socket(self, family: AddressFamily) -> tuple[socket.socket, int]:
        last_error = None
        for sock_type in (socket.SOCK_DGRAM, socket.SOCK_RAW):
            try:
                sock = socket.socket(family.socket_family, sock_type, _PROTOCOLS[family])
            except OSError as e:
                logger.debug(
                    "Socket type %d unavailable for %s: %s", sock_type, family.value, e
                )
                last_error = e
                continue
            sock.setblocking(False)
            return sock, sock_type
        raise last_error

    def _receives_ip_header(self, family: AddressFamily) -> bool:
        # Linux strips the IPv4 header on ping sockets, BSD/macOS do not
        if family is not AddressFamily.V4:
            return False
        if self._socket_types[family] == socket.SOCK_RAW:
            return True
        return not sys.platform.startswith("linux")

    def send(self, family: AddressFamily, address: str, packet: bytes) -> None:
        """Send one echo request without blocking.

        Raises:
            TransportUnavailableError: if no socket is open for family
            TransportError: if the kernel rejected or could not queue the packet
        """
        family = AddressFamily(family)
        sock = self._sockets.get(family)
        if sock is None:
            raise TransportUnavailableError(f"no {family.value} socket available")
        try:
            sock.sendto(packet, (address, 0))
        except OSError as e:
            raise TransportError(f"send to {address} failed: {e}") from e

    def start(self, on_reply: ReplyHandler) -> None:
        """Start one listener per open socket."""
        if self._workers:
            return
        self._stop_event.clear()
        self.thread_pool.setMaxThreadCount(max(1, len(self._sockets)))
        for family, sock in self._sockets.items():
            worker = ReceiveWorker(
                sock,
                family,
                self._stop_event,
                ip_header=self._receives_ip_header(family),
                rewrites_identifier=self._socket_types[family] == socket.SOCK_DGRAM,
                clock=self.clock,
                poll_interval_s=self.poll_interval_s,
            )
            # Replies are correlated on the listener thread itself
            worker.signals.reply_received.connect(on_reply, Qt.DirectConnection)
            self._workers.append(worker)
            self.thread_pool.start(worker)
        logger.info("Listening on %d ICMP socket(s)", len(self._workers))

    def close(self, grace_s: float = 1.0) -> None:
        """Stop listeners (waiting at most grace_s) and close the sockets."""
        self._stop_event.set()
        if self._workers and not self.thread_pool.waitForDone(int(grace_s * 1000)):
            logger.warning("Listeners did not stop within %.1fs", grace_s)
        self._workers.clear()
        for sock in self._sockets.values():
            sock.close()
        self._sockets.clear()
        self._socket_types.clear()
        self.unavailable.clear()
        self._opened = False
        logger.debug("Transport closed")
