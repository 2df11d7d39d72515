"""Background listener tasks for ICMP sockets."""

import logging
import select
import socket
import threading
import time
from dataclasses import replace
from typing import Callable

from PySide6.QtCore import QObject, QRunnable, Signal

from multiping.icmp import DecodeFailure, EchoReply, decode_echo_reply
from multiping.models import AddressFamily

logger = logging.getLogger(__name__)

RECV_BUFFER_SIZE = 65535


class ListenerSignals(QObject):
    """Signals emitted by a listener running on a pool thread."""

    reply_received = Signal(object, float)  # (EchoReply, received_at)
    error = Signal(str, str)  # (family, error message)
    finished = Signal(str)  # family


class ReceiveWorker(QRunnable):
    """Receives and decodes datagrams from one address-family socket.

    Runs until ``stop_event`` is set or the socket fails. Decoded echo replies
    are emitted on ``signals.reply_received``; anything else is dropped.
    """

    def __init__(
        self,
        sock: socket.socket,
        family: AddressFamily,
        stop_event: threading.Event,
        ip_header: bool = False,
        rewrites_identifier: bool = False,
        clock: Callable[[], float] = time.monotonic,
        poll_interval_s: float = 0.2,
    ):
        super().__init__()
        self.setAutoDelete(False)
        self.sock = sock
        self.family = AddressFamily(family)
        self.stop_event = stop_event
        self.ip_header = ip_header
        self.rewrites_identifier = rewrites_identifier
        self.clock = clock
        self.poll_interval_s = poll_interval_s
        self.signals = ListenerSignals()
        self.received = 0
        self.dropped = 0

    def run(self):
        """Poll the socket until asked to stop."""
        logger.debug("Listener starting: family=%s", self.family.value)
        try:
            while not self.stop_event.is_set():
                try:
                    readable, _, _ = select.select([self.sock], [], [], self.poll_interval_s)
                except (OSError, ValueError) as e:
                    if not self.stop_event.is_set():
                        logger.error("Listener select failed: family=%s, error=%s", self.family.value, e)
                        self.signals.error.emit(self.family.value, str(e))
                    break
                if readable:
                    self.receive_pending()
        finally:
            logger.debug(
                "Listener stopped: family=%s, received=%d, dropped=%d",
                self.family.value,
                self.received,
                self.dropped,
            )
            self.signals.finished.emit(self.family.value)

    def receive_pending(self) -> int:
        """Read every datagram currently queued on the socket."""
        handled = 0
        while True:
            try:
                data, address = self.sock.recvfrom(RECV_BUFFER_SIZE)
            except (BlockingIOError, InterruptedError):
                return handled
            except OSError as e:
                logger.warning("Receive error: family=%s, error=%s", self.family.value, e)
                self.signals.error.emit(self.family.value, str(e))
                return handled
            received_at = self.clock()
            try:
                self.handle_datagram(data, address, received_at)
            except Exception:
                logger.exception("Failed to dispatch datagram: family=%s", self.family.value)
            handled += 1

    def handle_datagram(self, data: bytes, address, received_at: float) -> EchoReply | None:
        """Decode one datagram and emit it if it is an echo reply."""
        source = address[0] if address else None
        result = decode_echo_reply(data, self.family, ip_header=self.ip_header, source=source)
        if isinstance(result, DecodeFailure):
            self.dropped += 1
            logger.debug(
                "Dropped datagram from %s: %s %s",
                source,
                result.reason.value,
                result.detail,
            )
            return None

        if self.rewrites_identifier and result.token is not None:
            result = replace(result, identifier=result.token)

        self.received += 1
        self.signals.reply_received.emit(result, received_at)
        return result
