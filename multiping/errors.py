"""Exceptions raised by the multiping engine."""


class UnknownHostError(KeyError):
    """Raised when a host id is not (or no longer) registered."""

    def __init__(self, host_id: int):
        super().__init__(host_id)
        self.host_id = host_id

    def __str__(self):
        return f"unknown host id {self.host_id}"


class TransportError(OSError):
    """Raised when a single probe could not be handed to the network."""


class TransportUnavailableError(TransportError):
    """Raised when no socket is open for the requested address family."""


class SocketPermissionError(PermissionError, TransportError):
    """Raised when no ICMP socket could be opened for any address family."""


class ProbeStateError(RuntimeError):
    """Raised when a probe that was already resolved is resolved again."""
