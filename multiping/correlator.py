"""Reply correlation: match echo replies to outstanding probes."""

import logging

from multiping.icmp import EchoReply
from multiping.models import Probe, normalize_address
from multiping.registry import HostRegistry
from multiping.stats import StatisticsEngine

logger = logging.getLogger(__name__)


class Correlator:
    """Resolves outstanding probes and forwards outcomes to statistics.

    ``handle_reply`` runs on the listener threads and ``handle_timeouts`` on
    the reaper. Both go through the host record's outstanding table, so a
    probe is resolved by whichever path removes it first.
    """

    def __init__(self, registry: HostRegistry, stats: StatisticsEngine):
        self.registry = registry
        self.stats = stats

    def handle_reply(self, reply: EchoReply, received_at: float) -> float | None:
        """Resolve the probe a reply answers.

        Args:
            reply: Decoded echo reply
            received_at: Receive time from the same monotonic clock the
                scheduler stamps probes with

        Returns:
            Round-trip time in milliseconds, or None if the reply was dropped
        """
        record = self.registry.by_identifier(reply.identifier)
        if record is None:
            logger.debug(
                "Dropping reply with unknown identifier=%d seq=%d",
                reply.identifier,
                reply.sequence,
            )
            return None

        if reply.source is not None and not self._same_address(reply.source, record.target.address):
            logger.debug(
                "Dropping reply from %s for host %d (%s)",
                reply.source,
                record.host_id,
                record.target.address,
            )
            return None

        probe = record.resolve_reply(reply.identifier, reply.sequence)
        if probe is None:
            logger.debug(
                "Dropping late or duplicate reply: host=%d seq=%d",
                record.host_id,
                reply.sequence,
            )
            return None

        rtt_ms = max(0.0, (received_at - probe.sent_at) * 1000.0)
        self.stats.record_success(probe.host_id, rtt_ms)
        logger.debug("Reply: host=%d seq=%d rtt=%.2fms", probe.host_id, probe.sequence, rtt_ms)
        return rtt_ms

    def handle_timeouts(self, probes: list[Probe]) -> int:
        """Forward probes resolved as lost to the statistics engine."""
        for probe in probes:
            self.stats.record_loss(probe.host_id)
            logger.debug("Timeout: host=%d seq=%d", probe.host_id, probe.sequence)
        return len(probes)

    @staticmethod
    def _same_address(source: str, address: str) -> bool:
        try:
            return normalize_address(source) == address
        except ValueError:
            return False
