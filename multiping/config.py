"""Engine configuration and its environment-variable overrides."""

import logging
import os
from dataclasses import dataclass, fields
from typing import Mapping

from multiping.models import AddressFamily

logger = logging.getLogger(__name__)

TRANSPORTS = ("icmp", "fake")


@dataclass
class EngineConfig:
    """Tunable parameters of the monitoring engine.

    Times are in seconds. ``loss_window`` is the number of most recent probe
    outcomes the displayed loss ratio is computed over.
    """

    interval_s: float = 1.0
    timeout_s: float = 2.0
    loss_window: int = 100
    reap_interval_s: float = 0.1
    payload_size: int = 56
    shutdown_grace_s: float = 1.0
    families: tuple[AddressFamily, ...] = (AddressFamily.V4, AddressFamily.V6)
    transport: str = "icmp"

    def __post_init__(self):
        """Validate values; raise ValueError on the first bad one."""
        for name in ("interval_s", "timeout_s", "reap_interval_s", "shutdown_grace_s"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.loss_window <= 0:
            raise ValueError("loss_window must be positive")
        if self.payload_size < 10:
            raise ValueError("payload_size must be at least 10 bytes")
        self.families = tuple(AddressFamily(f) for f in self.families)
        if not self.families:
            raise ValueError("at least one address family is required")
        if self.transport not in TRANSPORTS:
            raise ValueError(f"transport must be one of {', '.join(TRANSPORTS)}")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "EngineConfig":
        """Build a config from MULTIPING_* environment variables.

        Environment Variables:
            MULTIPING_INTERVAL: probe interval in seconds (default 1.0)
            MULTIPING_TIMEOUT: probe timeout in seconds (default 2.0)
            MULTIPING_LOSS_WINDOW: outcomes in the loss window (default 100)
            MULTIPING_REAP_INTERVAL: timeout scan period in seconds (default 0.1)
            MULTIPING_PAYLOAD_SIZE: echo payload bytes (default 56)
            MULTIPING_SHUTDOWN_GRACE: seconds to wait for listeners (default 1.0)
            MULTIPING_FAMILIES: comma separated, e.g. "v4" or "v4,v6"
            MULTIPING_TRANSPORT: "icmp" (default) or "fake"

        Unparsable or invalid values are logged and replaced by the default.
        """
        if environ is None:
            environ = os.environ
        defaults = cls()
        parsers = {
            "interval_s": ("MULTIPING_INTERVAL", float),
            "timeout_s": ("MULTIPING_TIMEOUT", float),
            "loss_window": ("MULTIPING_LOSS_WINDOW", int),
            "reap_interval_s": ("MULTIPING_REAP_INTERVAL", float),
            "payload_size": ("MULTIPING_PAYLOAD_SIZE", int),
            "shutdown_grace_s": ("MULTIPING_SHUTDOWN_GRACE", float),
            "families": ("MULTIPING_FAMILIES", _parse_families),
            "transport": ("MULTIPING_TRANSPORT", lambda v: v.strip().lower()),
        }

        values = {}
        for field in fields(cls):
            env_name, parse = parsers[field.name]
            raw = environ.get(env_name)
            default = getattr(defaults, field.name)
            if raw is None or raw.strip() == "":
                values[field.name] = default
                continue
            try:
                value = parse(raw)
                # validate this single field against the defaults
                cls(**{field.name: value})
            except ValueError as e:
                logger.warning("Ignoring %s=%r: %s", env_name, raw, e)
                value = default
            values[field.name] = value
        return cls(**values)


def _parse_families(raw: str) -> tuple[AddressFamily, ...]:
    return tuple(AddressFamily(part.strip().lower()) for part in raw.split(",") if part.strip())
