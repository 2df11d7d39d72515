"""Entry point for the multiping dashboard."""

import argparse
import logging
import signal
import socket
import sys

from PySide6.QtCore import QTimer
from PySide6.QtWidgets import QApplication

from multiping.config import EngineConfig
from multiping.engine import MonitorEngine
from multiping.errors import SocketPermissionError
from multiping.fake_transport import FakeTransport
from multiping.logging_config import configure_logging
from multiping.models import AddressFamily
from multiping.transport import IcmpTransport
from multiping.ui.main_window import MainWindow

logger = logging.getLogger(__name__)


def build_parser(config: EngineConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="multiping",
        description="Ping many hosts at once and show live latency and loss statistics.",
    )
    parser.add_argument("hosts", nargs="*", help="hosts (IP addresses or names) to ping")
    parser.add_argument(
        "-i", "--interval", type=float, default=config.interval_s,
        help="seconds between probes to each host (default: %(default)s)",
    )
    parser.add_argument(
        "-t", "--timeout", type=float, default=config.timeout_s,
        help="seconds before an unanswered probe counts as lost (default: %(default)s)",
    )
    parser.add_argument(
        "-w", "--window", type=int, default=config.loss_window,
        help="number of recent probes the loss ratio covers (default: %(default)s)",
    )
    parser.add_argument(
        "-s", "--statistics", action="store_true",
        help="also show min, average and max latency",
    )
    family = parser.add_mutually_exclusive_group()
    family.add_argument("-4", dest="family", action="store_const", const=AddressFamily.V4,
                        help="resolve names to IPv4 addresses only")
    family.add_argument("-6", dest="family", action="store_const", const=AddressFamily.V6,
                        help="resolve names to IPv6 addresses only")
    return parser


def resolve_host(host: str, family: AddressFamily | None = None) -> tuple[str, AddressFamily]:
    """Resolve a host name or literal to (address, family).

    Raises:
        OSError: if the name cannot be resolved
    """
    af = family.socket_family if family is not None else socket.AF_UNSPEC
    infos = socket.getaddrinfo(host, None, af, socket.SOCK_DGRAM)
    if not infos:
        raise OSError(f"no addresses for {host}")
    # Prefer IPv4 when no family was requested
    infos.sort(key=lambda info: info[0] != socket.AF_INET)
    address = infos[0][4][0]
    return address, AddressFamily.of(address)


def build_engine(transport, config: EngineConfig, targets) -> MonitorEngine:
    engine = MonitorEngine(transport, config)
    for name, address, family in targets:
        engine.add_host(address, family, label=name)
    return engine


def main(argv=None):
    """Main entry point for the multiping application."""
    configure_logging()
    env_config = EngineConfig.from_env()
    args = build_parser(env_config).parse_args(argv)

    if not args.hosts:
        print(
            "You need to specify hosts on the command line.\nExample: multiping 127.0.0.1",
            file=sys.stderr,
        )
        return 1

    try:
        config = EngineConfig(
            interval_s=args.interval,
            timeout_s=args.timeout,
            loss_window=args.window,
            reap_interval_s=env_config.reap_interval_s,
            payload_size=env_config.payload_size,
            shutdown_grace_s=env_config.shutdown_grace_s,
            families=env_config.families,
            transport=env_config.transport,
        )
    except ValueError as e:
        print(f"Invalid option: {e}", file=sys.stderr)
        return 2

    targets = []
    for host in args.hosts:
        try:
            address, family = resolve_host(host, args.family)
        except OSError as e:
            print(f"Failed to resolve {host}: {e}", file=sys.stderr)
            continue
        targets.append((host, address, family))
    if not targets:
        return 1

    app = QApplication(sys.argv[:1])

    user_message = None
    debug_info = None

    engine = None
    if config.transport != "fake":
        engine = build_engine(IcmpTransport(config.families), config, targets)
        try:
            engine.start()
        except SocketPermissionError as e:
            debug_info = str(e)
            logger.warning("ICMP sockets unavailable: %s", e)
            user_message = "Using simulated data (permission denied)"
            engine = None

    # Fall back to the simulated network if needed
    if engine is None:
        engine = build_engine(FakeTransport(config.families), config, targets)
        engine.start()
        logger.info("Using FakeTransport")
        if not user_message:
            user_message = "Using simulated data (MULTIPING_TRANSPORT=fake)"

    window = MainWindow(engine, show_details=args.statistics)
    if user_message:
        window.show_fallback(user_message, debug_info)
    window.show()

    # Ctrl+C closes the window, which stops the engine. The idle timer hands
    # control back to Python so the handler can run.
    signal.signal(signal.SIGINT, lambda *_: window.close())
    wakeup = QTimer()
    wakeup.timeout.connect(lambda: None)
    wakeup.start(250)

    status = app.exec()
    engine.stop()
    return status


if __name__ == "__main__":
    sys.exit(main())
