"""Shared fixtures for the multiping test suite."""

import os

import pytest

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from PySide6.QtCore import QCoreApplication, QDeadlineTimer, QEventLoop, QThread  # noqa: E402
from PySide6.QtWidgets import QApplication  # noqa: E402

from multiping.config import EngineConfig  # noqa: E402
from multiping.engine import MonitorEngine  # noqa: E402
from multiping.fake_transport import FakeTransport  # noqa: E402


class ManualClock:
    """Monotonic clock that only moves when a test advances it."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture(scope="session", autouse=True)
def qt_app():
    app = QApplication.instance() or QApplication([])
    yield app


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def transport(clock):
    return FakeTransport(autoreply=False, clock=clock)


@pytest.fixture
def config():
    return EngineConfig(interval_s=1.0, timeout_s=2.0, loss_window=10)


@pytest.fixture
def engine(transport, config, clock):
    engine = MonitorEngine(transport, config, clock=clock, identifier_base=1000)
    yield engine
    engine.stop()


@pytest.fixture
def wait_until(qt_app):
    """Process Qt events until predicate() is true or the timeout passes."""

    def wait(predicate, timeout_ms=1000):
        deadline = QDeadlineTimer(timeout_ms)
        while not predicate():
            if deadline.hasExpired():
                raise AssertionError(f"condition not met within {timeout_ms}ms")
            QCoreApplication.processEvents(QEventLoop.AllEvents, 20)
            QThread.msleep(5)

    return wait
