"""Unit tests for ProbeScheduler."""

import pytest

from multiping.fake_transport import FakeTransport
from multiping.icmp import ICMP_HEADER
from multiping.models import AddressFamily, ProbeState
from multiping.registry import HostRegistry
from multiping.scheduler import ProbeScheduler
from multiping.stats import StatisticsEngine


@pytest.fixture
def registry():
    return HostRegistry(identifier_base=500)


@pytest.fixture
def stats():
    return StatisticsEngine(window_size=10)


@pytest.fixture
def scheduler(registry, transport, stats, clock):
    transport.open()
    scheduler = ProbeScheduler(registry, transport, stats, clock=clock, payload_size=16)
    yield scheduler
    scheduler.stop()


def add(registry, stats, address, **kwargs):
    target = registry.add(address, AddressFamily.of(address), kwargs.pop("interval_s", 1.0), 2.0, **kwargs)
    stats.register(target.host_id)
    return target.host_id


class TestProbeScheduler:
    """Test suite for ProbeScheduler class."""

    def test_initial_state(self, scheduler):
        """Verify scheduler starts idle with no timers."""
        assert not scheduler.is_running
        assert scheduler.scheduled_hosts() == []

    def test_start_schedules_eligible_hosts(self, scheduler, registry, stats, transport):
        """Test only enabled, reachable hosts get a timer and a first probe."""
        active = add(registry, stats, "192.0.2.1")
        paused = add(registry, stats, "192.0.2.2", enabled=False)
        blocked = add(registry, stats, "192.0.2.3")
        registry.set_reachable(blocked, False)

        scheduler.start()

        assert scheduler.is_scheduled(active)
        assert not scheduler.is_scheduled(paused)
        assert not scheduler.is_scheduled(blocked)
        assert [p.address for p in transport.sent] == ["192.0.2.1"]

    def test_first_probe_contents(self, scheduler, registry, stats, transport, clock):
        """Test the packet carries the host identifier and sequence 0."""
        clock.advance(7.0)
        host_id = add(registry, stats, "192.0.2.1")

        scheduler.start()

        sent = transport.sent[0]
        msg_type, _, _, identifier, sequence = ICMP_HEADER.unpack_from(sent.packet)
        assert msg_type == 8
        assert identifier == registry.get(host_id).identifier
        assert sequence == 0
        assert len(sent.packet) == 8 + 16
        assert registry.get(host_id).outstanding[(identifier, 0)].sent_at == 7.0

    def test_tick_increments_sequence(self, scheduler, registry, stats, transport):
        host_id = add(registry, stats, "192.0.2.1")
        scheduler.start()

        scheduler.tick(host_id)
        probe = scheduler.tick(host_id)

        assert probe.sequence == 2
        assert registry.get(host_id).outstanding_count() == 3
        assert len(transport.sent) == 3

    def test_probe_sent_signal(self, scheduler, registry, stats):
        host_id = add(registry, stats, "192.0.2.1")
        sent = []
        scheduler.probe_sent.connect(lambda h, s: sent.append((h, s)))

        scheduler.start()

        assert sent == [(host_id, 0)]

    def test_timer_uses_host_interval(self, scheduler, registry, stats):
        """Test per-host timers follow interval changes."""
        host_id = add(registry, stats, "192.0.2.1", interval_s=0.25)
        scheduler.start()

        assert scheduler._timers[host_id].interval() == 250
        scheduler.set_interval(host_id, 2.0)
        assert scheduler._timers[host_id].interval() == 2000

    def test_send_failure_leaves_probe_outstanding(self, scheduler, registry, stats, transport):
        """Test a failed send is reported and later resolved by the reaper."""
        host_id = add(registry, stats, "192.0.2.1")
        failures = []
        scheduler.send_failed.connect(lambda h, s, msg: failures.append((h, s, msg)))
        transport.fail_sends = True

        scheduler.start()

        assert failures and failures[0][:2] == (host_id, 0)
        assert "simulated send failure" in failures[0][2]
        assert registry.get(host_id).outstanding_count() == 1
        assert stats.snapshot(host_id).sent == 0

    def test_unreachable_family_is_send_failure(self, registry, stats, clock):
        """Test sends on a disabled family fail fast instead of raising."""
        transport = FakeTransport(unavailable=[AddressFamily.V6], autoreply=False, clock=clock)
        transport.open()
        scheduler = ProbeScheduler(registry, transport, stats, clock=clock)
        host_id = add(registry, stats, "2001:db8::1")
        scheduler.is_running = True
        failures = []
        scheduler.send_failed.connect(lambda h, s, msg: failures.append(h))

        probe = scheduler.tick(host_id)

        assert probe.state is ProbeState.OUTSTANDING
        assert failures == [host_id]

    def test_tick_for_removed_host(self, scheduler, registry, stats):
        """Test a pending tick for a removed host unschedules it quietly."""
        host_id = add(registry, stats, "192.0.2.1")
        scheduler.start()
        registry.remove(host_id)

        assert scheduler.tick(host_id) is None
        assert not scheduler.is_scheduled(host_id)

    def test_tick_for_disabled_host(self, scheduler, registry, stats, transport):
        host_id = add(registry, stats, "192.0.2.1")
        scheduler.start()
        registry.set_enabled(host_id, False)

        assert scheduler.tick(host_id) is None
        assert len(transport.sent) == 1

    def test_wrapped_sequence_counts_displaced_loss(self, scheduler, registry, stats):
        """Test a probe overwritten after wraparound is recorded as lost."""
        host_id = add(registry, stats, "192.0.2.1")
        scheduler.start()
        record = registry.get(host_id)
        record.next_sequence = 0

        scheduler.tick(host_id)

        assert stats.snapshot(host_id).lost == 1
        assert record.outstanding_count() == 1

    def test_schedule_before_start_is_noop(self, scheduler, registry, stats, transport):
        host_id = add(registry, stats, "192.0.2.1")

        scheduler.schedule(host_id)

        assert not scheduler.is_scheduled(host_id)
        assert transport.sent == []

    def test_stop_clears_timers(self, scheduler, registry, stats):
        add(registry, stats, "192.0.2.1")
        add(registry, stats, "192.0.2.2")
        scheduler.start()

        scheduler.stop()

        assert not scheduler.is_running
        assert scheduler.scheduled_hosts() == []
