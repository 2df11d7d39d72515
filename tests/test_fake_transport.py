"""Tests for the simulated transport."""

import pytest

from multiping.errors import TransportError, TransportUnavailableError
from multiping.fake_transport import FakeTransport, mirror_echo_request
from multiping.icmp import ICMP_HEADER, EchoReply, checksum, decode_echo_reply, encode_echo_request
from multiping.models import AddressFamily

V4 = AddressFamily.V4
V6 = AddressFamily.V6


class TestMirrorEchoRequest:
    def test_v4_reply(self):
        """Test the mirrored reply has type 0, a valid checksum and the same payload."""
        request = encode_echo_request(V4, 11, 22, 3.5)

        reply = mirror_echo_request(request, V4)

        assert ICMP_HEADER.unpack_from(reply)[0] == 0
        assert checksum(reply) == 0
        assert reply[8:] == request[8:]

    def test_v6_reply(self):
        reply = mirror_echo_request(encode_echo_request(V6, 11, 22, 3.5), V6)

        decoded = decode_echo_reply(reply, V6)
        assert isinstance(decoded, EchoReply)
        assert decoded.sequence == 22


class TestFakeTransport:
    """Send and delivery behavior without an event loop."""

    def test_unavailable_family(self, clock):
        transport = FakeTransport(unavailable=[V6], autoreply=False, clock=clock)

        assert transport.open() == frozenset({V4})
        assert not transport.supports(V6)
        with pytest.raises(TransportUnavailableError):
            transport.send(V6, "2001:db8::1", b"")

    def test_send_before_open(self, transport):
        with pytest.raises(TransportUnavailableError):
            transport.send(V4, "192.0.2.1", b"")

    def test_send_records_packet(self, transport, clock):
        transport.open()
        clock.advance(4.0)

        transport.send(V4, "192.0.2.1", b"abc")

        assert len(transport.sent) == 1
        assert transport.sent[0].address == "192.0.2.1"
        assert transport.sent[0].sent_at == 4.0

    def test_fail_sends(self, transport):
        transport.open()
        transport.fail_sends = True

        with pytest.raises(TransportError):
            transport.send(V4, "192.0.2.1", b"abc")
        assert transport.sent == []

    def test_deliver_calls_handler(self, transport, clock):
        """Test delivered datagrams are decoded and handed to the handler."""
        transport.open()
        replies = []
        transport.start(lambda reply, ts: replies.append((reply, ts)))
        clock.advance(1.5)
        data = mirror_echo_request(encode_echo_request(V4, 5, 6, 1.0), V4)

        transport.deliver(V4, data, "192.0.2.1")

        assert len(replies) == 1
        assert replies[0][0].source == "192.0.2.1"
        assert replies[0][1] == 1.5

    def test_deliver_drops_garbage(self, transport):
        replies = []
        transport.open()
        transport.start(lambda reply, ts: replies.append(reply))

        assert transport.deliver(V4, b"\x00\x01", "192.0.2.1") is None
        assert replies == []

    def test_deliver_after_close(self, transport):
        transport.open()
        transport.start(lambda reply, ts: None)
        transport.close()

        data = mirror_echo_request(encode_echo_request(V4, 5, 6, 1.0), V4)
        assert transport.deliver(V4, data, "192.0.2.1") is None
        assert transport.available_families == frozenset()

    def test_total_loss_sends_no_reply(self, clock, wait_until):
        """Test a loss probability of 1 never schedules a reply."""
        transport = FakeTransport(seed=1, clock=clock)
        transport.loss_probability = 1.0
        transport.open()
        replies = []
        transport.start(lambda reply, ts: replies.append(reply))

        transport.send(V4, "192.0.2.1", encode_echo_request(V4, 1, 1, 0.0))

        with pytest.raises(AssertionError):
            wait_until(lambda: bool(replies), timeout_ms=150)
        assert len(transport.sent) == 1
