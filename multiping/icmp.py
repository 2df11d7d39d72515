"""ICMP echo request/reply codec for IPv4 (RFC 792) and IPv6 (RFC 4443).

Echo request layout (both families)::

    0       1       2               4               6               8
    | type  | code  |   checksum    |  identifier   |   sequence    |
    | send timestamp (8 bytes, big-endian double)                   |
    | token (2 bytes) | filler ...                                  |

The token repeats the identifier inside the payload. Unprivileged ping
sockets let the kernel overwrite the header identifier, so the listener uses
the token to recover the value the probe was sent with.

Decoding never raises on bad input: it returns either an ``EchoReply`` or a
``DecodeFailure`` describing why the datagram was dropped.
"""

import ipaddress
import struct
from dataclasses import dataclass
from enum import Enum

from multiping.models import AddressFamily

ICMP_HEADER = struct.Struct("!BBHHH")
TIMESTAMP = struct.Struct("!d")
TOKEN = struct.Struct("!H")

ICMP_ECHO_REPLY = 0
ICMP_DEST_UNREACHABLE = 3
ICMP_SOURCE_QUENCH = 4
ICMP_REDIRECT = 5
ICMP_ECHO_REQUEST = 8
ICMP_TIME_EXCEEDED = 11
ICMP_PARAMETER_PROBLEM = 12

ICMPV6_DEST_UNREACHABLE = 1
ICMPV6_PACKET_TOO_BIG = 2
ICMPV6_TIME_EXCEEDED = 3
ICMPV6_PARAMETER_PROBLEM = 4
ICMPV6_ECHO_REQUEST = 128
ICMPV6_ECHO_REPLY = 129

IPPROTO_ICMPV6 = 58
IPV6_HEADER_LEN = 40

# Timestamp plus token
MIN_PAYLOAD_SIZE = TIMESTAMP.size + TOKEN.size
DEFAULT_PAYLOAD_SIZE = 56

ECHO_REQUEST_TYPE = {AddressFamily.V4: ICMP_ECHO_REQUEST, AddressFamily.V6: ICMPV6_ECHO_REQUEST}
ECHO_REPLY_TYPE = {AddressFamily.V4: ICMP_ECHO_REPLY, AddressFamily.V6: ICMPV6_ECHO_REPLY}

V4_TYPE_NAMES = {
    0: "echo reply",
    3: "destination unreachable",
    4: "source quench",
    5: "redirect",
    6: "alternate host address",
    8: "echo request",
    9: "router advertisement",
    10: "router solicitation",
    11: "time exceeded",
    12: "bad IP header",
    13: "timestamp",
    14: "timestamp reply",
}

V4_DEST_UNREACHABLE_CODES = {
    0: "network unreachable",
    1: "host unreachable",
    2: "protocol unreachable",
    3: "port unreachable",
    4: "fragmentation required",
    5: "source route failed",
    6: "network unknown",
    7: "destination host unknown",
    8: "source host isolated",
    9: "network administratively prohibited",
    10: "host administratively prohibited",
    11: "network unreachable for ToS",
    12: "host unreachable for ToS",
    13: "communication administratively prohibited",
    14: "host precedence violation",
    15: "precedence cutoff in effect",
}

V4_REDIRECT_CODES = {
    0: "network",
    1: "host",
    2: "ToS and network",
    3: "ToS and host",
}

TIME_EXCEEDED_CODES = {
    0: "TTL expired in transit",
    1: "fragment reassembly time exceeded",
}

V4_BAD_HEADER_CODES = {
    0: "pointer indicates error",
    1: "missing required option",
    2: "bad length",
}

V6_TYPE_NAMES = {
    1: "destination unreachable",
    2: "packet too big",
    3: "time exceeded",
    4: "parameter problem",
    128: "echo request",
    129: "echo reply",
}

V6_DEST_UNREACHABLE_CODES = {
    0: "no route to destination",
    1: "communication administratively prohibited",
    2: "beyond scope of source address",
    3: "address unreachable",
    4: "port unreachable",
    5: "source address failed ingress/egress policy",
    6: "reject route to destination",
    7: "error in source routing header",
}

V6_PARAMETER_PROBLEM_CODES = {
    0: "erroneous header field",
    1: "unrecognized next header type",
    2: "unrecognized IPv6 option",
}

_CODE_NAMES = {
    (AddressFamily.V4, ICMP_DEST_UNREACHABLE): V4_DEST_UNREACHABLE_CODES,
    (AddressFamily.V4, ICMP_REDIRECT): V4_REDIRECT_CODES,
    (AddressFamily.V4, ICMP_TIME_EXCEEDED): TIME_EXCEEDED_CODES,
    (AddressFamily.V4, ICMP_PARAMETER_PROBLEM): V4_BAD_HEADER_CODES,
    (AddressFamily.V6, ICMPV6_DEST_UNREACHABLE): V6_DEST_UNREACHABLE_CODES,
    (AddressFamily.V6, ICMPV6_TIME_EXCEEDED): TIME_EXCEEDED_CODES,
    (AddressFamily.V6, ICMPV6_PARAMETER_PROBLEM): V6_PARAMETER_PROBLEM_CODES,
}

ERROR_TYPES = {
    AddressFamily.V4: frozenset(
        {
            ICMP_DEST_UNREACHABLE,
            ICMP_SOURCE_QUENCH,
            ICMP_REDIRECT,
            ICMP_TIME_EXCEEDED,
            ICMP_PARAMETER_PROBLEM,
        }
    ),
    AddressFamily.V6: frozenset(
        {
            ICMPV6_DEST_UNREACHABLE,
            ICMPV6_PACKET_TOO_BIG,
            ICMPV6_TIME_EXCEEDED,
            ICMPV6_PARAMETER_PROBLEM,
        }
    ),
}


class FailureReason(str, Enum):
    TRUNCATED = "truncated"
    MALFORMED = "malformed"
    BAD_CHECKSUM = "bad_checksum"
    ERROR_MESSAGE = "error_message"
    FOREIGN = "foreign"


@dataclass(frozen=True)
class EchoReply:
    """A decoded echo reply."""

    family: AddressFamily
    identifier: int
    sequence: int
    payload: bytes = b""
    sent_at: float | None = None
    token: int | None = None
    source: str | None = None


@dataclass(frozen=True)
class DecodeFailure:
    """Why a received datagram is not a usable echo reply.

    For ICMP error messages the identifier/sequence of the quoted echo
    request are filled in when the quoted datagram is long enough.
    """

    reason: FailureReason
    icmp_type: int | None = None
    code: int | None = None
    detail: str = ""
    quoted_identifier: int | None = None
    quoted_sequence: int | None = None


def checksum(data: bytes) -> int:
    """Compute the RFC 1071 Internet checksum of data."""
    if len(data) % 2:
        data += b"\x00"
    total = sum(struct.unpack("!%dH" % (len(data) // 2), data))
    while total >> 16:
        total = (total & 0xFFFF) + (total >> 16)
    return ~total & 0xFFFF


def _pseudo_header(packet_len: int, source: str, destination: str) -> bytes:
    return (
        ipaddress.IPv6Address(source.split("%", 1)[0]).packed
        + ipaddress.IPv6Address(destination.split("%", 1)[0]).packed
        + struct.pack("!I3xB", packet_len, IPPROTO_ICMPV6)
    )


def icmpv6_checksum(packet: bytes, source: str, destination: str) -> int:
    """Compute the ICMPv6 checksum including the IPv6 pseudo-header."""
    return checksum(_pseudo_header(len(packet), source, destination) + packet)


def describe(family: AddressFamily, icmp_type: int, code: int) -> str:
    """Return a readable name for an ICMP type/code pair."""
    names = V4_TYPE_NAMES if family is AddressFamily.V4 else V6_TYPE_NAMES
    text = names.get(icmp_type, f"type {icmp_type}")
    codes = _CODE_NAMES.get((family, icmp_type))
    if codes is not None:
        text = f"{text} ({codes.get(code, f'code {code}')})"
    return text


def _check_u16(name: str, value: int):
    if not 0 <= value <= 0xFFFF:
        raise ValueError(f"{name} must fit in 16 bits, got {value}")


def encode_echo_request(
    family: AddressFamily,
    identifier: int,
    sequence: int,
    sent_at: float,
    payload_size: int = DEFAULT_PAYLOAD_SIZE,
    source: str | None = None,
    destination: str | None = None,
) -> bytes:
    """Build an echo request carrying the send timestamp in its payload.

    For IPv6 the checksum is only filled in when both source and destination
    are given; otherwise it is left zero for the kernel to compute.
    """
    family = AddressFamily(family)
    _check_u16("identifier", identifier)
    _check_u16("sequence", sequence)
    payload_size = max(payload_size, MIN_PAYLOAD_SIZE)

    filler = bytes(i & 0xFF for i in range(payload_size - MIN_PAYLOAD_SIZE))
    payload = TIMESTAMP.pack(sent_at) + TOKEN.pack(identifier) + filler
    msg_type = ECHO_REQUEST_TYPE[family]

    header = ICMP_HEADER.pack(msg_type, 0, 0, identifier, sequence)
    if family is AddressFamily.V4:
        value = checksum(header + payload)
    elif source is not None and destination is not None:
        value = icmpv6_checksum(header + payload, source, destination)
    else:
        return header + payload
    return ICMP_HEADER.pack(msg_type, 0, value, identifier, sequence) + payload


def strip_ipv4_header(data: bytes) -> bytes | None:
    """Return the IPv4 payload of data, or None if the header is invalid."""
    if len(data) < 20 or data[0] >> 4 != 4:
        return None
    header_len = (data[0] & 0x0F) * 4
    if header_len < 20 or len(data) < header_len:
        return None
    return data[header_len:]


def _quoted_echo(family: AddressFamily, body: bytes) -> tuple[int | None, int | None]:
    """Extract identifier/sequence of the echo request quoted in an error."""
    if family is AddressFamily.V4:
        inner = strip_ipv4_header(body)
    elif len(body) >= IPV6_HEADER_LEN and body[6] == IPPROTO_ICMPV6:
        inner = body[IPV6_HEADER_LEN:]
    else:
        inner = None
    if inner is None or len(inner) < ICMP_HEADER.size:
        return None, None
    inner_type, _, _, identifier, sequence = ICMP_HEADER.unpack_from(inner)
    if inner_type != ECHO_REQUEST_TYPE[family]:
        return None, None
    return identifier, sequence


def decode_echo_reply(
    data: bytes,
    family: AddressFamily,
    ip_header: bool = False,
    source: str | None = None,
    destination: str | None = None,
) -> EchoReply | DecodeFailure:
    """Decode a received datagram into an echo reply.

    Args:
        data: Raw bytes as returned by recvfrom()
        family: Family of the socket the datagram arrived on
        ip_header: True if data starts with an IPv4 header (raw IPv4 sockets)
        source: Sender address; required with destination to verify ICMPv6
        destination: Local address the datagram was sent to

    Returns:
        EchoReply on success, DecodeFailure otherwise
    """
    family = AddressFamily(family)
    if ip_header:
        stripped = strip_ipv4_header(data)
        if stripped is None:
            return DecodeFailure(FailureReason.MALFORMED, detail="invalid IPv4 header")
        data = stripped

    if len(data) < ICMP_HEADER.size:
        return DecodeFailure(FailureReason.TRUNCATED, detail=f"{len(data)} bytes")

    msg_type, code, _, identifier, sequence = ICMP_HEADER.unpack_from(data)

    if family is AddressFamily.V4:
        valid = checksum(data) == 0
    elif source is not None and destination is not None:
        try:
            valid = checksum(_pseudo_header(len(data), source, destination) + data) == 0
        except ValueError:
            return DecodeFailure(FailureReason.MALFORMED, msg_type, code, "bad IPv6 address")
    else:
        # kernel already verified it
        valid = True
    if not valid:
        return DecodeFailure(FailureReason.BAD_CHECKSUM, msg_type, code)

    if msg_type in ERROR_TYPES[family]:
        quoted_id, quoted_seq = _quoted_echo(family, data[ICMP_HEADER.size:])
        return DecodeFailure(
            FailureReason.ERROR_MESSAGE,
            msg_type,
            code,
            describe(family, msg_type, code),
            quoted_id,
            quoted_seq,
        )

    if msg_type != ECHO_REPLY_TYPE[family] or code != 0:
        return DecodeFailure(FailureReason.FOREIGN, msg_type, code, describe(family, msg_type, code))

    payload = data[ICMP_HEADER.size:]
    sent_at = TIMESTAMP.unpack_from(payload)[0] if len(payload) >= TIMESTAMP.size else None
    token = (
        TOKEN.unpack_from(payload, TIMESTAMP.size)[0]
        if len(payload) >= MIN_PAYLOAD_SIZE
        else None
    )
    return EchoReply(
        family=family,
        identifier=identifier,
        sequence=sequence,
        payload=payload,
        sent_at=sent_at,
        token=token,
        source=source,
    )
