"""Tests for request/reply correlation over a loopback UDP socket."""

from __future__ import annotations

import socket
import threading
import time

import pytest

from canali_dsp_mcp.errors import (
    CookieMismatchError,
    ErrorKind,
    RequestTimeoutError,
    TransportSendError,
)
from canali_dsp_mcp.protocol.commands import Command, build_ping, build_read_gm, build_standby
from canali_dsp_mcp.protocol.framing import Frame, build_frame, parse_frame
from canali_dsp_mcp.transport.udp_connection import UDPConnection, UdpOptions, match_reply
from canali_dsp_mcp.utils.crc import crc16


class FakeAmplifier:
    """Answers each request datagram with whatever ``handler`` returns.

    ``handler(frame)`` returns a list of datagrams to send back to the
    requester, which lets tests inject stale or malformed replies.
    """

    def __init__(self, handler) -> None:
        self.handler = handler
        self.requests: list[Frame] = []
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.settimeout(0.05)
        self.port = self.sock.getsockname()[1]
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True)

    def __enter__(self) -> FakeAmplifier:
        self._thread.start()
        return self

    def __exit__(self, *exc) -> None:
        self._stop.set()
        self._thread.join()
        self.sock.close()

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                data, address = self.sock.recvfrom(4096)
            except socket.timeout:
                continue
            frame = parse_frame(data)
            self.requests.append(frame)
            reply_to = (address[0], frame.answer_port or address[1])
            for datagram in self.handler(frame):
                self.sock.sendto(datagram, reply_to)


def reply(frame: Frame, payload: bytes, token: int | None = None) -> bytes:
    return build_frame(
        ~frame.command & 0xFF,
        frame.token if token is None else token,
        0,
        payload,
    )


def connection(port: int, **kwargs) -> UDPConnection:
    return UDPConnection(UdpOptions(host="127.0.0.1", device_port=port, **kwargs))


def test_request_matches_reply():
    """The reply with our command and cookie is returned."""
    with FakeAmplifier(lambda f: [reply(f, bytes([1, 2, 0, 0]))]) as amp:
        frame = connection(amp.port).request(build_standby())

    assert frame.request_command == Command.STANDBY
    assert frame.payload == bytes([1, 2, 0, 0])
    assert amp.requests[0].checksum == 0


def test_answer_port_is_bound_port_by_default():
    """The answer port defaults to the bound ephemeral port."""
    with FakeAmplifier(lambda f: [reply(f, b"\x01")]) as amp:
        connection(amp.port).request(build_ping())
    assert amp.requests[0].answer_port != 0


def test_answer_port_zero_option():
    """With answer_port_zero the device replies to the sender address."""
    with FakeAmplifier(lambda f: [reply(f, b"\x01")]) as amp:
        connection(amp.port, answer_port_zero=True).request(build_ping())
    assert amp.requests[0].answer_port == 0


def test_tokens_come_from_factory():
    """Each request draws a fresh cookie."""
    tokens = iter([0x1111, 0x2222])
    with FakeAmplifier(lambda f: [reply(f, b"\x01")]) as amp:
        conn = UDPConnection(
            UdpOptions(host="127.0.0.1", device_port=amp.port),
            token_factory=lambda: next(tokens),
        )
        assert conn.request(build_ping()).token == 0x1111
        assert conn.request(build_ping()).token == 0x2222


def test_timeout_when_no_reply():
    """No reply: timeout no earlier than the deadline and not much later."""
    with FakeAmplifier(lambda f: []) as amp:
        conn = connection(amp.port, timeout_ms=200)
        started = time.monotonic()
        with pytest.raises(RequestTimeoutError) as exc:
            conn.request(build_read_gm())
        elapsed = time.monotonic() - started

    assert exc.value.kind is ErrorKind.TIMEOUT
    assert 0.2 <= elapsed < 0.7


def test_wrong_token_does_not_resolve():
    """A reply with the right command but wrong cookie is ignored."""
    with FakeAmplifier(lambda f: [reply(f, b"\x01\x02", token=f.token ^ 0xFFFF)]) as amp:
        with pytest.raises(RequestTimeoutError):
            connection(amp.port, timeout_ms=200).request(build_read_gm())


def test_wrong_then_right_token_resolves():
    """The correlator keeps waiting past stale replies."""
    def handler(f):
        return [
            reply(f, b"\x00\x00", token=f.token ^ 0x0101),
            b"garbage",
            build_frame(0x42, f.token, 0, b"\x09"),
            reply(f, bytes([1, 1, 0, 0])),
        ]

    with FakeAmplifier(handler) as amp:
        frame = connection(amp.port).request(build_standby())
    assert frame.payload == bytes([1, 1, 0, 0])


def test_verify_checksums_drops_corrupt_reply():
    """With verification on, a corrupt reply is skipped."""
    def handler(f):
        bad = bytearray(reply(f, b"\x01\x02\x03"))
        bad[9] ^= 0xFF
        return [bytes(bad), reply(f, b"\x01\x02\x04")]

    with FakeAmplifier(handler) as amp:
        conn = UDPConnection(
            UdpOptions(host="127.0.0.1", device_port=amp.port, verify_checksums=True),
            token_factory=lambda: 0x1234,
        )
        frame = conn.request(build_read_gm())
    assert frame.payload == b"\x01\x02\x04"


def test_match_reply():
    """Both command complement and cookie must match."""
    reply_frame = Frame(command=0xFE, token=5, answer_port=0, payload=b"")
    assert match_reply(reply_frame, Command.READGM, 5) is reply_frame
    with pytest.raises(CookieMismatchError):
        match_reply(reply_frame, Command.READGM, 6)
    with pytest.raises(CookieMismatchError):
        match_reply(reply_frame, Command.STANDBY, 5)


def test_listen_collects_every_reply():
    """A listen window returns all datagrams, decoded or not."""
    def handler(f):
        return [
            reply(f, b"\x01"),
            reply(f, b"\x01", token=f.token ^ 1),
            build_frame(0x42, f.token, 0, b"\x01"),
            b"\x02\x00",
        ]

    with FakeAmplifier(handler) as amp:
        responses = connection(amp.port).listen(build_ping(), window_ms=300)

    assert len(responses) == 4
    assert responses[0].matched is True
    assert responses[0].error is None
    assert responses[1].matched is False
    assert "cookie" in responses[1].error
    assert responses[2].frame is not None
    assert responses[2].matched is False
    assert responses[3].frame is None
    assert "too short" in responses[3].error
    assert responses[0].to_dict()["from"].startswith("127.0.0.1:")


def test_listen_is_bounded():
    """Collection stops at max_responses."""
    with FakeAmplifier(lambda f: [reply(f, b"\x01")] * 5) as amp:
        responses = connection(amp.port).listen(build_ping(), window_ms=1000, max_responses=2)
    assert len(responses) == 2


def test_verify_checksums_accepts_empty_payload_reply():
    """An empty-payload reply carrying the CRC of its header is accepted."""
    def handler(f):
        header = build_frame(~f.command & 0xFF, f.token, 0)[:8]
        return [build_frame(~f.command & 0xFF, f.token, 0, b"", crc16(header))]

    with FakeAmplifier(handler) as amp:
        frame = connection(amp.port, verify_checksums=True).request(build_ping())
    assert frame.payload == b""


def test_port_out_of_range_is_a_transport_error():
    """A device port that does not fit 16 bits fails as a send error."""
    conn = connection(70000, timeout_ms=50)
    with pytest.raises(TransportSendError):
        conn.request(build_ping())
