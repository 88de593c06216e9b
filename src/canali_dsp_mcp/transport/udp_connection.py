"""UDP connection to a Canali-DSP amplifier.

The protocol has no connection concept: every exchange binds its own
ephemeral socket, sends one frame and waits for the reply whose command
is the complement of ours and whose cookie matches the one we drew.
Anything else arriving on the socket is dropped.
"""

from __future__ import annotations

import logging
import secrets
import socket
import time
from collections.abc import Callable
from dataclasses import dataclass

from ..errors import (
    CookieMismatchError,
    DecodeError,
    RequestTimeoutError,
    TransportSendError,
)
from ..protocol.commands import Request
from ..protocol.framing import Frame, parse_frame, verify_checksum

logger = logging.getLogger(__name__)

DEFAULT_DEVICE_PORT = 1234
DEFAULT_TIMEOUT_MS = 800
BROADCAST_ADDRESS = "255.255.255.255"
MAX_DATAGRAM_SIZE = 4096
MAX_LISTEN_RESPONSES = 32


@dataclass
class UdpOptions:
    """Where and how to talk to one amplifier."""

    host: str
    device_port: int = DEFAULT_DEVICE_PORT
    answer_port_zero: bool = False
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    computed_standby_crc: bool = False
    force_zero_crc: bool = False
    verify_checksums: bool = False


@dataclass
class ListenResponse:
    """One datagram received during a listen window.

    ``matched`` is True when the datagram answers the request that was
    sent: complement command and cookie both agree.
    """

    address: tuple[str, int]
    raw: bytes
    frame: Frame | None = None
    error: str | None = None
    matched: bool = False

    def to_dict(self) -> dict:
        d = {
            "from": f"{self.address[0]}:{self.address[1]}",
            "raw": self.raw.hex(" "),
            "matched": self.matched,
        }
        if self.frame is not None:
            d["command"] = self.frame.command
            d["token"] = self.frame.token
            d["payload"] = self.frame.payload.hex(" ")
            d["crc16"] = f"0x{self.frame.checksum:04x}"
        if self.error:
            d["error"] = self.error
        return d


def random_token() -> int:
    return secrets.randbelow(0x10000)


def match_reply(frame: Frame, command: int, token: int) -> Frame:
    """Check that ``frame`` answers the request ``(command, token)``.

    Raises:
        CookieMismatchError: The reply belongs to a different exchange.
    """
    if frame.request_command != command:
        raise CookieMismatchError(
            f"Reply command 0x{frame.command:02X} does not answer 0x{command:02X}"
        )
    if frame.token != token:
        raise CookieMismatchError(
            f"Reply cookie 0x{frame.token:04X} does not match 0x{token:04X}"
        )
    return frame


class UDPConnection:
    """Sends requests to one amplifier and correlates the replies.

    Usage::

        conn = UDPConnection(UdpOptions(host="192.168.100.8"))
        frame = conn.request(build_read_gm())
        gm = parse_read_gm(frame.payload, max_channels=4)
    """

    def __init__(
        self,
        options: UdpOptions,
        token_factory: Callable[[], int] = random_token,
    ) -> None:
        self._options = options
        self._token_factory = token_factory

    @property
    def options(self) -> UdpOptions:
        return self._options

    def _open_socket(self, broadcast: bool = False) -> socket.socket:
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        except OSError as e:
            raise TransportSendError(f"Could not create UDP socket: {e}") from e
        try:
            if broadcast:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.bind(("", 0))
        except OSError as e:
            sock.close()
            raise TransportSendError(f"Could not bind UDP socket: {e}") from e
        return sock

    def _send(
        self, sock: socket.socket, request: Request, token: int, host: str
    ) -> None:
        local_port = sock.getsockname()[1]
        answer_port = 0 if self._options.answer_port_zero else local_port
        data = request.encode(
            token,
            answer_port,
            computed_standby_crc=self._options.computed_standby_crc,
            force_zero_crc=self._options.force_zero_crc,
        )
        logger.debug(
            "-> %s:%d %s cookie=0x%04X (%s)",
            host,
            self._options.device_port,
            request.command.name,
            token,
            data.hex(" "),
        )
        try:
            sock.sendto(data, (host, self._options.device_port))
        except (OSError, OverflowError) as e:
            raise TransportSendError(
                f"Send of {request.command.name} to {host}:{self._options.device_port} failed: {e}"
            ) from e

    def _decode(self, data: bytes) -> Frame:
        frame = parse_frame(data)
        if self._options.verify_checksums:
            verify_checksum(frame, allow_zero=True)
        return frame

    def request(self, request: Request, timeout_ms: int | None = None) -> Frame:
        """Send one request and wait for its reply.

        Args:
            request: The logical request to send.
            timeout_ms: Deadline for the reply; defaults to the options.

        Returns:
            The matching reply frame.

        Raises:
            RequestTimeoutError: No matching reply before the deadline.
            TransportSendError: The socket could not be used.
        """
        if timeout_ms is None:
            timeout_ms = self._options.timeout_ms
        command = request.command.value
        token = self._token_factory() & 0xFFFF

        sock = self._open_socket()
        try:
            self._send(sock, request, token, self._options.host)
            deadline = time.monotonic() + timeout_ms / 1000

            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                sock.settimeout(remaining)
                try:
                    data, address = sock.recvfrom(MAX_DATAGRAM_SIZE)
                except socket.timeout:
                    continue
                except OSError as e:
                    raise TransportSendError(f"Receive failed: {e}") from e

                try:
                    frame = match_reply(self._decode(data), command, token)
                except (DecodeError, CookieMismatchError) as e:
                    logger.debug("Dropped datagram from %s:%d: %s", address[0], address[1], e)
                    continue

                logger.debug("<- %s:%d %r", address[0], address[1], frame)
                return frame
        finally:
            sock.close()

        raise RequestTimeoutError(
            f"No reply to {request.command.name} from "
            f"{self._options.host}:{self._options.device_port} within {timeout_ms} ms"
        )

    def listen(
        self,
        request: Request,
        window_ms: int,
        max_responses: int = MAX_LISTEN_RESPONSES,
        broadcast: bool = False,
    ) -> list[ListenResponse]:
        """Send one request and collect every datagram for a fixed window.

        Used for discovery and diagnostics, where several devices (or
        several replies) may answer. Collection stops when the window
        elapses or ``max_responses`` datagrams have arrived.

        Args:
            request: The request to send.
            window_ms: How long to listen after sending.
            max_responses: Upper bound on the number of datagrams kept.
            broadcast: Send to the limited broadcast address instead of
                the configured host.
        """
        token = self._token_factory() & 0xFFFF
        host = BROADCAST_ADDRESS if broadcast else self._options.host
        responses: list[ListenResponse] = []

        sock = self._open_socket(broadcast=broadcast)
        try:
            self._send(sock, request, token, host)
            deadline = time.monotonic() + window_ms / 1000

            while len(responses) < max_responses:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                sock.settimeout(remaining)
                try:
                    data, address = sock.recvfrom(MAX_DATAGRAM_SIZE)
                except socket.timeout:
                    continue
                except OSError as e:
                    raise TransportSendError(f"Receive failed: {e}") from e

                response = ListenResponse(address=address, raw=data)
                try:
                    response.frame = self._decode(data)
                    match_reply(response.frame, request.command.value, token)
                    response.matched = True
                except (DecodeError, CookieMismatchError) as e:
                    response.error = str(e)
                responses.append(response)
        finally:
            sock.close()

        logger.info(
            "Listen window for %s closed with %d response(s)",
            request.command.name,
            len(responses),
        )
        return responses
