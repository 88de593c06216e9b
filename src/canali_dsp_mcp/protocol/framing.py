"""Datagram frame builder and parser for the Canali-DSP UDP API.

Frame layout::

    +-----+-----+--------+-------+-------------+---------+-------+------+-----+
    | STX | Cmd | Cookie | Count | Answer port | Payload | CRC16 | ~Cmd | ETX |
    | 1 B | 1 B |  2 B   |  2 B  |     2 B     | Count B |  2 B  | 1 B  | 1 B |
    +-----+-----+--------+-------+-------------+---------+-------+------+-----+

- STX / ETX: fixed 0x02 / 0x03
- Cookie: correlation token chosen by the requester, echoed by the device
- Count: little-endian payload length
- Answer port: UDP port the reply should go to, 0 for "reply to sender"
- CRC16: CRC-16 over STX..end of payload, little-endian
- ~Cmd: bitwise complement of the command byte

All multi-byte integers are little-endian.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import Enum

from ..errors import BadEnvelopeError, ChecksumMismatchError, TruncatedFrameError
from ..utils.crc import crc16

STX = 0x02
ETX = 0x03
HEADER_SIZE = 8  # stx(1) + cmd(1) + cookie(2) + count(2) + answer_port(2)
TRAILER_SIZE = 4  # crc(2) + not_cmd(1) + etx(1)
ENVELOPE_SIZE = HEADER_SIZE + TRAILER_SIZE
MAX_PAYLOAD = 0xFFFF

_HEADER = struct.Struct("<BBHHH")
_TRAILER = struct.Struct("<HBB")


class ChecksumMode(Enum):
    """How the CRC16 field of an outgoing frame is filled."""

    COMPUTE = "compute"
    FORCE_ZERO = "force-zero"


@dataclass
class Frame:
    """A parsed protocol frame."""

    command: int
    token: int
    answer_port: int
    payload: bytes
    checksum: int = 0
    not_command: int = 0

    def __repr__(self) -> str:
        return (
            f"Frame(command=0x{self.command:02X}, token=0x{self.token:04X}, "
            f"answer_port={self.answer_port}, "
            f"payload={self.payload.hex(' ') if self.payload else '(empty)'}, "
            f"crc=0x{self.checksum:04X})"
        )

    @property
    def request_command(self) -> int:
        """The request command this frame answers (replies carry ``~cmd``)."""
        return (self.command ^ 0xFF) & 0xFF

    def header_bytes(self) -> bytes:
        """The 8 header bytes as they appear on the wire."""
        return _HEADER.pack(
            STX, self.command, self.token, len(self.payload), self.answer_port
        )

    def expected_checksum(self) -> int:
        """Recompute the CRC over the header and payload."""
        return crc16(self.header_bytes() + self.payload)

    def checksum_valid(self, allow_zero: bool = False) -> bool:
        """Compare the received CRC with the recomputed one.

        Args:
            allow_zero: Also accept a zero CRC, which some commands use in
                place of the real value.
        """
        if allow_zero and self.checksum == 0:
            return True
        return self.checksum == self.expected_checksum()


def build_frame(
    command: int,
    token: int,
    answer_port: int = 0,
    payload: bytes = b"",
    checksum: ChecksumMode | int = ChecksumMode.COMPUTE,
) -> bytes:
    """Build a single datagram.

    Args:
        command: Single-byte command code.
        token: 16-bit correlation cookie.
        answer_port: Port the device should answer to, 0 for none.
        payload: Command-specific payload bytes.
        checksum: ``ChecksumMode.COMPUTE`` to fill in the CRC (zero when the
            payload is empty), ``ChecksumMode.FORCE_ZERO`` to send 0, or an
            explicit 16-bit value.

    Returns:
        The encoded frame, ``12 + len(payload)`` bytes long.
    """
    if not 0 <= command <= 0xFF:
        raise ValueError(f"Command must be 0-255, got {command}")
    if not 0 <= token <= 0xFFFF:
        raise ValueError(f"Token must be 0-65535, got {token}")
    if not 0 <= answer_port <= 0xFFFF:
        raise ValueError(f"Answer port must be 0-65535, got {answer_port}")
    if len(payload) > MAX_PAYLOAD:
        raise ValueError(f"Payload must be at most {MAX_PAYLOAD} bytes, got {len(payload)}")

    body = _HEADER.pack(STX, command, token, len(payload), answer_port) + payload

    if checksum is ChecksumMode.COMPUTE:
        crc = crc16(body) if payload else 0
    elif checksum is ChecksumMode.FORCE_ZERO:
        crc = 0
    else:
        if not 0 <= checksum <= 0xFFFF:
            raise ValueError(f"Checksum must be 0-65535, got {checksum}")
        crc = checksum

    return body + _TRAILER.pack(crc, ~command & 0xFF, ETX)


def parse_frame(data: bytes) -> Frame:
    """Parse a datagram into a Frame.

    The envelope (markers and command complement) is validated; the CRC is
    not. Use :meth:`Frame.checksum_valid` or :func:`verify_checksum` for that.

    Raises:
        TruncatedFrameError: The buffer is shorter than the declared frame.
        BadEnvelopeError: A marker or the command complement is wrong.
    """
    if len(data) < ENVELOPE_SIZE:
        raise TruncatedFrameError(
            f"Frame too short: {len(data)} bytes, need at least {ENVELOPE_SIZE}"
        )

    stx, command, token, count, answer_port = _HEADER.unpack_from(data, 0)
    if stx != STX:
        raise BadEnvelopeError(f"Bad start marker 0x{stx:02X}")

    end = HEADER_SIZE + count
    if len(data) < end + TRAILER_SIZE:
        raise TruncatedFrameError(
            f"Truncated frame: declared {count} payload bytes, "
            f"got {len(data) - ENVELOPE_SIZE}"
        )

    checksum, not_command, etx = _TRAILER.unpack_from(data, end)
    if etx != ETX:
        raise BadEnvelopeError(f"Bad end marker 0x{etx:02X}")
    if not_command != (~command & 0xFF):
        raise BadEnvelopeError(
            f"Command complement 0x{not_command:02X} does not match command 0x{command:02X}"
        )

    return Frame(
        command=command,
        token=token,
        answer_port=answer_port,
        payload=bytes(data[HEADER_SIZE:end]),
        checksum=checksum,
        not_command=not_command,
    )


def verify_checksum(frame: Frame, allow_zero: bool = False) -> Frame:
    """Return ``frame`` unchanged, or raise if its CRC is wrong."""
    if not frame.checksum_valid(allow_zero=allow_zero):
        raise ChecksumMismatchError(
            f"CRC mismatch: got 0x{frame.checksum:04X}, "
            f"expected 0x{frame.expected_checksum():04X}"
        )
    return frame
