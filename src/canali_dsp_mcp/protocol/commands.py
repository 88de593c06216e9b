"""Command codes, checksum policy and request builders.

Each command is identified by a single-byte code. Replies carry the
bitwise complement of the request code in their command field.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from .framing import ChecksumMode, build_frame


class Command(IntEnum):
    """Command codes of the UDP API."""

    PING = 0x00
    READGM = 0x01
    WRITEOUTMUTE = 0x03
    INFO = 0x0B
    STANDBY = 0x0E
    READALLALARMS = 0x0F  # deprecated by READALLALARMS2
    READALLALARMS2 = 0x19


class StandbyMode(IntEnum):
    """First payload byte of a STANDBY request."""

    READ = 0
    STANDBY = 1
    OPERATIVE = 2


# Firmware expects CRC16=0 on STANDBY requests even with a payload.
CHECKSUM_POLICY: dict[Command, ChecksumMode] = {
    Command.STANDBY: ChecksumMode.FORCE_ZERO,
}


def checksum_policy(
    command: Command,
    *,
    computed_standby_crc: bool = False,
    force_zero_crc: bool = False,
) -> ChecksumMode:
    """Look up how the CRC of a request for ``command`` is filled.

    Args:
        command: Request command.
        computed_standby_crc: Send the general computed CRC on STANDBY
            instead of the forced zero; some firmware revisions accept it.
        force_zero_crc: Send a zero CRC for every command.
    """
    if force_zero_crc:
        return ChecksumMode.FORCE_ZERO
    if command == Command.STANDBY and computed_standby_crc:
        return ChecksumMode.COMPUTE
    return CHECKSUM_POLICY.get(command, ChecksumMode.COMPUTE)


@dataclass(frozen=True)
class Request:
    """A logical request: command and payload, before a token is bound."""

    command: Command
    payload: bytes = b""

    def encode(
        self,
        token: int,
        answer_port: int = 0,
        *,
        computed_standby_crc: bool = False,
        force_zero_crc: bool = False,
    ) -> bytes:
        """Encode the request into a datagram using the checksum policy table."""
        mode = checksum_policy(
            self.command,
            computed_standby_crc=computed_standby_crc,
            force_zero_crc=force_zero_crc,
        )
        return build_frame(self.command.value, token, answer_port, self.payload, mode)


def build_ping() -> Request:
    """Build a PING request."""
    return Request(Command.PING)


def build_read_gm() -> Request:
    """Build a READGM request for all channel gains and mutes."""
    return Request(Command.READGM)


def build_info() -> Request:
    """Build an INFO request (manufacturer, family, model, serial)."""
    return Request(Command.INFO)


def build_standby(mode: StandbyMode = StandbyMode.READ) -> Request:
    """Build a STANDBY request.

    Args:
        mode: ``READ`` to query, ``STANDBY`` to enter standby or
            ``OPERATIVE`` to power the amplifier on.
    """
    mode = StandbyMode(mode)
    return Request(Command.STANDBY, bytes([mode.value, 0, 0, 0]))


def build_write_out_mute(channel: int, muted: bool) -> Request:
    """Build a WRITEOUTMUTE request.

    Args:
        channel: Zero-based output channel 0-255.
        muted: True to mute, False to unmute.
    """
    if not 0 <= channel <= 255:
        raise ValueError(f"Channel must be 0-255, got {channel}")
    return Request(Command.WRITEOUTMUTE, bytes([channel, 1 if muted else 0, 0, 0]))


def build_read_all_alarms() -> Request:
    """Build a deprecated READALLALARMS request."""
    return Request(Command.READALLALARMS)


def build_read_all_alarms2() -> Request:
    """Build a READALLALARMS2 request."""
    return Request(Command.READALLALARMS2)


REQUEST_BUILDERS = {
    "ping": build_ping,
    "readgm": build_read_gm,
    "info": build_info,
    "standby": build_standby,
    "readallalarms": build_read_all_alarms,
    "readallalarms2": build_read_all_alarms2,
}
