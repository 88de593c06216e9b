"""Payload decoders for device replies.

Firmware replies vary in length, so decoders never raise on short
buffers: they return ``None`` when there is not even an acknowledgement to
report, or a partial result with the missing fields left as ``None``.
Most payloads start with an ``answer_ok`` byte that is 1 on success.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import ClassVar

from ..errors import ErrorKind
from ..models.alarms import explain_channel, explain_global, set_bits
from .commands import Command
from .framing import Frame

INFO_FIELD_SIZE = 32
INFO_PAYLOAD_SIZE = 4 * INFO_FIELD_SIZE

_INT16 = struct.Struct("<h")
_UINT32 = struct.Struct("<I")


@dataclass
class UnexpectedLength:
    """Outcome of a fixed-size decoder given a payload of the wrong size."""

    expected: int
    actual: int
    kind: ClassVar[ErrorKind] = ErrorKind.UNEXPECTED_LENGTH


@dataclass
class PingResponse:
    """Parsed PING reply."""

    ok: bool | None


@dataclass
class StandbyResponse:
    """Parsed STANDBY reply.

    ``power`` is True when operative, False in standby and None for an
    unknown state code.
    """

    ok: bool
    raw_state: int
    power: bool | None


@dataclass
class ChannelGainMute:
    """Gains (dB) and mutes of one channel from a READGM reply."""

    in_gain: float | None = None
    out_gain: float | None = None
    in_mute: bool | None = None
    out_mute: bool | None = None


@dataclass
class GainMuteResponse:
    """Parsed READGM reply."""

    ok: bool
    reported_channels: int
    channels: list[ChannelGainMute] = field(default_factory=list)


@dataclass
class AlarmResponse:
    """Parsed READALLALARMS2 reply."""

    ok: bool
    gpio_alarms: int
    global_alarms: int | None = None
    channel_alarms: list[int] = field(default_factory=list)

    @property
    def fault(self) -> bool:
        if self.global_alarms:
            return True
        return any(word != 0 for word in self.channel_alarms)

    def describe(self) -> dict:
        """Expand the alarm words into bit lists and named conditions."""
        global_word = self.global_alarms or 0
        return {
            "ok": self.ok,
            "fault": self.fault,
            "gpio_alarms": f"0x{self.gpio_alarms:02x}",
            "gpio_bits": set_bits(self.gpio_alarms, width=8),
            "global_alarms": f"0x{global_word:08x}",
            "global_notes": explain_global(global_word),
            "channels": [
                {
                    "channel": index,
                    "alarms": f"0x{word:08x}",
                    "bits": set_bits(word),
                    "notes": explain_channel(word),
                }
                for index, word in enumerate(self.channel_alarms)
            ],
        }


@dataclass
class LegacyAlarmResponse:
    """Parsed reply to the deprecated READALLALARMS command.

    Bit meanings of this format are not documented, so only the raw
    bitmap is exposed.
    """

    ok: bool
    alarms: int

    @property
    def bits(self) -> list[int]:
        return set_bits(self.alarms, width=8)


@dataclass
class DeviceInfoResponse:
    """Parsed INFO reply."""

    manufacturer: str
    family: str
    model: str
    serial: str


@dataclass
class OutMuteAck:
    """Parsed WRITEOUTMUTE reply."""

    ok: bool
    channel: int
    muted: bool


def parse_ping(payload: bytes) -> PingResponse:
    """Parse a PING reply; an empty payload still counts as a reply."""
    return PingResponse(ok=payload[0] == 1 if payload else None)


def parse_standby(payload: bytes) -> StandbyResponse | None:
    """Parse a STANDBY reply: ``[answer_ok, on_off, 0, 0]``.

    ``on_off`` is 2 when the amplifier is operative and 1 in standby.
    """
    if len(payload) < 2:
        return None

    raw_state = payload[1]
    if raw_state == 2:
        power: bool | None = True
    elif raw_state == 1:
        power = False
    else:
        power = None

    return StandbyResponse(ok=payload[0] == 1, raw_state=raw_state, power=power)


def parse_read_gm(payload: bytes, max_channels: int) -> GainMuteResponse | None:
    """Parse a READGM reply.

    Layout after ``[answer_ok, num_channels]`` is four arrays of
    ``num_channels`` entries each: input gains (int16, centi-dB), output
    gains (int16, centi-dB), input mutes (u8), output mutes (u8). Only the
    first ``max_channels`` entries of each array are kept. Decoding stops
    at the first array entry that does not fit in the buffer.
    """
    if len(payload) < 2:
        return None

    reported = payload[1]
    keep = min(reported, max(max_channels, 0))
    result = GainMuteResponse(
        ok=payload[0] == 1,
        reported_channels=reported,
        channels=[ChannelGainMute() for _ in range(keep)],
    )

    offset = 2
    for attr, size in (("in_gain", 2), ("out_gain", 2), ("in_mute", 1), ("out_mute", 1)):
        for index in range(reported):
            if offset + size > len(payload):
                return result
            if index < keep:
                if size == 2:
                    value = _INT16.unpack_from(payload, offset)[0] / 100
                else:
                    value = payload[offset] == 1
                setattr(result.channels[index], attr, value)
            offset += size

    return result


def parse_read_all_alarms2(payload: bytes) -> AlarmResponse | None:
    """Parse a READALLALARMS2 reply.

    Layout: ``[answer_ok, gpio_alarms, 0, 0]`` followed by u32 words, the
    global alarm word first and then one word per channel.
    """
    if len(payload) < 2:
        return None

    result = AlarmResponse(ok=payload[0] == 1, gpio_alarms=payload[1])

    offset = 4
    if offset + 4 > len(payload):
        return result
    result.global_alarms = _UINT32.unpack_from(payload, offset)[0]
    offset += 4

    while offset + 4 <= len(payload):
        result.channel_alarms.append(_UINT32.unpack_from(payload, offset)[0])
        offset += 4

    return result


def parse_read_all_alarms(payload: bytes) -> LegacyAlarmResponse | None:
    """Parse a deprecated READALLALARMS reply: ``[answer_ok, alarms, 0, 0]``."""
    if len(payload) < 2:
        return None
    return LegacyAlarmResponse(ok=payload[0] == 1, alarms=payload[1])


def _zstr(data: bytes) -> str:
    return data.split(b"\x00", 1)[0].decode("ascii", errors="replace").strip()


def parse_info(payload: bytes) -> DeviceInfoResponse | UnexpectedLength:
    """Parse an INFO reply: four 32-byte NUL-terminated ASCII strings."""
    if len(payload) < INFO_PAYLOAD_SIZE:
        return UnexpectedLength(expected=INFO_PAYLOAD_SIZE, actual=len(payload))

    fields = [
        _zstr(payload[i : i + INFO_FIELD_SIZE])
        for i in range(0, INFO_PAYLOAD_SIZE, INFO_FIELD_SIZE)
    ]
    return DeviceInfoResponse(*fields)


def parse_write_out_mute(payload: bytes) -> OutMuteAck | None:
    """Parse a WRITEOUTMUTE reply: ``[answer_ok, channel, outmute, 0]``."""
    if len(payload) < 3:
        return None
    return OutMuteAck(ok=payload[0] == 1, channel=payload[1], muted=payload[2] == 1)


def parse_response(frame: Frame, max_channels: int = 8):
    """Auto-dispatch a reply frame to the matching payload decoder.

    Returns the decoded dataclass, or the raw Frame if the command is
    unknown or the payload is too short to decode.
    """
    parsers = {
        Command.PING: parse_ping,
        Command.READGM: lambda payload: parse_read_gm(payload, max_channels),
        Command.WRITEOUTMUTE: parse_write_out_mute,
        Command.INFO: parse_info,
        Command.STANDBY: parse_standby,
        Command.READALLALARMS: parse_read_all_alarms,
        Command.READALLALARMS2: parse_read_all_alarms2,
    }
    try:
        command = Command(frame.request_command)
    except ValueError:
        return frame

    result = parsers[command](frame.payload)
    if result is not None:
        return result
    return frame
