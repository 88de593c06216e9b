"""Status aggregation: one read-only snapshot per poll cycle.

Three requests are issued in sequence (STANDBY read, READGM,
READALLALARMS2). A failure of any one of them only leaves its fields
unset in the snapshot.
"""

from __future__ import annotations

import logging

from .errors import CanaliError
from .models.status import DeviceStatus
from .protocol.commands import (
    build_read_all_alarms2,
    build_read_gm,
    build_standby,
)
from .protocol.parser import (
    parse_read_all_alarms2,
    parse_read_gm,
    parse_standby,
)
from .transport.udp_connection import (
    DEFAULT_DEVICE_PORT,
    DEFAULT_TIMEOUT_MS,
    UDPConnection,
    UdpOptions,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHANNELS = 8


def _read_power(conn: UDPConnection, status: DeviceStatus) -> None:
    frame = conn.request(build_standby())
    standby = parse_standby(frame.payload)
    if standby is None:
        logger.debug("STANDBY reply too short: %r", frame)
        return
    if standby.ok:
        status.power = standby.power


def _read_gain_mute(conn: UDPConnection, status: DeviceStatus, max_channels: int) -> None:
    frame = conn.request(build_read_gm())
    gm = parse_read_gm(frame.payload, max_channels)
    if gm is None:
        logger.debug("READGM reply too short: %r", frame)
        return
    if not gm.ok:
        return

    for index, ch in enumerate(gm.channels[:max_channels]):
        target = status.channels[index]
        target.mute = ch.out_mute if ch.out_mute is not None else ch.in_mute
        target.gain = ch.out_gain if ch.out_gain is not None else ch.in_gain


def _read_fault(conn: UDPConnection, status: DeviceStatus) -> None:
    frame = conn.request(build_read_all_alarms2())
    alarms = parse_read_all_alarms2(frame.payload)
    if alarms is None:
        logger.debug("READALLALARMS2 reply too short: %r", frame)
        return
    if alarms.ok:
        status.fault = alarms.fault


def read_status(conn: UDPConnection, max_channels: int = DEFAULT_MAX_CHANNELS) -> DeviceStatus:
    """Poll one amplifier through an existing connection.

    Args:
        conn: Connection to the amplifier.
        max_channels: Number of channel entries in the snapshot.
    """
    status = DeviceStatus.empty(max_channels)

    steps = (
        ("STANDBY", lambda: _read_power(conn, status)),
        ("READGM", lambda: _read_gain_mute(conn, status, max_channels)),
        ("READALLALARMS2", lambda: _read_fault(conn, status)),
    )
    for name, step in steps:
        try:
            step()
        except CanaliError as e:
            logger.debug("%s poll of %s failed: %s", name, conn.options.host, e)

    return status


def poll_status(
    host: str,
    port: int = DEFAULT_DEVICE_PORT,
    max_channels: int = DEFAULT_MAX_CHANNELS,
    answer_port_zero: bool = False,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
) -> DeviceStatus:
    """Take one status snapshot of the amplifier at ``host:port``.

    This is the entry point for a polling loop: it never raises for
    device or network trouble, it returns a snapshot with fields unset.
    """
    conn = UDPConnection(
        UdpOptions(
            host=host,
            device_port=port,
            answer_port_zero=answer_port_zero,
            timeout_ms=timeout_ms,
        )
    )
    return read_status(conn, max_channels)
