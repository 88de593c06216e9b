"""MCP server entry point for Canali-DSP amplifiers.

Exposes tools, resources, and prompts via the Model Context Protocol
using the official Python MCP SDK with stdio transport.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from mcp.server.fastmcp import FastMCP

from .errors import CanaliError
from .models.alarms import bit_table
from .poller import DEFAULT_MAX_CHANNELS, read_status
from .protocol.commands import (
    REQUEST_BUILDERS,
    StandbyMode,
    build_info,
    build_ping,
    build_read_all_alarms,
    build_read_all_alarms2,
    build_standby,
    build_write_out_mute,
)
from .protocol.parser import (
    UnexpectedLength,
    parse_info,
    parse_ping,
    parse_read_all_alarms,
    parse_read_all_alarms2,
    parse_standby,
    parse_write_out_mute,
)
from .transport.udp_connection import (
    DEFAULT_DEVICE_PORT,
    DEFAULT_TIMEOUT_MS,
    UDPConnection,
    UdpOptions,
)

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "canali-dsp",
    instructions="MCP server for Powersoft Canali-DSP amplifiers over the UDP API",
)

# Global connection state
_connection: UDPConnection | None = None
_max_channels: int = DEFAULT_MAX_CHANNELS


def _get_connection() -> UDPConnection:
    """Get the configured connection, raising if ``connect`` was not called."""
    if _connection is None:
        raise RuntimeError(
            "No amplifier configured. Use the 'connect' tool first."
        )
    return _connection


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
def connect(
    host: str,
    port: int = DEFAULT_DEVICE_PORT,
    max_channels: int = DEFAULT_MAX_CHANNELS,
    answer_port_zero: bool = False,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    computed_standby_crc: bool = False,
) -> dict[str, Any]:
    """Configure the amplifier to talk to and check that it answers.

    Args:
        host: Amplifier IP address or hostname.
        port: UDP port of the device API (default 1234).
        max_channels: Number of amplifier channels to report.
        answer_port_zero: Send answer_port=0 instead of our bound port.
        timeout_ms: Per-request reply timeout in milliseconds.
        computed_standby_crc: Send a computed CRC on STANDBY instead of 0.
    """
    global _connection, _max_channels
    if not 1 <= port <= 65535:
        return {"error": "Port must be 1-65535"}
    if max_channels < 1:
        return {"error": "max_channels must be at least 1"}

    _connection = UDPConnection(
        UdpOptions(
            host=host,
            device_port=port,
            answer_port_zero=answer_port_zero,
            timeout_ms=timeout_ms,
            computed_standby_crc=computed_standby_crc,
        )
    )
    _max_channels = max_channels
    logger.info("Configured amplifier %s:%d (%d channels)", host, port, max_channels)

    result: dict[str, Any] = {"configured": True, "host": host, "port": port}
    try:
        _connection.request(build_ping())
        result["reachable"] = True
    except CanaliError as e:
        result["reachable"] = False
        result["detail"] = str(e)
    return result


@mcp.tool()
def disconnect() -> dict[str, bool]:
    """Forget the configured amplifier."""
    global _connection
    _connection = None
    return {"disconnected": True}


@mcp.tool()
def ping() -> dict[str, Any]:
    """Send a PING and report the round-trip time."""
    conn = _get_connection()
    started = time.monotonic()
    try:
        frame = conn.request(build_ping())
    except CanaliError as e:
        return {"error": str(e)}
    return {
        "ok": parse_ping(frame.payload).ok,
        "rtt_ms": round((time.monotonic() - started) * 1000, 1),
    }


@mcp.tool()
def get_device_info() -> dict[str, Any]:
    """Retrieve manufacturer, family, model and serial number (INFO)."""
    conn = _get_connection()
    try:
        frame = conn.request(build_info())
    except CanaliError as e:
        return {"error": str(e)}

    info = parse_info(frame.payload)
    if isinstance(info, UnexpectedLength):
        return {"error": f"INFO payload length unexpected: {info.actual} bytes"}
    return {
        "manufacturer": info.manufacturer,
        "family": info.family,
        "model": info.model,
        "serial": info.serial,
    }


# ─── STATUS TOOLS ─────────────────────────────────────────────────────

@mcp.tool()
def get_status() -> dict[str, Any]:
    """Poll power, fault and per-channel mute/gain in one snapshot.

    Fields that could not be read are omitted rather than reported as
    false or zero.
    """
    conn = _get_connection()
    return read_status(conn, _max_channels).to_dict()


@mcp.tool()
def read_alarms(legacy: bool = False) -> dict[str, Any]:
    """Read the alarm bitmaps and name every active condition.

    Args:
        legacy: Use the deprecated READALLALARMS command instead of
                READALLALARMS2. Its bits are reported raw.
    """
    conn = _get_connection()
    try:
        if legacy:
            frame = conn.request(build_read_all_alarms())
        else:
            frame = conn.request(build_read_all_alarms2())
    except CanaliError as e:
        return {"error": str(e)}

    if legacy:
        old = parse_read_all_alarms(frame.payload)
        if old is None:
            return {"error": "READALLALARMS reply too short"}
        return {"ok": old.ok, "alarms": f"0x{old.alarms:02x}", "bits": old.bits}

    alarms = parse_read_all_alarms2(frame.payload)
    if alarms is None:
        return {"error": "READALLALARMS2 reply too short"}
    return alarms.describe()


# ─── CONTROL TOOLS ────────────────────────────────────────────────────

@mcp.tool()
def set_standby(operative: bool) -> dict[str, Any]:
    """Power the amplifier on (operative) or put it into standby.

    Args:
        operative: True to power on, False to enter standby.
    """
    conn = _get_connection()
    mode = StandbyMode.OPERATIVE if operative else StandbyMode.STANDBY
    try:
        frame = conn.request(build_standby(mode))
    except CanaliError as e:
        return {"error": str(e)}

    standby = parse_standby(frame.payload)
    if standby is None:
        return {"error": "STANDBY reply too short"}
    return {"ok": standby.ok, "power": standby.power}


@mcp.tool()
def set_output_mute(channel: int, muted: bool) -> dict[str, Any]:
    """Mute or unmute one output channel.

    Args:
        channel: Channel number, 1-based as printed on the amplifier.
        muted: True to mute, False to unmute.
    """
    if not 1 <= channel <= _max_channels:
        return {"error": f"Channel must be 1-{_max_channels}"}

    conn = _get_connection()
    try:
        frame = conn.request(build_write_out_mute(channel - 1, muted))
    except CanaliError as e:
        return {"error": str(e)}

    ack = parse_write_out_mute(frame.payload)
    if ack is None:
        return {"error": "WRITEOUTMUTE reply too short"}
    return {"ok": ack.ok, "channel": ack.channel + 1, "muted": ack.muted}


# ─── DIAGNOSTIC TOOLS ─────────────────────────────────────────────────

@mcp.tool()
def listen(
    command: str = "ping",
    window_ms: int = 2000,
    broadcast: bool = False,
) -> dict[str, Any]:
    """Send one raw request and list every datagram received for a while.

    Useful to discover amplifiers on the LAN (with broadcast) or to see
    exactly what a device answers.

    Args:
        command: One of ping, readgm, info, standby, readallalarms,
                 readallalarms2.
        window_ms: Listen window in milliseconds.
        broadcast: Send to 255.255.255.255 instead of the configured host.
    """
    builder = REQUEST_BUILDERS.get(command.lower())
    if builder is None:
        return {"error": f"Unknown command '{command}'. Valid: {list(REQUEST_BUILDERS)}"}

    conn = _get_connection()
    try:
        responses = conn.listen(builder(), window_ms, broadcast=broadcast)
    except CanaliError as e:
        return {"error": str(e)}
    return {"count": len(responses), "responses": [r.to_dict() for r in responses]}


# ─── MCP RESOURCES ───────────────────────────────────────────────────

@mcp.resource("canali://alarms/bit-table")
def resource_alarm_bits() -> str:
    """Meanings of the READALLALARMS2 global and channel alarm bits."""
    return json.dumps(bit_table())


# ─── MCP PROMPTS ─────────────────────────────────────────────────────

@mcp.prompt()
def diagnose_amplifier() -> str:
    """Guide the AI through checking an amplifier that reports a fault."""
    return """Use get_status to read power, fault and channel state.
If fault is true, call read_alarms and explain each active condition.
Consider:
- [shutdown] conditions stop the amplifier until cleared
- Input clip on a channel points at upstream gain staging
- Over-temperature alarms suggest checking ventilation and load
- Missing fields in the status mean the device did not answer that request

Do not change standby or mute state unless asked."""


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=logging.INFO)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
