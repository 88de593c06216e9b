"""UDP transport: request/reply correlation and listen windows."""

from .udp_connection import UDPConnection, UdpOptions
