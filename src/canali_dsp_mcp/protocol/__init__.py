"""Protocol layer: datagram framing, command table, and reply parsing."""

from .framing import ChecksumMode, Frame, build_frame, parse_frame
from .commands import Command, Request
