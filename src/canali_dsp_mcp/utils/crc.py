"""CRC-16 used by the Canali-DSP UDP protocol.

This is the CRC-16/MODBUS flavour: reflected polynomial 0xA001 processed
LSB first, initial register 0xFFFF and no final XOR. The canonical check
value for ``b"123456789"`` is 0xBB3D.
"""

from __future__ import annotations

CRC16_POLY = 0xA001
CRC16_INIT = 0xFFFF


def crc16(data: bytes, offset: int = 0, length: int | None = None) -> int:
    """Compute the CRC-16 of ``data[offset:offset + length]``.

    Args:
        data: Buffer to checksum.
        offset: First byte of the range.
        length: Number of bytes; defaults to the rest of the buffer.

    Returns:
        The 16-bit checksum as an ``int``.
    """
    if length is None:
        length = len(data) - offset

    crc = CRC16_INIT
    for byte in data[offset : offset + length]:
        crc ^= byte
        for _ in range(8):
            if crc & 1:
                crc = (crc >> 1) ^ CRC16_POLY
            else:
                crc >>= 1
    return crc & 0xFFFF
