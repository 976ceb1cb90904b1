"""CRC-16/CCITT as used by GENIUS profile records.

Polynomial 0x1021, processed most significant bit first, initial value
0x0000, no reflection and no final XOR (the XMODEM parameterisation).
The check value over ``b"123456789"`` is ``0x31C3``.
"""

from __future__ import annotations

from typing import Final

CRC_INITIAL: Final[int] = 0x0000
CRC_POLY: Final[int] = 0x1021
CRC_MASK: Final[int] = 0xFFFF


def _generate_crc_table() -> tuple[int, ...]:
    table = []
    for byte_val in range(256):
        crc = byte_val << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ CRC_POLY) & CRC_MASK
            else:
                crc = (crc << 1) & CRC_MASK
        table.append(crc)
    return tuple(table)


CRC_TABLE: Final[tuple[int, ...]] = _generate_crc_table()


def crc16_ccitt(data: bytes, initial: int = CRC_INITIAL) -> int:
    """Return the 16-bit checksum of ``data``.

    ``initial`` allows incremental computation over consecutive chunks.
    """
    crc = initial
    for byte in data:
        crc = ((crc << 8) & CRC_MASK) ^ CRC_TABLE[((crc >> 8) ^ byte) & 0xFF]
    return crc
