"""Little-endian field readers and bit-range extraction.

Wire integers are always read as explicit little-endian byte sequences.
Bit ranges are half-open ``[start, stop)`` counted from the least
significant bit, so ``bits(v, 5, 11)`` is ``(v >> 5) & 0x3F``.
"""

from __future__ import annotations

import struct

from divectl.core.errors import TruncatedDataError

_U16 = struct.Struct("<H")
_S16 = struct.Struct("<h")
_U32 = struct.Struct("<I")


def _check(data: bytes, offset: int, size: int) -> None:
    if offset < 0 or offset + size > len(data):
        raise TruncatedDataError(
            f"Need {size} bytes at offset 0x{offset:02X}, buffer has {len(data)}"
        )


def u16le(data: bytes, offset: int) -> int:
    _check(data, offset, 2)
    return _U16.unpack_from(data, offset)[0]


def s16le(data: bytes, offset: int) -> int:
    _check(data, offset, 2)
    return _S16.unpack_from(data, offset)[0]


def u32le(data: bytes, offset: int) -> int:
    _check(data, offset, 4)
    return _U32.unpack_from(data, offset)[0]


def bits(value: int, start: int, stop: int) -> int:
    """Extract bits ``[start, stop)`` of an unsigned integer."""
    if not 0 <= start < stop:
        raise ValueError(f"Invalid bit range [{start}, {stop})")
    return (value >> start) & ((1 << (stop - start)) - 1)


def hex_dump(data: bytes) -> str:
    return " ".join(f"{b:02X}" for b in data)
