"""Simulated GENIUS device plus byte builders for dive objects."""

from __future__ import annotations

import struct
from collections import deque
from datetime import datetime

from divectl.core.errors import TransportTimeoutError
from divectl.decode.crc import crc16_ccitt
from divectl.decode.profile import RECORD_LENGTHS

Address = tuple[int, int]


class FakeECOPDevice:
    """Answers ECOP commands from an in-memory object dictionary.

    Responses are chopped into ``chunk``-byte notifications. ``pad`` extra
    zero bytes are appended to the last segment of every segmented read.
    Segments carry at most ``segment_size`` data bytes.
    """

    def __init__(
        self,
        objects: dict[Address, bytes] | None = None,
        *,
        model_name: str = "Genius",
        chunk: int = 20,
        pad: int = 0,
        segment_size: int = 241,
    ) -> None:
        self.objects = dict(objects or {})
        self.model_name = model_name
        self.chunk = chunk
        self.pad = pad
        self.segment_size = segment_size
        self.opcodes: list[int] = []
        self.requests: list[Address] = []
        self.writes: list[bytes] = []
        self.clock: int | None = None
        self.fail_once: set[Address] = set()
        self.size_override: dict[Address, int] = {}
        self.drained = 0
        self._pending: deque[bytes] = deque()
        self._awaiting_payload: int | None = None
        self._segments = b""

    # NotifyWriteChannel

    def write(self, data: bytes) -> None:
        data = bytes(data)
        self.writes.append(data)
        if self._awaiting_payload is not None:
            opcode, self._awaiting_payload = self._awaiting_payload, None
            self._handle(opcode, data)
            return

        opcode = data[0]
        assert data[1] == opcode ^ 0xA5
        self.opcodes.append(opcode)
        if opcode in (0xBF, 0xB0):
            self._awaiting_payload = opcode
            self._pending.append(b"\xaa")
            return
        self._handle(opcode, b"")

    def next_notification(self, timeout_s: float) -> bytes:
        if not self._pending:
            raise TransportTimeoutError("no notification")
        return self._pending.popleft()

    def drain(self) -> None:
        self.drained += 1
        self._pending.clear()

    # context manager, so the device can stand in for a channel factory result

    def __enter__(self) -> FakeECOPDevice:
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None

    # device side

    def _send(self, frame: bytes) -> None:
        for start in range(0, len(frame), self.chunk):
            self._pending.append(frame[start : start + self.chunk])

    def _handle(self, opcode: int, payload: bytes) -> None:
        if opcode == 0xC2:
            body = bytearray(140)
            name = self.model_name.encode("ascii")
            body[0x46 : 0x46 + len(name)] = name
            self._send(b"\xaa" + bytes(body) + b"\xea")
        elif opcode == 0xB0:
            self.clock = struct.unpack("<I", payload)[0]
            self._send(b"\xea")
        elif opcode == 0xBF:
            self._upload(payload)
        elif opcode in (0xAC, 0xFE):
            self._segment(0 if opcode == 0xAC else 1)
        else:
            raise AssertionError(f"unexpected opcode 0x{opcode:02X}")

    def _upload(self, payload: bytes) -> None:
        assert len(payload) == 18 and payload[0] == 0x40
        address = (payload[1] | payload[2] << 8, payload[3])
        self.requests.append(address)
        echo = payload[1:4]

        if address in self.fail_once:
            self.fail_once.discard(address)
            self._send(bytes([0x99]) + echo + bytes(12) + b"\xea")
            return

        data = self.objects.get(address)
        if data is None:
            self._send(bytes([0x80]) + echo + bytes(4) + b"\xea")
            return
        if len(data) == 12:
            self._send(bytes([0x42]) + echo + data + b"\xea")
            return

        size = self.size_override.get(address, len(data))
        self._segments = data
        self._send(bytes([0x41]) + echo + struct.pack("<H", size) + bytes(10) + b"\xea")

    def _segment(self, toggle: int) -> None:
        if not self._segments:
            return
        size = self.segment_size
        data, self._segments = self._segments[:size], self._segments[size:]
        if not self._segments:
            data += bytes(self.pad)
        self._send(b"\xaa" + bytes([toggle << 4]) + data + b"\xea")


def pack_datetime(when: datetime) -> int:
    return when.hour | when.minute << 5 | when.day << 11 | when.month << 16 | when.year << 20


def build_header(
    dive_number: int = 1,
    when: datetime = datetime(2024, 5, 17, 9, 42),
    *,
    object_type: int = 1,
    mode: int = 1,
    salinity: int = 1,
    surface_timeout: int = 3,
    samples: int = 600,
    max_depth: int = 185,
    temperature_max: int = 241,
    temperature_min: int = -15,
    atmospheric: int = 1013,
    gases: tuple[tuple[int, ...], ...] = ((32, 68, 0, 2, 20000, 5500, 12, 232),),
    packed_datetime: int | None = None,
) -> bytes:
    buf = bytearray(200)
    struct.pack_into("<H", buf, 0x00, object_type)
    struct.pack_into("<I", buf, 0x04, dive_number)
    struct.pack_into("<I", buf, 0x08, pack_datetime(when) if packed_datetime is None else packed_datetime)
    struct.pack_into("<I", buf, 0x0C, mode | salinity << 5 | surface_timeout << 13)
    struct.pack_into("<H", buf, 0x20, samples)
    struct.pack_into("<H", buf, 0x22, max_depth)
    struct.pack_into("<h", buf, 0x26, temperature_max)
    struct.pack_into("<h", buf, 0x28, temperature_min)
    struct.pack_into("<H", buf, 0x3E, atmospheric)
    for i, (o2, n2, he, state, begin, end, volume, working) in enumerate(gases):
        params = o2 | n2 << 7 | he << 14 | state << 21
        struct.pack_into("<IHHHH", buf, 0x54 + i * 20, params, begin, end, volume, working)
    return bytes(buf)


def build_record(tag: bytes, payload: bytes = b"", *, crc: int | None = None, trailer: bytes | None = None) -> bytes:
    size = RECORD_LENGTHS[tag] - 10
    payload = payload.ljust(size, b"\0")
    if crc is None:
        crc = crc16_ccitt(payload)
    return tag + payload + struct.pack("<H", crc) + (trailer or tag)


def sample_payload(depth: int = 0, temperature: int = 200, deco: int = 0, alarms: int = 0, misc: int = 0) -> bytes:
    buf = bytearray(24)
    struct.pack_into("<H", buf, 0, depth)
    struct.pack_into("<h", buf, 4, temperature)
    struct.pack_into("<H", buf, 6, deco)
    struct.pack_into("<I", buf, 12, alarms)
    struct.pack_into("<I", buf, 20, misc)
    return bytes(buf)


def build_profile(*records: bytes) -> bytes:
    return b"\x02\x00\x01\x00" + b"".join(records)


def simple_profile(depths: tuple[int, ...] = (0, 52, 104, 51), pressure: int = 20000) -> bytes:
    samples = [build_record(b"DPRS", sample_payload(depth=d)) for d in depths]
    return build_profile(
        build_record(b"DSTR"),
        build_record(b"AIRS", struct.pack("<H", pressure)),
        *samples,
        build_record(b"DEND"),
    )


def dive_objects(count: int, *, first_number: int = 1) -> dict[Address, bytes]:
    objects: dict[Address, bytes] = {}
    for ordinal in range(count):
        when = datetime(2024, 1 + ordinal % 12, 1 + ordinal % 28, ordinal % 24, ordinal % 60)
        objects[(0x3000 + ordinal, 4)] = build_header(first_number + ordinal, when)
        objects[(0x3000 + ordinal, 3)] = simple_profile()
    return objects
