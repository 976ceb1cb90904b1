"""ECOP SDO transfer engine.

ECOP tunnels CANopen-style Service Data Object reads over the BLE
write/notify pair. An upload is opened with ``0xBF`` and an 18-byte payload
``[0x40, index_lo, index_hi, sub_index, 0 * 14]``. The 16-byte response body
starts with a status byte:

- ``0x80`` abort, the object does not exist
- ``0x42`` expedited, the 12 data bytes follow the echoed address
- ``0x41`` segmented, a little-endian u16 total size follows the address

Segmented data is then pulled with ``0xAC`` / ``0xFE``, strictly
alternating and starting with ``0xAC``. Each segment body is a toggle echo
byte followed by up to 241 payload bytes.
"""

from __future__ import annotations

import logging
import struct
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from divectl.core.errors import (
    ObjectAbortedError,
    ProtocolError,
    ProtocolTimeoutError,
    TransportTimeoutError,
    UnexpectedResponseError,
)
from divectl.core.model import DeviceInfo, DeviceModel
from divectl.decode.bits import hex_dump, u16le
from divectl.protocol.frame import (
    ACK,
    CMD_SDO_SEGMENT_0,
    CMD_SDO_SEGMENT_1,
    CMD_SDO_UPLOAD,
    CMD_SET_DATETIME,
    CMD_VERSION,
    FrameAssembler,
    ResponseFrame,
    encode_command,
)
from divectl.transports.base import NotifyWriteChannel

SDO_UPLOAD_REQUEST = 0x40
SDO_SEGMENTED = 0x41
SDO_EXPEDITED = 0x42
SDO_ABORT = 0x80

EXPEDITED_SIZE = 12
UPLOAD_RESPONSE_SIZE = 16
MAX_SEGMENT_DATA = 241
MAX_EMPTY_SEGMENTS = 8
VERSION_SIZE = 140
MODEL_NAME_OFFSET = 0x46
MODEL_NAME_MAX = 16
DEFAULT_TIMEOUT_S = 5.0

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ObjectAddress:
    index: int
    sub_index: int

    def __post_init__(self) -> None:
        if not 0 <= self.index <= 0xFFFF:
            raise ValueError(f"Object index {self.index!r} does not fit in 16 bits")
        if not 0 <= self.sub_index <= 0xFF:
            raise ValueError(f"Object sub-index {self.sub_index!r} does not fit in 8 bits")

    def upload_payload(self) -> bytes:
        return bytes([SDO_UPLOAD_REQUEST, self.index & 0xFF, self.index >> 8, self.sub_index]) + bytes(14)

    def __str__(self) -> str:
        return f"0x{self.index:04X}/{self.sub_index}"


PCB_SERIAL = ObjectAddress(0x2000, 4)
WARRANTY = ObjectAddress(0x2000, 8)
DIVE_MODE_NAME = ObjectAddress(0x2006, 12)
DEVICE_OBJECT_2008 = ObjectAddress(0x2008, 1)

DIAGNOSTIC_OBJECTS: dict[str, ObjectAddress] = {
    "pcb_serial": PCB_SERIAL,
    "warranty": WARRANTY,
    "dive_mode_name": DIVE_MODE_NAME,
    "object_2008_1": DEVICE_OBJECT_2008,
}


@dataclass(frozen=True)
class Expedited:
    address: ObjectAddress
    data: bytes


@dataclass(frozen=True)
class Segmented:
    address: ObjectAddress
    total_size: int
    data: bytes


@dataclass(frozen=True)
class Aborted:
    address: ObjectAddress
    data: bytes = b""


TransferOutcome = Expedited | Segmented | Aborted


def _upload_body_size(body: bytes) -> int:
    # Abort replies carry no fixed-size data block.
    if body and body[0] == SDO_ABORT:
        return 0
    return UPLOAD_RESPONSE_SIZE


@dataclass(frozen=True)
class DiagnosticResult:
    name: str
    address: ObjectAddress
    data: bytes | None
    error: ProtocolError | None = None


class SDOClient:
    """Half-duplex ECOP session over one connected channel.

    All per-connection protocol state (segment toggle, in-flight guard) lives
    on the instance, so independent devices need independent clients.
    """

    def __init__(self, channel: NotifyWriteChannel, *, timeout_s: float = DEFAULT_TIMEOUT_S) -> None:
        self.channel = channel
        self.timeout_s = timeout_s
        self.toggle = 0
        self._in_flight = False

    def exchange(
        self,
        opcode: int,
        payload: bytes = b"",
        *,
        expected_body: int | Callable[[bytes], int] | None = None,
        max_body: int | None = None,
    ) -> ResponseFrame:
        """Send one command and return its response frame."""
        frame = encode_command(opcode, payload)
        if self._in_flight:
            raise ProtocolError("A command is already awaiting its response on this channel")

        self._in_flight = True
        try:
            deadline = time.monotonic() + self.timeout_s
            assembler = FrameAssembler(expected_body, max_body=max_body)
            self.channel.drain()
            LOGGER.debug("TX %s", hex_dump(frame))
            self.channel.write(frame[:2])

            response: ResponseFrame | None = None
            if len(frame) > 2:
                ack = self._receive(deadline, opcode)
                if not ack or ack[0] != ACK:
                    raise UnexpectedResponseError(
                        f"Expected ACK after command 0x{opcode:02X} header, got [{hex_dump(ack)}]"
                    )
                self.channel.write(frame[2:])
                response = assembler.feed(ack)

            while response is None:
                response = assembler.feed(self._receive(deadline, opcode))
            LOGGER.debug("RX %s", hex_dump(response.body))
            return response
        finally:
            self._in_flight = False

    def _receive(self, deadline: float, opcode: int) -> bytes:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ProtocolTimeoutError(f"Timed out waiting for response to command 0x{opcode:02X}")
        try:
            return self.channel.next_notification(remaining)
        except TransportTimeoutError as exc:
            raise ProtocolTimeoutError(
                f"Timed out waiting for response to command 0x{opcode:02X}"
            ) from exc

    def read_object(self, address: ObjectAddress) -> TransferOutcome:
        body = self.exchange(CMD_SDO_UPLOAD, address.upload_payload(), expected_body=_upload_body_size).body
        if not body:
            raise UnexpectedResponseError(f"Empty upload response for {address}")

        status = body[0]
        if status == SDO_ABORT:
            LOGGER.debug("Object %s aborted", address)
            return Aborted(address)
        if status not in (SDO_EXPEDITED, SDO_SEGMENTED):
            raise UnexpectedResponseError(f"Unknown SDO status 0x{status:02X} for {address} [{hex_dump(body)}]")

        if len(body) < 4 or body[1:4] != address.upload_payload()[1:4]:
            raise UnexpectedResponseError(f"Response does not echo {address} [{hex_dump(body)}]")

        if status == SDO_EXPEDITED:
            if len(body) < 4 + EXPEDITED_SIZE:
                raise UnexpectedResponseError(f"Expedited response too short: {len(body)} bytes")
            return Expedited(address, bytes(body[4 : 4 + EXPEDITED_SIZE]))

        if len(body) < 6:
            raise UnexpectedResponseError(f"Segmented response too short: {len(body)} bytes")
        total_size = u16le(body, 4)
        data = self._read_segments(address, total_size)
        LOGGER.info("Read %s: %d bytes segmented", address, total_size)
        return Segmented(address, total_size, data)

    def _read_segments(self, address: ObjectAddress, total_size: int) -> bytes:
        data = bytearray()
        self.toggle = 0
        empty_run = 0
        while len(data) < total_size:
            opcode = CMD_SDO_SEGMENT_0 if self.toggle == 0 else CMD_SDO_SEGMENT_1
            # A segment is at least its toggle echo and never more than one full segment.
            cap = 1 + min(total_size - len(data), MAX_SEGMENT_DATA)
            body = self.exchange(opcode, expected_body=1, max_body=cap).body

            echo = body[0]
            # Upload segment response: command bits clear, bit 4 echoes the toggle.
            if echo & 0xE0 or ((echo >> 4) & 0x01) != self.toggle:
                raise UnexpectedResponseError(
                    f"Segment toggle echo 0x{echo:02X} does not match toggle {self.toggle} for {address}"
                )

            if len(body) == 1:
                empty_run += 1
                LOGGER.debug("Empty segment %d for %s", empty_run, address)
                if empty_run > MAX_EMPTY_SEGMENTS:
                    raise UnexpectedResponseError(
                        f"{address} sent {empty_run} empty segments in a row at {len(data)}/{total_size} bytes"
                    )
            else:
                empty_run = 0
            data.extend(body[1:])
            self.toggle ^= 1
        return bytes(data)

    def read(self, address: ObjectAddress) -> bytes:
        outcome = self.read_object(address)
        if isinstance(outcome, Aborted):
            raise ObjectAbortedError(
                f"SDO abort: object {address} not found",
                index=address.index,
                sub_index=address.sub_index,
            )
        return outcome.data

    def read_version(self) -> DeviceInfo:
        body = self.exchange(CMD_VERSION, expected_body=VERSION_SIZE).body
        if len(body) < VERSION_SIZE:
            raise UnexpectedResponseError(
                f"Version response too short: {len(body)} bytes (expected {VERSION_SIZE})"
            )
        name_field = body[MODEL_NAME_OFFSET : MODEL_NAME_OFFSET + MODEL_NAME_MAX]
        model_name = name_field.split(b"\0", 1)[0].decode("utf-8", errors="replace")
        return DeviceInfo(model_name=model_name, model=DeviceModel.from_name(model_name), raw=bytes(body))

    def set_clock(self, when: datetime | None = None) -> None:
        timestamp = int((when or datetime.now()).timestamp())
        payload = struct.pack("<I", timestamp & 0xFFFFFFFF)
        LOGGER.info("Setting device clock to %d", timestamp)
        self.exchange(CMD_SET_DATETIME, payload)

    def read_pcb_number(self) -> str:
        return self.read(PCB_SERIAL).rstrip(b"\0").decode("utf-8", errors="replace")

    def read_diagnostics(self) -> list[DiagnosticResult]:
        results: list[DiagnosticResult] = []
        for name, address in DIAGNOSTIC_OBJECTS.items():
            try:
                data = self.read(address)
            except ProtocolError as exc:
                LOGGER.warning("Diagnostic object %s (%s) failed: %s", name, address, exc)
                results.append(DiagnosticResult(name=name, address=address, data=None, error=exc))
                continue
            results.append(DiagnosticResult(name=name, address=address, data=data))
        return results
