"""ECOP command encoding and response frame extraction.

Commands go out as ``[opcode, opcode ^ 0xA5, payload...]``. Responses come
back on the notify characteristic as ``0xAA body... 0xEA``, possibly spread
over several notifications.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from divectl.core.errors import InvalidPayloadError, MalformedFrameError

ACK = 0xAA
END = 0xEA
XOR = 0xA5

CMD_VERSION = 0xC2
CMD_SDO_UPLOAD = 0xBF
CMD_SDO_SEGMENT_0 = 0xAC
CMD_SDO_SEGMENT_1 = 0xFE
CMD_SET_DATETIME = 0xB0

PAYLOAD_LENGTHS: dict[int, int] = {
    CMD_VERSION: 0,
    CMD_SDO_UPLOAD: 18,
    CMD_SDO_SEGMENT_0: 0,
    CMD_SDO_SEGMENT_1: 0,
    CMD_SET_DATETIME: 4,
}
_MAX_PAYLOAD = max(PAYLOAD_LENGTHS.values())

# Largest body seen is a 241-byte segment plus its toggle byte; the version
# response is 140 bytes.
MAX_FRAME_BYTES = 512

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandFrame:
    opcode: int
    payload: bytes = b""

    @property
    def header(self) -> bytes:
        return bytes([self.opcode, self.opcode ^ XOR])

    def to_bytes(self) -> bytes:
        return self.header + self.payload


@dataclass(frozen=True)
class ResponseFrame:
    body: bytes


def encode_command(opcode: int, payload: bytes = b"") -> bytes:
    if not 0 <= opcode <= 0xFF:
        raise InvalidPayloadError(f"Opcode {opcode!r} is not a byte")
    limit = PAYLOAD_LENGTHS.get(opcode, _MAX_PAYLOAD)
    if len(payload) > limit:
        raise InvalidPayloadError(
            f"Payload for command 0x{opcode:02X} is {len(payload)} bytes, max {limit}"
        )
    return CommandFrame(opcode, bytes(payload)).to_bytes()


class FrameAssembler:
    """Accumulate notifications until one ``ACK ... END`` frame is complete.

    Bytes before the start marker are discarded. An ``END`` byte closes the
    frame once the body holds at least ``expected_body`` bytes, since payloads
    may themselves contain ``0xEA``. ``expected_body`` may be a callable that
    picks the minimum from the body received so far. ``max_body`` caps the
    body: once more bytes than that have arrived the frame is cut there.
    """

    def __init__(
        self,
        expected_body: int | Callable[[bytes], int] | None = None,
        *,
        max_body: int | None = None,
        max_frame: int = MAX_FRAME_BYTES,
    ) -> None:
        self.expected_body = expected_body
        self.max_body = max_body
        self.max_frame = max_frame
        self.buffer = bytearray()
        self.started = False

    def _minimum_body(self, body: bytes) -> int:
        if self.expected_body is None:
            return 0
        if callable(self.expected_body):
            return self.expected_body(body)
        return self.expected_body

    def feed(self, data: bytes) -> ResponseFrame | None:
        if not self.started:
            start = bytes(data).find(ACK)
            if start < 0:
                if data:
                    LOGGER.debug("Discarding %d bytes before start marker", len(data))
                return None
            data = data[start:]
            self.started = True
        self.buffer.extend(data)

        # buffer[0] is the start marker
        if self.max_body is not None and len(self.buffer) - 1 > self.max_body:
            LOGGER.debug("Cutting frame at %d body bytes", self.max_body)
            return ResponseFrame(body=bytes(self.buffer[1 : 1 + self.max_body]))

        if len(self.buffer) >= 2 and self.buffer[-1] == END:
            body = bytes(self.buffer[1:-1])
            if len(body) >= self._minimum_body(body):
                return ResponseFrame(body=body)

        if len(self.buffer) > self.max_frame:
            raise MalformedFrameError(
                f"No end marker within {self.max_frame} bytes of start marker"
            )
        return None


def extract_frame(stream: bytes, expected_body: int | None = None) -> ResponseFrame | None:
    """Return the frame contained in ``stream``, or ``None`` if incomplete."""
    return FrameAssembler(expected_body).feed(stream)
