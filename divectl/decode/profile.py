"""Decoder for the tagged-record GENIUS dive profile object (sub-index 3).

The object starts with a 4-byte classifier (type u16, minor u8, major u8)
followed by self-delimiting records::

    tag[4] | payload | crc u16 LE | tag[4]

The record length depends only on the tag. The checksum covers the payload.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from divectl.core.errors import CrcMismatchError, TagMismatchError, TruncatedDataError, UnknownTagError
from divectl.core.model import (
    SAMPLE_INTERVAL_S,
    AirSample,
    DiveEnd,
    DiveStart,
    ProfileRecord,
    Sample,
    TimelinePoint,
    TissueSnapshot,
)
from divectl.decode.bits import bits, s16le, u16le, u32le
from divectl.decode.crc import crc16_ccitt

CLASSIFIER_SIZE = 4
TAG_SIZE = 4
CRC_SIZE = 2

RECORD_LENGTHS: dict[bytes, int] = {
    b"DSTR": 58,
    b"TISS": 138,
    b"DPRS": 34,
    b"AIRS": 16,
    b"DEND": 162,
}

# DPRS payload offsets
SAMPLE_DEPTH = 0
SAMPLE_TEMPERATURE = 4
SAMPLE_DECO_TIME = 6
SAMPLE_ALARMS = 12
SAMPLE_MISC = 20

# AIRS payload offsets
AIR_PRESSURE = 0


@dataclass(frozen=True)
class ProfileClassifier:
    type: int
    minor: int
    major: int


def read_classifier(data: bytes) -> ProfileClassifier:
    return ProfileClassifier(type=u16le(data, 0), minor=data[2], major=data[3])


def _build_sample(common: dict, payload: bytes) -> Sample:
    misc = u32le(payload, SAMPLE_MISC)
    # Only the gas index and bookmark positions are cross-checked; the
    # remaining bits are passed through untouched.
    return Sample(
        **common,
        depth=u16le(payload, SAMPLE_DEPTH) / 10.0,
        temperature=s16le(payload, SAMPLE_TEMPERATURE) / 10.0,
        deco_time=u16le(payload, SAMPLE_DECO_TIME),
        alarms=u32le(payload, SAMPLE_ALARMS),
        misc=misc,
        gas_index=bits(misc, 0, 4),
        bookmark=bool(bits(misc, 4, 5)),
        deco_flags=bits(misc, 5, 32),
    )


def _build_record(tag: bytes, common: dict, payload: bytes) -> ProfileRecord:
    if tag == b"DPRS":
        return _build_sample(common, payload)
    if tag == b"AIRS":
        return AirSample(**common, pressure=u16le(payload, AIR_PRESSURE) / 100.0)
    if tag == b"DSTR":
        return DiveStart(**common)
    if tag == b"TISS":
        return TissueSnapshot(**common)
    return DiveEnd(**common)


def decode_profile(data: bytes, *, strict: bool = False) -> Iterator[ProfileRecord]:
    """Lazily decode profile records in stream order.

    A record whose checksum does not match is yielded with ``crc_ok=False``
    unless ``strict`` is set, in which case ``CrcMismatchError`` is raised.
    Unknown tags, trailing tag mismatches and truncated records stop the
    stream with a ``DecodeError`` since record boundaries depend on the tag.
    """
    data = bytes(data)
    if len(data) < CLASSIFIER_SIZE:
        raise TruncatedDataError(f"Profile too short for classifier: {len(data)} bytes")

    offset = CLASSIFIER_SIZE
    while offset < len(data):
        if offset + TAG_SIZE > len(data):
            raise TruncatedDataError(f"Partial tag at offset 0x{offset:X}")
        tag = data[offset : offset + TAG_SIZE]
        length = RECORD_LENGTHS.get(tag)
        if length is None:
            raise UnknownTagError(f"Unknown record tag {tag!r} at offset 0x{offset:X}")
        if offset + length > len(data):
            raise TruncatedDataError(
                f"{tag.decode('ascii')} record at offset 0x{offset:X} needs {length} bytes, "
                f"{len(data) - offset} left"
            )

        record = data[offset : offset + length]
        trailer = record[-TAG_SIZE:]
        if trailer != tag:
            raise TagMismatchError(
                f"{tag.decode('ascii')} record at offset 0x{offset:X} ends with {trailer!r}"
            )

        payload = record[TAG_SIZE : length - TAG_SIZE - CRC_SIZE]
        stored_crc = u16le(record, length - TAG_SIZE - CRC_SIZE)
        crc_ok = crc16_ccitt(payload) == stored_crc
        if not crc_ok and strict:
            raise CrcMismatchError(
                f"{tag.decode('ascii')} record at offset 0x{offset:X} failed checksum",
                offset=offset,
                tag=tag.decode("ascii"),
            )

        common = {
            "tag": tag.decode("ascii"),
            "offset": offset,
            "payload": payload,
            "crc": stored_crc,
            "crc_ok": crc_ok,
        }
        yield _build_record(tag, common, payload)
        offset += length


def build_timeline(records: Iterable[ProfileRecord], interval_s: int = SAMPLE_INTERVAL_S) -> list[TimelinePoint]:
    """Reconstruct the time axis by counting samples at a fixed cadence."""
    points: list[TimelinePoint] = []
    pressure: float | None = None
    for record in records:
        if isinstance(record, AirSample):
            if record.pressure > 0:
                pressure = record.pressure
        elif isinstance(record, Sample):
            points.append(
                TimelinePoint(
                    time_s=len(points) * interval_s,
                    depth=record.depth,
                    temperature=record.temperature,
                    pressure=pressure,
                )
            )
    return points
