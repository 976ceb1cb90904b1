from __future__ import annotations

import struct

import pytest
from ecop_device import build_profile, build_record, sample_payload, simple_profile

from divectl.core.errors import CrcMismatchError, TagMismatchError, TruncatedDataError, UnknownTagError
from divectl.core.model import AirSample, DiveEnd, DiveStart, Sample, TissueSnapshot
from divectl.decode.profile import build_timeline, decode_profile, read_classifier


def test_records_in_stream_order() -> None:
    data = build_profile(
        build_record(b"DSTR"),
        build_record(b"TISS"),
        build_record(b"AIRS", struct.pack("<H", 20750)),
        build_record(b"DPRS", sample_payload(depth=123, temperature=-12, deco=4, alarms=0x81, misc=0x35)),
        build_record(b"DEND"),
    )
    records = list(decode_profile(data))

    assert [type(r) for r in records] == [DiveStart, TissueSnapshot, AirSample, Sample, DiveEnd]
    assert [r.tag for r in records] == ["DSTR", "TISS", "AIRS", "DPRS", "DEND"]
    assert all(r.crc_ok for r in records)
    assert records[0].offset == 4
    assert records[1].offset == 4 + 58

    air = records[2]
    assert air.pressure == pytest.approx(207.5)

    sample = records[3]
    assert sample.depth == pytest.approx(12.3)
    assert sample.temperature == pytest.approx(-1.2)
    assert sample.deco_time == 4
    assert sample.alarms == 0x81
    assert sample.misc == 0x35
    assert sample.gas_index == 5
    assert sample.bookmark is True
    assert sample.deco_flags == 1


def test_classifier() -> None:
    classifier = read_classifier(simple_profile())
    assert (classifier.type, classifier.minor, classifier.major) == (2, 1, 0)


def test_empty_stream_after_classifier() -> None:
    assert list(decode_profile(build_profile())) == []


def test_crc_mismatch_is_flagged_and_decoding_continues() -> None:
    bad = build_record(b"DPRS", sample_payload(depth=50), crc=0x1234)
    data = build_profile(bad, build_record(b"DPRS", sample_payload(depth=60)))
    records = list(decode_profile(data))

    assert [r.crc_ok for r in records] == [False, True]
    assert records[1].depth == pytest.approx(6.0)


def test_crc_mismatch_raises_in_strict_mode() -> None:
    data = build_profile(build_record(b"AIRS", crc=0xFFFF))
    with pytest.raises(CrcMismatchError) as excinfo:
        list(decode_profile(data, strict=True))
    assert excinfo.value.offset == 4
    assert excinfo.value.tag == "AIRS"


def test_trailing_tag_mismatch() -> None:
    data = build_profile(build_record(b"DPRS", trailer=b"DPRX"))
    with pytest.raises(TagMismatchError):
        list(decode_profile(data))


def test_unknown_tag_stops_stream_after_good_records() -> None:
    data = build_profile(build_record(b"DSTR"), b"XXXX" + bytes(30))
    stream = decode_profile(data)

    assert isinstance(next(stream), DiveStart)
    with pytest.raises(UnknownTagError):
        next(stream)


@pytest.mark.parametrize("cut", [1, 3, 20])
def test_truncated_record(cut: int) -> None:
    data = build_profile(build_record(b"DSTR"), build_record(b"DPRS")[:cut])
    with pytest.raises(TruncatedDataError):
        list(decode_profile(data))


def test_too_short_for_classifier() -> None:
    with pytest.raises(TruncatedDataError):
        list(decode_profile(b"\x02\x00"))


def test_timeline_uses_five_second_cadence_and_carries_pressure() -> None:
    data = build_profile(
        build_record(b"DPRS", sample_payload(depth=10)),
        build_record(b"AIRS", struct.pack("<H", 20000)),
        build_record(b"DPRS", sample_payload(depth=20)),
        build_record(b"AIRS", struct.pack("<H", 0)),
        build_record(b"DPRS", sample_payload(depth=30)),
    )
    points = build_timeline(decode_profile(data))

    assert [p.time_s for p in points] == [0, 5, 10]
    assert [p.depth for p in points] == pytest.approx([1.0, 2.0, 3.0])
    assert points[0].pressure is None
    assert points[1].pressure == pytest.approx(200.0)
    assert points[2].pressure == pytest.approx(200.0)
