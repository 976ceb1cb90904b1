from __future__ import annotations

import struct
from datetime import datetime

import pytest
from ecop_device import FakeECOPDevice

from divectl.core.errors import (
    ObjectAbortedError,
    ProtocolError,
    ProtocolTimeoutError,
    TransportTimeoutError,
    UnexpectedResponseError,
)
from divectl.core.model import DeviceModel
from divectl.protocol.sdo import (
    Aborted,
    Expedited,
    ObjectAddress,
    SDOClient,
    Segmented,
)

HEADER = ObjectAddress(0x3000, 4)


class ScriptedChannel:
    """Replays canned notifications, one list per write of a command header."""

    def __init__(self, *responses: list[bytes]) -> None:
        self.responses = list(responses)
        self.pending: list[bytes] = []
        self.writes: list[bytes] = []

    def write(self, data: bytes) -> None:
        self.writes.append(bytes(data))
        if len(data) == 2 and self.responses:
            self.pending.extend(self.responses.pop(0))

    def next_notification(self, timeout_s: float) -> bytes:
        if not self.pending:
            raise TransportTimeoutError("idle")
        return self.pending.pop(0)

    def drain(self) -> None:
        return None


def test_expedited_response_returns_twelve_bytes_untouched() -> None:
    header_prefix = bytes(range(0xE0, 0xEC))
    channel = ScriptedChannel([b"\xaa", bytes([0x42, 0x00, 0x30, 0x04]) + header_prefix + b"\xea"])
    outcome = SDOClient(channel).read_object(HEADER)

    assert outcome == Expedited(HEADER, header_prefix)
    assert channel.writes[0] == b"\xbf\x1a"
    assert channel.writes[1] == bytes([0x40, 0x00, 0x30, 0x04]) + bytes(14)


def test_missing_object_is_aborted_not_an_error() -> None:
    device = FakeECOPDevice()
    sdo = SDOClient(device)

    assert isinstance(sdo.read_object(HEADER), Aborted)
    with pytest.raises(ObjectAbortedError) as excinfo:
        sdo.read(HEADER)
    assert (excinfo.value.index, excinfo.value.sub_index) == (0x3000, 4)


def test_segmented_read_alternates_toggle_opcodes() -> None:
    data = bytes(i & 0xFF for i in range(1000))
    device = FakeECOPDevice({(0x3000, 3): data})
    outcome = SDOClient(device).read_object(ObjectAddress(0x3000, 3))

    assert isinstance(outcome, Segmented)
    assert outcome.total_size == 1000
    assert outcome.data == data
    segment_ops = [op for op in device.opcodes if op in (0xAC, 0xFE)]
    assert segment_ops == [0xAC, 0xFE, 0xAC, 0xFE, 0xAC]


def test_each_read_restarts_toggle_at_zero() -> None:
    device = FakeECOPDevice({(0x3000, 4): bytes(200), (0x3001, 4): bytes(200)})
    sdo = SDOClient(device)
    sdo.read(ObjectAddress(0x3000, 4))
    sdo.read(ObjectAddress(0x3001, 4))

    segment_ops = [op for op in device.opcodes if op in (0xAC, 0xFE)]
    assert segment_ops == [0xAC, 0xAC]


def test_overshooting_last_segment_is_truncated() -> None:
    data = bytes(range(250))
    device = FakeECOPDevice({(0x3000, 3): data}, pad=7)
    outcome = SDOClient(device).read_object(ObjectAddress(0x3000, 3))

    assert isinstance(outcome, Segmented)
    assert len(outcome.data) == 250
    assert outcome.data == data


def test_unknown_status_byte_is_unexpected_response() -> None:
    device = FakeECOPDevice({(0x3000, 4): bytes(200)})
    device.fail_once.add((0x3000, 4))
    sdo = SDOClient(device)

    with pytest.raises(UnexpectedResponseError):
        sdo.read_object(HEADER)
    assert len(sdo.read(HEADER)) == 200


def test_wrong_address_echo_is_rejected() -> None:
    channel = ScriptedChannel([b"\xaa", bytes([0x42, 0x01, 0x30, 0x04]) + bytes(12) + b"\xea"])
    with pytest.raises(UnexpectedResponseError):
        SDOClient(channel).read_object(HEADER)


def test_wrong_toggle_echo_is_rejected() -> None:
    channel = ScriptedChannel(
        [b"\xaa", bytes([0x41, 0x00, 0x30, 0x04]) + struct.pack("<H", 4) + bytes(10) + b"\xea"],
        [b"\xaa\x10\x01\x02\x03\x04\xea"],
    )
    with pytest.raises(UnexpectedResponseError):
        SDOClient(channel).read_object(HEADER)


def test_short_object_times_out_instead_of_returning_partial_data() -> None:
    device = FakeECOPDevice({(0x3000, 3): bytes(300)})
    device.size_override[(0x3000, 3)] = 400

    with pytest.raises(ProtocolTimeoutError):
        SDOClient(device, timeout_s=0.5).read_object(ObjectAddress(0x3000, 3))


def test_silent_device_times_out() -> None:
    channel = ScriptedChannel()
    with pytest.raises(ProtocolTimeoutError):
        SDOClient(channel, timeout_s=0.1).read_object(HEADER)


def test_read_version_reports_model() -> None:
    device = FakeECOPDevice(model_name="Quad2")
    info = SDOClient(device).read_version()

    assert info.model_name == "Quad2"
    assert info.model is DeviceModel.QUAD_2
    assert len(info.raw) == 140


def test_set_clock_sends_little_endian_timestamp() -> None:
    device = FakeECOPDevice()
    when = datetime(2024, 6, 1, 12, 0, 0)
    SDOClient(device).set_clock(when)

    assert device.opcodes == [0xB0]
    assert device.clock == int(when.timestamp())
    assert device.writes[1] == struct.pack("<I", int(when.timestamp()))


def test_diagnostics_report_failures_per_object() -> None:
    device = FakeECOPDevice(
        {
            (0x2000, 4): b"PCB0012345\x00\x00",
            (0x2006, 12): b"NITROX\x00\x00\x00\x00\x00\x00",
        }
    )
    results = {r.name: r for r in SDOClient(device).read_diagnostics()}

    assert results["pcb_serial"].data == b"PCB0012345\x00\x00"
    assert results["dive_mode_name"].data.startswith(b"NITROX")
    assert results["warranty"].data is None
    assert isinstance(results["warranty"].error, ProtocolError)
    assert results["object_2008_1"].error is not None


def test_read_pcb_number_strips_padding() -> None:
    device = FakeECOPDevice({(0x2000, 4): b"PCB0012345\x00\x00"})
    assert SDOClient(device).read_pcb_number() == "PCB0012345"


def test_object_address_validates_ranges() -> None:
    with pytest.raises(ValueError):
        ObjectAddress(0x10000, 0)
    with pytest.raises(ValueError):
        ObjectAddress(0x3000, 256)
    assert str(ObjectAddress(0x3000, 4)) == "0x3000/4"


def test_short_segments_are_accepted() -> None:
    data = bytes(i % 200 for i in range(300))
    device = FakeECOPDevice({(0x3000, 3): data}, segment_size=100)
    outcome = SDOClient(device).read_object(ObjectAddress(0x3000, 3))

    assert isinstance(outcome, Segmented)
    assert outcome.data == data
    segment_ops = [op for op in device.opcodes if op in (0xAC, 0xFE)]
    assert segment_ops == [0xAC, 0xFE, 0xAC]


def test_echo_only_segment_flips_toggle() -> None:
    channel = ScriptedChannel(
        [b"\xaa", bytes([0x41, 0x00, 0x30, 0x04]) + struct.pack("<H", 4) + bytes(10) + b"\xea"],
        [b"\xaa\x00\xea"],
        [b"\xaa\x10\x01\x02\x03\x04\xea"],
    )
    outcome = SDOClient(channel).read_object(HEADER)

    assert outcome == Segmented(HEADER, 4, b"\x01\x02\x03\x04")
    assert [w[0] for w in channel.writes if len(w) == 2] == [0xBF, 0xAC, 0xFE]


def test_endless_empty_segments_are_rejected() -> None:
    empty = [[b"\xaa" + bytes([(i % 2) << 4]) + b"\xea"] for i in range(10)]
    channel = ScriptedChannel(
        [b"\xaa", bytes([0x41, 0x00, 0x30, 0x04]) + struct.pack("<H", 4) + bytes(10) + b"\xea"],
        *empty,
    )
    with pytest.raises(UnexpectedResponseError, match="empty segments"):
        SDOClient(channel).read_object(HEADER)


def test_expedited_data_with_end_byte_at_notification_boundary() -> None:
    data = b"\x01\x02\x03\xea" + bytes(range(8))
    channel = ScriptedChannel([b"\xaa", bytes([0x42, 0x00, 0x30, 0x04]) + data[:4], data[4:] + b"\xea"])
    outcome = SDOClient(channel).read_object(HEADER)

    assert outcome == Expedited(HEADER, data)


def test_short_abort_reply_completes() -> None:
    channel = ScriptedChannel([b"\xaa", b"\x80\x00\x30\x04\xea"])
    assert isinstance(SDOClient(channel).read_object(HEADER), Aborted)
