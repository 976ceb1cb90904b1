"""Core data models used across loader, protocol, decoders, sync, and CLI."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime

SAMPLE_INTERVAL_S = 5


@dataclass(frozen=True)
class MatchRules:
    name_prefix: tuple[str, ...]
    address_prefix: tuple[str, ...]


@dataclass(frozen=True)
class TransportSpec:
    write_char_uuid: str
    notify_char_uuid: str
    write_chunk_size: int = 20
    timeout_s: float = 5.0
    scan_timeout_s: float = 10.0


@dataclass(frozen=True)
class SyncSpec:
    retries: int = 1
    set_clock: bool = True


@dataclass(frozen=True)
class DeviceProfile:
    id: str
    name: str
    match: MatchRules
    transport: TransportSpec
    sync: SyncSpec = field(default_factory=SyncSpec)


@dataclass(frozen=True)
class DetectedDevice:
    address: str
    name: str
    rssi: int | None = None


@dataclass(frozen=True)
class ResolvedTarget:
    device: DetectedDevice
    profile: DeviceProfile


class DeviceModel(enum.IntEnum):
    """Model identifiers, keyed by the name the version query reports."""

    ICON_HD = 0x14
    ICON_AIR = 0x15
    PUCK_PRO = 0x18
    NEMO_WIDE_2 = 0x19
    GENIUS = 0x1C
    PUCK_2 = 0x1F
    QUAD_AIR = 0x23
    SMART_AIR = 0x24
    QUAD = 0x29
    HORIZON = 0x2C
    PUCK_AIR_2 = 0x2D
    SIRIUS = 0x2F
    QUAD_CI = 0x31
    QUAD_2 = 0x32
    PUCK_4 = 0x35
    UNKNOWN = 0xFF

    @classmethod
    def from_name(cls, name: str) -> DeviceModel:
        return _MODEL_NAMES.get(name.rstrip("\0").strip(), cls.UNKNOWN)


_MODEL_NAMES: dict[str, DeviceModel] = {
    "Icon HD": DeviceModel.ICON_HD,
    "Icon AIR": DeviceModel.ICON_AIR,
    "Puck Pro": DeviceModel.PUCK_PRO,
    "Puck Pro+": DeviceModel.PUCK_PRO,
    "Nemo Wide 2": DeviceModel.NEMO_WIDE_2,
    "Genius": DeviceModel.GENIUS,
    "Puck 2": DeviceModel.PUCK_2,
    "Quad Air": DeviceModel.QUAD_AIR,
    "Smart Air": DeviceModel.SMART_AIR,
    "Quad": DeviceModel.QUAD,
    "Horizon": DeviceModel.HORIZON,
    "Puck Air 2": DeviceModel.PUCK_AIR_2,
    "Sirius": DeviceModel.SIRIUS,
    "Quad Ci": DeviceModel.QUAD_CI,
    "Quad2": DeviceModel.QUAD_2,
    "Puck4": DeviceModel.PUCK_4,
    "Puck Lite": DeviceModel.PUCK_4,
    "Puck": DeviceModel.PUCK_4,
    "Puck Pro U": DeviceModel.PUCK_4,
}


@dataclass(frozen=True)
class DeviceInfo:
    model_name: str
    model: DeviceModel
    raw: bytes


@dataclass(frozen=True)
class DeviceSummary:
    info: DeviceInfo
    pcb_number: str | None = None
    dive_count: int | None = None


class DiveMode(enum.Enum):
    AIR = 0
    EANX = 1
    EANX_MULTI = 2
    TRIMIX = 3
    GAUGE = 4
    FREEDIVE = 5
    SCR = 6
    OC = 7


class Salinity(enum.Enum):
    FRESH = 0
    SALT = 1
    EN13319 = 2


class GasState(enum.Enum):
    OFF = 0
    READY = 1
    INUSE = 2
    IGNORED = 3


@dataclass(frozen=True)
class GasMix:
    oxygen: int
    nitrogen: int
    helium: int
    state: GasState
    begin_pressure: float
    end_pressure: float
    volume: int
    working_pressure: int

    @property
    def is_active(self) -> bool:
        return self.state in (GasState.READY, GasState.INUSE) and 0 < self.oxygen <= 100


@dataclass(frozen=True)
class DiveHeader:
    """Decoded 200-byte dive summary.

    Depths are metres, temperatures degrees Celsius, pressures bar.
    """

    dive_number: int
    timestamp: datetime
    dive_mode: DiveMode
    salinity: Salinity
    surface_timeout_minutes: int
    sample_count: int
    max_depth: float
    temperature_max: float
    temperature_min: float
    atmospheric_pressure: float
    gas_mixes: tuple[GasMix, ...]

    @property
    def duration_seconds(self) -> int:
        # Signed: negative when the surface timeout exceeds the sampled time.
        return self.sample_count * SAMPLE_INTERVAL_S - self.surface_timeout_minutes * 60

    @property
    def identity(self) -> tuple[int, datetime]:
        return (self.dive_number, self.timestamp)


@dataclass(frozen=True)
class ProfileRecord:
    """One tagged, checksummed record of a dive profile stream."""

    tag: str
    offset: int
    payload: bytes
    crc: int
    crc_ok: bool


@dataclass(frozen=True)
class DiveStart(ProfileRecord):
    pass


@dataclass(frozen=True)
class TissueSnapshot(ProfileRecord):
    pass


@dataclass(frozen=True)
class Sample(ProfileRecord):
    depth: float
    temperature: float
    deco_time: int
    alarms: int
    misc: int
    gas_index: int
    bookmark: bool
    deco_flags: int


@dataclass(frozen=True)
class AirSample(ProfileRecord):
    pressure: float


@dataclass(frozen=True)
class DiveEnd(ProfileRecord):
    pass


@dataclass(frozen=True)
class TimelinePoint:
    time_s: int
    depth: float
    temperature: float
    pressure: float | None


@dataclass(frozen=True)
class DiveRecord:
    ordinal: int
    header: DiveHeader
    records: tuple[ProfileRecord, ...]
    raw_header: bytes = b""
    raw_profile: bytes = b""

    @property
    def identity(self) -> tuple[int, datetime]:
        return self.header.identity

    @property
    def samples(self) -> tuple[ProfileRecord, ...]:
        return tuple(r for r in self.records if isinstance(r, (Sample, AirSample)))

    @property
    def partial(self) -> bool:
        return any(not r.crc_ok for r in self.records)


class SyncStatus(enum.Enum):
    DOWNLOADED = "downloaded"
    PARTIAL = "partial"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class DiveOutcome:
    ordinal: int
    status: SyncStatus
    record: DiveRecord | None = None
    header: DiveHeader | None = None
    error: Exception | None = None


@dataclass(frozen=True)
class DownloadReport:
    target: ResolvedTarget
    device_info: DeviceInfo
    outcomes: tuple[DiveOutcome, ...]
    stored: int
    cancelled: bool = False

    def count(self, status: SyncStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status is status)
