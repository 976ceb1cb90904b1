"""JSON dive store plus raw object dumps for offline reprocessing."""

from __future__ import annotations

import csv
import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any

from divectl.core.errors import StoreError
from divectl.core.model import DiveRecord
from divectl.decode.profile import build_timeline

_RAW_HEADER_RE = re.compile(r"^dive_(\d{3,})_header\.bin$")
LOGGER = logging.getLogger(__name__)


def dive_to_dict(record: DiveRecord) -> dict[str, Any]:
    header = record.header
    return {
        "number": header.dive_number,
        "datetime": header.timestamp.isoformat(timespec="seconds"),
        "ordinal": record.ordinal,
        "duration_seconds": header.duration_seconds,
        "max_depth_m": header.max_depth,
        "dive_mode": header.dive_mode.name.lower(),
        "salinity": header.salinity.name.lower(),
        "surface_timeout_minutes": header.surface_timeout_minutes,
        "sample_count": header.sample_count,
        "temperature_max_c": header.temperature_max,
        "temperature_min_c": header.temperature_min,
        "atmospheric_bar": header.atmospheric_pressure,
        "gas_mixes": [
            {
                "o2": gas.oxygen,
                "n2": gas.nitrogen,
                "he": gas.helium,
                "state": gas.state.name.lower(),
                "begin_pressure_bar": gas.begin_pressure,
                "end_pressure_bar": gas.end_pressure,
                "volume": gas.volume,
                "working_pressure": gas.working_pressure,
            }
            for gas in header.gas_mixes
            if gas.is_active
        ],
        "partial": record.partial,
        "samples": [
            {
                "time_s": point.time_s,
                "depth_m": point.depth,
                "temp_c": point.temperature,
                "pressure_bar": point.pressure,
            }
            for point in build_timeline(record.records)
        ],
    }


class DiveStore:
    """Dives keyed by identity, persisted as ``{"dives": [...]}``."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._dives: dict[tuple[int, str], dict[str, Any]] = {}
        if self.path.exists():
            self._load()

    def _load(self) -> None:
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise StoreError(f"Could not read dive store {self.path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise StoreError(f"Dive store {self.path} is not valid JSON: {exc}") from exc

        if not isinstance(document, dict) or not isinstance(document.get("dives"), list):
            raise StoreError(f"Dive store {self.path} must contain a 'dives' list")
        for dive in document["dives"]:
            try:
                key = (int(dive["number"]), str(dive["datetime"]))
            except (KeyError, TypeError, ValueError) as exc:
                raise StoreError(f"Dive store {self.path} holds a dive without identity: {exc}") from exc
            self._dives[key] = dive
        LOGGER.info("Loaded %d dive(s) from %s", len(self._dives), self.path)

    def __len__(self) -> int:
        return len(self._dives)

    def dives(self) -> list[dict[str, Any]]:
        return [self._dives[key] for key in sorted(self._dives)]

    def identities(self) -> set[tuple[int, datetime]]:
        return {(number, datetime.fromisoformat(stamp)) for number, stamp in self._dives}

    def add(self, record: DiveRecord) -> bool:
        """Add a downloaded dive; returns False if its identity is already stored."""
        dive = dive_to_dict(record)
        key = (dive["number"], dive["datetime"])
        if key in self._dives:
            return False
        self._dives[key] = dive
        return True

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        text = json.dumps({"dives": self.dives()}, indent=2)
        try:
            self.path.write_text(text + "\n", encoding="utf-8")
        except OSError as exc:
            raise StoreError(f"Could not write dive store {self.path}: {exc}") from exc


def save_raw(raw_dir: Path, record: DiveRecord) -> None:
    raw_dir = Path(raw_dir)
    try:
        raw_dir.mkdir(parents=True, exist_ok=True)
        (raw_dir / f"dive_{record.ordinal:03d}_header.bin").write_bytes(record.raw_header)
        (raw_dir / f"dive_{record.ordinal:03d}_profile.bin").write_bytes(record.raw_profile)
    except OSError as exc:
        raise StoreError(f"Could not write raw dive data to {raw_dir}: {exc}") from exc


def load_raw(raw_dir: Path) -> list[tuple[int, bytes, bytes]]:
    """Return ``(ordinal, header, profile)`` for every dump pair in ``raw_dir``."""
    raw_dir = Path(raw_dir)
    if not raw_dir.is_dir():
        raise StoreError(f"Raw dive directory {raw_dir} does not exist")

    dumps: list[tuple[int, bytes, bytes]] = []
    for path in sorted(raw_dir.iterdir()):
        match = _RAW_HEADER_RE.match(path.name)
        if not match:
            continue
        ordinal = int(match.group(1))
        profile_path = raw_dir / f"dive_{match.group(1)}_profile.bin"
        try:
            dumps.append((ordinal, path.read_bytes(), profile_path.read_bytes()))
        except OSError as exc:
            raise StoreError(f"Could not read raw dive {ordinal}: {exc}") from exc
    dumps.sort(key=lambda item: item[0])
    return dumps


def write_csv(path: Path, record: DiveRecord) -> None:
    path = Path(path)
    try:
        with path.open("w", newline="", encoding="utf-8") as handle:
            writer = csv.writer(handle)
            writer.writerow(["time_s", "depth_m", "temp_c", "pressure_bar"])
            for point in build_timeline(record.records):
                writer.writerow(
                    [
                        point.time_s,
                        f"{point.depth:.1f}",
                        f"{point.temperature:.1f}",
                        "" if point.pressure is None else f"{point.pressure:.1f}",
                    ]
                )
    except OSError as exc:
        raise StoreError(f"Could not write CSV {path}: {exc}") from exc
