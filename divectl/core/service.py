"""Service layer used by the CLI and the public API."""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractContextManager
from pathlib import Path

from divectl.core.device_match import best_profile_for_device
from divectl.core.errors import DecodeError, DeviceSelectionError, ProtocolError
from divectl.core.model import (
    DetectedDevice,
    DeviceInfo,
    DeviceProfile,
    DeviceSummary,
    DiveOutcome,
    DiveRecord,
    DownloadReport,
    ResolvedTarget,
    SyncStatus,
)
from divectl.core.profile_loader import load_profiles
from divectl.core.store import DiveStore, load_raw, save_raw
from divectl.core.sync import DiveSync
from divectl.decode.header import decode_header
from divectl.decode.profile import decode_profile
from divectl.protocol.dives import count_dives
from divectl.protocol.sdo import DiagnosticResult, SDOClient
from divectl.transports.base import NotifyWriteChannel
from divectl.transports.ble_gatt import BLEGATTChannel, scan_devices

ChannelFactory = Callable[[DetectedDevice, DeviceProfile], AbstractContextManager[NotifyWriteChannel]]
Scanner = Callable[[float], list[DetectedDevice]]

LOGGER = logging.getLogger(__name__)


def _ble_channel(device: DetectedDevice, profile: DeviceProfile) -> BLEGATTChannel:
    return BLEGATTChannel(
        device.address,
        write_char_uuid=profile.transport.write_char_uuid,
        notify_char_uuid=profile.transport.notify_char_uuid,
        write_chunk_size=profile.transport.write_chunk_size,
        timeout_s=profile.transport.timeout_s,
    )


class DiveService:
    def __init__(
        self,
        *,
        channel_factory: ChannelFactory | None = None,
        scanner: Scanner | None = None,
    ) -> None:
        loaded = load_profiles()
        self.profiles = loaded.profiles
        self.load_warnings = loaded.warnings
        self.channel_factory = channel_factory or _ble_channel
        self.scanner = scanner or scan_devices

    def list_profiles(self) -> list[DeviceProfile]:
        return sorted(self.profiles.values(), key=lambda p: p.id)

    def scan(self, timeout_s: float | None = None) -> list[DetectedDevice]:
        if timeout_s is None:
            timeout_s = max((p.transport.scan_timeout_s for p in self.profiles.values()), default=10.0)
        LOGGER.info("Scanning for %.1fs", timeout_s)
        return self.scanner(timeout_s)

    def resolve_target(
        self,
        device_hint: str | None = None,
        profile_id: str | None = None,
    ) -> ResolvedTarget:
        profile_override: DeviceProfile | None = None
        if profile_id:
            profile_override = self.profiles.get(profile_id)
            if profile_override is None:
                raise DeviceSelectionError(
                    f"Unknown profile '{profile_id}'. Use 'divectl profiles' to inspect available profiles."
                )

        devices = self.scan()
        if not devices:
            raise DeviceSelectionError("No BLE devices found. Ensure the dive computer is in Bluetooth mode.")

        candidates: list[ResolvedTarget] = []
        for device in devices:
            if profile_override:
                profile = profile_override
                if best_profile_for_device(device, {profile.id: profile}) is None:
                    continue
            else:
                profile = best_profile_for_device(device, self.profiles)
                if profile is None:
                    continue
            candidates.append(ResolvedTarget(device=device, profile=profile))

        if device_hint:
            hint = device_hint.lower()
            hinted = [
                c
                for c in candidates
                if c.device.address.lower() == hint
                or hint in c.device.address.lower()
                or hint in c.device.name.lower()
            ]
            if not hinted:
                raise DeviceSelectionError(f"No device found matching '{device_hint}'")
            candidates = hinted

        if not candidates:
            if profile_id:
                raise DeviceSelectionError(f"No scanned device matched profile '{profile_id}'.")
            raise DeviceSelectionError(
                "No scanned device matched any profile. Use --profile to target explicitly or add a profile."
            )

        if len(candidates) > 1:
            candidate_desc = ", ".join(f"{c.device.address} ({c.device.name})" for c in candidates)
            raise DeviceSelectionError(
                f"Multiple candidate devices found: {candidate_desc}. Use --device to choose one."
            )

        return candidates[0]

    def _session(self, target: ResolvedTarget) -> AbstractContextManager[NotifyWriteChannel]:
        return self.channel_factory(target.device, target.profile)

    def device_info(
        self,
        device_hint: str | None = None,
        profile_id: str | None = None,
    ) -> tuple[ResolvedTarget, DeviceSummary]:
        """Read the model, PCB number and dive count.

        A failed PCB read or dive count is logged and left as ``None``.
        """
        target = self.resolve_target(device_hint=device_hint, profile_id=profile_id)
        with self._session(target) as channel:
            sdo = SDOClient(channel, timeout_s=target.profile.transport.timeout_s)
            info = sdo.read_version()

            pcb_number: str | None = None
            try:
                pcb_number = sdo.read_pcb_number()
            except ProtocolError as exc:
                LOGGER.warning("Could not read PCB number: %s", exc)

            dive_count: int | None = None
            try:
                dive_count = count_dives(sdo)
            except ProtocolError as exc:
                LOGGER.warning("Could not count dives: %s", exc)

        return target, DeviceSummary(info=info, pcb_number=pcb_number, dive_count=dive_count)

    def diagnostics(
        self,
        device_hint: str | None = None,
        profile_id: str | None = None,
    ) -> tuple[ResolvedTarget, DeviceInfo, list[DiagnosticResult]]:
        target = self.resolve_target(device_hint=device_hint, profile_id=profile_id)
        with self._session(target) as channel:
            sdo = SDOClient(channel, timeout_s=target.profile.transport.timeout_s)
            info = sdo.read_version()
            return target, info, sdo.read_diagnostics()

    def download(
        self,
        store_path: Path,
        *,
        device_hint: str | None = None,
        profile_id: str | None = None,
        raw_dir: Path | None = None,
        set_clock: bool | None = None,
        should_cancel: Callable[[], bool] | None = None,
        on_outcome: Callable[[DiveOutcome], None] | None = None,
    ) -> DownloadReport:
        """Download every dive the store does not hold yet.

        The store is written even when the run stops on a transport error, so
        dives that completed before the failure are kept.
        """
        store = DiveStore(store_path)
        known = store.identities()
        target = self.resolve_target(device_hint=device_hint, profile_id=profile_id)
        sync_spec = target.profile.sync
        if set_clock is None:
            set_clock = sync_spec.set_clock

        outcomes: list[DiveOutcome] = []
        stored = 0
        with self._session(target) as channel:
            sdo = SDOClient(channel, timeout_s=target.profile.transport.timeout_s)
            info = sdo.read_version()
            LOGGER.info("Connected to %s (%s)", info.model_name, info.model.name)
            if set_clock:
                try:
                    sdo.set_clock()
                except ProtocolError as exc:
                    LOGGER.warning("Could not set device clock: %s", exc)

            runner = DiveSync(sdo, retries=sync_spec.retries, should_cancel=should_cancel)
            try:
                for outcome in runner.sync(known):
                    outcomes.append(outcome)
                    if outcome.record is not None:
                        if store.add(outcome.record):
                            stored += 1
                        if raw_dir is not None:
                            save_raw(raw_dir, outcome.record)
                    if on_outcome is not None:
                        on_outcome(outcome)
            finally:
                if stored:
                    store.save()

        cancelled = bool(should_cancel and should_cancel())
        return DownloadReport(
            target=target,
            device_info=info,
            outcomes=tuple(outcomes),
            stored=stored,
            cancelled=cancelled,
        )

    def parse_raw(self, raw_dir: Path, store_path: Path | None = None) -> list[DiveOutcome]:
        """Decode dumps written by ``download --save-raw`` without a device."""
        store = DiveStore(store_path) if store_path is not None else None
        outcomes: list[DiveOutcome] = []
        for ordinal, raw_header, raw_profile in load_raw(raw_dir):
            try:
                header = decode_header(raw_header)
                records = tuple(decode_profile(raw_profile))
            except DecodeError as exc:
                LOGGER.error("Raw dive %d failed: %s", ordinal, exc)
                outcomes.append(DiveOutcome(ordinal=ordinal, status=SyncStatus.FAILED, error=exc))
                continue
            record = DiveRecord(
                ordinal=ordinal,
                header=header,
                records=records,
                raw_header=raw_header,
                raw_profile=raw_profile,
            )
            if store is not None:
                store.add(record)
            status = SyncStatus.PARTIAL if record.partial else SyncStatus.DOWNLOADED
            outcomes.append(DiveOutcome(ordinal=ordinal, status=status, record=record, header=header))
        if store is not None:
            store.save()
        return outcomes
