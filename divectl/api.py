"""Stable public API for building tooling on top of divectl.

This module is the supported integration surface for third-party callers
(log viewers, sync daemons, scripts). Avoid importing from internal modules
unless intentionally depending on non-stable internals.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from divectl.core.errors import (
    DecodeError,
    DeviceDiscoveryError,
    DeviceSelectionError,
    DivectlError,
    ProfileLoadError,
    ProfileValidationError,
    ProtocolError,
    StoreError,
    TransportConnectError,
    TransportError,
    TransportSendError,
    TransportTimeoutError,
)
from divectl.core.model import (
    DetectedDevice,
    DeviceInfo,
    DeviceProfile,
    DeviceSummary,
    DiveHeader,
    DiveOutcome,
    DiveRecord,
    DownloadReport,
    ResolvedTarget,
    SyncStatus,
)
from divectl.core.service import ChannelFactory, DiveService, Scanner
from divectl.decode.header import decode_header
from divectl.decode.profile import build_timeline, decode_profile
from divectl.protocol.sdo import DiagnosticResult, SDOClient
from divectl.transports.base import NotifyWriteChannel
from divectl.transports.ble_gatt import BLEGATTChannel

__all__ = [
    "DivectlError",
    "DecodeError",
    "DeviceDiscoveryError",
    "DeviceSelectionError",
    "ProfileLoadError",
    "ProfileValidationError",
    "ProtocolError",
    "StoreError",
    "TransportError",
    "TransportConnectError",
    "TransportSendError",
    "TransportTimeoutError",
    "DetectedDevice",
    "DeviceInfo",
    "DeviceProfile",
    "DeviceSummary",
    "DiagnosticResult",
    "DiveHeader",
    "DiveOutcome",
    "DiveRecord",
    "DownloadReport",
    "ResolvedTarget",
    "SyncStatus",
    "NotifyWriteChannel",
    "BLEGATTChannel",
    "SDOClient",
    "decode_header",
    "decode_profile",
    "build_timeline",
    "Client",
]


class Client:
    """Public client wrapping profile loading, device selection and download.

    ``channel_factory`` and ``scanner`` replace the BLE stack, which is how
    callers drive the client against a recorded or simulated device.
    """

    def __init__(
        self,
        *,
        channel_factory: ChannelFactory | None = None,
        scanner: Scanner | None = None,
    ) -> None:
        self._service = DiveService(channel_factory=channel_factory, scanner=scanner)

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    def list_profiles(self) -> list[DeviceProfile]:
        return self._service.list_profiles()

    def scan(self, *, timeout_s: float | None = None) -> list[DetectedDevice]:
        return self._service.scan(timeout_s)

    def resolve_target(
        self,
        *,
        device_hint: str | None = None,
        profile_id: str | None = None,
    ) -> ResolvedTarget:
        return self._service.resolve_target(device_hint=device_hint, profile_id=profile_id)

    def get_device_info(
        self,
        *,
        device_hint: str | None = None,
        profile_id: str | None = None,
    ) -> DeviceInfo:
        return self.get_device_summary(device_hint=device_hint, profile_id=profile_id).info

    def get_device_summary(
        self,
        *,
        device_hint: str | None = None,
        profile_id: str | None = None,
    ) -> DeviceSummary:
        _, summary = self._service.device_info(device_hint=device_hint, profile_id=profile_id)
        return summary

    def get_diagnostics(
        self,
        *,
        device_hint: str | None = None,
        profile_id: str | None = None,
    ) -> list[DiagnosticResult]:
        _, _, results = self._service.diagnostics(device_hint=device_hint, profile_id=profile_id)
        return results

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
        return self._service.download(
            store_path,
            device_hint=device_hint,
            profile_id=profile_id,
            raw_dir=raw_dir,
            set_clock=set_clock,
            should_cancel=should_cancel,
            on_outcome=on_outcome,
        )

    def parse_raw(self, raw_dir: Path, *, store_path: Path | None = None) -> list[DiveOutcome]:
        return self._service.parse_raw(raw_dir, store_path=store_path)
