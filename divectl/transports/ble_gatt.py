"""BLE GATT transport implementation."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from divectl.core.errors import (
    DeviceDiscoveryError,
    TransportConnectError,
    TransportSendError,
    TransportTimeoutError,
)
from divectl.core.model import DetectedDevice

LOGGER = logging.getLogger(__name__)


def _bleak() -> Any:
    try:
        import bleak  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise TransportConnectError(
            "BLE transport requires 'bleak'. Install dependency and retry."
        ) from exc
    return bleak


def scan_devices(timeout_s: float = 10.0) -> list[DetectedDevice]:
    bleak = _bleak()

    async def _run() -> dict[str, Any]:
        return await bleak.BleakScanner.discover(timeout=timeout_s, return_adv=True)

    try:
        found = asyncio.run(_run())
    except Exception as exc:
        raise DeviceDiscoveryError(f"BLE scan failed: {exc}") from exc

    devices: list[DetectedDevice] = []
    for device, advertisement in found.values():
        name = advertisement.local_name or device.name
        if not name:
            continue
        devices.append(DetectedDevice(address=device.address.upper(), name=name, rssi=advertisement.rssi))
    return devices


class BLEGATTChannel:
    """Persistent write/notify channel to one device.

    The channel owns a private event loop. Notifications are only delivered
    while that loop runs, which is exactly while a caller waits in
    ``next_notification``; until then they stay queued.
    """

    def __init__(
        self,
        address: str,
        *,
        write_char_uuid: str,
        notify_char_uuid: str,
        write_chunk_size: int = 20,
        timeout_s: float = 5.0,
    ) -> None:
        self.address = address
        self.write_char_uuid = write_char_uuid
        self.notify_char_uuid = notify_char_uuid
        self.write_chunk_size = write_chunk_size
        self.timeout_s = timeout_s
        self._loop = asyncio.new_event_loop()
        self._queue: asyncio.Queue[bytes] = asyncio.Queue()
        self._client: Any = None

    def _on_notify(self, _: int | str | Any, data: bytearray) -> None:
        self._queue.put_nowait(bytes(data))

    def connect(self) -> BLEGATTChannel:
        bleak = _bleak()
        client = bleak.BleakClient(self.address, timeout=self.timeout_s)
        try:
            self._loop.run_until_complete(client.connect())
            if not client.is_connected:
                raise TransportConnectError(f"BLE connect failed for {self.address}")
            self._loop.run_until_complete(client.start_notify(self.notify_char_uuid, self._on_notify))
        except Exception as exc:
            self._abandon(client)
            if isinstance(exc, TransportConnectError):
                raise
            raise TransportConnectError(f"BLE connect failed for {self.address}: {exc}") from exc
        self._client = client
        LOGGER.info("Connected to %s", self.address)
        return self

    def _abandon(self, client: Any) -> None:
        try:
            if client.is_connected:
                self._loop.run_until_complete(client.disconnect())
        except Exception as exc:
            LOGGER.warning("Disconnect from %s after failed connect failed: %s", self.address, exc)
        finally:
            self._loop.close()

    def write(self, data: bytes) -> None:
        if self._client is None:
            raise TransportSendError(f"Not connected to {self.address}")
        try:
            for start in range(0, len(data), self.write_chunk_size):
                chunk = bytes(data[start : start + self.write_chunk_size])
                self._loop.run_until_complete(
                    self._client.write_gatt_char(self.write_char_uuid, chunk, response=False)
                )
        except Exception as exc:
            raise TransportSendError(f"BLE GATT write failed: {exc}") from exc

    def next_notification(self, timeout_s: float) -> bytes:
        try:
            return self._loop.run_until_complete(asyncio.wait_for(self._queue.get(), timeout_s))
        except asyncio.TimeoutError as exc:
            raise TransportTimeoutError(
                f"Timed out waiting for BLE notification on {self.notify_char_uuid}"
            ) from exc

    def drain(self) -> None:
        while True:
            try:
                stale = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            LOGGER.debug("Dropped stale notification of %d bytes", len(stale))

    def close(self) -> None:
        client, self._client = self._client, None
        try:
            if client is not None:
                try:
                    self._loop.run_until_complete(client.stop_notify(self.notify_char_uuid))
                    self._loop.run_until_complete(client.disconnect())
                except Exception as exc:
                    LOGGER.warning("Disconnect from %s failed: %s", self.address, exc)
        finally:
            self._loop.close()

    def __enter__(self) -> BLEGATTChannel:
        return self.connect()

    def __exit__(self, *exc_info: object) -> None:
        self.close()
