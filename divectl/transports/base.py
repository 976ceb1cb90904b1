"""Transport interfaces."""

from __future__ import annotations

from typing import Protocol


class NotifyWriteChannel(Protocol):
    """An already-connected write characteristic plus notify characteristic."""

    def write(self, data: bytes) -> None:
        """Write bytes to the device."""

    def next_notification(self, timeout_s: float) -> bytes:
        """Return the next notification, raising TransportTimeoutError on timeout."""

    def drain(self) -> None:
        """Discard notifications that arrived before the next command."""
