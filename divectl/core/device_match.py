"""Pick the device profile for a scanned BLE advertisement.

Dive computers are recognised by the start of their advertised name
("Quad2 0042", "Puck Pro U 17") or by a vendor prefix of the address. An
address hit outranks a name hit. Between equal hits the profile with the
longer name prefix wins, so "Puck Pro U" is preferred over plain "Puck".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from divectl.core.model import DetectedDevice, DeviceProfile

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProfileMatch:
    profile: DeviceProfile
    by_address: bool
    name_prefix: str | None

    @property
    def score(self) -> int:
        return (2 if self.by_address else 0) + (1 if self.name_prefix else 0)

    def rank(self) -> tuple[int, int]:
        return self.score, len(self.name_prefix or "")


def longest_name_prefix(name: str, prefixes: tuple[str, ...]) -> str | None:
    name = name.strip()
    return max((p for p in prefixes if name.startswith(p)), key=len, default=None)


def match_profile(device: DetectedDevice, profile: DeviceProfile) -> ProfileMatch | None:
    address = device.address.upper()
    by_address = any(address.startswith(prefix) for prefix in profile.match.address_prefix)
    name_prefix = longest_name_prefix(device.name, profile.match.name_prefix)
    if not by_address and name_prefix is None:
        return None
    return ProfileMatch(profile=profile, by_address=by_address, name_prefix=name_prefix)


def match_score(device: DetectedDevice, profile: DeviceProfile) -> int:
    match = match_profile(device, profile)
    return match.score if match else 0


def best_profile_for_device(device: DetectedDevice, profiles: dict[str, DeviceProfile]) -> DeviceProfile | None:
    matches = [m for m in (match_profile(device, p) for p in profiles.values()) if m is not None]
    if not matches:
        return None
    # max() keeps the first of equal ranks, so profile order breaks ties
    best = max(matches, key=ProfileMatch.rank)
    LOGGER.debug(
        "%s (%s) -> %s via %s",
        device.name,
        device.address,
        best.profile.id,
        "address" if best.by_address else f"name prefix {best.name_prefix!r}",
    )
    return best.profile
