"""Dive objects in the ECOP object dictionary.

Dive ``i`` (counted from 0, densely) lives at index ``0x3000 + i``; sub-index
4 holds the 200-byte header, sub-index 3 the variable-length profile.
"""

from __future__ import annotations

import logging

from divectl.protocol.sdo import Aborted, ObjectAddress, SDOClient

DIVE_INDEX_BASE = 0x3000
HEADER_SUB_INDEX = 4
PROFILE_SUB_INDEX = 3
MAX_DIVES = 256

LOGGER = logging.getLogger(__name__)


def dive_header_address(ordinal: int) -> ObjectAddress:
    return ObjectAddress(DIVE_INDEX_BASE + ordinal, HEADER_SUB_INDEX)


def dive_profile_address(ordinal: int) -> ObjectAddress:
    return ObjectAddress(DIVE_INDEX_BASE + ordinal, PROFILE_SUB_INDEX)


def count_dives(sdo: SDOClient, *, limit: int = MAX_DIVES) -> int:
    """Probe header objects from ordinal 0 until the device aborts one.

    Protocol errors propagate; only an abort means there are no more dives.
    """
    count = 0
    while count < limit:
        outcome = sdo.read_object(dive_header_address(count))
        if isinstance(outcome, Aborted):
            break
        count += 1
    else:
        LOGGER.warning("Stopped probing dives at limit %d", limit)
    LOGGER.info("Device holds %d dive(s)", count)
    return count


def read_dive_header(sdo: SDOClient, ordinal: int) -> bytes:
    return sdo.read(dive_header_address(ordinal))


def read_dive_profile(sdo: SDOClient, ordinal: int) -> bytes:
    return sdo.read(dive_profile_address(ordinal))
