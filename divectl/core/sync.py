"""Incremental dive download.

Headers are cheap to read, profiles are not: every header is fetched so the
dive identity can be compared against what the caller already holds, and
only unknown dives get their profile transferred.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from datetime import datetime

from divectl.core.errors import DecodeError, ProtocolError
from divectl.core.model import DiveOutcome, DiveRecord, SyncStatus
from divectl.decode.header import decode_header
from divectl.decode.profile import decode_profile
from divectl.protocol.dives import count_dives, dive_header_address, dive_profile_address
from divectl.protocol.sdo import ObjectAddress, SDOClient

Identity = tuple[int, datetime]

LOGGER = logging.getLogger(__name__)


class DiveSync:
    """Serial, dive-by-dive download over one SDO session.

    ``retries`` re-runs a whole object read after a protocol error; a read is
    never resumed mid-segment. ``should_cancel`` is polled between dives.
    """

    def __init__(
        self,
        sdo: SDOClient,
        *,
        retries: int = 1,
        should_cancel: Callable[[], bool] | None = None,
    ) -> None:
        self.sdo = sdo
        self.retries = max(0, retries)
        self.should_cancel = should_cancel or (lambda: False)

    def _read(self, address: ObjectAddress) -> bytes:
        attempt = 0
        while True:
            try:
                return self.sdo.read(address)
            except ProtocolError as exc:
                if attempt >= self.retries:
                    raise
                attempt += 1
                LOGGER.warning("Read of %s failed (%s), retrying (%d/%d)", address, exc, attempt, self.retries)

    def sync(self, known_identities: set[Identity]) -> Iterator[DiveOutcome]:
        total = count_dives(self.sdo)
        for ordinal in range(total):
            if self.should_cancel():
                LOGGER.info("Sync cancelled before dive %d/%d", ordinal + 1, total)
                return
            yield self._sync_one(ordinal, known_identities)

    def _sync_one(self, ordinal: int, known_identities: set[Identity]) -> DiveOutcome:
        header = None
        try:
            raw_header = self._read(dive_header_address(ordinal))
            header = decode_header(raw_header)
            if header.identity in known_identities:
                LOGGER.info("Dive #%d already downloaded, skipping", header.dive_number)
                return DiveOutcome(ordinal=ordinal, status=SyncStatus.SKIPPED, header=header)

            raw_profile = self._read(dive_profile_address(ordinal))
            records = tuple(decode_profile(raw_profile))
        except (ProtocolError, DecodeError) as exc:
            LOGGER.error("Dive %d failed: %s", ordinal, exc)
            return DiveOutcome(ordinal=ordinal, status=SyncStatus.FAILED, header=header, error=exc)

        record = DiveRecord(
            ordinal=ordinal,
            header=header,
            records=records,
            raw_header=raw_header,
            raw_profile=raw_profile,
        )
        known_identities.add(record.identity)
        status = SyncStatus.PARTIAL if record.partial else SyncStatus.DOWNLOADED
        if record.partial:
            LOGGER.warning("Dive #%d has records failing checksum", header.dive_number)
        return DiveOutcome(ordinal=ordinal, status=status, record=record, header=header)


def sync(
    sdo: SDOClient,
    known_identities: set[Identity],
    *,
    retries: int = 1,
    should_cancel: Callable[[], bool] | None = None,
) -> Iterator[DiveOutcome]:
    return DiveSync(sdo, retries=retries, should_cancel=should_cancel).sync(known_identities)
