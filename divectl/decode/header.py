"""Decoder for the fixed 200-byte GENIUS dive header object (sub-index 4).

Layout (all integers little-endian)::

    0x00  u16  object type, must be 1
    0x02  u8   minor version
    0x03  u8   major version
    0x04  u32  dive number
    0x08  u32  packed datetime
    0x0C  u32  settings
    0x20  u16  number of samples
    0x22  u16  maximum depth, 1/10 m
    0x26  s16  maximum temperature, 1/10 degC
    0x28  s16  minimum temperature, 1/10 degC
    0x3E  u16  atmospheric pressure, 1/1000 bar
    0x54       5 gas mix / tank entries of 20 bytes

Packed datetime: hour ``[0,5)``, minute ``[5,11)``, day ``[11,16)``,
month ``[16,20)``, absolute year ``[20,32)``.

Settings: mode ``[0,4)``, salinity ``[5,7)``, surface timeout in minutes
``[13,19)``.

Gas entry: ``gasmixparams`` u32 (O2 ``[0,7)``, N2 ``[7,14)``, He ``[14,21)``,
state ``[21,23)``), then begin pressure, end pressure (1/100 bar), volume and
working pressure as u16.
"""

from __future__ import annotations

from datetime import datetime

from divectl.core.errors import (
    BadMagicError,
    BadTimestampError,
    TruncatedDataError,
    UnknownModeError,
    UnknownSalinityError,
)
from divectl.core.model import DiveHeader, DiveMode, GasMix, GasState, Salinity
from divectl.decode.bits import bits, s16le, u16le, u32le

HEADER_SIZE = 200
HEADER_TYPE = 1

OFFSET_TYPE = 0x00
OFFSET_DIVE_NUMBER = 0x04
OFFSET_DATETIME = 0x08
OFFSET_SETTINGS = 0x0C
OFFSET_SAMPLES = 0x20
OFFSET_MAX_DEPTH = 0x22
OFFSET_TEMPERATURE_MAX = 0x26
OFFSET_TEMPERATURE_MIN = 0x28
OFFSET_ATMOSPHERIC = 0x3E
OFFSET_GAS_MIXES = 0x54

GAS_MIX_COUNT = 5
GAS_MIX_SIZE = 20


def decode_datetime(packed: int) -> datetime:
    hour = bits(packed, 0, 5)
    minute = bits(packed, 5, 11)
    day = bits(packed, 11, 16)
    month = bits(packed, 16, 20)
    year = bits(packed, 20, 32)

    if hour > 23 or minute > 59 or not 1 <= day <= 31 or not 1 <= month <= 12:
        raise BadTimestampError(
            f"Packed datetime 0x{packed:08X} out of range "
            f"({year:04d}-{month:02d}-{day:02d} {hour:02d}:{minute:02d})"
        )
    try:
        return datetime(year, month, day, hour, minute)
    except ValueError as exc:
        raise BadTimestampError(f"Packed datetime 0x{packed:08X} is not a calendar date: {exc}") from exc


def decode_gas_mix(data: bytes, offset: int) -> GasMix:
    params = u32le(data, offset)
    return GasMix(
        oxygen=bits(params, 0, 7),
        nitrogen=bits(params, 7, 14),
        helium=bits(params, 14, 21),
        state=GasState(bits(params, 21, 23)),
        begin_pressure=u16le(data, offset + 4) / 100.0,
        end_pressure=u16le(data, offset + 6) / 100.0,
        volume=u16le(data, offset + 8),
        working_pressure=u16le(data, offset + 10),
    )


def dive_number_from_header(data: bytes) -> int:
    return u32le(data, OFFSET_DIVE_NUMBER)


def decode_header(data: bytes) -> DiveHeader:
    if len(data) < HEADER_SIZE:
        raise TruncatedDataError(f"Dive header too short: {len(data)} bytes (expected {HEADER_SIZE})")

    object_type = u16le(data, OFFSET_TYPE)
    if object_type != HEADER_TYPE:
        raise BadMagicError(f"Dive header type is {object_type}, expected {HEADER_TYPE}")

    settings = u32le(data, OFFSET_SETTINGS)
    mode_value = bits(settings, 0, 4)
    try:
        dive_mode = DiveMode(mode_value)
    except ValueError as exc:
        raise UnknownModeError(f"Unknown dive mode {mode_value}") from exc

    salinity_value = bits(settings, 5, 7)
    try:
        salinity = Salinity(salinity_value)
    except ValueError as exc:
        raise UnknownSalinityError(f"Unknown salinity {salinity_value}") from exc

    gas_mixes = tuple(
        decode_gas_mix(data, OFFSET_GAS_MIXES + i * GAS_MIX_SIZE) for i in range(GAS_MIX_COUNT)
    )

    return DiveHeader(
        dive_number=dive_number_from_header(data),
        timestamp=decode_datetime(u32le(data, OFFSET_DATETIME)),
        dive_mode=dive_mode,
        salinity=salinity,
        surface_timeout_minutes=bits(settings, 13, 19),
        sample_count=u16le(data, OFFSET_SAMPLES),
        max_depth=u16le(data, OFFSET_MAX_DEPTH) / 10.0,
        temperature_max=s16le(data, OFFSET_TEMPERATURE_MAX) / 10.0,
        temperature_min=s16le(data, OFFSET_TEMPERATURE_MIN) / 10.0,
        atmospheric_pressure=u16le(data, OFFSET_ATMOSPHERIC) / 1000.0,
        gas_mixes=gas_mixes,
    )
