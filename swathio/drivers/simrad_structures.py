#!/usr/bin/env python3
"""
Simrad EM raw datagram structures.

Big-endian binary layout shared by the EM120, EM300, EM1002, EM2000 and
EM3000 family. Every datagram is

    STX(1) type(1) model(2) | header | payload | [spare] ETX(1) checksum(2)

optionally preceded by a 4 byte record length. The body between the label
and ETX always has odd length, padded with one spare byte where needed, so
the whole datagram has even length. The checksum is the 16 bit sum of all
bytes from the type byte up to (not including) ETX.
"""

import struct
from dataclasses import dataclass
from enum import IntEnum

import numpy as np

STX = 0x02
ETX = 0x03
LABEL_SIZE = 4
WRAPPER_SIZE = 4
TRAILER_SIZE = 3          # ETX + checksum

MAX_BEAMS = 254           # Beam counts are one byte; 255 is unused
MAX_RAW_PIXELS = 32000
MAX_TEXT = 16384          # Largest accepted installation parameter text


class Datagram(IntEnum):
    """Datagram type codes (STX byte plus type id)."""
    STOP2 = 0x0230
    OFF = 0x0231
    ON = 0x0232
    ATTITUDE = 0x0241
    CLOCK = 0x0243
    BATH = 0x0244
    RAWBEAM = 0x0246
    SSV = 0x0247
    HEADING = 0x0248
    START = 0x0249
    POS = 0x0250
    RUN_PARAMETER = 0x0252
    SS = 0x0253
    TIDE = 0x0254
    SVP2 = 0x0255
    SVP = 0x0256
    HEIGHT = 0x0268
    STOP = 0x0269


DATAGRAM_TYPES = frozenset(int(d) for d in Datagram)

# Installation parameter datagrams carry ASCII "KEY=value," text
PARAMETER_DATAGRAMS = (Datagram.START, Datagram.STOP, Datagram.STOP2, Datagram.OFF, Datagram.ON)

EM120 = 120
EM300 = 300
EM1002 = 1002
EM2000 = 2000
EM3000 = 3000
# EM3000 and the dual head EM3000D_1 .. EM3000D_7
EM3000_FAMILY = frozenset(range(EM3000, EM3000 + 8))
SONAR_MODELS = frozenset([EM120, EM300, EM1002, EM2000]) | EM3000_FAMILY

# Models that report depths as unsigned shorts
UNSIGNED_DEPTH_MODELS = (EM120, EM300)

# Transducer depth wraps at 655.36 m; the offset multiplier counts the wraps
TRANSDUCER_DEPTH_WRAP = 655.36


def checksum(data: bytes) -> int:
    """16 bit sum of a byte sequence."""
    return sum(data) & 0xFFFF


def pad_body(body: bytes) -> bytes:
    """Pad a datagram body to odd length so the full datagram length is even."""
    if len(body) % 2 == 0:
        return body + b'\x00'
    return body


def _check_size(cls, data: bytes):
    if len(data) < cls.SIZE:
        raise ValueError(f"Buffer too small: expected {cls.SIZE}, got {len(data)}")


@dataclass
class DatagramLabel:
    """4-byte label: STX and type id as one short, then the sonar model."""
    type_code: int
    model: int

    SIZE = 4

    @classmethod
    def from_bytes(cls, data: bytes) -> 'DatagramLabel':
        _check_size(cls, data)
        type_code, model = struct.unpack('>HH', data[:cls.SIZE])
        return cls(type_code=type_code, model=model)

    def to_bytes(self) -> bytes:
        return struct.pack('>HH', self.type_code, self.model)


@dataclass
class CommonHeader:
    """Date, time and counters that open every datagram body."""
    date: int          # yyyymmdd
    msec: int          # milliseconds since midnight
    count: int         # ping or datagram counter
    serial: int        # system serial number

    SIZE = 12
    FORMAT = '>iiHH'

    @classmethod
    def from_bytes(cls, data: bytes) -> 'CommonHeader':
        _check_size(cls, data)
        return cls(*struct.unpack(cls.FORMAT, data[:cls.SIZE]))

    def to_bytes(self) -> bytes:
        return struct.pack(self.FORMAT, self.date, self.msec, self.count, self.serial)


@dataclass
class SliceHeader:
    """Header of the sensor datagrams that carry ndata time slices (heading, attitude, SSV)."""
    date: int
    msec: int
    count: int
    serial: int
    ndata: int

    SIZE = 14
    FORMAT = '>iiHHH'

    @classmethod
    def from_bytes(cls, data: bytes) -> 'SliceHeader':
        _check_size(cls, data)
        return cls(*struct.unpack(cls.FORMAT, data[:cls.SIZE]))

    def to_bytes(self) -> bytes:
        return struct.pack(self.FORMAT, self.date, self.msec, self.count, self.serial, self.ndata)


@dataclass
class StartHeader:
    """Installation parameter header; the ASCII text follows up to ETX."""
    date: int
    msec: int
    count: int
    serial: int
    serial2: int

    SIZE = 14
    FORMAT = '>iiHHH'

    @classmethod
    def from_bytes(cls, data: bytes) -> 'StartHeader':
        _check_size(cls, data)
        return cls(*struct.unpack(cls.FORMAT, data[:cls.SIZE]))

    def to_bytes(self) -> bytes:
        return struct.pack(self.FORMAT, self.date, self.msec, self.count, self.serial, self.serial2)


@dataclass
class ClockDatagram:
    date: int
    msec: int
    count: int
    serial: int
    origin_date: int    # External clock date
    origin_msec: int
    pps: int            # 1 PPS in use

    SIZE = 21
    FORMAT = '>iiHHiiB'

    @classmethod
    def from_bytes(cls, data: bytes) -> 'ClockDatagram':
        _check_size(cls, data)
        return cls(*struct.unpack(cls.FORMAT, data[:cls.SIZE]))

    def to_bytes(self) -> bytes:
        return struct.pack(self.FORMAT, self.date, self.msec, self.count, self.serial,
                           self.origin_date, self.origin_msec, self.pps)


@dataclass
class TideDatagram:
    date: int
    msec: int
    count: int
    serial: int
    origin_date: int    # Time of the tide value
    origin_msec: int
    tide: int           # cm

    SIZE = 22
    FORMAT = '>iiHHiih'

    @classmethod
    def from_bytes(cls, data: bytes) -> 'TideDatagram':
        _check_size(cls, data)
        return cls(*struct.unpack(cls.FORMAT, data[:cls.SIZE]))

    def to_bytes(self) -> bytes:
        return struct.pack(self.FORMAT, self.date, self.msec, self.count, self.serial,
                           self.origin_date, self.origin_msec, self.tide)


@dataclass
class HeightDatagram:
    date: int
    msec: int
    count: int
    serial: int
    height: int         # cm
    height_type: int

    SIZE = 17
    FORMAT = '>iiHHiB'

    @classmethod
    def from_bytes(cls, data: bytes) -> 'HeightDatagram':
        _check_size(cls, data)
        return cls(*struct.unpack(cls.FORMAT, data[:cls.SIZE]))

    def to_bytes(self) -> bytes:
        return struct.pack(self.FORMAT, self.date, self.msec, self.count, self.serial,
                           self.height, self.height_type)


@dataclass
class PositionHeader:
    """Position datagram header; input_size bytes of the raw input string follow."""
    date: int
    msec: int
    count: int
    serial: int
    latitude: int       # 1/20,000,000 degree
    longitude: int      # 1/10,000,000 degree
    quality: int        # cm
    speed: int          # cm/s, 0xFFFF if unknown
    course: int         # 0.01 degree
    heading: int        # 0.01 degree
    system: int
    input_size: int

    SIZE = 30
    FORMAT = '>iiHHiiHHHHBB'

    @classmethod
    def from_bytes(cls, data: bytes) -> 'PositionHeader':
        _check_size(cls, data)
        return cls(*struct.unpack(cls.FORMAT, data[:cls.SIZE]))

    def to_bytes(self) -> bytes:
        return struct.pack(self.FORMAT, self.date, self.msec, self.count, self.serial,
                           self.latitude, self.longitude, self.quality, self.speed,
                           self.course, self.heading, self.system, self.input_size)


@dataclass
class SvpHeader:
    """Sound velocity profile header; num depth/velocity slices follow."""
    date: int
    msec: int
    count: int
    serial: int
    profile_date: int
    profile_msec: int
    num: int
    depth_resolution: int   # cm

    SIZE = 24
    FORMAT = '>iiHHiiHH'

    @classmethod
    def from_bytes(cls, data: bytes) -> 'SvpHeader':
        _check_size(cls, data)
        return cls(*struct.unpack(cls.FORMAT, data[:cls.SIZE]))

    def to_bytes(self) -> bytes:
        return struct.pack(self.FORMAT, self.date, self.msec, self.count, self.serial,
                           self.profile_date, self.profile_msec, self.num,
                           self.depth_resolution)


@dataclass
class BathHeader:
    """Depth datagram header; nbeams 16-byte beams and an offset multiplier follow."""
    date: int
    msec: int
    count: int                  # Ping number
    serial: int
    heading: int                # 0.01 degree
    ssv: int                    # 0.1 m/s
    transducer_depth: int       # cm
    nbeams_max: int
    nbeams: int
    depth_resolution: int       # cm
    distance_resolution: int    # cm
    sample_rate: int            # Hz

    SIZE = 24
    FORMAT = '>iiHHHHHBBBBH'

    @classmethod
    def from_bytes(cls, data: bytes) -> 'BathHeader':
        _check_size(cls, data)
        return cls(*struct.unpack(cls.FORMAT, data[:cls.SIZE]))

    def to_bytes(self) -> bytes:
        return struct.pack(self.FORMAT, self.date, self.msec, self.count, self.serial,
                           self.heading, self.ssv, self.transducer_depth, self.nbeams_max,
                           self.nbeams, self.depth_resolution, self.distance_resolution,
                           self.sample_rate)


@dataclass
class RawBeamHeader:
    """Raw beam angle datagram header; nraw 8-byte beams follow."""
    date: int
    msec: int
    count: int
    serial: int
    nbeams_max: int
    nraw: int
    ssv: int                    # 0.1 m/s

    SIZE = 16
    FORMAT = '>iiHHBBH'

    @classmethod
    def from_bytes(cls, data: bytes) -> 'RawBeamHeader':
        _check_size(cls, data)
        return cls(*struct.unpack(cls.FORMAT, data[:cls.SIZE]))

    def to_bytes(self) -> bytes:
        return struct.pack(self.FORMAT, self.date, self.msec, self.count, self.serial,
                           self.nbeams_max, self.nraw, self.ssv)


@dataclass
class SidescanHeader:
    """Seabed image datagram header; nbeams_ss 6-byte beams then the samples follow."""
    date: int
    msec: int
    count: int
    serial: int
    max_range: int
    r_zero: int
    r_zero_corr: int
    tvg_start: int
    tvg_stop: int
    bsn: int                    # Normal incidence backscatter, dB
    bso: int                    # Oblique backscatter, dB
    tx: int                     # Transmit beamwidth, 0.1 degree
    tvg_crossover: int
    nbeams_ss: int

    SIZE = 28
    FORMAT = '>iiHHHHHHHbbHBB'

    @classmethod
    def from_bytes(cls, data: bytes) -> 'SidescanHeader':
        _check_size(cls, data)
        return cls(*struct.unpack(cls.FORMAT, data[:cls.SIZE]))

    def to_bytes(self) -> bytes:
        return struct.pack(self.FORMAT, self.date, self.msec, self.count, self.serial,
                           self.max_range, self.r_zero, self.r_zero_corr, self.tvg_start,
                           self.tvg_stop, self.bsn, self.bso, self.tx, self.tvg_crossover,
                           self.nbeams_ss)


# Per-slice and per-beam layouts
HEADING_SLICE = np.dtype([('time', '>u2'), ('heading', '>u2')])
SSV_SLICE = np.dtype([('time', '>u2'), ('ssv', '>u2')])
ATTITUDE_SLICE = np.dtype([('time', '>u2'), ('status', '>u2'), ('roll', '>i2'),
                           ('pitch', '>i2'), ('heave', '>i2'), ('heading', '>u2')])
SVP_SLICE = np.dtype([('depth', '>u2'), ('velocity', '>u2')])
SVP2_SLICE_SIZE = 8
RUN_PARAMETER_SIZE = 45     # Body size after the label


def bath_beam_dtype(model: int) -> np.dtype:
    """16-byte depth datagram beam; depth is unsigned on EM120 and EM300."""
    depth = '>u2' if model in UNSIGNED_DEPTH_MODELS else '>i2'
    return np.dtype([('depth', depth), ('across', '>i2'), ('along', '>i2'),
                     ('depression', '>i2'), ('azimuth', '>u2'), ('range', '>u2'),
                     ('quality', 'u1'), ('window', 'u1'), ('amplitude', 'i1'),
                     ('beam_number', 'u1')])


RAWBEAM_BEAM = np.dtype([('point_angle', '>i2'), ('tilt', '>u2'), ('range', '>u2'),
                         ('amplitude', 'i1'), ('beam_number', 'u1')])
SS_BEAM = np.dtype([('beam_index', 'u1'), ('sort_direction', 'i1'),
                    ('beam_samples', '>u2'), ('center_sample', '>u2')])
