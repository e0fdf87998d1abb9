#!/usr/bin/env python3
"""
Decoded record types.

Every driver returns one of the record classes below from read_next() and
accepts the same classes in write(). Callers dispatch on the record class;
the KIND class constant is a short label used for logging and counters.
"""

from dataclasses import dataclass, field
from enum import Enum, IntFlag
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .errors import Malformed


class BeamField(IntFlag):
    """Fields-available bitmask of a ping (HYSWEEP RMB bit layout)."""
    NONE = 0x0000
    RANGE = 0x0001
    MULTI_RANGE = 0x0002
    EASTING_NORTHING = 0x0004
    DEPTH = 0x0008
    ALONG = 0x0010
    ACROSS = 0x0020
    PITCH_ANGLE = 0x0040
    ROLL_ANGLE = 0x0080
    TAKEOFF_ANGLE = 0x0100
    AZIMUTH_ANGLE = 0x0200
    TIME_DELAY = 0x0400
    INTENSITY = 0x0800
    QUALITY = 0x1000
    FLAGS = 0x2000
    UNCERTAINTY = 0x4000

    BATHYMETRY = DEPTH | ALONG | ACROSS
    ROLL_PITCH = PITCH_ANGLE | ROLL_ANGLE
    SPHERICAL = TAKEOFF_ANGLE | AZIMUTH_ANGLE


# Wire order of the per-beam arrays: (bit, array names, dtype)
BEAM_FIELDS: List[Tuple[BeamField, Tuple[str, ...], type]] = [
    (BeamField.RANGE, ('range',), float),
    (BeamField.MULTI_RANGE, ('multi_range',), float),
    (BeamField.EASTING_NORTHING, ('easting', 'northing'), float),
    (BeamField.DEPTH, ('depth',), float),
    (BeamField.ALONG, ('along',), float),
    (BeamField.ACROSS, ('across',), float),
    (BeamField.PITCH_ANGLE, ('pitch',), float),
    (BeamField.ROLL_ANGLE, ('roll',), float),
    (BeamField.TAKEOFF_ANGLE, ('takeoff',), float),
    (BeamField.AZIMUTH_ANGLE, ('azimuth',), float),
    (BeamField.TIME_DELAY, ('time_delay',), int),
    (BeamField.INTENSITY, ('intensity',), int),
    (BeamField.QUALITY, ('quality',), int),
    (BeamField.FLAGS, ('flags',), int),
    (BeamField.UNCERTAINTY, ('uncertainty',), float),
]


class BeamFlag(IntFlag):
    """Per-beam edit flags."""
    NONE = 0x00        # Good beam
    MANUAL = 0x01
    FLAG = 0x02        # Suspect
    SONAR = 0x10       # Rejected by the sonar
    NULL = 0xFF        # No data


class SensorKind(Enum):
    """Asynchronous sensor streams and the layout of their sample values."""
    NAVIGATION = 'navigation'           # (lon, lat)
    HEADING = 'heading'                 # (heading,)
    ATTITUDE = 'attitude'               # (roll, pitch, heave)
    SENSOR_DEPTH = 'sensor_depth'       # (draft,)
    ALTITUDE = 'altitude'               # (altitude,)
    TIDE = 'tide'                       # (tide,)
    SOUND_VELOCITY = 'sound_velocity'   # (surface sound velocity,)


@dataclass(frozen=True)
class SensorSample:
    """One timestamped sensor value; immutable once created."""
    time: float
    values: Tuple[float, ...]


@dataclass
class NavigationSnapshot:
    """Sensor state interpolated at a ping time."""
    time: float
    heading: float
    draft: float
    roll: float = 0.0
    pitch: float = 0.0
    heave: float = 0.0
    lon: Optional[float] = None
    lat: Optional[float] = None
    x: Optional[float] = None
    y: Optional[float] = None
    speed: float = 0.0                 # m/s
    altitude: Optional[float] = None


@dataclass
class HeaderRecord:
    """File level information (survey date, versions, projection, end of header)."""
    tag: str
    fields: Dict[str, Any] = field(default_factory=dict)

    KIND = 'header'


@dataclass
class DeviceRecord:
    """A device declaration line; the registry already holds its effect."""
    tag: str
    device_number: int
    fields: Dict[str, Any] = field(default_factory=dict)

    KIND = 'device'


@dataclass
class ParameterRecord:
    """Processing or installation parameters, view filters, event marks."""
    tag: str
    time: Optional[float] = None
    device_number: Optional[int] = None
    fields: Dict[str, Any] = field(default_factory=dict)

    KIND = 'parameter'


@dataclass
class SensorRecord:
    """Asynchronous sensor data; one or more samples of a single kind."""
    kind: SensorKind
    device_number: int
    time: float
    samples: List[SensorSample]
    tag: str = ''
    fields: Dict[str, Any] = field(default_factory=dict)
    primary: bool = True               # False if the device is disabled

    KIND = 'sensor'

    @property
    def value(self) -> Tuple[float, ...]:
        """Values of the last sample."""
        return self.samples[-1].values


@dataclass
class CommentRecord:
    text: str
    time: Optional[float] = None

    KIND = 'comment'


@dataclass
class SonarSettings:
    """Per-ping sonar settings (HYSWEEP SNR record)."""
    device_number: int
    time: float
    ping_number: int
    sonar_id: int
    values: List[float] = field(default_factory=list)


@dataclass(eq=False)
class Sidescan:
    """Sidescan samples that belong to a ping."""
    tag: str
    device_number: int
    ping_number: int
    arrays: Dict[str, np.ndarray] = field(default_factory=dict)
    fields: Dict[str, Any] = field(default_factory=dict)


@dataclass(eq=False)
class Soundings:
    """Resolved per-beam geometry in the vessel frame."""
    across: np.ndarray
    along: np.ndarray
    depth: np.ndarray
    takeoff: np.ndarray
    azimuth: np.ndarray
    flags: np.ndarray

    def __len__(self):
        return len(self.depth)

    @property
    def good(self) -> np.ndarray:
        """Boolean mask of beams without edit flags."""
        return self.flags == BeamFlag.NONE


@dataclass(eq=False)
class Ping:
    """
    One sonar ping: raw beam arrays plus, once resolved, its geometry.

    Beam arrays are stored by name (see BEAM_FIELDS) and every array holds
    exactly num_beams values. The available mask says which arrays exist.
    """
    device_number: int
    time: float
    ping_number: int
    num_beams: int
    sound_velocity: float = 1500.0
    sonar_type: int = 0
    sonar_flags: int = 0
    available: BeamField = BeamField.NONE
    beams: Dict[str, np.ndarray] = field(default_factory=dict)
    snapshot: Optional[NavigationSnapshot] = None
    valid: bool = True
    error: Optional[str] = None
    settings: Optional[SonarSettings] = None
    sidescan: List[Sidescan] = field(default_factory=list)
    tag: str = ''
    fields: Dict[str, Any] = field(default_factory=dict)

    KIND = 'ping'

    def has(self, bits: BeamField) -> bool:
        """True if every bit in bits is available."""
        return (self.available & bits) == bits

    def set_beams(self, bit: BeamField, *arrays):
        """
        Store the array(s) for one field and mark it available.

        Raises:
            Malformed: If an array length differs from num_beams
        """
        names, dtype = _FIELD_LAYOUT[bit]
        if len(arrays) != len(names):
            raise ValueError(f"{bit.name} needs {len(names)} arrays, got {len(arrays)}")
        for name, values in zip(names, arrays):
            values = np.asarray(values, dtype=dtype)
            if values.shape != (self.num_beams,):
                raise Malformed(f"{name} has {values.size} values, expected {self.num_beams}", self.tag)
            self.beams[name] = values
        self.available |= bit

    def beam(self, name: str) -> np.ndarray:
        return self.beams[name]

    def soundings(self) -> Optional[Soundings]:
        """Resolved geometry, or None until the bathymetry has been computed."""
        if not self.has(BeamField.BATHYMETRY):
            return None
        zeros = np.zeros(self.num_beams)
        flags = self.beams.get('flags')
        if flags is None:
            flags = np.zeros(self.num_beams, dtype=int)
        return Soundings(
            across=self.beams['across'],
            along=self.beams['along'],
            depth=self.beams['depth'],
            takeoff=self.beams.get('takeoff', zeros),
            azimuth=self.beams.get('azimuth', zeros),
            flags=flags,
        )


_FIELD_LAYOUT = {bit: (names, dtype) for bit, names, dtype in BEAM_FIELDS}


@dataclass
class ResyncEvent:
    """Bytes skipped while searching for the next valid record label."""
    skipped: int
    type_before: Optional[int] = None
    type_after: Optional[int] = None
    position: Optional[int] = None

    KIND = 'resync'


@dataclass
class MalformedRecord:
    """A record that failed to decode and was dropped."""
    tag: str
    message: str
    position: Optional[int] = None

    KIND = 'malformed'


@dataclass
class AbandonedPing:
    """A ping whose closing subrecords never arrived."""
    ping: Ping
    reason: str

    KIND = 'abandoned_ping'


DIAGNOSTIC_TYPES = (ResyncEvent, MalformedRecord, AbandonedPing)
