#!/usr/bin/env python3
"""
Device registry.

Keeps the per-device identity, capability and mounting offset metadata that
a log declares in its header. Device numbers come straight off the wire, so
every lookup is bounds-checked and fails with UnknownDevice instead of
silently creating or indexing a slot.
"""

import logging
from dataclasses import dataclass, field
from enum import IntEnum, IntFlag
from typing import Dict, Iterator, List, Optional

from .errors import Malformed, UnknownDevice

# Hypack DEV capability value at or above which a device is extended (multibeam capable)
EXTENDED_CAPABILITY = 32768


class DeviceCapability(IntFlag):
    """HYSWEEP device capability bits (DV2 record, hexadecimal on the wire)."""
    NONE = 0x0000
    MULTIBEAM = 0x0001
    MULTI_TRANSDUCER = 0x0002
    GPS = 0x0004
    SIDESCAN = 0x0008
    ECHOSOUNDER = 0x0010
    GYRO = 0x0020
    TIDE = 0x0040
    MRU = 0x0200


class SonarType(IntEnum):
    """How a sonar reports its beam angles."""
    UNKNOWN = 0
    FIXED_ROLL = 1          # Roll angles from first angle + increment
    VARIABLE_ROLL = 2       # Roll angles reported per ping
    SPHERICAL = 3           # Takeoff and azimuth angles reported per ping
    MULTI_TRANSDUCER = 4


class SonarFlag(IntFlag):
    """Sonar processing flags (MBI / RMB records)."""
    NONE = 0x0000
    ROLL_CORRECTED = 0x0001
    PITCH_CORRECTED = 0x0002
    DUAL_HEAD = 0x0004
    HEADING_CORRECTED = 0x0008
    MEDIUM_DEPTH = 0x0010
    DEEP_WATER = 0x0020
    SVP_CORRECTED = 0x0040
    TOPOGRAPHIC = 0x0080


@dataclass
class Offset:
    """Lever arm and rotation between a device and the vessel reference point."""
    offset_type: int
    starboard: float = 0.0
    forward: float = 0.0
    vertical: float = 0.0
    yaw: float = 0.0
    roll: float = 0.0
    pitch: float = 0.0
    latency: float = 0.0


@dataclass
class Device:
    """One logical sensor or sonar channel declared in a log header."""
    number: int
    name: str = ''
    capability: int = 0                      # Hypack capability (DEV record)
    hysweep_capability: DeviceCapability = DeviceCapability.NONE
    towfish: bool = False
    enabled: bool = True
    offsets: List[Offset] = field(default_factory=list)
    primary_navigation: bool = False

    # Multibeam information (MBI record)
    sonar_type: int = SonarType.UNKNOWN
    sonar_flags: int = SonarFlag.NONE
    beam_data_available: int = 0
    num_beams_1: int = 0
    num_beams_2: int = 0
    first_beam_angle: float = 0.0
    angle_increment: float = 0.0

    # Sidescan information (SSI record)
    sidescan_flags: int = 0
    port_samples: int = 0
    starboard_samples: int = 0

    @property
    def is_extended(self) -> bool:
        """True if the device may carry multibeam (RMB) records."""
        return self.capability >= EXTENDED_CAPABILITY

    @property
    def is_multibeam(self) -> bool:
        return bool(self.hysweep_capability & (DeviceCapability.MULTIBEAM
                                               | DeviceCapability.MULTI_TRANSDUCER))

    @property
    def roll_corrected(self) -> bool:
        return bool(self.sonar_flags & SonarFlag.ROLL_CORRECTED)

    @property
    def pitch_corrected(self) -> bool:
        return bool(self.sonar_flags & SonarFlag.PITCH_CORRECTED)


class DeviceRegistry:
    """
    Per-session table of declared devices.

    Backed by a dict so lookups are O(1); the valid number range is
    0 .. max_devices-1 and anything outside it is rejected.
    """

    def __init__(self, max_devices: int = 12, max_offsets: int = 12):
        self.max_devices = max_devices
        self.max_offsets = max_offsets
        self._devices: Dict[int, Device] = {}
        self.logger = logging.getLogger('DeviceRegistry')

    def _check_number(self, device_number: int):
        if not isinstance(device_number, int) or not 0 <= device_number < self.max_devices:
            raise UnknownDevice(device_number, f"outside 0..{self.max_devices - 1}")

    def declare(self, device_number: int, capability: int, name: str) -> Device:
        """
        Declare a device (identity record).

        Re-declaring an existing number updates its identity and keeps its
        transport settings and offsets.
        """
        self._check_number(device_number)
        device = self._devices.get(device_number)
        if device is None:
            device = Device(number=device_number, name=name, capability=capability)
            self._devices[device_number] = device
            self.logger.debug(f"Declared device {device_number} '{name}' (capability {capability})")
        else:
            device.name = name
            device.capability = capability
        return device

    def update_transport(self, device_number: int, hysweep_capability: int,
                         enabled: bool, towfish: bool = False) -> Device:
        """Apply the capability record that follows a declaration."""
        device = self.lookup(device_number)
        device.hysweep_capability = DeviceCapability(hysweep_capability)
        device.enabled = bool(enabled)
        device.towfish = bool(towfish)
        return device

    def add_offset(self, device_number: int, offset: Offset) -> Device:
        """Append a mounting offset; offset lists only ever grow."""
        device = self.lookup(device_number)
        if len(device.offsets) >= self.max_offsets:
            raise Malformed(f"Device {device_number} already has {self.max_offsets} offsets", 'OF2')
        device.offsets.append(offset)
        return device

    def set_multibeam(self, device_number: int, sonar_type: int, sonar_flags: int,
                      beam_data_available: int, num_beams_1: int, num_beams_2: int,
                      first_beam_angle: float, angle_increment: float) -> Device:
        device = self.lookup(device_number)
        device.sonar_type = sonar_type
        device.sonar_flags = sonar_flags
        device.beam_data_available = beam_data_available
        device.num_beams_1 = num_beams_1
        device.num_beams_2 = num_beams_2
        device.first_beam_angle = first_beam_angle
        device.angle_increment = angle_increment
        return device

    def set_sidescan(self, device_number: int, sonar_flags: int,
                     port_samples: int, starboard_samples: int) -> Device:
        device = self.lookup(device_number)
        device.sidescan_flags = sonar_flags
        device.port_samples = port_samples
        device.starboard_samples = starboard_samples
        return device

    def set_primary_navigation(self, device_number: int) -> Device:
        device = self.lookup(device_number)
        for other in self._devices.values():
            other.primary_navigation = False
        device.primary_navigation = True
        return device

    def lookup(self, device_number: int) -> Device:
        """
        Get a declared device.

        Raises:
            UnknownDevice: If the number is out of range or undeclared
        """
        self._check_number(device_number)
        device = self._devices.get(device_number)
        if device is None:
            raise UnknownDevice(device_number)
        return device

    def get(self, device_number: int) -> Optional[Device]:
        """Like lookup() but returns None instead of raising."""
        try:
            return self.lookup(device_number)
        except UnknownDevice:
            return None

    def is_enabled(self, device_number: int) -> bool:
        device = self.get(device_number)
        return device is not None and device.enabled

    @property
    def primary_navigation(self) -> Optional[Device]:
        for device in self._devices.values():
            if device.primary_navigation:
                return device
        return None

    def clear(self):
        self._devices.clear()

    def __contains__(self, device_number) -> bool:
        return device_number in self._devices

    def __iter__(self) -> Iterator[Device]:
        return iter(sorted(self._devices.values(), key=lambda d: d.number))

    def __len__(self) -> int:
        return len(self._devices)
