#!/usr/bin/env python3
"""
Beam geometry resolver.

Turns the raw per-beam measurements of a ping (ranges plus whichever angle
sets the sonar reports) into takeoff/azimuth angles and vessel-frame
soundings: acrosstrack and alongtrack distance and depth below the water
surface.

Angle conventions (degrees):
    pitch (alpha): rotation of the beam vector towards forward
    roll: acrosstrack angle from nadir, positive to port; beta = 90 + roll
    takeoff (theta): angle of the beam from vertical
    azimuth: rotation about the vertical, 90 = starboard
"""

import logging
from typing import Optional, Tuple

import numpy as np

from .buffers import TimeSeriesBuffer
from .records import BeamField, BeamFlag, NavigationSnapshot, Ping
from .registry import Device, SonarType

# Beam quality below this value is suspect on Reson Seabat sonars
RESON_QUALITY_THRESHOLD = 2
RESON_NAME_PREFIX = 'Reson Seabat'


def rollpitch_to_takeoff(alpha, beta) -> Tuple[np.ndarray, np.ndarray]:
    """
    Convert beam (pitch, roll) angles to (takeoff, azimuth-from-across).

    Args:
        alpha: Pitch angle(s), degrees
        beta: 90 + roll angle(s), degrees

    Returns:
        (theta, phi) arrays in degrees; phi is measured from the acrosstrack
        axis towards forward
    """
    alpha = np.radians(np.asarray(alpha, dtype=float))
    beta = np.radians(np.asarray(beta, dtype=float))

    along = np.sin(alpha)
    across = np.cos(alpha) * np.cos(beta)
    down = np.cos(alpha) * np.sin(beta)

    theta = np.degrees(np.arccos(np.clip(down, -1.0, 1.0)))
    both_zero = (along == 0.0) & (across == 0.0)
    phi = np.where(both_zero, 0.0, np.degrees(np.arctan2(along, across)))
    return theta, phi


def takeoff_to_rollpitch(theta, phi) -> Tuple[np.ndarray, np.ndarray]:
    """
    Inverse of rollpitch_to_takeoff.

    Returns:
        (alpha, beta) arrays in degrees
    """
    theta = np.radians(np.asarray(theta, dtype=float))
    phi = np.radians(np.asarray(phi, dtype=float))

    x = np.sin(theta) * np.cos(phi)
    y = np.sin(theta) * np.sin(phi)
    z = np.cos(theta)

    alpha = np.degrees(np.arcsin(np.clip(y, -1.0, 1.0)))
    norm = np.sqrt(x * x + z * z)
    with np.errstate(invalid='ignore', divide='ignore'):
        ratio = np.where(norm > 0.0, x / np.where(norm > 0.0, norm, 1.0), 1.0)
    beta = np.degrees(np.arccos(np.clip(ratio, -1.0, 1.0)))
    beta = np.where(z < 0.0, 360.0 - beta, beta)
    return alpha, beta


class BeamGeometryResolver:
    """
    Computes missing angle and bathymetry fields of a ping.

    Each group (angles, bathymetry, flags) is computed only if its bits are
    not yet available and the bits are set right after, so resolving the same
    ping twice changes nothing.
    """

    def __init__(self):
        self.logger = logging.getLogger('BeamGeometryResolver')

    def resolve(self, ping: Ping, device: Device, snapshot: NavigationSnapshot,
                attitude: Optional[TimeSeriesBuffer] = None) -> Ping:
        """
        Resolve beam geometry in place.

        Args:
            ping: Ping with its raw beam arrays
            device: Owning device (sonar type, flags, beam angle layout)
            snapshot: Sensor state at the ping time
            attitude: Attitude buffer for per-beam motion at receive time;
                the snapshot's roll and pitch are used if not given

        Returns:
            The same ping
        """
        ping.snapshot = snapshot
        sonar_type = ping.sonar_type or device.sonar_type
        num = ping.num_beams
        if num == 0:
            return ping

        ranges = self._ranges(ping)

        if ping.has(BeamField.MULTI_RANGE) or sonar_type == SonarType.MULTI_TRANSDUCER:
            self._multi_transducer_angles(ping, device, snapshot, attitude, ranges)
        elif sonar_type in (SonarType.FIXED_ROLL, SonarType.VARIABLE_ROLL):
            self._roll_angles(ping, device, snapshot, attitude, ranges)
        elif sonar_type == SonarType.SPHERICAL:
            self._spherical_angles(ping, device, snapshot, attitude, ranges)

        if not ping.has(BeamField.BATHYMETRY):
            self._bathymetry(ping, snapshot, ranges)

        if not ping.has(BeamField.FLAGS):
            self._flags(ping, device, ranges)

        return ping

    @staticmethod
    def _ranges(ping: Ping) -> Optional[np.ndarray]:
        if ping.has(BeamField.RANGE):
            return ping.beams['range']
        if ping.has(BeamField.MULTI_RANGE):
            return ping.beams['multi_range']
        return None

    def _ship_motion(self, ping: Ping, snapshot: NavigationSnapshot,
                     attitude: Optional[TimeSeriesBuffer],
                     ranges: Optional[np.ndarray]) -> Tuple[np.ndarray, np.ndarray]:
        """Per-beam ship (roll, pitch) at the time each echo was received."""
        num = ping.num_beams
        if attitude is None or ranges is None or not len(attitude):
            return np.full(num, snapshot.roll), np.full(num, snapshot.pitch)

        sv = ping.sound_velocity if ping.sound_velocity > 0.0 else 1500.0
        roll = np.empty(num)
        pitch = np.empty(num)
        for i in range(num):
            values = attitude.interpolate(ping.time + 2.0 * ranges[i] / sv)
            roll[i] = values[0]
            pitch[i] = values[1]
        return roll, pitch

    def _roll_angles(self, ping, device, snapshot, attitude, ranges):
        num = ping.num_beams
        if not ping.has(BeamField.ROLL_ANGLE):
            roll = device.first_beam_angle + np.arange(num) * device.angle_increment
            ping.set_beams(BeamField.ROLL_ANGLE, roll)
        if not ping.has(BeamField.PITCH_ANGLE):
            ping.set_beams(BeamField.PITCH_ANGLE, np.zeros(num))
        if ping.has(BeamField.SPHERICAL):
            return

        alpha = ping.beams['pitch'].copy()
        beta = 90.0 + ping.beams['roll']
        if not (device.roll_corrected and device.pitch_corrected):
            ship_roll, ship_pitch = self._ship_motion(ping, snapshot, attitude, ranges)
            if not device.pitch_corrected:
                alpha = alpha + ship_pitch
            if not device.roll_corrected:
                beta = beta - ship_roll

        theta, phi = rollpitch_to_takeoff(alpha, beta)
        ping.beams['pitch'] = alpha
        ping.beams['roll'] = beta - 90.0
        ping.set_beams(BeamField.TAKEOFF_ANGLE, theta)
        ping.set_beams(BeamField.AZIMUTH_ANGLE, 90.0 - phi)

    def _spherical_angles(self, ping, device, snapshot, attitude, ranges):
        if not ping.has(BeamField.SPHERICAL) or ping.has(BeamField.ROLL_PITCH):
            return
        alpha, beta = takeoff_to_rollpitch(ping.beams['takeoff'], 90.0 - ping.beams['azimuth'])
        if device.roll_corrected and device.pitch_corrected:
            ping.set_beams(BeamField.PITCH_ANGLE, alpha)
            ping.set_beams(BeamField.ROLL_ANGLE, beta - 90.0)
            return

        ship_roll, ship_pitch = self._ship_motion(ping, snapshot, attitude, ranges)
        if not device.pitch_corrected:
            alpha = alpha + ship_pitch
        if not device.roll_corrected:
            beta = beta - ship_roll
        ping.set_beams(BeamField.PITCH_ANGLE, alpha)
        ping.set_beams(BeamField.ROLL_ANGLE, beta - 90.0)
        theta, phi = rollpitch_to_takeoff(alpha, beta)
        ping.beams['takeoff'] = theta
        ping.beams['azimuth'] = 90.0 - phi

    def _multi_transducer_angles(self, ping, device, snapshot, attitude, ranges):
        if ping.has(BeamField.SPHERICAL):
            return
        num = ping.num_beams
        ship_roll, ship_pitch = self._ship_motion(ping, snapshot, attitude, ranges)

        # Transducer angles from the wire are relative to the hull unless corrected
        roll = ping.beams['roll'].copy() if ping.has(BeamField.ROLL_ANGLE) else np.zeros(num)
        if not device.roll_corrected:
            roll = roll - ship_roll
        ping.set_beams(BeamField.ROLL_ANGLE, roll)

        if not device.pitch_corrected:
            pitch = ship_pitch.copy()
        elif ping.has(BeamField.PITCH_ANGLE):
            pitch = ping.beams['pitch'].copy()
        else:
            pitch = np.zeros(num)
        ping.set_beams(BeamField.PITCH_ANGLE, pitch)

        theta, phi = rollpitch_to_takeoff(pitch, 90.0 + roll)
        ping.set_beams(BeamField.TAKEOFF_ANGLE, theta)
        ping.set_beams(BeamField.AZIMUTH_ANGLE, 90.0 - phi)

    def _bathymetry(self, ping: Ping, snapshot: NavigationSnapshot,
                    ranges: Optional[np.ndarray]):
        if ranges is None or not ping.has(BeamField.SPHERICAL):
            self.logger.debug(f"Ping {ping.ping_number}: no ranges or angles, bathymetry not computed")
            return

        theta = np.radians(ping.beams['takeoff'])
        phi = np.radians(90.0 - ping.beams['azimuth'])
        horizontal = ranges * np.sin(theta)
        vertical = ranges * np.cos(theta)

        null = ranges <= 0.0
        across = np.where(null, 0.0, horizontal * np.cos(phi))
        along = np.where(null, 0.0, horizontal * np.sin(phi))
        depth = np.where(null, 0.0, vertical + snapshot.draft - snapshot.heave)

        ping.set_beams(BeamField.DEPTH, depth)
        ping.set_beams(BeamField.ALONG, along)
        ping.set_beams(BeamField.ACROSS, across)
        if null.any():
            for name in ('takeoff', 'azimuth', 'roll', 'pitch'):
                if name in ping.beams:
                    ping.beams[name] = np.where(null, 0.0, ping.beams[name])

    def _flags(self, ping: Ping, device: Device, ranges: Optional[np.ndarray]):
        flags = np.full(ping.num_beams, int(BeamFlag.NONE), dtype=int)
        if device.name.startswith(RESON_NAME_PREFIX) and ping.has(BeamField.QUALITY):
            suspect = ping.beams['quality'] < RESON_QUALITY_THRESHOLD
            flags[suspect] = int(BeamFlag.FLAG | BeamFlag.SONAR)
        if ranges is not None:
            flags[ranges <= 0.0] = int(BeamFlag.NULL)
        ping.set_beams(BeamField.FLAGS, flags)
