#!/usr/bin/env python3
"""
Sensor time-series buffers and interpolation.

Asynchronous sensors (position, heading, attitude, sonar depth, altitude,
tide, surface sound velocity) are stored in bounded, time-ordered buffers
and interpolated onto ping times.
"""

import bisect
import logging
import math
from collections import deque
from typing import Deque, Dict, List, Optional, Tuple

import numpy as np

from .errors import MissingSensorData, SensorOutOfRange
from .records import NavigationSnapshot, SensorKind, SensorSample

# Fixes either side of the end point used to estimate an average speed
SPEED_WINDOW = 50

KNOTS_TO_MPS = 1852.0 / 3600.0


def coor_scale(latitude: float) -> Tuple[float, float]:
    """
    Degrees-per-metre scale factors at a latitude.

    Returns:
        (mtodeglon, mtodeglat) tuple
    """
    radlat = math.radians(latitude)
    mtodeglon = 1.0 / abs(111412.84 * math.cos(radlat)
                          - 93.5 * math.cos(3.0 * radlat)
                          + 0.118 * math.cos(5.0 * radlat))
    mtodeglat = 1.0 / abs(111132.92
                          - 559.82 * math.cos(2.0 * radlat)
                          + 1.175 * math.cos(4.0 * radlat)
                          - 0.0023 * math.cos(6.0 * radlat))
    return (mtodeglon, mtodeglat)


class TimeSeriesBuffer:
    """
    Bounded, strictly time-increasing store of samples for one sensor kind.

    A sample whose timestamp does not exceed the last one is rejected; with
    the 'overwrite' policy a sample at exactly the last timestamp replaces
    it instead. When full, the oldest sample is evicted.
    """

    def __init__(self, kind: SensorKind, capacity: int = 10000, policy: str = 'reject',
                 max_extrapolation: Optional[float] = None):
        self.kind = kind
        self.capacity = capacity
        self.policy = policy
        self.max_extrapolation = max_extrapolation
        self._times: Deque[float] = deque(maxlen=capacity)
        self._values: Deque[Tuple[float, ...]] = deque(maxlen=capacity)
        self.rejected = 0
        self.evicted = 0
        self.logger = logging.getLogger('TimeSeriesBuffer')

    def append(self, time: float, values: Tuple[float, ...]) -> bool:
        """
        Add a sample.

        Returns:
            True if the sample was stored, False if it was rejected
        """
        values = tuple(float(v) for v in values)
        if self._times and time <= self._times[-1]:
            if self.policy == 'overwrite' and time == self._times[-1]:
                self._values[-1] = values
                return True
            self.rejected += 1
            self.logger.debug(f"Rejected {self.kind.value} sample at t={time:.3f} "
                              f"(last t={self._times[-1]:.3f})")
            return False

        if len(self._times) == self.capacity:
            self.evicted += 1

        self._times.append(time)
        self._values.append(values)
        return True

    def clear(self):
        self._times.clear()
        self._values.clear()

    def __len__(self) -> int:
        return len(self._times)

    @property
    def first_time(self) -> Optional[float]:
        return self._times[0] if self._times else None

    @property
    def last_time(self) -> Optional[float]:
        return self._times[-1] if self._times else None

    def samples(self) -> List[SensorSample]:
        return [SensorSample(t, v) for t, v in zip(self._times, self._values)]

    def times(self) -> np.ndarray:
        return np.asarray(self._times)

    def _check_gap(self, time: float):
        if self.max_extrapolation is None:
            return
        if time < self._times[0]:
            gap = self._times[0] - time
        elif time > self._times[-1]:
            gap = time - self._times[-1]
        else:
            return
        if gap > self.max_extrapolation:
            raise SensorOutOfRange(self.kind.value, time, gap)

    def _blend(self, v0: Tuple[float, ...], v1: Tuple[float, ...],
               factor: float) -> Tuple[float, ...]:
        return tuple(a + factor * (b - a) for a, b in zip(v0, v1))

    def interpolate(self, time: float) -> Tuple[float, ...]:
        """
        Estimate the sensor value at a time.

        Linear between the bracketing samples; outside the buffered span the
        nearest end sample is returned.

        Raises:
            MissingSensorData: If the buffer is empty
            SensorOutOfRange: If time is beyond max_extrapolation
        """
        if not self._times:
            raise MissingSensorData(self.kind.value, time)
        self._check_gap(time)

        index = bisect.bisect_left(self._times, time)
        if index < len(self._times) and self._times[index] == time:
            return self._values[index]
        if index == 0:
            return self._values[0]
        if index == len(self._times):
            return self._values[-1]

        t0 = self._times[index - 1]
        t1 = self._times[index]
        factor = (time - t0) / (t1 - t0)
        return self._blend(self._values[index - 1], self._values[index], factor)


class HeadingBuffer(TimeSeriesBuffer):
    """Heading samples in degrees; interpolation follows the short arc."""

    def append(self, time: float, values: Tuple[float, ...]) -> bool:
        return super().append(time, (float(values[0]) % 360.0,))

    def _blend(self, v0, v1, factor):
        heading1 = v0[0]
        heading2 = v1[0]
        if heading2 - heading1 > 180.0:
            heading2 -= 360.0
        elif heading2 - heading1 < -180.0:
            heading2 += 360.0
        heading = (heading1 + factor * (heading2 - heading1)) % 360.0
        return (heading,)


class NavigationBuffer(TimeSeriesBuffer):
    """
    Position fixes as (lon, lat) in degrees.

    Beyond either end the position is extrapolated along a heading at a
    speed: the latest raw speed if one was reported, otherwise the mean
    speed over the fixes nearest that end. Zero speed clamps to the end fix.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.raw_speed: Optional[float] = None     # m/s
        self.raw_course: Optional[float] = None    # degrees

    def set_rate(self, speed: Optional[float], course: Optional[float] = None):
        """Record the latest speed over ground (m/s) and course (degrees)."""
        self.raw_speed = speed
        self.raw_course = course

    def clear(self):
        super().clear()
        self.raw_speed = None
        self.raw_course = None

    def average_speed(self, end: int) -> float:
        """Mean speed in m/s over up to SPEED_WINDOW fixes either side of index end."""
        if len(self._times) < 2:
            return 0.0
        i0 = max(end - SPEED_WINDOW, 0)
        i1 = min(end + SPEED_WINDOW, len(self._times) - 1)
        dt = self._times[i1] - self._times[i0]
        if dt <= 0.0:
            return 0.0
        lon0, lat0 = self._values[i0]
        lon1, lat1 = self._values[i1]
        mtodeglon, mtodeglat = coor_scale(0.5 * (lat0 + lat1))
        dx = (lon1 - lon0) / mtodeglon
        dy = (lat1 - lat0) / mtodeglat
        return math.sqrt(dx * dx + dy * dy) / dt

    def speed_at(self, time: float) -> float:
        if self.raw_speed is not None and self.raw_speed > 0.0:
            return self.raw_speed
        index = min(bisect.bisect_left(self._times, time), len(self._times) - 1)
        return self.average_speed(index)

    def interpolate(self, time: float, heading: Optional[float] = None) -> Tuple[float, ...]:
        """
        Position at a time, extrapolating outside the buffered span.

        Args:
            time: Epoch seconds
            heading: Direction of travel for extrapolation (degrees); the last
                reported course is used if not given

        Returns:
            (lon, lat) tuple
        """
        if not self._times:
            raise MissingSensorData(self.kind.value, time)
        self._check_gap(time)

        if self._times[0] <= time <= self._times[-1]:
            return super().interpolate(time)

        if time > self._times[-1]:
            t_end, (lon, lat) = self._times[-1], self._values[-1]
        else:
            t_end, (lon, lat) = self._times[0], self._values[0]

        direction = heading if heading is not None else self.raw_course
        if direction is None:
            return (lon, lat)

        distance = (time - t_end) * self.speed_at(time)
        mtodeglon, mtodeglat = coor_scale(lat)
        lon += math.sin(math.radians(direction)) * mtodeglon * distance
        lat += math.cos(math.radians(direction)) * mtodeglat * distance
        return (lon, lat)


class SensorBuffers:
    """
    One buffer per sensor kind, owned by a single session.

    Args:
        capacity: Samples kept per buffer
        policy: 'reject' or 'overwrite' for non-increasing timestamps
        max_extrapolation: Largest allowed distance (s) outside a buffer's span
    """

    def __init__(self, capacity: int = 10000, policy: str = 'reject',
                 max_extrapolation: Optional[float] = None):
        def make(cls, kind):
            return cls(kind, capacity=capacity, policy=policy,
                       max_extrapolation=max_extrapolation)

        self.buffers: Dict[SensorKind, TimeSeriesBuffer] = {
            SensorKind.NAVIGATION: make(NavigationBuffer, SensorKind.NAVIGATION),
            SensorKind.HEADING: make(HeadingBuffer, SensorKind.HEADING),
        }
        for kind in SensorKind:
            if kind not in self.buffers:
                self.buffers[kind] = make(TimeSeriesBuffer, kind)

        self.logger = logging.getLogger('SensorBuffers')

    def __getitem__(self, kind: SensorKind) -> TimeSeriesBuffer:
        return self.buffers[kind]

    @property
    def navigation(self) -> NavigationBuffer:
        return self.buffers[SensorKind.NAVIGATION]

    def append(self, kind: SensorKind, time: float, values: Tuple[float, ...]) -> bool:
        return self.buffers[kind].append(time, values)

    def append_sample(self, kind: SensorKind, sample: SensorSample) -> bool:
        return self.buffers[kind].append(sample.time, sample.values)

    def interpolate(self, kind: SensorKind, time: float) -> Tuple[float, ...]:
        return self.buffers[kind].interpolate(time)

    def attitude_at(self, time: float) -> Tuple[float, float, float]:
        """(roll, pitch, heave) at a time, zeros if no attitude was logged."""
        try:
            return self.buffers[SensorKind.ATTITUDE].interpolate(time)
        except MissingSensorData:
            return (0.0, 0.0, 0.0)

    def snapshot(self, time: float, projection=None,
                 require_navigation: bool = False) -> NavigationSnapshot:
        """
        Interpolate every sensor onto a ping time.

        Heading and sonar depth are required; attitude defaults to zero and
        position to unknown unless require_navigation is set.

        Raises:
            MissingSensorData: If a required sensor has no usable data
        """
        heading = self.interpolate(SensorKind.HEADING, time)[0]
        draft = self.interpolate(SensorKind.SENSOR_DEPTH, time)[0]

        attitude = self.buffers[SensorKind.ATTITUDE]
        if len(attitude):
            roll, pitch, heave = attitude.interpolate(time)
        else:
            self.logger.debug(f"No attitude data at t={time:.3f}, using zero roll/pitch/heave")
            roll = pitch = heave = 0.0

        snapshot = NavigationSnapshot(time=time, heading=heading, draft=draft,
                                      roll=roll, pitch=pitch, heave=heave)

        try:
            lon, lat = self.navigation.interpolate(time, heading=heading)
        except MissingSensorData:
            if require_navigation:
                raise
        else:
            snapshot.lon = lon
            snapshot.lat = lat
            snapshot.speed = self.navigation.speed_at(time)
            if projection is not None:
                snapshot.x, snapshot.y = projection.forward(lon, lat)

        altitude = self.buffers[SensorKind.ALTITUDE]
        if len(altitude):
            snapshot.altitude = altitude.interpolate(time)[0]

        return snapshot

    def clear(self):
        for buffer in self.buffers.values():
            buffer.clear()
