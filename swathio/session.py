#!/usr/bin/env python3
"""
Per-driver session state and the ping assembler.

Every FormatDriver instance owns exactly one SessionState; nothing in here
is shared between sessions.
"""

import logging
from enum import Enum
from typing import Iterable, Optional, Set

from .buffers import SensorBuffers
from .config import SessionConfig
from .errors import MissingSensorData, UnknownDevice
from .geometry import BeamGeometryResolver
from .projection import Projection
from .records import AbandonedPing, Ping, SensorKind
from .registry import DeviceRegistry


class PingState(Enum):
    IDLE = 'idle'
    AWAITING_SUBRECORDS = 'awaiting_subrecords'
    COMPLETE = 'complete'


class PingAssembler:
    """
    Tracks the ping currently being assembled from several records.

    A ping is opened with the set of closing record tags it still waits
    for. Each arriving closing record is ticked off; once none remain the
    ping is complete and can be taken. Opening a new ping while one is
    still waiting abandons the old one.
    """

    def __init__(self, session: 'SessionState'):
        self.session = session
        self.state = PingState.IDLE
        self.pending: Optional[Ping] = None
        self.waiting_for: Set[str] = set()
        self.resolver = BeamGeometryResolver()
        self.abandoned = 0
        self.logger = logging.getLogger('PingAssembler')

    def open(self, ping: Ping, expect: Iterable[str] = ()) -> Optional[AbandonedPing]:
        """
        Start assembling a ping.

        Args:
            ping: Ping built from the opening record
            expect: Tags of the records that must still arrive

        Returns:
            AbandonedPing for a previous ping that was still waiting, else None
        """
        abandoned = None
        if self.state == PingState.AWAITING_SUBRECORDS:
            abandoned = self.abandon(f"{ping.tag or 'ping'} {ping.ping_number} from device "
                                     f"{ping.device_number} arrived first")

        self.pending = ping
        self.waiting_for = set(expect)
        if self.waiting_for:
            self.state = PingState.AWAITING_SUBRECORDS
        else:
            self.state = PingState.COMPLETE
        return abandoned

    def satisfy(self, tag: str) -> bool:
        """
        Tick off one closing record.

        Returns:
            True if the pending ping is now complete
        """
        if self.state != PingState.AWAITING_SUBRECORDS:
            return False
        self.waiting_for.discard(tag)
        if not self.waiting_for:
            self.state = PingState.COMPLETE
            return True
        return False

    def complete(self) -> bool:
        """
        Close the pending ping without waiting for its remaining records.

        Used by formats whose trailing records are optional. Returns False
        if there is no pending ping.
        """
        if self.pending is None:
            return False
        if self.waiting_for:
            self.logger.debug(f"Ping {self.pending.ping_number} completed without "
                              f"{sorted(self.waiting_for)}")
        self.waiting_for = set()
        self.state = PingState.COMPLETE
        return True

    def take(self) -> Optional[Ping]:
        """Hand over a complete ping and return to idle."""
        if self.state != PingState.COMPLETE:
            return None
        ping = self.pending
        self.pending = None
        self.waiting_for = set()
        self.state = PingState.IDLE
        return ping

    def abandon(self, reason: str) -> Optional[AbandonedPing]:
        """Drop the pending ping, returning it as a diagnostic."""
        if self.pending is None:
            self.state = PingState.IDLE
            return None
        ping = self.pending
        ping.valid = False
        ping.error = f"abandoned incomplete ping: {reason}"
        self.logger.warning(f"Abandoned ping {ping.ping_number} of device {ping.device_number} "
                            f"still waiting for {sorted(self.waiting_for)}: {reason}")
        self.pending = None
        self.waiting_for = set()
        self.state = PingState.IDLE
        self.abandoned += 1
        return AbandonedPing(ping=ping, reason=reason)

    def finalize(self, ping: Ping) -> Ping:
        """
        Interpolate the sensor snapshot for a ping and resolve its geometry.

        A ping that cannot be resolved is returned with valid False and the
        reason in error rather than with made-up geometry.
        """
        session = self.session
        try:
            device = session.registry.lookup(ping.device_number)
        except UnknownDevice as e:
            ping.valid = False
            ping.error = str(e)
            self.logger.warning(f"Ping {ping.ping_number}: {e}")
            return ping

        try:
            snapshot = session.buffers.snapshot(ping.time, session.projection,
                                                session.config.require_navigation)
            attitude = session.buffers[SensorKind.ATTITUDE]
            self.resolver.resolve(ping, device, snapshot, attitude if len(attitude) else None)
        except MissingSensorData as e:
            ping.valid = False
            ping.error = f"missing navigation/attitude: {e}"
            self.logger.warning(f"Ping {ping.ping_number} of device {ping.device_number} invalid: {e}")
        return ping

    def reset(self):
        self.state = PingState.IDLE
        self.pending = None
        self.waiting_for = set()


class SessionState:
    """
    Everything one driver instance accumulates while reading or writing.

    Attributes:
        registry: Declared devices
        buffers: Sensor time series
        projection: Projection named by the log header
        epoch: Epoch seconds of the survey date, for formats with time of day stamps
        label_buffered: A record read ahead and held for the next call
        expect_next: Tag of the record the driver expects next, if any
        assembler: Ping state machine
    """

    def __init__(self, config: Optional[SessionConfig] = None):
        self.config = config or SessionConfig()
        self.registry = DeviceRegistry(self.config.max_devices, self.config.max_offsets)
        self.buffers = SensorBuffers(self.config.buffer_capacity,
                                     self.config.timestamp_policy,
                                     self.config.max_extrapolation)
        self.projection = Projection.from_id(self.config.default_projection)
        self.projection_declared = False
        self.epoch: Optional[float] = None
        self.label_buffered = None
        self.expect_next: Optional[str] = None
        self.header_complete = False
        self.assembler = PingAssembler(self)

    def declare_projection(self, projection_id: str) -> bool:
        """
        Use the projection named by a header record; the first one wins.

        Returns:
            True if the projection was applied
        """
        if self.projection_declared:
            return False
        self.projection = Projection.from_id(projection_id)
        self.projection_declared = True
        return True

    def release(self):
        """Drop everything the session holds."""
        self.registry.clear()
        self.buffers.clear()
        self.assembler.reset()
        self.label_buffered = None
        self.expect_next = None
