#!/usr/bin/env python3
"""
Error types for swath log ingestion.

End of input is not an error: drivers return None from read_next().
Malformed records are recoverable and are turned into diagnostic records
by the drivers, everything else propagates to the caller.
"""


class SwathError(Exception):
    """Base class for all swathio errors."""


class Malformed(SwathError, ValueError):
    """A record failed validation (field count, beam count, checksum, ...)."""

    def __init__(self, message: str, tag: str = ''):
        super().__init__(message)
        self.tag = tag


class ShortRead(Malformed):
    """The byte source ran out in the middle of a record."""

    def __init__(self, expected: int, got: int, tag: str = ''):
        super().__init__(f"Short read: expected {expected} bytes, got {got}", tag)
        self.expected = expected
        self.got = got


class ChecksumError(Malformed):
    """Stored and computed checksums disagree."""

    def __init__(self, stored: int, computed: int, tag: str = ''):
        super().__init__(f"Checksum mismatch: stored {stored:#06x}, computed {computed:#06x}", tag)
        self.stored = stored
        self.computed = computed


class UnknownDevice(SwathError, LookupError):
    """A record referenced a device number that was never declared."""

    def __init__(self, device_number: int, reason: str = 'not declared'):
        super().__init__(f"Unknown device {device_number}: {reason}")
        self.device_number = device_number


class MissingSensorData(SwathError):
    """Interpolation had no samples to work with."""

    def __init__(self, kind: str, time: float, reason: str = 'no samples'):
        super().__init__(f"Missing {kind} data at t={time:.3f}: {reason}")
        self.kind = kind
        self.time = time


class SensorOutOfRange(MissingSensorData):
    """Requested time is further from the buffered samples than allowed."""

    def __init__(self, kind: str, time: float, gap: float):
        super().__init__(kind, time, f"{gap:.3f} s beyond buffered samples")
        self.gap = gap


class WriteFailure(SwathError, OSError):
    """The output sink rejected a write."""
