#!/usr/bin/env python3
"""
Format driver contract.

The ingestion code above this layer never looks at the format: it pulls
records with read_next() and dispatches on the record class.
"""

import logging
from dataclasses import dataclass
from typing import BinaryIO, Optional, Tuple

from ..config import SessionConfig
from ..errors import Malformed, WriteFailure
from ..records import MalformedRecord, SensorKind
from ..session import SessionState
from ..tokenizer import ByteSource


@dataclass(frozen=True)
class DriverCapabilities:
    """What a format can carry."""
    name: str
    description: str
    max_beams: int
    amplitude: bool
    sidescan: bool
    navigation_source: SensorKind
    heading_source: SensorKind
    attitude_source: SensorKind
    binary: bool
    extensions: Tuple[str, ...] = ()


class FormatDriver:
    """
    Base class for one log format.

    Args:
        stream: Binary file object to read from or write to
        mode: 'r' or 'w'
        config: Session configuration (defaults if None)
    """

    CAPABILITIES: DriverCapabilities = None

    def __init__(self, stream: BinaryIO, mode: str = 'r',
                 config: Optional[SessionConfig] = None):
        if mode not in ('r', 'w'):
            raise ValueError(f"mode must be 'r' or 'w', got {mode!r}")
        self.stream = stream
        self.mode = mode
        self.config = config or SessionConfig()
        self.source = ByteSource(stream) if mode == 'r' else None
        self.session: Optional[SessionState] = None
        self.records_read = 0
        self.records_written = 0
        self.logger = logging.getLogger(self.__class__.__name__)
        self.allocate_session()

    @property
    def capabilities(self) -> DriverCapabilities:
        return self.CAPABILITIES

    def allocate_session(self) -> SessionState:
        """Start a fresh session (empty registry, buffers, idle assembler)."""
        if self.session is not None:
            self.free_session()
        self.session = SessionState(self.config)
        self.logger.debug(f"Allocated {self.CAPABILITIES.name} session ({self.mode})")
        return self.session

    def free_session(self):
        if self.session is not None:
            self.session.release()
            self.session = None

    def read_next(self):
        """
        Read the next record.

        Returns:
            A record object, a diagnostic record, or None at end of stream
        """
        if self.mode != 'r':
            raise ValueError("Driver was opened for writing")
        if self.session is None:
            raise ValueError("Session has been freed")

        position = self.source.tell()
        try:
            record = self._read_record()
        except Malformed as e:
            self.logger.warning(f"Malformed {e.tag or 'record'} at {position}: {e}")
            self._recover(e)
            return MalformedRecord(tag=e.tag, message=str(e), position=position)

        if record is not None:
            self.records_read += 1
        return record

    def write(self, record):
        """
        Encode and write one record.

        Raises:
            WriteFailure: If the sink rejects the bytes
        """
        if self.mode != 'w':
            raise ValueError("Driver was opened for reading")
        self._write_record(record)
        self.records_written += 1

    def _write_bytes(self, data: bytes):
        try:
            written = self.stream.write(data)
        except OSError as e:
            raise WriteFailure(f"Write of {len(data)} bytes failed: {e}") from e
        if written is not None and written != len(data):
            raise WriteFailure(f"Short write: {written} of {len(data)} bytes")

    def _read_record(self):
        raise NotImplementedError

    def _write_record(self, record):
        raise NotImplementedError

    def _recover(self, error: Malformed):
        """Position the stream for the next record after a decode failure."""

    def close(self):
        if self.mode == 'w':
            try:
                self.stream.flush()
            except OSError as e:
                raise WriteFailure(f"Flush failed: {e}") from e
        self.free_session()

    def __iter__(self):
        return self

    def __next__(self):
        record = self.read_next()
        if record is None:
            raise StopIteration
        return record

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
