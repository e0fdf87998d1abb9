"""Multibeam sonar log ingestion."""

from .config import SessionConfig, configure_logging, load_config
from .drivers import HysweepDriver, SimradDriver, get_driver, guess_format, open_driver
from .errors import (ChecksumError, Malformed, MissingSensorData, SensorOutOfRange, ShortRead,
                     SwathError, UnknownDevice, WriteFailure)
from .reader import LogReader, open_log
from .records import (AbandonedPing, BeamField, BeamFlag, CommentRecord, DeviceRecord,
                      HeaderRecord, MalformedRecord, ParameterRecord, Ping, ResyncEvent,
                      SensorKind, SensorRecord, SensorSample)

__version__ = '0.1.0'
