#!/usr/bin/env python3
"""
Log reading front end.

LogReader wraps a format driver, keeps diagnostics out of the way of
callers that only want data, and counts what it has seen.
"""

import logging
from collections import Counter
from contextlib import contextmanager
from typing import Iterator, List, Optional

from .config import SessionConfig
from .drivers import guess_format, open_driver
from .drivers.base import FormatDriver
from .records import DIAGNOSTIC_TYPES, Ping


class LogReader:
    """
    Iterates over the records of one log.

    Args:
        driver: Driver opened for reading
        keep_diagnostics: Collect diagnostic records in the diagnostics list
    """

    def __init__(self, driver: FormatDriver, keep_diagnostics: bool = True):
        self.driver = driver
        self.keep_diagnostics = keep_diagnostics
        self.diagnostics: List = []
        self.counts = Counter()
        self.logger = logging.getLogger('LogReader')

    def __iter__(self):
        while True:
            record = self.driver.read_next()
            if record is None:
                return
            self.counts[record.KIND] += 1
            if isinstance(record, DIAGNOSTIC_TYPES) and self.keep_diagnostics:
                self.diagnostics.append(record)
            yield record

    def records(self, include_diagnostics: bool = False) -> Iterator:
        for record in self:
            if include_diagnostics or not isinstance(record, DIAGNOSTIC_TYPES):
                yield record

    def pings(self, valid_only: bool = True) -> Iterator[Ping]:
        """Pings of enabled devices, optionally only the resolved ones."""
        registry = self.driver.session.registry
        for record in self:
            if not isinstance(record, Ping):
                continue
            if not registry.is_enabled(record.device_number):
                continue
            if valid_only and not record.valid:
                self.logger.debug(f"Skipping invalid ping {record.ping_number}: {record.error}")
                continue
            yield record

    def summary(self) -> str:
        parts = [f"{kind}={count}" for kind, count in sorted(self.counts.items())]
        return f"{self.driver.CAPABILITIES.name}: " + ', '.join(parts)

    def close(self):
        self.driver.close()


@contextmanager
def open_log(path: str, format_name: Optional[str] = None,
             config: Optional[SessionConfig] = None):
    """
    Open a log file for reading.

    Args:
        path: Log file path
        format_name: Driver name, guessed from the extension if None
        config: Session configuration

    Yields:
        LogReader over the file
    """
    format_name = format_name or guess_format(path)
    with open(path, 'rb') as f:
        reader = LogReader(open_driver(format_name, f, 'r', config))
        try:
            yield reader
        finally:
            reader.logger.info(reader.summary())
            reader.close()
