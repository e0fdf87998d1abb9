#!/usr/bin/env python3
"""Format drivers and lookup by name or file extension."""

import os
from typing import BinaryIO, Optional

from ..config import SessionConfig
from .base import DriverCapabilities, FormatDriver
from .hysweep import HysweepDriver
from .simrad import SimradDriver

DRIVERS = {
    'hysweep': HysweepDriver,
    'simrad': SimradDriver,
}


def get_driver(name: str):
    """
    Get a driver class by format name.

    Raises:
        ValueError: If the format is not supported
    """
    try:
        return DRIVERS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown format {name!r}, expected one of {sorted(DRIVERS)}") from None


def guess_format(path: str) -> str:
    """Format name from a file extension."""
    ext = os.path.splitext(path)[1].lower()
    for name, driver in DRIVERS.items():
        if ext in driver.CAPABILITIES.extensions:
            return name
    raise ValueError(f"Cannot tell the format of {path!r} from its extension")


def open_driver(format_name: str, stream: BinaryIO, mode: str = 'r',
                config: Optional[SessionConfig] = None, **kwargs) -> FormatDriver:
    return get_driver(format_name)(stream, mode, config, **kwargs)


__all__ = ['DRIVERS', 'DriverCapabilities', 'FormatDriver', 'HysweepDriver', 'SimradDriver',
           'get_driver', 'guess_format', 'open_driver']
